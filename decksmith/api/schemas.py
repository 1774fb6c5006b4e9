"""
Request and response models shared by the API routers.

Field names are snake_case in Python and camelCase on the wire. Models
accept either spelling on input (`populate_by_name`) and FastAPI renders
responses by alias.
"""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from decksmith.config import (
    MAX_DECK_CARD_NOTES_LENGTH,
    MAX_FEEDBACK_COMMENT_LENGTH,
    MAX_NOTES_LENGTH,
)
from decksmith.models.db import as_utc
from decksmith.models.enums import (
    Condition,
    FeedbackType,
    Format,
    GapCategory,
    Severity,
    SuggestionPriority,
    TagType,
)

CustomFieldValue = str | int | float | bool


def reject_null(value: Any) -> Any:
    """
    Shared body of the update validators for NOT NULL columns.

    Defaults are not validated, so only an explicit null is rejected.
    """
    if value is None:
        raise ValueError("may be omitted but not null")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CamelResponse(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    @field_validator("*", mode="after")
    @classmethod
    def _utc_datetimes(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return as_utc(value)
        return value


# =============================================================================
# COLLECTION
# =============================================================================


class AddToCollectionInput(CamelModel):
    """Add copies of a print to the caller's collection."""

    card_print_id: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1)
    condition: Condition = Condition.NM
    is_foil: bool = False
    folder_id: str | None = None
    acquired_date: date | None = None
    notes: str | None = Field(default=None, max_length=MAX_NOTES_LENGTH)
    custom_fields: dict[str, CustomFieldValue] | None = None
    tag_ids: list[str] | None = None


class RemoveFromCollectionInput(CamelModel):
    quantity: int = Field(default=1, ge=1)


class UpdateCollectionEntryInput(CamelModel):
    """Partial update; only supplied fields are replaced."""

    folder_id: str | None = None
    quantity: int | None = Field(default=None, ge=1)
    condition: Condition | None = None
    is_foil: bool | None = None
    acquired_date: date | None = None
    notes: str | None = Field(default=None, max_length=MAX_NOTES_LENGTH)
    custom_fields: dict[str, CustomFieldValue] | None = None
    tag_ids: list[str] | None = None

    @field_validator("quantity", "condition", "is_foil")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        return reject_null(value)


class BulkMoveInput(CamelModel):
    entry_ids: list[str] = Field(..., min_length=1)
    folder_id: str | None = None


class BulkTagInput(CamelModel):
    entry_ids: list[str] = Field(..., min_length=1)
    tag_ids: list[str] = Field(..., min_length=1)


class BulkResultResponse(CamelModel):
    updated_ids: list[str]


class TagResponse(CamelResponse):
    id: str
    name: str
    type: TagType
    description: str | None = None
    color: str


class CollectionEntryResponse(CamelResponse):
    id: str
    user_id: str
    folder_id: str | None
    card_print_id: str
    quantity: int
    condition: Condition
    is_foil: bool
    acquired_date: date | None
    notes: str | None
    custom_fields: dict[str, CustomFieldValue] | None
    tags: list[TagResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class RemoveResponse(CamelModel):
    entry_id: str
    remaining_quantity: int
    deleted: bool


class OwnershipResponse(CamelModel):
    card_print_id: str
    is_owned: bool
    owned_quantity: int
    used_in_decks: int
    available_quantity: int
    deck_demand: int
    overcommitted: bool


# =============================================================================
# FOLDERS AND TAGS
# =============================================================================


class FolderInput(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class FolderUpdateInput(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")

    @field_validator("name", "color")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        return reject_null(value)


class FolderResponse(CamelResponse):
    id: str
    name: str
    description: str | None
    color: str
    created_at: datetime
    updated_at: datetime


class TagInput(CamelModel):
    name: str = Field(..., min_length=1, max_length=50)
    type: TagType
    description: str | None = Field(default=None, max_length=200)
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


# =============================================================================
# DECKS
# =============================================================================


class DeckInput(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    format: Format
    description: str | None = None
    is_public: bool = False
    tag_ids: list[str] | None = None


class DeckUpdateInput(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    is_public: bool | None = None
    tag_ids: list[str] | None = None

    @field_validator("name", "is_public")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        return reject_null(value)


class SectionInput(CamelModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: str | None = Field(default=None, max_length=200)
    validation_rules: dict[str, Any] | None = None
    position: int | None = Field(default=None, ge=0)


class SectionUpdateInput(CamelModel):
    """
    Partial update. `validationRules` is itself partial over
    {maxCards, singleton, colorIdentity}; an explicit null clears it.
    """

    name: str | None = Field(default=None, min_length=1, max_length=50)
    description: str | None = Field(default=None, max_length=200)
    validation_rules: dict[str, Any] | None = None

    @field_validator("name")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        return reject_null(value)


class ReorderInput(CamelModel):
    ids: list[str]


class DeckCardInput(CamelModel):
    card_print_id: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1)
    position: int | None = Field(default=None, ge=0)
    notes: str | None = Field(default=None, max_length=MAX_DECK_CARD_NOTES_LENGTH)


class BulkDeckCardItem(CamelModel):
    card_print_id: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1)


class BulkDeckCardInput(CamelModel):
    cards: list[BulkDeckCardItem] = Field(..., min_length=1)


class DeckCardUpdateInput(CamelModel):
    card_print_id: str | None = Field(default=None, min_length=1)
    quantity: int | None = Field(default=None, ge=1)
    position: int | None = Field(default=None, ge=0)
    notes: str | None = Field(default=None, max_length=MAX_DECK_CARD_NOTES_LENGTH)


class MoveCardInput(CamelModel):
    target_section_id: str = Field(..., min_length=1)
    position: int | None = Field(default=None, ge=0)


class DeckCardResponse(CamelResponse):
    id: str
    section_id: str
    card_print_id: str
    quantity: int
    position: int
    notes: str | None


class DeckSectionResponse(CamelResponse):
    id: str
    name: str
    description: str | None
    position: int
    validation_rules: dict[str, Any] | None
    cards: list[DeckCardResponse] = Field(default_factory=list)


class DeckResponse(CamelResponse):
    id: str
    user_id: str
    name: str
    format: Format
    description: str | None
    is_public: bool
    version: int
    sections: list[DeckSectionResponse] = Field(default_factory=list)
    tags: list[TagResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class DeckSummaryResponse(CamelResponse):
    id: str
    name: str
    format: Format
    version: int
    updated_at: datetime


class DeckStatsResponse(CamelModel):
    deck_id: str
    total_cards: int
    unique_cards: int
    mana_curve: dict[str, int]
    color_distribution: dict[str, int]
    type_distribution: dict[str, int]
    total_value_usd: float | None
    total_value_eur: float | None
    owned_count: int
    missing_count: int
    average_cmc: float


# =============================================================================
# RECOMMENDATIONS
# =============================================================================


class RequestRecommendationInput(CamelModel):
    deck_id: str = Field(..., min_length=1)
    use_llm: bool = True
    consider_collection: bool = True
    max_price_per_card: float | None = Field(default=None, gt=0)
    force_refresh: bool = False


class GapResponse(CamelModel):
    category: GapCategory
    severity: Severity
    description: str


class CardSummaryResponse(CamelModel):
    oracle_id: str
    name: str
    mana_cost: str | None
    type_line: str
    colors: list[str]
    cmc: float


class SuggestionOwnership(CamelModel):
    is_owned: bool
    owned_quantity: int
    used_in_decks: int
    available_quantity: int
    deck_demand: int = 0
    overcommitted: bool = False


class RuleSuggestionResponse(CamelModel):
    card: CardSummaryResponse
    card_print_id: str
    reason: str
    priority: SuggestionPriority
    addresses_gap: GapCategory | None
    ownership: SuggestionOwnership
    price: str | None = None


class LlmSuggestionResponse(RuleSuggestionResponse):
    reasoning: str
    suggested_cuts: list[CardSummaryResponse] = Field(default_factory=list)


class DeckRecommendationResponse(CamelResponse):
    id: str
    deck_id: str
    deck_version: int
    algorithm_version: str
    identified_gaps: list[GapResponse]
    rule_suggestions: list[RuleSuggestionResponse]
    llm_model: str | None = None
    llm_prompt_tokens: int | None = None
    llm_completion_tokens: int | None = None
    llm_cost_usd: float | None = None
    llm_suggestions: list[LlmSuggestionResponse] | None = None
    llm_summary: str | None = None
    user_feedback: FeedbackType | None = None
    feedback_comment: str | None = None
    created_at: datetime
    expires_at: datetime


class FeedbackInput(CamelModel):
    feedback: FeedbackType
    comment: str | None = Field(default=None, max_length=MAX_FEEDBACK_COMMENT_LENGTH)
