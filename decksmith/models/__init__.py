from decksmith.models.card import Prices, ResolvedPrint, parse_price
from decksmith.models.collection import CardOwnership
from decksmith.models.deck import (
    SECTION_TEMPLATES,
    DeckStats,
    ResolvedDeckCard,
    SectionTemplate,
    ValidationRules,
    is_playing_section,
)
from decksmith.models.enums import (
    Color,
    Condition,
    FeedbackType,
    Format,
    GapCategory,
    Severity,
    SuggestionPriority,
    TagType,
)
from decksmith.models.failure import (
    STANDARD_MESSAGES,
    STANDARD_SUGGESTIONS,
    ApiResponse,
    ConflictError,
    ExternalServiceUnavailableError,
    FailureDetail,
    FailureKind,
    InconsistentStateError,
    KnownError,
    NotFoundError,
    OutcomeType,
    PartialFailureError,
    ValidationFailedError,
    create_unknown_failure,
    create_validation_failure,
    finalize_response,
    is_finalized,
)
from decksmith.models.recommendation import (
    CardSummary,
    DeckGap,
    LlmSuggestion,
    RuleSuggestion,
    card_summary_from_print,
)

__all__ = [
    "ApiResponse",
    "CardOwnership",
    "CardSummary",
    "Color",
    "Condition",
    "ConflictError",
    "DeckGap",
    "DeckStats",
    "ExternalServiceUnavailableError",
    "FailureDetail",
    "FailureKind",
    "FeedbackType",
    "Format",
    "GapCategory",
    "InconsistentStateError",
    "KnownError",
    "LlmSuggestion",
    "NotFoundError",
    "OutcomeType",
    "PartialFailureError",
    "Prices",
    "ResolvedDeckCard",
    "ResolvedPrint",
    "RuleSuggestion",
    "SECTION_TEMPLATES",
    "STANDARD_MESSAGES",
    "STANDARD_SUGGESTIONS",
    "SectionTemplate",
    "Severity",
    "SuggestionPriority",
    "TagType",
    "ValidationFailedError",
    "ValidationRules",
    "card_summary_from_print",
    "create_unknown_failure",
    "create_validation_failure",
    "finalize_response",
    "is_finalized",
    "parse_price",
]
