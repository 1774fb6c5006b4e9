"""
Recommendation models.

Gaps and suggestions are plain dataclasses; `to_dict()` produces the JSON
snapshot stored on the recommendation row and later validated into the
API response models.
"""

from dataclasses import asdict, dataclass, field
from typing import Any

from decksmith.models.card import ResolvedPrint
from decksmith.models.enums import GapCategory, Severity, SuggestionPriority


@dataclass(frozen=True)
class DeckGap:
    """A detected structural weakness."""

    category: GapCategory
    severity: Severity
    description: str
    observed: float = 0
    threshold: float = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "description": self.description,
        }


@dataclass(frozen=True)
class CardSummary:
    """Minimal card identity used inside suggestions."""

    oracle_id: str
    name: str
    mana_cost: str | None
    type_line: str
    colors: list[str]
    cmc: float


@dataclass
class RuleSuggestion:
    """A card suggested by the rule-based pass."""

    card: CardSummary
    card_print_id: str
    reason: str
    priority: SuggestionPriority
    addresses_gap: GapCategory | None
    ownership: dict[str, int | bool]
    price: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["priority"] = self.priority.value
        data["addresses_gap"] = self.addresses_gap.value if self.addresses_gap else None
        return data


@dataclass
class LlmSuggestion:
    """A rule suggestion annotated by the generative pass."""

    suggestion: RuleSuggestion
    reasoning: str
    suggested_cuts: list[CardSummary] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = self.suggestion.to_dict()
        data["reasoning"] = self.reasoning
        data["suggested_cuts"] = [asdict(cut) for cut in self.suggested_cuts]
        return data


def card_summary_from_print(print_: ResolvedPrint) -> CardSummary:
    """Summarize a ResolvedPrint."""
    return CardSummary(
        oracle_id=print_.oracle_id,
        name=print_.name,
        mana_cost=print_.mana_cost,
        type_line=print_.type_line,
        colors=list(print_.colors),
        cmc=print_.cmc,
    )
