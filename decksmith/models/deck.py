from dataclasses import dataclass, field
from typing import Any

from decksmith.models.card import ResolvedPrint
from decksmith.models.enums import Format


@dataclass(frozen=True)
class ValidationRules:
    """
    Advisory structural rules attached to a deck section.

    Enforced by the composition validator on every mutation,
    not by a database constraint.
    """

    max_cards: int | None = None
    singleton: bool | None = None
    color_identity: tuple[str, ...] | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any] | None) -> "ValidationRules":
        """Build from the stored camelCase JSON object."""
        if not data:
            return cls()
        identity = data.get("colorIdentity")
        return cls(
            max_cards=data.get("maxCards"),
            singleton=data.get("singleton"),
            color_identity=tuple(identity) if identity is not None else None,
        )

    def to_json(self) -> dict[str, Any]:
        """Stored form; unset rules are omitted."""
        data: dict[str, Any] = {}
        if self.max_cards is not None:
            data["maxCards"] = self.max_cards
        if self.singleton is not None:
            data["singleton"] = self.singleton
        if self.color_identity is not None:
            data["colorIdentity"] = list(self.color_identity)
        return data

    def is_empty(self) -> bool:
        return not self.to_json()


@dataclass(frozen=True, slots=True)
class ResolvedDeckCard:
    """A deck card row joined with its catalog print."""

    card_id: str
    section_id: str
    quantity: int
    position: int
    print: ResolvedPrint


@dataclass
class DeckStats:
    """
    Aggregated statistics of a deck.

    Attributes:
        mana_curve: floor(mana value) bucket -> quantity, "7+" for 7 and above
        color_distribution: color letter -> quantity ("C" for colorless)
        type_distribution: primary type (lower-case) -> quantity
        total_value_usd: None when no card has a USD price
        total_value_eur: None when no card has an EUR price
        owned_count: copies covered by available collection copies
        missing_count: copies not covered
        role_counts: gap category -> number of cards filling that role
    """

    total_cards: int = 0
    unique_cards: int = 0
    mana_curve: dict[str, int] = field(default_factory=dict)
    color_distribution: dict[str, int] = field(default_factory=dict)
    type_distribution: dict[str, int] = field(default_factory=dict)
    total_value_usd: float | None = None
    total_value_eur: float | None = None
    owned_count: int = 0
    missing_count: int = 0
    average_cmc: float = 0.0
    role_counts: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class SectionTemplate:
    name: str
    rules: ValidationRules = field(default_factory=ValidationRules)
    description: str | None = None


# Sections that do not count toward the played deck
NON_PLAYING_SECTIONS: frozenset[str] = frozenset({"sideboard", "considering", "maybeboard"})

_CONSIDERING = SectionTemplate("Considering", description="Cards to consider adding")
_MAYBEBOARD = SectionTemplate("Maybeboard", description="Cards that might be added later")


def _constructed(main_size: int, sideboard: int | None = 15) -> list[SectionTemplate]:
    sideboard_rules = ValidationRules(max_cards=sideboard) if sideboard else ValidationRules()
    return [
        SectionTemplate("Mainboard", ValidationRules(max_cards=main_size)),
        SectionTemplate("Sideboard", sideboard_rules),
        _CONSIDERING,
    ]


SECTION_TEMPLATES: dict[Format, list[SectionTemplate]] = {
    Format.COMMANDER: [
        SectionTemplate("Command Zone", ValidationRules(max_cards=2)),
        SectionTemplate("Mainboard", ValidationRules(singleton=True)),
        _CONSIDERING,
        _MAYBEBOARD,
    ],
    Format.DUEL: [
        SectionTemplate("Command Zone", ValidationRules(max_cards=1)),
        SectionTemplate("Mainboard", ValidationRules(singleton=True)),
        SectionTemplate("Sideboard", ValidationRules(max_cards=15)),
        _CONSIDERING,
    ],
    Format.BRAWL: [
        SectionTemplate("Command Zone", ValidationRules(max_cards=1)),
        SectionTemplate("Mainboard", ValidationRules(singleton=True)),
        _CONSIDERING,
    ],
    Format.STANDARD: _constructed(60),
    Format.MODERN: _constructed(60),
    Format.PIONEER: _constructed(60),
    Format.LEGACY: _constructed(60),
    Format.VINTAGE: _constructed(60),
    Format.PAUPER: _constructed(60),
    Format.LIMITED: _constructed(40, sideboard=None),
    Format.CASUAL: [SectionTemplate("Mainboard"), _CONSIDERING, _MAYBEBOARD],
}


def is_playing_section(name: str) -> bool:
    """True if cards in a section with this name count toward the played deck."""
    return name.strip().lower() not in NON_PLAYING_SECTIONS
