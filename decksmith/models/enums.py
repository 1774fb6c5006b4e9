"""
Enumerations shared by the ORM, the domain models and the API schemas.

All enums subclass ``str`` so they serialize as their value in JSON and
compare equal to plain strings read back from the database.
"""

from enum import Enum


class Format(str, Enum):
    """Deck formats. Governs section templates and gap thresholds."""

    COMMANDER = "commander"
    DUEL = "duel"
    BRAWL = "brawl"
    STANDARD = "standard"
    MODERN = "modern"
    PIONEER = "pioneer"
    LEGACY = "legacy"
    VINTAGE = "vintage"
    PAUPER = "pauper"
    LIMITED = "limited"
    CASUAL = "casual"


class Color(str, Enum):
    """WUBRG plus colorless."""

    WHITE = "W"
    BLUE = "U"
    BLACK = "B"
    RED = "R"
    GREEN = "G"
    COLORLESS = "C"


class Condition(str, Enum):
    """Physical card condition (TCGplayer/Cardmarket grading)."""

    NM = "NM"
    LP = "LP"
    MP = "MP"
    HP = "HP"
    DMG = "DMG"


class TagType(str, Enum):
    DECK = "deck"
    COLLECTION = "collection"
    CARD = "card"


class GapCategory(str, Enum):
    """Areas where a deck can be lacking."""

    RAMP = "ramp"
    CARD_DRAW = "card_draw"
    REMOVAL = "removal"
    BOARD_WIPES = "board_wipes"
    INTERACTION = "interaction"
    PROTECTION = "protection"
    RECURSION = "recursion"
    TUTORS = "tutors"
    WINCONS = "wincons"
    CREATURES = "creatures"
    LANDS = "lands"
    CURVE = "curve"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SuggestionPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    ESSENTIAL = "essential"


class FeedbackType(str, Enum):
    HELPFUL = "helpful"
    NOT_HELPFUL = "not_helpful"


# Ordering helpers (higher rank sorts first)
SEVERITY_RANK: dict[Severity, int] = {
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}

PRIORITY_RANK: dict[SuggestionPriority, int] = {
    SuggestionPriority.ESSENTIAL: 4,
    SuggestionPriority.HIGH: 3,
    SuggestionPriority.MEDIUM: 2,
    SuggestionPriority.LOW: 1,
}
