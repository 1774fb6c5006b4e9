"""
Card role classification.

Maps a card to the gap categories it fills, using oracle-text keyword
patterns and the type line. A card may fill several roles.
"""

from decksmith.models.card import ResolvedPrint
from decksmith.models.enums import GapCategory

# Role detection patterns: category -> oracle text keywords (lower-case)
ROLE_PATTERNS: dict[GapCategory, list[str]] = {
    GapCategory.RAMP: [
        "add {",
        "add one mana",
        "add two mana",
        "search your library for a basic land",
        "search your library for up to two basic land",
        "put a land card from your hand onto the battlefield",
        "you may play an additional land",
    ],
    GapCategory.CARD_DRAW: [
        "draw a card",
        "draw two cards",
        "draw three cards",
        "draws a card",
        "draw cards equal",
        "investigate",
    ],
    GapCategory.REMOVAL: [
        "destroy target",
        "exile target",
        "damage to target creature",
        "damage to any target",
        "target creature gets -",
        "fights target",
    ],
    GapCategory.BOARD_WIPES: [
        "destroy all",
        "exile all",
        "all creatures get -",
        "damage to each creature",
        "each player sacrifices",
    ],
    GapCategory.INTERACTION: [
        "counter target",
        "return target creature to its owner's hand",
        "return target nonland permanent to its owner's hand",
        "tap target",
    ],
    GapCategory.PROTECTION: [
        "hexproof",
        "indestructible",
        "shroud",
        "protection from",
        "phase out",
        "phases out",
        "ward {",
    ],
    GapCategory.RECURSION: [
        "from your graveyard to your hand",
        "from your graveyard to the battlefield",
        "return target creature card from your graveyard",
        "return target card from your graveyard",
        "flashback",
        "escape—",
    ],
    GapCategory.TUTORS: [
        "search your library for a card",
        "search your library for a creature card",
        "search your library for an artifact card",
        "search your library for an enchantment card",
        "search your library for an instant",
        "search your library for a sorcery",
    ],
    GapCategory.WINCONS: [
        "you win the game",
        "loses the game",
        "each opponent loses",
        "double strike",
        "infect",
        "take an extra turn",
    ],
}

# Categories detected from the type line rather than oracle text
TYPE_ROLES: dict[GapCategory, str] = {
    GapCategory.CREATURES: "Creature",
    GapCategory.LANDS: "Land",
}


def classify_roles(card: ResolvedPrint) -> set[GapCategory]:
    """Return every gap category this card contributes to."""
    roles: set[GapCategory] = set()
    front_type = card.type_line.split("//")[0]
    for category, type_word in TYPE_ROLES.items():
        if type_word in front_type:
            roles.add(category)

    oracle = card.oracle_text.lower()
    for category, keywords in ROLE_PATTERNS.items():
        # Lands tapping for mana are not ramp
        if category == GapCategory.RAMP and card.is_land:
            continue
        for keyword in keywords:
            if keyword in oracle:
                roles.add(category)
                break

    return roles


def fills_role(card: ResolvedPrint, category: GapCategory) -> bool:
    """True if the card contributes to the given category."""
    return category in classify_roles(card)
