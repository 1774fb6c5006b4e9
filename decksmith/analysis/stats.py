"""
Deck statistics aggregation.

Pure function from resolved deck cards plus an availability map to DeckStats.
No I/O; callers resolve cards and load ownership first.

Mana curve bucketing: mana values are floored to an integer and values of 7
or more share the terminal "7+" bucket. Lands do not appear in the curve.
"""

import math
from collections import defaultdict

from decksmith.analysis.roles import classify_roles
from decksmith.models.card import Currency
from decksmith.models.deck import DeckStats, ResolvedDeckCard
from decksmith.models.failure import InconsistentStateError

CURVE_CAP = 7

# Primary types, checked in this order (first match wins)
PRIMARY_TYPES: list[str] = [
    "Creature",
    "Instant",
    "Sorcery",
    "Land",
    "Artifact",
    "Enchantment",
    "Planeswalker",
    "Battle",
]


def curve_bucket(cmc: float) -> str:
    """Bucket key for a mana value."""
    value = math.floor(cmc)
    if value >= CURVE_CAP:
        return f"{CURVE_CAP}+"
    return str(max(value, 0))


def primary_type(type_line: str) -> str:
    """
    Classify a card by the primary segment of its type line.

    The primary segment is the text before the em dash of the front face,
    so "Artifact Creature — Golem" classifies as creature.
    """
    front = type_line.split("//")[0]
    segment = front.split("—")[0]
    for card_type in PRIMARY_TYPES:
        if card_type in segment:
            return card_type.lower()
    return "other"


def _sorted_curve(curve: dict[str, int]) -> dict[str, int]:
    def key(bucket: str) -> int:
        return CURVE_CAP if bucket.endswith("+") else int(bucket)

    return {bucket: curve[bucket] for bucket in sorted(curve, key=key)}


def _total_value(cards: list[ResolvedDeckCard], currency: Currency) -> float | None:
    total = 0.0
    priced = False
    for card in cards:
        price = card.print.prices.best(currency)
        if price is None:
            continue
        priced = True
        total += card.quantity * price
    return round(total, 2) if priced else None


def aggregate_deck_stats(
    cards: list[ResolvedDeckCard],
    availability: dict[str, int],
) -> DeckStats:
    """
    Aggregate statistics for a set of deck cards.

    Args:
        cards: Deck cards joined with their catalog prints
        availability: print id -> copies available to this deck

    Returns:
        DeckStats for the given cards

    Raises:
        InconsistentStateError: If the availability map holds a negative value
    """
    stats = DeckStats()
    curve: dict[str, int] = defaultdict(int)
    colors: dict[str, int] = defaultdict(int)
    types: dict[str, int] = defaultdict(int)
    roles: dict[str, int] = defaultdict(int)
    remaining = dict(availability)
    oracle_ids: set[str] = set()
    nonland_cmc_total = 0.0
    nonland_count = 0

    for card in cards:
        qty = card.quantity
        card_print = card.print
        stats.total_cards += qty
        oracle_ids.add(card_print.oracle_id)

        if not card_print.is_land:
            curve[curve_bucket(card_print.cmc)] += qty
            nonland_cmc_total += card_print.cmc * qty
            nonland_count += qty

        if card_print.colors:
            for color in card_print.colors:
                colors[color] += qty
        else:
            colors["C"] += qty

        types[primary_type(card_print.type_line)] += qty

        for role in classify_roles(card_print):
            roles[role.value] += qty

        available = remaining.get(card_print.print_id, 0)
        if available < 0:
            raise InconsistentStateError(
                f"Negative availability {available} for print {card_print.print_id}"
            )
        covered = min(qty, available)
        remaining[card_print.print_id] = available - covered
        stats.owned_count += covered
        stats.missing_count += qty - covered

    stats.unique_cards = len(oracle_ids)
    stats.mana_curve = _sorted_curve(dict(curve))
    stats.color_distribution = dict(sorted(colors.items()))
    stats.type_distribution = dict(sorted(types.items()))
    stats.role_counts = dict(sorted(roles.items()))
    stats.total_value_usd = _total_value(cards, "usd")
    stats.total_value_eur = _total_value(cards, "eur")
    stats.average_cmc = round(nonland_cmc_total / nonland_count, 2) if nonland_count else 0.0

    return stats
