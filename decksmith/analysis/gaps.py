"""
Gap analysis.

Deterministic rule engine mapping deck statistics to structural weaknesses.
Each format family has its own threshold table. Severity grows with the
relative deficit below the threshold.

Every recommendation records ALGORITHM_VERSION. Any change to thresholds or
severity bands MUST bump it so stored recommendations stay auditable.
"""

from dataclasses import dataclass

from decksmith.models.deck import DeckStats
from decksmith.models.enums import SEVERITY_RANK, Format, GapCategory, Severity
from decksmith.models.recommendation import DeckGap

ALGORITHM_VERSION = "rules-v1"


@dataclass(frozen=True)
class ThresholdTable:
    """Minimum role counts and the average mana value ceiling of a family."""

    minimums: dict[GapCategory, int]
    curve_ceiling: float


SINGLETON_100 = ThresholdTable(
    minimums={
        GapCategory.RAMP: 10,
        GapCategory.CARD_DRAW: 10,
        GapCategory.REMOVAL: 8,
        GapCategory.BOARD_WIPES: 2,
        GapCategory.INTERACTION: 3,
        GapCategory.PROTECTION: 2,
        GapCategory.RECURSION: 2,
        GapCategory.TUTORS: 1,
        GapCategory.WINCONS: 2,
        GapCategory.CREATURES: 20,
        GapCategory.LANDS: 35,
    },
    curve_ceiling=3.5,
)

SINGLETON_60 = ThresholdTable(
    minimums={
        GapCategory.RAMP: 6,
        GapCategory.CARD_DRAW: 6,
        GapCategory.REMOVAL: 5,
        GapCategory.BOARD_WIPES: 1,
        GapCategory.INTERACTION: 2,
        GapCategory.PROTECTION: 1,
        GapCategory.RECURSION: 1,
        GapCategory.WINCONS: 2,
        GapCategory.CREATURES: 14,
        GapCategory.LANDS: 24,
    },
    curve_ceiling=3.3,
)

CONSTRUCTED_60 = ThresholdTable(
    minimums={
        GapCategory.CARD_DRAW: 4,
        GapCategory.REMOVAL: 6,
        GapCategory.INTERACTION: 4,
        GapCategory.WINCONS: 1,
        GapCategory.CREATURES: 12,
        GapCategory.LANDS: 22,
    },
    curve_ceiling=3.0,
)

LIMITED_40 = ThresholdTable(
    minimums={
        GapCategory.CARD_DRAW: 2,
        GapCategory.REMOVAL: 3,
        GapCategory.WINCONS: 1,
        GapCategory.CREATURES: 14,
        GapCategory.LANDS: 16,
    },
    curve_ceiling=3.2,
)

FORMAT_THRESHOLDS: dict[Format, ThresholdTable] = {
    Format.COMMANDER: SINGLETON_100,
    Format.DUEL: SINGLETON_100,
    Format.BRAWL: SINGLETON_60,
    Format.STANDARD: CONSTRUCTED_60,
    Format.MODERN: CONSTRUCTED_60,
    Format.PIONEER: CONSTRUCTED_60,
    Format.LEGACY: CONSTRUCTED_60,
    Format.VINTAGE: CONSTRUCTED_60,
    Format.PAUPER: CONSTRUCTED_60,
    Format.CASUAL: CONSTRUCTED_60,
    Format.LIMITED: LIMITED_40,
}

CATEGORY_LABELS: dict[GapCategory, str] = {
    GapCategory.RAMP: "ramp sources",
    GapCategory.CARD_DRAW: "card draw sources",
    GapCategory.REMOVAL: "targeted removal spells",
    GapCategory.BOARD_WIPES: "board wipes",
    GapCategory.INTERACTION: "interaction spells",
    GapCategory.PROTECTION: "protection effects",
    GapCategory.RECURSION: "recursion effects",
    GapCategory.TUTORS: "tutors",
    GapCategory.WINCONS: "win conditions",
    GapCategory.CREATURES: "creatures",
    GapCategory.LANDS: "lands",
}

_CATEGORY_ORDER = {category: index for index, category in enumerate(GapCategory)}


def deficit_severity(observed: int, threshold: int) -> Severity | None:
    """
    Severity of a shortfall, or None when the threshold is met.

    Bands on the relative deficit: >= 50% high, >= 25% medium, otherwise low.
    """
    if threshold <= 0 or observed >= threshold:
        return None
    deficit = (threshold - observed) / threshold
    if deficit >= 0.5:
        return Severity.HIGH
    if deficit >= 0.25:
        return Severity.MEDIUM
    return Severity.LOW


def curve_severity(average_cmc: float, ceiling: float) -> Severity | None:
    """Severity of a mana curve that sits above the family's ceiling."""
    if average_cmc <= ceiling:
        return None
    excess = (average_cmc - ceiling) / ceiling
    if excess >= 0.3:
        return Severity.HIGH
    if excess >= 0.15:
        return Severity.MEDIUM
    return Severity.LOW


def analyze_gaps(stats: DeckStats, format_name: Format | str) -> list[DeckGap]:
    """
    Detect gaps in a deck's composition.

    Args:
        stats: Statistics of the deck's playing sections
        format_name: Deck format, selects the threshold table

    Returns:
        Gaps ordered by severity (highest first), then category
    """
    deck_format = Format(format_name)
    table = FORMAT_THRESHOLDS[deck_format]
    gaps: list[DeckGap] = []

    for category, threshold in table.minimums.items():
        observed = stats.role_counts.get(category.value, 0)
        severity = deficit_severity(observed, threshold)
        if severity is None:
            continue
        gaps.append(
            DeckGap(
                category=category,
                severity=severity,
                description=(
                    f"{observed} {CATEGORY_LABELS[category]}; "
                    f"{threshold} recommended for {deck_format.value}"
                ),
                observed=observed,
                threshold=threshold,
            )
        )

    if stats.average_cmc > 0:
        severity = curve_severity(stats.average_cmc, table.curve_ceiling)
        if severity is not None:
            gaps.append(
                DeckGap(
                    category=GapCategory.CURVE,
                    severity=severity,
                    description=(
                        f"Average mana value {stats.average_cmc:.2f} exceeds "
                        f"{table.curve_ceiling:.2f} for {deck_format.value}"
                    ),
                    observed=stats.average_cmc,
                    threshold=table.curve_ceiling,
                )
            )

    gaps.sort(key=lambda g: (-SEVERITY_RANK[g.severity], _CATEGORY_ORDER[g.category]))
    return gaps
