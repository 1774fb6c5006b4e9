"""
Deck section composition rules.

Pure checks over a section's hypothetical post-mutation card set. The
composition service builds that set, runs these checks, and commits only
when every check passes.

Checks run in a fixed order and the first violation wins:
1. maxCards: total quantity in the section
2. singleton: at most one copy per rules identity (basic lands exempt)
3. colorIdentity: every card's colors within the allowed set

Singleton counts by oracle id, so two different prints of the same card
count together.
"""

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from decksmith.models.card import ResolvedPrint
from decksmith.models.deck import ValidationRules
from decksmith.models.failure import ValidationFailedError

# A proposed section entry: catalog print and quantity
ProposedCard = tuple[ResolvedPrint, int]


@dataclass(frozen=True)
class RuleViolation:
    """A failed composition check."""

    rule: str
    detail: str
    limit: Any = None
    attempted: Any = None

    def to_error(self) -> ValidationFailedError:
        return ValidationFailedError(
            rule=self.rule,
            detail=self.detail,
            limit=self.limit,
            attempted=self.attempted,
        )


def check_max_cards(rules: ValidationRules, cards: Sequence[ProposedCard]) -> RuleViolation | None:
    if rules.max_cards is None:
        return None
    total = sum(qty for _, qty in cards)
    if total > rules.max_cards:
        return RuleViolation(
            rule="maxCards",
            detail=f"Section allows {rules.max_cards} cards, change would make {total}",
            limit=rules.max_cards,
            attempted=total,
        )
    return None


def check_singleton(rules: ValidationRules, cards: Sequence[ProposedCard]) -> RuleViolation | None:
    if not rules.singleton:
        return None
    counts: Counter[str] = Counter()
    names: dict[str, str] = {}
    for card_print, qty in cards:
        if card_print.is_basic_land:
            continue
        counts[card_print.oracle_id] += qty
        names[card_print.oracle_id] = card_print.name

    for oracle_id, count in counts.items():
        if count > 1:
            return RuleViolation(
                rule="singleton",
                detail=f"Singleton section would hold {count} copies of {names[oracle_id]}",
                limit=1,
                attempted=count,
            )
    return None


def check_color_identity(
    rules: ValidationRules, cards: Sequence[ProposedCard]
) -> RuleViolation | None:
    if rules.color_identity is None:
        return None
    allowed = set(rules.color_identity) - {"C"}
    for card_print, _ in cards:
        colors = set(card_print.colors) - {"C"}
        if not colors <= allowed:
            return RuleViolation(
                rule="colorIdentity",
                detail=(
                    f"{card_print.name} has colors {''.join(sorted(colors))} "
                    f"outside {''.join(sorted(allowed)) or 'colorless'}"
                ),
                limit=sorted(allowed),
                attempted=sorted(colors),
            )
    return None


def validate_section_cards(
    rules: ValidationRules,
    cards: Sequence[ProposedCard],
) -> RuleViolation | None:
    """
    Validate a section's hypothetical card set.

    Args:
        rules: The section's validation rules
        cards: Every card the section would hold after the mutation

    Returns:
        The first violation found, or None if the set is valid
    """
    for check in (check_max_cards, check_singleton, check_color_identity):
        violation = check(rules, cards)
        if violation is not None:
            return violation
    return None


def check_reorder_membership(
    current_ids: Sequence[str],
    proposed_ids: Sequence[str],
) -> RuleViolation | None:
    """
    A reorder must name exactly the current members, each once.

    Returns:
        A "reorder-membership" violation, or None if the order is acceptable
    """
    duplicates = sorted(item for item, n in Counter(proposed_ids).items() if n > 1)
    if duplicates:
        return RuleViolation(
            rule="reorder-membership",
            detail=f"Duplicate ids in new order: {', '.join(duplicates)}",
            limit=len(current_ids),
            attempted=len(proposed_ids),
        )

    current = set(current_ids)
    proposed = set(proposed_ids)
    if current != proposed:
        missing = sorted(current - proposed)
        unknown = sorted(proposed - current)
        return RuleViolation(
            rule="reorder-membership",
            detail=f"New order must list every member once (missing={missing}, unknown={unknown})",
            limit=len(current_ids),
            attempted=len(proposed_ids),
        )
    return None
