from decksmith.analysis.deck_validation import (
    RuleViolation,
    check_reorder_membership,
    validate_section_cards,
)
from decksmith.analysis.gaps import ALGORITHM_VERSION, analyze_gaps
from decksmith.analysis.ownership import availability_map, get_ownership, project_ownership
from decksmith.analysis.roles import classify_roles, fills_role
from decksmith.analysis.stats import aggregate_deck_stats

__all__ = [
    "ALGORITHM_VERSION",
    "RuleViolation",
    "aggregate_deck_stats",
    "analyze_gaps",
    "availability_map",
    "check_reorder_membership",
    "classify_roles",
    "fills_role",
    "get_ownership",
    "project_ownership",
    "validate_section_cards",
]
