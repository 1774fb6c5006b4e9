"""
Decksmith services.

Business logic for collection management, deck composition and
recommendations.
"""

from decksmith.services.card_catalog import CardCatalog, SqlCardCatalog
from decksmith.services.cost_controls import (
    DailyBudgetExceededError,
    DailyUsageTracker,
    LLMDisabledError,
    enforce_cost_controls,
    get_usage_tracker,
)
from decksmith.services.deck_composition import CardAddition, locked_deck, resolve_deck_cards
from decksmith.services.llm_refiner import (
    AnthropicRefiner,
    RecommendationRefiner,
    RefinementContext,
    RefinementResult,
)
from decksmith.services.partial_merge import merge_partial, merge_validation_rules
from decksmith.services.recommendation_engine import (
    RecommendationEngine,
    compute_deck_stats,
    rank_suggestions,
)

__all__ = [
    "AnthropicRefiner",
    "CardAddition",
    "CardCatalog",
    "DailyBudgetExceededError",
    "DailyUsageTracker",
    "LLMDisabledError",
    "RecommendationEngine",
    "RecommendationRefiner",
    "RefinementContext",
    "RefinementResult",
    "SqlCardCatalog",
    "compute_deck_stats",
    "enforce_cost_controls",
    "get_usage_tracker",
    "locked_deck",
    "merge_partial",
    "merge_validation_rules",
    "rank_suggestions",
    "resolve_deck_cards",
]
