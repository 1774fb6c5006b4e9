"""
Recommendation Synthesizer.

Pipeline for one deck:
1. Resolve the deck's playing cards and compute statistics against the
   copies available to this deck
2. Detect gaps (deterministic rule engine)
3. Fetch catalog candidates per gap and rank them into rule suggestions
4. Optionally refine through the generative collaborator
5. Persist a time-bounded recommendation for the current deck version

The read transaction is committed before the model call, and the result is
saved in a separate short transaction.

Refinement is best-effort. Timeouts, API errors, unparsable output and
cost-control refusals all degrade to the rule-only recommendation with
every LLM field None; the request itself never fails because of them.

A stored recommendation is served as current only while it is unexpired
and was generated for the deck's current version.
"""

import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from decksmith.analysis.gaps import ALGORITHM_VERSION, analyze_gaps
from decksmith.analysis.ownership import availability_map, get_ownership
from decksmith.analysis.stats import aggregate_deck_stats
from decksmith.config import CANDIDATE_FETCH_LIMIT, settings
from decksmith.models.card import ResolvedPrint
from decksmith.models.collection import CardOwnership
from decksmith.models.db import DeckDB, DeckRecommendationDB, as_utc, utcnow
from decksmith.models.deck import DeckStats, ResolvedDeckCard
from decksmith.models.enums import (
    PRIORITY_RANK,
    FeedbackType,
    Format,
    GapCategory,
    Severity,
    SuggestionPriority,
)
from decksmith.models.failure import KnownError, NotFoundError
from decksmith.models.recommendation import (
    DeckGap,
    RuleSuggestion,
    card_summary_from_print,
)
from decksmith.services.card_catalog import CardCatalog
from decksmith.services.deck_composition import get_deck, resolve_deck_cards
from decksmith.services.llm_refiner import (
    RecommendationRefiner,
    RefinementContext,
    RefinementResult,
)

logger = logging.getLogger(__name__)

# Gap severity -> (priority when owned and available, priority when not)
PRIORITY_BY_SEVERITY: dict[Severity, tuple[SuggestionPriority, SuggestionPriority]] = {
    Severity.HIGH: (SuggestionPriority.ESSENTIAL, SuggestionPriority.HIGH),
    Severity.MEDIUM: (SuggestionPriority.HIGH, SuggestionPriority.MEDIUM),
    Severity.LOW: (SuggestionPriority.MEDIUM, SuggestionPriority.LOW),
}

COMMANDER_FORMATS = frozenset({Format.COMMANDER, Format.DUEL, Format.BRAWL})
COMMAND_ZONE = "command zone"


def suggestion_priority(
    severity: Severity,
    ownership: CardOwnership,
    consider_collection: bool,
) -> SuggestionPriority:
    owned_priority, unowned_priority = PRIORITY_BY_SEVERITY[severity]
    if consider_collection and ownership.available_quantity > 0:
        return owned_priority
    return unowned_priority


def _sort_key(
    suggestion: RuleSuggestion,
    consider_collection: bool,
) -> tuple[int, int, float, str]:
    owned_first = 0
    if consider_collection and not suggestion.ownership.get("available_quantity"):
        owned_first = 1
    price = float(suggestion.price) if suggestion.price is not None else math.inf
    return (-PRIORITY_RANK[suggestion.priority], owned_first, price, suggestion.card.name)


def rank_suggestions(
    gaps: list[DeckGap],
    candidates: dict[GapCategory, list[ResolvedPrint]],
    ownership: dict[str, CardOwnership],
    consider_collection: bool = True,
    max_per_gap: int = 5,
) -> list[RuleSuggestion]:
    """
    Rank catalog candidates into rule suggestions.

    Each gap contributes at most `max_per_gap` suggestions; a card already
    suggested for an earlier (more severe) gap is not repeated. The result
    is ordered by priority, owned-and-available first, price, then name.
    With `consider_collection` off, ownership does not affect priority or
    order.
    """
    selected: list[RuleSuggestion] = []
    seen_oracle_ids: set[str] = set()

    for gap in gaps:
        gap_suggestions = []
        for candidate in candidates.get(gap.category, []):
            if candidate.oracle_id in seen_oracle_ids:
                continue
            own = ownership.get(candidate.print_id, CardOwnership(candidate.print_id))
            price = candidate.prices.best("usd")
            reason = f"Addresses {gap.category.value.replace('_', ' ')}: {gap.description}"
            if own.available_quantity > 0:
                reason += f" ({own.available_quantity} available in your collection)"
            gap_suggestions.append(
                RuleSuggestion(
                    card=card_summary_from_print(candidate),
                    card_print_id=candidate.print_id,
                    reason=reason,
                    priority=suggestion_priority(gap.severity, own, consider_collection),
                    addresses_gap=gap.category,
                    ownership=own.to_dict(),
                    price=f"{price:.2f}" if price is not None else None,
                )
            )
        gap_suggestions.sort(key=lambda s: _sort_key(s, consider_collection))
        for suggestion in gap_suggestions[:max_per_gap]:
            seen_oracle_ids.add(suggestion.card.oracle_id)
            selected.append(suggestion)

    selected.sort(key=lambda s: _sort_key(s, consider_collection))
    return selected


def deck_color_identity(deck: DeckDB, cards: list[ResolvedDeckCard]) -> set[str] | None:
    """
    Colors a suggestion may use.

    Commander-style decks use their command zone; other decks use the colors
    already played. None when no colored card constrains the deck.
    """
    zone_ids = {s.id for s in deck.sections if s.name.strip().lower() == COMMAND_ZONE}
    scoped = cards
    if Format(deck.format) in COMMANDER_FORMATS and zone_ids:
        commanders = [c for c in cards if c.section_id in zone_ids]
        if commanders:
            scoped = commanders
    colors = {color for card in scoped for color in card.print.colors} - {"C"}
    return colors or None


def is_current(
    recommendation: DeckRecommendationDB,
    deck: DeckDB,
    now: datetime,
) -> bool:
    return recommendation.deck_version == deck.version and as_utc(recommendation.expires_at) > now


async def compute_deck_stats(
    session: AsyncSession,
    catalog: CardCatalog,
    user_id: str,
    deck: DeckDB,
) -> tuple[DeckStats, list[ResolvedDeckCard]]:
    """
    Statistics of a deck's playing sections.

    Owned/missing counts measure the deck against copies not committed to
    the user's other decks.
    """
    cards = await resolve_deck_cards(catalog, deck, playing_only=True)
    ownership = await get_ownership(
        session,
        user_id,
        {card.print.print_id for card in cards},
        exclude_deck_id=deck.id,
    )
    return aggregate_deck_stats(cards, availability_map(ownership)), cards


class RecommendationEngine:
    """Generates, caches and serves deck recommendations."""

    def __init__(
        self,
        session: AsyncSession,
        catalog: CardCatalog,
        refiner: RecommendationRefiner | None = None,
        clock: Callable[[], datetime] = utcnow,
        ttl: timedelta | None = None,
        max_suggestions_per_gap: int | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.session = session
        self.session_factory = session_factory
        self.catalog = catalog
        self.refiner = refiner
        self.clock = clock
        self.ttl = ttl or timedelta(hours=settings.recommendation_ttl_hours)
        self.max_suggestions_per_gap = max_suggestions_per_gap or settings.max_suggestions_per_gap

    async def get_current(self, user_id: str, deck_id: str) -> DeckRecommendationDB | None:
        """
        The newest recommendation still valid for the deck, if any.

        Raises:
            NotFoundError: If the deck does not exist for this user
        """
        deck = await get_deck(self.session, user_id, deck_id)
        return await self._current_for(deck)

    async def _current_for(self, deck: DeckDB) -> DeckRecommendationDB | None:
        now = self.clock()
        result = await self.session.execute(
            select(DeckRecommendationDB)
            .where(
                DeckRecommendationDB.deck_id == deck.id,
                DeckRecommendationDB.deck_version == deck.version,
                DeckRecommendationDB.expires_at > now,
            )
            .order_by(DeckRecommendationDB.created_at.desc())
            .limit(1)
        )
        recommendation = result.scalar_one_or_none()
        if recommendation is not None and not is_current(recommendation, deck, now):
            return None
        return recommendation

    async def request(
        self,
        user_id: str,
        deck_id: str,
        use_llm: bool = True,
        consider_collection: bool = True,
        max_price_per_card: float | None = None,
        force_refresh: bool = False,
    ) -> DeckRecommendationDB:
        """
        Serve the current recommendation or generate a new one.

        Raises:
            NotFoundError: If the deck does not exist for this user
        """
        deck = await get_deck(self.session, user_id, deck_id)
        if not force_refresh:
            current = await self._current_for(deck)
            if current is not None:
                logger.debug("Serving cached recommendation %s for deck %s", current.id, deck.id)
                return current
        return await self.generate(
            user_id,
            deck,
            use_llm=use_llm,
            consider_collection=consider_collection,
            max_price_per_card=max_price_per_card,
        )

    async def generate(
        self,
        user_id: str,
        deck: DeckDB,
        use_llm: bool = True,
        consider_collection: bool = True,
        max_price_per_card: float | None = None,
    ) -> DeckRecommendationDB:
        """Run the full pipeline and persist the result."""
        deck_version = deck.version
        stats, playing_cards = await compute_deck_stats(self.session, self.catalog, user_id, deck)
        gaps = analyze_gaps(stats, deck.format)

        all_cards = await resolve_deck_cards(self.catalog, deck, playing_only=False)
        present = {card.print.oracle_id for card in all_cards}
        colors = deck_color_identity(deck, playing_cards)

        ownership = await get_ownership(self.session, user_id)
        preferred = None
        if consider_collection:
            preferred = {pid for pid, own in ownership.items() if own.available_quantity > 0}

        candidates: dict[GapCategory, list[ResolvedPrint]] = {}
        for gap in gaps:
            candidates[gap.category] = await self.catalog.search_candidates(
                category=gap.category,
                format_name=deck.format,
                colors=colors,
                max_price=max_price_per_card,
                exclude_oracle_ids=present,
                limit=CANDIDATE_FETCH_LIMIT,
                preferred_print_ids=preferred,
            )

        suggestions = rank_suggestions(
            gaps,
            candidates,
            ownership,
            consider_collection=consider_collection,
            max_per_gap=self.max_suggestions_per_gap,
        )

        # Release the read transaction before the model call
        await self.session.commit()

        refinement: RefinementResult | None = None
        if use_llm and self.refiner is not None and suggestions:
            refinement = await self._refine(
                RefinementContext(
                    deck_name=deck.name,
                    format=deck.format,
                    stats=stats,
                    gaps=gaps,
                    suggestions=suggestions,
                    deck_cards=[card_summary_from_print(c.print) for c in playing_cards],
                ),
                deck.id,
            )

        now = self.clock()
        recommendation = DeckRecommendationDB(
            deck_id=deck.id,
            deck_version=deck_version,
            algorithm_version=ALGORITHM_VERSION,
            identified_gaps=[gap.to_dict() for gap in gaps],
            rule_suggestions=[suggestion.to_dict() for suggestion in suggestions],
            created_at=now,
            expires_at=now + self.ttl,
        )
        if refinement is not None:
            recommendation.llm_model = refinement.model
            recommendation.llm_prompt_tokens = refinement.prompt_tokens
            recommendation.llm_completion_tokens = refinement.completion_tokens
            recommendation.llm_cost_usd = refinement.cost_usd
            recommendation.llm_suggestions = [s.to_dict() for s in refinement.suggestions]
            recommendation.llm_summary = refinement.summary

        await self._persist(recommendation)
        logger.info(
            "RECOMMENDATION_GENERATED",
            extra={
                "deck_id": deck.id,
                "deck_version": deck_version,
                "gaps": len(gaps),
                "suggestions": len(suggestions),
                "refined": refinement is not None,
            },
        )
        return recommendation

    async def _persist(self, recommendation: DeckRecommendationDB) -> None:
        """Save a recommendation in its own short transaction."""
        if self.session_factory is None:
            self.session.add(recommendation)
            await self.session.commit()
            return
        async with self.session_factory() as session, session.begin():
            session.add(recommendation)

    async def _refine(
        self,
        context: RefinementContext,
        deck_id: str,
    ) -> RefinementResult | None:
        if self.refiner is None:
            return None
        try:
            return await self.refiner.refine(context)
        except KnownError as e:
            logger.warning(
                "LLM_REFINEMENT_FAILED",
                extra={
                    "deck_id": deck_id,
                    "failure_kind": e.kind.value,
                    "detail": e.detail,
                },
            )
            return None
        except Exception as e:
            logger.warning(
                "LLM_REFINEMENT_FAILED",
                extra={
                    "deck_id": deck_id,
                    "failure_kind": "unknown",
                    "error": type(e).__name__,
                },
                exc_info=True,
            )
            return None

    async def get_recommendation(self, user_id: str, recommendation_id: str) -> DeckRecommendationDB:
        """
        Raises:
            NotFoundError: If the recommendation does not exist for this user
        """
        result = await self.session.execute(
            select(DeckRecommendationDB)
            .join(DeckDB, DeckRecommendationDB.deck_id == DeckDB.id)
            .where(
                DeckRecommendationDB.id == recommendation_id,
                DeckDB.user_id == user_id,
            )
        )
        recommendation = result.scalar_one_or_none()
        if recommendation is None:
            raise NotFoundError("DeckRecommendation", recommendation_id)
        return recommendation

    async def submit_feedback(
        self,
        user_id: str,
        recommendation_id: str,
        feedback: FeedbackType,
        comment: str | None = None,
    ) -> DeckRecommendationDB:
        """Record feedback on a recommendation. The last submission wins."""
        recommendation = await self.get_recommendation(user_id, recommendation_id)
        recommendation.user_feedback = FeedbackType(feedback).value
        recommendation.feedback_comment = comment
        await self.session.flush()
        return recommendation
