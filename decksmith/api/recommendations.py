"""
Recommendation API endpoints.

A request serves the deck's current recommendation when one is valid for
the deck's version and unexpired, and generates a new one otherwise.
Generative refinement never fails a request; when it is unavailable the
response carries rule suggestions only.
"""

from fastapi import APIRouter

from decksmith.api.deps import EngineDep, UserId
from decksmith.api.schemas import (
    DeckRecommendationResponse,
    FeedbackInput,
    RequestRecommendationInput,
)
from decksmith.models.failure import NotFoundError

router = APIRouter(prefix="/recommendations", tags=["recommendations"])


@router.post("/", response_model=DeckRecommendationResponse)
async def request_recommendation(
    body: RequestRecommendationInput,
    user_id: UserId,
    engine: EngineDep,
) -> DeckRecommendationResponse:
    recommendation = await engine.request(
        user_id,
        body.deck_id,
        use_llm=body.use_llm,
        consider_collection=body.consider_collection,
        max_price_per_card=body.max_price_per_card,
        force_refresh=body.force_refresh,
    )
    return DeckRecommendationResponse.model_validate(recommendation)


@router.get("/decks/{deck_id}/current", response_model=DeckRecommendationResponse)
async def current_recommendation(
    deck_id: str,
    user_id: UserId,
    engine: EngineDep,
) -> DeckRecommendationResponse:
    """The deck's current recommendation, without generating one."""
    recommendation = await engine.get_current(user_id, deck_id)
    if recommendation is None:
        raise NotFoundError("DeckRecommendation", f"current:{deck_id}")
    return DeckRecommendationResponse.model_validate(recommendation)


@router.get("/{recommendation_id}", response_model=DeckRecommendationResponse)
async def get_recommendation(
    recommendation_id: str,
    user_id: UserId,
    engine: EngineDep,
) -> DeckRecommendationResponse:
    recommendation = await engine.get_recommendation(user_id, recommendation_id)
    return DeckRecommendationResponse.model_validate(recommendation)


@router.post("/{recommendation_id}/feedback", response_model=DeckRecommendationResponse)
async def submit_feedback(
    recommendation_id: str,
    body: FeedbackInput,
    user_id: UserId,
    engine: EngineDep,
) -> DeckRecommendationResponse:
    """Record whether a recommendation helped. The last submission wins."""
    recommendation = await engine.submit_feedback(
        user_id, recommendation_id, body.feedback, body.comment
    )
    return DeckRecommendationResponse.model_validate(recommendation)
