"""
Shared FastAPI dependencies.

The caller is identified by the `X-User-Id` header. Authentication happens
upstream; this service trusts the header as given.
"""

from typing import Annotated

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from decksmith.db.database import get_session, get_session_factory
from decksmith.services.card_catalog import CardCatalog, SqlCardCatalog
from decksmith.services.llm_refiner import RecommendationRefiner
from decksmith.services.recommendation_engine import RecommendationEngine


def get_user_id(
    x_user_id: Annotated[str, Header(min_length=1, max_length=255)],
) -> str:
    return x_user_id


def get_catalog(session: Annotated[AsyncSession, Depends(get_session)]) -> CardCatalog:
    return SqlCardCatalog(session)


def get_refiner(request: Request) -> RecommendationRefiner | None:
    """The refiner configured at startup, or None when refinement is off."""
    return getattr(request.app.state, "refiner", None)


def get_recommendation_engine(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_session)],
    catalog: Annotated[CardCatalog, Depends(get_catalog)],
    refiner: Annotated[RecommendationRefiner | None, Depends(get_refiner)],
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
) -> RecommendationEngine:
    clock = getattr(request.app.state, "clock", None)
    if clock is None:
        return RecommendationEngine(session, catalog, refiner, session_factory=session_factory)
    return RecommendationEngine(
        session, catalog, refiner, clock=clock, session_factory=session_factory
    )


SessionDep = Annotated[AsyncSession, Depends(get_session)]
UserId = Annotated[str, Depends(get_user_id)]
CatalogDep = Annotated[CardCatalog, Depends(get_catalog)]
EngineDep = Annotated[RecommendationEngine, Depends(get_recommendation_engine)]
