import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from decksmith.api import (
    collection_router,
    decks_router,
    folders_router,
    health_router,
    recommendations_router,
    tags_router,
)
from decksmith.config import settings
from decksmith.db.database import Database
from decksmith.models.failure import (
    InconsistentStateError,
    KnownError,
    create_unknown_failure,
    create_validation_failure,
)
from decksmith.services.cost_controls import get_usage_tracker
from decksmith.services.llm_refiner import AnthropicRefiner

logger = logging.getLogger(__name__)


def build_refiner() -> AnthropicRefiner | None:
    """The configured refiner, or None when no API key is set."""
    if not settings.anthropic_api_key:
        logger.info("LLM_REFINER_NOT_CONFIGURED")
        return None
    return AnthropicRefiner(
        api_key=settings.anthropic_api_key,
        model=settings.llm_model,
        max_tokens=settings.llm_max_tokens,
        timeout_seconds=settings.llm_timeout_seconds,
        input_cost_per_mtok=settings.llm_input_cost_per_mtok,
        output_cost_per_mtok=settings.llm_output_cost_per_mtok,
        llm_enabled=settings.llm_enabled,
        tracker=get_usage_tracker(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    database = Database(settings.database_url, echo=settings.debug)
    database.open()
    await database.create_all()
    app.state.database = database
    app.state.refiner = build_refiner()
    try:
        yield
    finally:
        await database.close()


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("decksmith"),
    lifespan=lifespan,
)


@app.exception_handler(KnownError)
async def known_error_handler(_request: Request, exc: KnownError) -> JSONResponse:
    if isinstance(exc, InconsistentStateError):
        logger.error("INCONSISTENT_STATE", extra={"detail": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(mode="json"),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"][1:]) or str(error["loc"][0]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=create_validation_failure(errors).model_dump(mode="json"),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, _exc: Exception) -> JSONResponse:
    logger.exception("UNHANDLED_EXCEPTION", extra={"path": request.url.path})
    return JSONResponse(
        status_code=500,
        content=create_unknown_failure().model_dump(mode="json"),
    )


app.include_router(collection_router)
app.include_router(decks_router)
app.include_router(folders_router)
app.include_router(health_router)
app.include_router(recommendations_router)
app.include_router(tags_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
