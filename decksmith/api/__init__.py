from decksmith.api.collection import router as collection_router
from decksmith.api.decks import router as decks_router
from decksmith.api.folders import router as folders_router
from decksmith.api.health import router as health_router
from decksmith.api.recommendations import router as recommendations_router
from decksmith.api.tags import router as tags_router

__all__ = [
    "collection_router",
    "decks_router",
    "folders_router",
    "health_router",
    "recommendations_router",
    "tags_router",
]
