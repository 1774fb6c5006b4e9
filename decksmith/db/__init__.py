from decksmith.db.database import Database, get_session, is_unique_violation

__all__ = [
    "Database",
    "get_session",
    "is_unique_violation",
]
