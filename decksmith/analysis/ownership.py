"""
Ownership Ledger.

Read-side projection of how many copies of each print a user owns, how many
of those are committed to decks, and how many remain available. Recomputed
on every request; never persisted and never takes locks.

INVARIANT: available_quantity = owned_quantity - used_in_decks.
A negative figure means the underlying data is corrupt. It is logged and
raised as InconsistentStateError, never clamped.
"""

import logging
from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from decksmith.models.collection import CardOwnership
from decksmith.models.db import CollectionEntryDB, DeckCardDB, DeckDB, DeckSectionDB
from decksmith.models.failure import InconsistentStateError

logger = logging.getLogger(__name__)


def project_ownership(
    owned: dict[str, int],
    demand: dict[str, int],
    print_ids: Iterable[str] | None = None,
) -> dict[str, CardOwnership]:
    """
    Build ownership projections from raw owned and deck-demand sums.

    Decks may reference more copies than the user owns. Only owned copies
    count as used; the shortfall is reported through `deck_demand` and
    `overcommitted` rather than as a negative availability.

    Args:
        owned: print id -> copies in the collection
        demand: print id -> copies referenced by the user's decks
        print_ids: Prints to project. Defaults to every print seen.

    Raises:
        InconsistentStateError: If a projection would be negative
    """
    ids = set(print_ids) if print_ids is not None else set(owned) | set(demand)
    projection: dict[str, CardOwnership] = {}

    for print_id in sorted(ids):
        owned_qty = owned.get(print_id, 0)
        demand_qty = demand.get(print_id, 0)
        ownership = CardOwnership(
            card_print_id=print_id,
            owned_quantity=owned_qty,
            used_in_decks=min(owned_qty, demand_qty) if demand_qty > 0 else 0,
            deck_demand=demand_qty,
        )
        _check_consistency(ownership)
        projection[print_id] = ownership

    return projection


def _check_consistency(ownership: CardOwnership) -> None:
    if (
        ownership.owned_quantity < 0
        or ownership.deck_demand < 0
        or ownership.available_quantity < 0
    ):
        logger.error(
            "INCONSISTENT_OWNERSHIP",
            extra={
                "card_print_id": ownership.card_print_id,
                "owned_quantity": ownership.owned_quantity,
                "used_in_decks": ownership.used_in_decks,
                "deck_demand": ownership.deck_demand,
            },
        )
        raise InconsistentStateError(
            f"Negative ownership for print {ownership.card_print_id}: "
            f"owned={ownership.owned_quantity} demand={ownership.deck_demand}"
        )


def availability_map(projection: dict[str, CardOwnership]) -> dict[str, int]:
    """print id -> available quantity, as consumed by the stats aggregator."""
    return {pid: own.available_quantity for pid, own in projection.items()}


async def load_owned_quantities(
    session: AsyncSession,
    user_id: str,
    print_ids: Iterable[str] | None = None,
) -> dict[str, int]:
    """Sum collection quantities per print across conditions and finishes."""
    query = (
        select(CollectionEntryDB.card_print_id, func.sum(CollectionEntryDB.quantity))
        .where(CollectionEntryDB.user_id == user_id)
        .group_by(CollectionEntryDB.card_print_id)
    )
    if print_ids is not None:
        query = query.where(CollectionEntryDB.card_print_id.in_(list(print_ids)))
    result = await session.execute(query)
    return {print_id: int(total) for print_id, total in result.all()}


async def load_deck_demand(
    session: AsyncSession,
    user_id: str,
    print_ids: Iterable[str] | None = None,
    exclude_deck_id: str | None = None,
) -> dict[str, int]:
    """Sum deck-card quantities per print across all of the user's decks."""
    query = (
        select(DeckCardDB.card_print_id, func.sum(DeckCardDB.quantity))
        .join(DeckSectionDB, DeckCardDB.section_id == DeckSectionDB.id)
        .join(DeckDB, DeckSectionDB.deck_id == DeckDB.id)
        .where(DeckDB.user_id == user_id)
        .group_by(DeckCardDB.card_print_id)
    )
    if print_ids is not None:
        query = query.where(DeckCardDB.card_print_id.in_(list(print_ids)))
    if exclude_deck_id is not None:
        query = query.where(DeckDB.id != exclude_deck_id)
    result = await session.execute(query)
    return {print_id: int(total) for print_id, total in result.all()}


async def get_ownership(
    session: AsyncSession,
    user_id: str,
    print_ids: Iterable[str] | None = None,
    exclude_deck_id: str | None = None,
) -> dict[str, CardOwnership]:
    """
    Compute the ownership projection for a user.

    Args:
        session: Database session
        user_id: Owner of the collection and decks
        print_ids: Restrict to these prints (all prints when None)
        exclude_deck_id: Ignore this deck's own usage, so a deck's
            statistics measure it against copies not committed elsewhere
    """
    ids = list(print_ids) if print_ids is not None else None
    owned = await load_owned_quantities(session, user_id, ids)
    demand = await load_deck_demand(session, user_id, ids, exclude_deck_id)
    return project_ownership(owned, demand, ids)
