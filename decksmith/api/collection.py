"""
Collection API endpoints.

Entry CRUD, bulk operations and the ownership projection for the caller's
collection.
"""

from fastapi import APIRouter, Query, status

from decksmith.analysis.ownership import get_ownership
from decksmith.api.deps import CatalogDep, SessionDep, UserId
from decksmith.api.schemas import (
    AddToCollectionInput,
    BulkMoveInput,
    BulkResultResponse,
    BulkTagInput,
    CollectionEntryResponse,
    OwnershipResponse,
    RemoveFromCollectionInput,
    RemoveResponse,
    UpdateCollectionEntryInput,
)
from decksmith.services import collection_engine

router = APIRouter(prefix="/collection", tags=["collection"])


@router.get("/", response_model=list[CollectionEntryResponse])
async def list_collection(
    user_id: UserId,
    session: SessionDep,
    folder_id: str | None = Query(default=None, alias="folderId"),
) -> list[CollectionEntryResponse]:
    """List the caller's collection entries."""
    entries = await collection_engine.list_entries(session, user_id, folder_id)
    return [CollectionEntryResponse.model_validate(entry) for entry in entries]


@router.post("/", response_model=CollectionEntryResponse)
async def add_to_collection(
    body: AddToCollectionInput,
    user_id: UserId,
    session: SessionDep,
    catalog: CatalogDep,
) -> CollectionEntryResponse:
    """
    Add copies of a print.

    A repeated add of the same print, finish and condition increments the
    existing entry instead of creating a new one.
    """
    entry, _created = await collection_engine.add_to_collection(
        session,
        catalog,
        user_id,
        body.card_print_id,
        is_foil=body.is_foil,
        condition=body.condition,
        quantity=body.quantity,
        folder_id=body.folder_id,
        notes=body.notes,
        acquired_date=body.acquired_date,
        custom_fields=body.custom_fields,
        tag_ids=body.tag_ids,
    )
    return CollectionEntryResponse.model_validate(entry)


@router.get("/ownership", response_model=list[OwnershipResponse])
async def collection_ownership(
    user_id: UserId,
    session: SessionDep,
    print_ids: list[str] | None = Query(default=None, alias="printId"),
) -> list[OwnershipResponse]:
    """Owned, used and available copies per print."""
    projection = await get_ownership(session, user_id, print_ids)
    return [
        OwnershipResponse(card_print_id=print_id, **ownership.to_dict())
        for print_id, ownership in projection.items()
    ]


@router.post("/bulk/move", response_model=BulkResultResponse)
async def bulk_move(body: BulkMoveInput, user_id: UserId, session: SessionDep) -> BulkResultResponse:
    """Move entries to a folder. All-or-nothing."""
    updated = await collection_engine.bulk_move_to_folder(
        session, user_id, body.entry_ids, body.folder_id
    )
    return BulkResultResponse(updated_ids=updated)


@router.post("/bulk/tags", response_model=BulkResultResponse)
async def bulk_tag(body: BulkTagInput, user_id: UserId, session: SessionDep) -> BulkResultResponse:
    """Link tags to entries. All-or-nothing."""
    updated = await collection_engine.bulk_add_tags(session, user_id, body.entry_ids, body.tag_ids)
    return BulkResultResponse(updated_ids=updated)


@router.get("/{entry_id}", response_model=CollectionEntryResponse)
async def get_entry(entry_id: str, user_id: UserId, session: SessionDep) -> CollectionEntryResponse:
    entry = await collection_engine.get_entry(session, user_id, entry_id)
    return CollectionEntryResponse.model_validate(entry)


@router.patch("/{entry_id}", response_model=CollectionEntryResponse)
async def update_entry(
    entry_id: str,
    body: UpdateCollectionEntryInput,
    user_id: UserId,
    session: SessionDep,
) -> CollectionEntryResponse:
    """Replace only the supplied fields."""
    changes = body.model_dump(exclude_unset=True)
    entry = await collection_engine.update_entry(session, user_id, entry_id, changes)
    return CollectionEntryResponse.model_validate(entry)


@router.post("/{entry_id}/remove", response_model=RemoveResponse)
async def remove_from_collection(
    entry_id: str,
    body: RemoveFromCollectionInput,
    user_id: UserId,
    session: SessionDep,
) -> RemoveResponse:
    """Remove copies; the entry is deleted when none remain."""
    remaining = await collection_engine.remove_from_collection(
        session, user_id, entry_id, body.quantity
    )
    return RemoveResponse(entry_id=entry_id, remaining_quantity=remaining, deleted=remaining == 0)


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entry(entry_id: str, user_id: UserId, session: SessionDep) -> None:
    """Delete an entry regardless of quantity."""
    entry = await collection_engine.get_entry(session, user_id, entry_id)
    await collection_engine.remove_from_collection(session, user_id, entry_id, entry.quantity)
