"""
Folder API endpoints.

Folders organize collection entries. Deleting a folder keeps its entries.
"""

from fastapi import APIRouter, status

from decksmith.api.deps import SessionDep, UserId
from decksmith.api.schemas import FolderInput, FolderResponse, FolderUpdateInput
from decksmith.services import collection_engine

router = APIRouter(prefix="/folders", tags=["folders"])


@router.get("/", response_model=list[FolderResponse])
async def list_folders(user_id: UserId, session: SessionDep) -> list[FolderResponse]:
    folders = await collection_engine.list_folders(session, user_id)
    return [FolderResponse.model_validate(folder) for folder in folders]


@router.post("/", response_model=FolderResponse, status_code=status.HTTP_201_CREATED)
async def create_folder(body: FolderInput, user_id: UserId, session: SessionDep) -> FolderResponse:
    folder = await collection_engine.create_folder(
        session, user_id, body.name, description=body.description, color=body.color
    )
    return FolderResponse.model_validate(folder)


@router.patch("/{folder_id}", response_model=FolderResponse)
async def update_folder(
    folder_id: str,
    body: FolderUpdateInput,
    user_id: UserId,
    session: SessionDep,
) -> FolderResponse:
    folder = await collection_engine.update_folder(
        session, user_id, folder_id, body.model_dump(exclude_unset=True)
    )
    return FolderResponse.model_validate(folder)


@router.delete("/{folder_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_folder(folder_id: str, user_id: UserId, session: SessionDep) -> None:
    await collection_engine.delete_folder(session, user_id, folder_id)
