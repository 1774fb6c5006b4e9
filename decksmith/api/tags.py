"""Tag API endpoints."""

from fastapi import APIRouter, Query, status

from decksmith.api.deps import SessionDep, UserId
from decksmith.api.schemas import TagInput, TagResponse
from decksmith.models.enums import TagType
from decksmith.services import collection_engine

router = APIRouter(prefix="/tags", tags=["tags"])


@router.get("/", response_model=list[TagResponse])
async def list_tags(
    user_id: UserId,
    session: SessionDep,
    tag_type: TagType | None = Query(default=None, alias="type"),
) -> list[TagResponse]:
    tags = await collection_engine.list_tags(session, user_id, tag_type)
    return [TagResponse.model_validate(tag) for tag in tags]


@router.post("/", response_model=TagResponse, status_code=status.HTTP_201_CREATED)
async def create_tag(body: TagInput, user_id: UserId, session: SessionDep) -> TagResponse:
    """Create a tag. Names are unique per user and tag type."""
    tag = await collection_engine.create_tag(
        session,
        user_id,
        body.name,
        body.type,
        description=body.description,
        color=body.color,
    )
    return TagResponse.model_validate(tag)


@router.delete("/{tag_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tag(tag_id: str, user_id: UserId, session: SessionDep) -> None:
    await collection_engine.delete_tag(session, user_id, tag_id)
