"""
Collection Mutation Engine.

The only writer of collection entries, folders and tags. Every operation
runs inside the caller's session and transaction; the API layer commits.

INVARIANTS:
- An entry's natural key (user, print, finish, condition) is unique
- An entry's quantity is at least 1; reaching zero deletes the entry
- Repeated adds increment quantity in ONE conditional write, so two
  concurrent adds of the same natural key sum instead of racing
- Bulk operations are all-or-nothing
"""

import logging
from datetime import date
from typing import Any

from sqlalchemy import delete, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from decksmith.db.database import is_unique_violation
from decksmith.models.db import (
    CollectionEntryDB,
    CollectionFolderDB,
    TagDB,
    collection_entry_tags,
    deck_tags,
    new_id,
    utcnow,
)
from decksmith.models.enums import Condition, TagType
from decksmith.models.failure import (
    ConflictError,
    NotFoundError,
    PartialFailureError,
    ValidationFailedError,
)
from decksmith.services.card_catalog import CardCatalog

logger = logging.getLogger(__name__)

NATURAL_KEY = ["user_id", "card_print_id", "is_foil", "condition"]

# Fields an entry update may replace
ENTRY_UPDATE_FIELDS = frozenset(
    {
        "folder_id",
        "quantity",
        "condition",
        "is_foil",
        "acquired_date",
        "notes",
        "custom_fields",
        "tag_ids",
    }
)

# Update fields that may be omitted but never cleared
NON_NULLABLE_ENTRY_FIELDS = frozenset({"quantity", "condition", "is_foil"})


def _dialect_insert(session: AsyncSession) -> Any:
    """The dialect-specific INSERT supporting ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Unsupported database dialect: {dialect}")


async def _flush_or_conflict(session: AsyncSession, reason: str) -> None:
    try:
        await session.flush()
    except IntegrityError as e:
        if is_unique_violation(e):
            raise ConflictError(reason) from e
        raise


# =============================================================================
# LOOKUPS
# =============================================================================


async def get_entry(session: AsyncSession, user_id: str, entry_id: str) -> CollectionEntryDB:
    """
    Get one of the user's entries.

    Raises:
        NotFoundError: If the entry does not exist or belongs to another user
    """
    result = await session.execute(
        select(CollectionEntryDB).where(
            CollectionEntryDB.id == entry_id,
            CollectionEntryDB.user_id == user_id,
        )
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        raise NotFoundError("CollectionEntry", entry_id)
    return entry


async def list_entries(
    session: AsyncSession,
    user_id: str,
    folder_id: str | None = None,
) -> list[CollectionEntryDB]:
    """List a user's entries, optionally restricted to one folder."""
    query = select(CollectionEntryDB).where(CollectionEntryDB.user_id == user_id)
    if folder_id is not None:
        query = query.where(CollectionEntryDB.folder_id == folder_id)
    result = await session.execute(query.order_by(CollectionEntryDB.created_at))
    return list(result.scalars().all())


async def get_folder(session: AsyncSession, user_id: str, folder_id: str) -> CollectionFolderDB:
    result = await session.execute(
        select(CollectionFolderDB).where(
            CollectionFolderDB.id == folder_id,
            CollectionFolderDB.user_id == user_id,
        )
    )
    folder = result.scalar_one_or_none()
    if folder is None:
        raise NotFoundError("CollectionFolder", folder_id)
    return folder


async def load_tags(
    session: AsyncSession,
    user_id: str,
    tag_ids: list[str],
    tag_type: TagType,
) -> list[TagDB]:
    """
    Load tags by id, in the given order.

    Raises:
        NotFoundError: For the first id that is not a tag of this user and type
    """
    if not tag_ids:
        return []
    result = await session.execute(
        select(TagDB).where(
            TagDB.id.in_(tag_ids),
            TagDB.user_id == user_id,
            TagDB.type == tag_type.value,
        )
    )
    found = {tag.id: tag for tag in result.scalars().all()}
    for tag_id in tag_ids:
        if tag_id not in found:
            raise NotFoundError("Tag", tag_id)
    return [found[tag_id] for tag_id in dict.fromkeys(tag_ids)]


# =============================================================================
# ENTRY MUTATIONS
# =============================================================================


async def add_to_collection(
    session: AsyncSession,
    catalog: CardCatalog,
    user_id: str,
    card_print_id: str,
    is_foil: bool = False,
    condition: Condition | str = Condition.NM,
    quantity: int = 1,
    folder_id: str | None = None,
    notes: str | None = None,
    acquired_date: date | None = None,
    custom_fields: dict[str, Any] | None = None,
    tag_ids: list[str] | None = None,
) -> tuple[CollectionEntryDB, bool]:
    """
    Add copies of a print to a user's collection.

    Creates the entry for a new natural key, otherwise increments its
    quantity. On increment, folder, notes, custom fields and tags of the
    existing entry are left untouched.

    Returns:
        Tuple of (entry, created) where created is True if the entry is new

    Raises:
        NotFoundError: If the print, folder or a tag does not resolve
    """
    await catalog.resolve_print(card_print_id)
    if folder_id is not None:
        await get_folder(session, user_id, folder_id)
    tags = await load_tags(session, user_id, tag_ids or [], TagType.COLLECTION)

    entry_id = new_id()
    now = utcnow()
    insert_fn = _dialect_insert(session)
    stmt = insert_fn(CollectionEntryDB).values(
        id=entry_id,
        user_id=user_id,
        card_print_id=card_print_id,
        folder_id=folder_id,
        quantity=quantity,
        condition=Condition(condition).value,
        is_foil=is_foil,
        acquired_date=acquired_date,
        notes=notes,
        custom_fields=custom_fields,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=NATURAL_KEY,
        set_={
            "quantity": CollectionEntryDB.quantity + stmt.excluded.quantity,
            "updated_at": now,
        },
    ).returning(CollectionEntryDB.id)

    result = await session.execute(stmt)
    row_id = result.scalar_one()
    created = row_id == entry_id

    if created and tags:
        await session.execute(
            insert(collection_entry_tags),
            [{"entry_id": row_id, "tag_id": tag.id} for tag in tags],
        )

    entry = await session.get(CollectionEntryDB, row_id, populate_existing=True)
    if entry is None:
        raise RuntimeError(f"Collection entry {row_id} missing after upsert")

    logger.info(
        "COLLECTION_ENTRY_ADDED",
        extra={
            "user_id": user_id,
            "entry_id": row_id,
            "created": created,
            "quantity": entry.quantity,
        },
    )
    return entry, created


async def remove_from_collection(
    session: AsyncSession,
    user_id: str,
    entry_id: str,
    quantity: int = 1,
) -> int:
    """
    Remove copies from an entry.

    Removing as many copies as the entry holds, or more, deletes the entry
    and its tag links.

    Returns:
        Remaining quantity (0 when the entry was deleted)

    Raises:
        NotFoundError: If the entry does not exist for this user
    """
    result = await session.execute(
        update(CollectionEntryDB)
        .where(
            CollectionEntryDB.id == entry_id,
            CollectionEntryDB.user_id == user_id,
            CollectionEntryDB.quantity > quantity,
        )
        .values(quantity=CollectionEntryDB.quantity - quantity, updated_at=utcnow())
        .returning(CollectionEntryDB.quantity)
        .execution_options(synchronize_session=False)
    )
    remaining = result.scalar_one_or_none()
    if remaining is not None:
        entry = await session.get(CollectionEntryDB, entry_id)
        if entry is not None:
            await session.refresh(entry)
        return int(remaining)

    # Tag links go with the entry through its loaded tags collection
    entry = await get_entry(session, user_id, entry_id)
    await session.delete(entry)
    await session.flush()
    logger.info("COLLECTION_ENTRY_DELETED", extra={"user_id": user_id, "entry_id": entry_id})
    return 0


async def update_entry(
    session: AsyncSession,
    user_id: str,
    entry_id: str,
    changes: dict[str, Any],
) -> CollectionEntryDB:
    """
    Replace the supplied fields of an entry.

    `custom_fields` and `tag_ids`, when supplied, replace the prior value.

    Raises:
        NotFoundError: If the entry, folder or a tag does not resolve
        ConflictError: If a finish/condition change collides with another entry
        ValidationFailedError: If quantity, condition or is_foil is null
    """
    unknown = set(changes) - ENTRY_UPDATE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported entry fields: {sorted(unknown)}")
    cleared = sorted(f for f in NON_NULLABLE_ENTRY_FIELDS if f in changes and changes[f] is None)
    if cleared:
        raise ValidationFailedError(
            "non-nullable",
            f"These fields cannot be null: {cleared}",
            attempted=cleared,
        )

    entry = await get_entry(session, user_id, entry_id)

    if changes.get("folder_id") is not None:
        await get_folder(session, user_id, changes["folder_id"])

    new_foil = changes.get("is_foil", entry.is_foil)
    new_condition = Condition(changes.get("condition", entry.condition)).value
    if (new_foil, new_condition) != (entry.is_foil, entry.condition):
        clash = await session.execute(
            select(CollectionEntryDB.id).where(
                CollectionEntryDB.user_id == user_id,
                CollectionEntryDB.card_print_id == entry.card_print_id,
                CollectionEntryDB.is_foil == new_foil,
                CollectionEntryDB.condition == new_condition,
                CollectionEntryDB.id != entry.id,
            )
        )
        if clash.scalar_one_or_none() is not None:
            raise ConflictError(
                f"An entry for this print with foil={new_foil} "
                f"and condition={new_condition} already exists"
            )

    for field_name, value in changes.items():
        if field_name == "tag_ids":
            entry.tags = await load_tags(session, user_id, value or [], TagType.COLLECTION)
        elif field_name == "condition":
            entry.condition = Condition(value).value
        else:
            setattr(entry, field_name, value)
    entry.updated_at = utcnow()

    await _flush_or_conflict(session, "Collection entry natural key already exists")
    return entry


async def _resolve_bulk_entries(
    session: AsyncSession,
    user_id: str,
    entry_ids: list[str],
) -> list[CollectionEntryDB]:
    result = await session.execute(
        select(CollectionEntryDB).where(
            CollectionEntryDB.id.in_(entry_ids),
            CollectionEntryDB.user_id == user_id,
        )
    )
    found = {entry.id: entry for entry in result.scalars().all()}
    ordered = list(dict.fromkeys(entry_ids))
    failed = [entry_id for entry_id in ordered if entry_id not in found]
    if failed:
        succeeded = [entry_id for entry_id in ordered if entry_id in found]
        logger.info(
            "BULK_OPERATION_REJECTED",
            extra={"user_id": user_id, "failed_ids": failed},
        )
        raise PartialFailureError(succeeded, failed)
    return [found[entry_id] for entry_id in ordered]


async def bulk_move_to_folder(
    session: AsyncSession,
    user_id: str,
    entry_ids: list[str],
    folder_id: str | None,
) -> list[str]:
    """
    Move entries to a folder (None unfiles them).

    Raises:
        PartialFailureError: If any entry id does not resolve; nothing moves
        NotFoundError: If the folder does not exist for this user
    """
    if folder_id is not None:
        await get_folder(session, user_id, folder_id)
    entries = await _resolve_bulk_entries(session, user_id, entry_ids)
    now = utcnow()
    for entry in entries:
        entry.folder_id = folder_id
        entry.updated_at = now
    await session.flush()
    return [entry.id for entry in entries]


async def bulk_add_tags(
    session: AsyncSession,
    user_id: str,
    entry_ids: list[str],
    tag_ids: list[str],
) -> list[str]:
    """
    Link tags to entries. Already-linked tags are left as they are.

    Raises:
        PartialFailureError: If any entry id does not resolve; nothing changes
        NotFoundError: If a tag does not exist for this user
    """
    tags = await load_tags(session, user_id, tag_ids, TagType.COLLECTION)
    entries = await _resolve_bulk_entries(session, user_id, entry_ids)
    for entry in entries:
        linked = {tag.id for tag in entry.tags}
        for tag in tags:
            if tag.id not in linked:
                entry.tags.append(tag)
    await session.flush()
    return [entry.id for entry in entries]


# =============================================================================
# FOLDERS
# =============================================================================


async def list_folders(session: AsyncSession, user_id: str) -> list[CollectionFolderDB]:
    result = await session.execute(
        select(CollectionFolderDB)
        .where(CollectionFolderDB.user_id == user_id)
        .order_by(CollectionFolderDB.name)
    )
    return list(result.scalars().all())


async def create_folder(
    session: AsyncSession,
    user_id: str,
    name: str,
    description: str | None = None,
    color: str | None = None,
) -> CollectionFolderDB:
    """
    Create a folder.

    Raises:
        ConflictError: If the user already has a folder with this name
    """
    existing = await session.execute(
        select(CollectionFolderDB.id).where(
            CollectionFolderDB.user_id == user_id,
            CollectionFolderDB.name == name,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(f"Folder '{name}' already exists")

    folder = CollectionFolderDB(user_id=user_id, name=name, description=description)
    if color is not None:
        folder.color = color
    session.add(folder)
    await _flush_or_conflict(session, f"Folder '{name}' already exists")
    return folder


async def update_folder(
    session: AsyncSession,
    user_id: str,
    folder_id: str,
    changes: dict[str, Any],
) -> CollectionFolderDB:
    """
    Rename or recolor a folder.

    Raises:
        NotFoundError: If the folder does not exist for this user
        ConflictError: If the new name is taken
    """
    folder = await get_folder(session, user_id, folder_id)
    new_name = changes.get("name")
    if new_name is not None and new_name != folder.name:
        existing = await session.execute(
            select(CollectionFolderDB.id).where(
                CollectionFolderDB.user_id == user_id,
                CollectionFolderDB.name == new_name,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(f"Folder '{new_name}' already exists")
    for field_name in ("name", "description", "color"):
        if field_name in changes:
            setattr(folder, field_name, changes[field_name])
    folder.updated_at = utcnow()
    await _flush_or_conflict(session, f"Folder '{new_name}' already exists")
    return folder


async def delete_folder(session: AsyncSession, user_id: str, folder_id: str) -> None:
    """
    Delete a folder. Its entries stay in the collection, unfiled.

    Raises:
        NotFoundError: If the folder does not exist for this user
    """
    folder = await get_folder(session, user_id, folder_id)
    await session.execute(
        update(CollectionEntryDB)
        .where(CollectionEntryDB.folder_id == folder.id)
        .values(folder_id=None)
        .execution_options(synchronize_session="fetch")
    )
    await session.delete(folder)
    await session.flush()


# =============================================================================
# TAGS
# =============================================================================


async def list_tags(
    session: AsyncSession,
    user_id: str,
    tag_type: TagType | None = None,
) -> list[TagDB]:
    query = select(TagDB).where(TagDB.user_id == user_id)
    if tag_type is not None:
        query = query.where(TagDB.type == tag_type.value)
    result = await session.execute(query.order_by(TagDB.type, TagDB.name))
    return list(result.scalars().all())


async def create_tag(
    session: AsyncSession,
    user_id: str,
    name: str,
    tag_type: TagType,
    description: str | None = None,
    color: str | None = None,
) -> TagDB:
    """
    Create a typed tag.

    Raises:
        ConflictError: If (user, name, type) already exists
    """
    existing = await session.execute(
        select(TagDB.id).where(
            TagDB.user_id == user_id,
            TagDB.name == name,
            TagDB.type == tag_type.value,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(f"Tag '{name}' of type {tag_type.value} already exists")

    tag = TagDB(user_id=user_id, name=name, type=tag_type.value, description=description)
    if color is not None:
        tag.color = color
    session.add(tag)
    await _flush_or_conflict(session, f"Tag '{name}' of type {tag_type.value} already exists")
    return tag


async def delete_tag(session: AsyncSession, user_id: str, tag_id: str) -> None:
    """
    Delete a tag and its links.

    Raises:
        NotFoundError: If the tag does not exist for this user
    """
    result = await session.execute(
        select(TagDB).where(TagDB.id == tag_id, TagDB.user_id == user_id)
    )
    tag = result.scalar_one_or_none()
    if tag is None:
        raise NotFoundError("Tag", tag_id)
    await session.execute(
        delete(collection_entry_tags).where(collection_entry_tags.c.tag_id == tag.id)
    )
    await session.execute(delete(deck_tags).where(deck_tags.c.tag_id == tag.id))
    await session.delete(tag)
    await session.flush()
