"""
Deck Composition service.

The only writer of decks, sections and deck cards. Every card mutation
follows propose -> validate -> commit:

1. Build the affected section's hypothetical post-mutation card set
2. Run the section's validation rules over it
3. Reject with ValidationFailedError (nothing changed) or apply the change

Mutations of one deck are serialized: an in-process asyncio.Lock per deck id
plus SELECT ... FOR UPDATE on the deck row, so each validation sees the
section as the previous mutation left it. Every mutation bumps the deck's
version, which invalidates cached recommendations.

Positions of sections within a deck and cards within a section are always
dense and zero-based.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from decksmith.analysis.deck_validation import (
    ProposedCard,
    RuleViolation,
    check_reorder_membership,
    validate_section_cards,
)
from decksmith.models.card import ResolvedPrint
from decksmith.models.db import DeckCardDB, DeckDB, DeckSectionDB, utcnow
from decksmith.models.deck import (
    SECTION_TEMPLATES,
    ResolvedDeckCard,
    ValidationRules,
    is_playing_section,
)
from decksmith.models.enums import Format, TagType
from decksmith.models.failure import InconsistentStateError, NotFoundError
from decksmith.services.card_catalog import CardCatalog
from decksmith.services.collection_engine import load_tags
from decksmith.services.partial_merge import merge_validation_rules

logger = logging.getLogger(__name__)

# Deck fields a deck update may replace
DECK_UPDATE_FIELDS = frozenset({"name", "description", "is_public", "tag_ids"})

_deck_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)


@dataclass(frozen=True)
class CardAddition:
    """One item of a bulk add."""

    card_print_id: str
    quantity: int = 1


# =============================================================================
# LOCKING AND LOOKUPS
# =============================================================================


@asynccontextmanager
async def locked_deck(session: AsyncSession, user_id: str, deck_id: str) -> AsyncIterator[DeckDB]:
    """
    Hold the deck's mutation lock and yield the deck, freshly read.

    A lock is only created for a deck that resolves for this user.

    Raises:
        NotFoundError: If the deck does not exist for this user
    """
    await get_deck(session, user_id, deck_id)
    async with _deck_locks[deck_id]:
        result = await session.execute(
            select(DeckDB)
            .where(DeckDB.id == deck_id, DeckDB.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        deck = result.scalar_one_or_none()
        if deck is None:
            # Deleted while waiting for the lock
            _deck_locks.pop(deck_id, None)
            raise NotFoundError("Deck", deck_id)
        yield deck


async def get_deck(session: AsyncSession, user_id: str, deck_id: str) -> DeckDB:
    """
    Raises:
        NotFoundError: If the deck does not exist for this user
    """
    result = await session.execute(
        select(DeckDB).where(DeckDB.id == deck_id, DeckDB.user_id == user_id)
    )
    deck = result.scalar_one_or_none()
    if deck is None:
        raise NotFoundError("Deck", deck_id)
    return deck


async def list_decks(session: AsyncSession, user_id: str) -> list[DeckDB]:
    result = await session.execute(
        select(DeckDB).where(DeckDB.user_id == user_id).order_by(DeckDB.updated_at.desc())
    )
    return list(result.scalars().all())


async def _deck_id_for_section(session: AsyncSession, user_id: str, section_id: str) -> str:
    result = await session.execute(
        select(DeckSectionDB.deck_id)
        .join(DeckDB, DeckSectionDB.deck_id == DeckDB.id)
        .where(DeckSectionDB.id == section_id, DeckDB.user_id == user_id)
    )
    deck_id = result.scalar_one_or_none()
    if deck_id is None:
        raise NotFoundError("DeckSection", section_id)
    return deck_id


async def _deck_id_for_card(session: AsyncSession, user_id: str, card_id: str) -> str:
    result = await session.execute(
        select(DeckSectionDB.deck_id)
        .join(DeckCardDB, DeckCardDB.section_id == DeckSectionDB.id)
        .join(DeckDB, DeckSectionDB.deck_id == DeckDB.id)
        .where(DeckCardDB.id == card_id, DeckDB.user_id == user_id)
    )
    deck_id = result.scalar_one_or_none()
    if deck_id is None:
        raise NotFoundError("DeckCard", card_id)
    return deck_id


def _section(deck: DeckDB, section_id: str) -> DeckSectionDB:
    for section in deck.sections:
        if section.id == section_id:
            return section
    raise NotFoundError("DeckSection", section_id)


def _card(deck: DeckDB, card_id: str) -> tuple[DeckSectionDB, DeckCardDB]:
    for section in deck.sections:
        for card in section.cards:
            if card.id == card_id:
                return section, card
    raise NotFoundError("DeckCard", card_id)


def _insert_at(items: list[Any], item: Any, position: int | None) -> None:
    """Insert at a position clamped to the list bounds, end when None."""
    if position is None or position >= len(items):
        items.append(item)
    else:
        items.insert(max(position, 0), item)


def _densify(items: Sequence[DeckSectionDB] | Sequence[DeckCardDB]) -> None:
    for index, item in enumerate(items):
        if item.position != index:
            item.position = index


def _touch(deck: DeckDB) -> None:
    deck.version += 1
    deck.updated_at = utcnow()


# =============================================================================
# VALIDATION
# =============================================================================


async def _resolve(catalog: CardCatalog, print_ids: Sequence[str]) -> dict[str, ResolvedPrint]:
    """Resolve prints, raising NotFoundError for the first one missing."""
    resolved = await catalog.resolve_prints(print_ids)
    for print_id in print_ids:
        if print_id not in resolved:
            raise NotFoundError("CardPrint", print_id)
    return resolved


async def _validate(
    catalog: CardCatalog,
    section: DeckSectionDB,
    proposed: Sequence[tuple[str, int]],
) -> None:
    """
    Validate a section's hypothetical (print id, quantity) set.

    Raises:
        NotFoundError: If a print does not resolve
        ValidationFailedError: If a rule is violated
    """
    resolved = await _resolve(catalog, [print_id for print_id, _ in proposed])
    rules = ValidationRules.from_json(section.validation_rules)
    if rules.is_empty():
        return
    cards: list[ProposedCard] = [(resolved[print_id], qty) for print_id, qty in proposed]
    _raise_if(validate_section_cards(rules, cards), section)


def _raise_if(violation: RuleViolation | None, section: DeckSectionDB) -> None:
    if violation is None:
        return
    logger.info(
        "COMPOSITION_REJECTED",
        extra={
            "section_id": section.id,
            "rule": violation.rule,
            "limit": violation.limit,
            "attempted": violation.attempted,
        },
    )
    raise violation.to_error()


def _current_set(section: DeckSectionDB) -> list[tuple[str, int]]:
    return [(card.card_print_id, card.quantity) for card in section.cards]


# =============================================================================
# DECKS
# =============================================================================


async def create_deck(
    session: AsyncSession,
    user_id: str,
    name: str,
    format_name: Format | str,
    description: str | None = None,
    is_public: bool = False,
    tag_ids: list[str] | None = None,
) -> DeckDB:
    """Create a deck with the section layout of its format."""
    deck_format = Format(format_name)
    deck = DeckDB(
        user_id=user_id,
        name=name,
        format=deck_format.value,
        description=description,
        is_public=is_public,
        version=0,
    )
    deck.tags = await load_tags(session, user_id, tag_ids or [], TagType.DECK)
    for position, template in enumerate(SECTION_TEMPLATES[deck_format]):
        rules = template.rules.to_json()
        deck.sections.append(
            DeckSectionDB(
                name=template.name,
                description=template.description,
                position=position,
                validation_rules=rules or None,
                cards=[],
            )
        )
    session.add(deck)
    await session.flush()
    logger.info(
        "DECK_CREATED",
        extra={"user_id": user_id, "deck_id": deck.id, "format": deck_format.value},
    )
    return deck


async def update_deck(
    session: AsyncSession,
    user_id: str,
    deck_id: str,
    changes: dict[str, Any],
) -> DeckDB:
    """Replace the supplied descriptive fields of a deck."""
    unknown = set(changes) - DECK_UPDATE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported deck fields: {sorted(unknown)}")
    async with locked_deck(session, user_id, deck_id) as deck:
        for field_name, value in changes.items():
            if field_name == "tag_ids":
                deck.tags = await load_tags(session, user_id, value or [], TagType.DECK)
            else:
                setattr(deck, field_name, value)
        deck.updated_at = utcnow()
        await session.flush()
        return deck


async def delete_deck(session: AsyncSession, user_id: str, deck_id: str) -> None:
    async with locked_deck(session, user_id, deck_id) as deck:
        await session.delete(deck)
        await session.flush()
    _deck_locks.pop(deck_id, None)
    logger.info("DECK_DELETED", extra={"user_id": user_id, "deck_id": deck_id})


# =============================================================================
# SECTIONS
# =============================================================================


async def create_section(
    session: AsyncSession,
    user_id: str,
    deck_id: str,
    name: str,
    description: str | None = None,
    validation_rules: dict[str, Any] | None = None,
    position: int | None = None,
) -> DeckSectionDB:
    """Add a section to a deck; position defaults to the end."""
    async with locked_deck(session, user_id, deck_id) as deck:
        section = DeckSectionDB(
            name=name,
            description=description,
            validation_rules=merge_validation_rules(None, validation_rules),
            cards=[],
        )
        sections = list(deck.sections)
        _insert_at(sections, section, position)
        _densify(sections)
        deck.sections = sections
        _touch(deck)
        await session.flush()
        return section


async def update_section(
    session: AsyncSession,
    catalog: CardCatalog,
    user_id: str,
    section_id: str,
    changes: dict[str, Any],
) -> DeckSectionDB:
    """
    Update a section's name, description or validation rules.

    `validation_rules` is a partial update over {maxCards, singleton,
    colorIdentity}; None clears all rules. The section's current cards must
    satisfy the resulting rules.

    Raises:
        ValidationFailedError: On unknown rule keys, ill-typed values, or
            when the current cards violate the new rules
    """
    deck_id = await _deck_id_for_section(session, user_id, section_id)
    async with locked_deck(session, user_id, deck_id) as deck:
        section = _section(deck, section_id)
        if "validation_rules" in changes:
            merged = merge_validation_rules(section.validation_rules, changes["validation_rules"])
            rules = ValidationRules.from_json(merged)
            proposed = _current_set(section)
            resolved = await _resolve(catalog, [print_id for print_id, _ in proposed])
            _raise_if(
                validate_section_cards(rules, [(resolved[pid], qty) for pid, qty in proposed]),
                section,
            )
            section.validation_rules = merged
        for field_name in ("name", "description"):
            if field_name in changes:
                setattr(section, field_name, changes[field_name])
        section.updated_at = utcnow()
        _touch(deck)
        await session.flush()
        return section


async def delete_section(session: AsyncSession, user_id: str, section_id: str) -> None:
    """Delete a section and its cards."""
    deck_id = await _deck_id_for_section(session, user_id, section_id)
    async with locked_deck(session, user_id, deck_id) as deck:
        section = _section(deck, section_id)
        deck.sections.remove(section)
        _densify(deck.sections)
        _touch(deck)
        await session.flush()


async def reorder_sections(
    session: AsyncSession,
    user_id: str,
    deck_id: str,
    section_ids: list[str],
) -> DeckDB:
    """
    Assign section positions in the given order.

    Raises:
        ValidationFailedError: If the ids are not exactly the deck's sections
    """
    async with locked_deck(session, user_id, deck_id) as deck:
        violation = check_reorder_membership([s.id for s in deck.sections], section_ids)
        if violation is not None:
            raise violation.to_error()
        by_id = {section.id: section for section in deck.sections}
        ordered = [by_id[section_id] for section_id in section_ids]
        _densify(ordered)
        deck.sections = ordered
        _touch(deck)
        await session.flush()
        return deck


# =============================================================================
# DECK CARDS
# =============================================================================


async def add_card(
    session: AsyncSession,
    catalog: CardCatalog,
    user_id: str,
    section_id: str,
    card_print_id: str,
    quantity: int = 1,
    position: int | None = None,
    notes: str | None = None,
) -> DeckCardDB:
    """
    Add a print to a section as a new deck card.

    Raises:
        NotFoundError: If the section or print does not resolve
        ValidationFailedError: If the section's rules reject the result
    """
    deck_id = await _deck_id_for_section(session, user_id, section_id)
    async with locked_deck(session, user_id, deck_id) as deck:
        section = _section(deck, section_id)
        await _validate(catalog, section, [*_current_set(section), (card_print_id, quantity)])

        card = DeckCardDB(card_print_id=card_print_id, quantity=quantity, notes=notes)
        cards = list(section.cards)
        _insert_at(cards, card, position)
        _densify(cards)
        section.cards = cards
        _touch(deck)
        await session.flush()
        return card


async def bulk_add_cards(
    session: AsyncSession,
    catalog: CardCatalog,
    user_id: str,
    section_id: str,
    items: list[CardAddition],
) -> list[DeckCardDB]:
    """
    Append several prints to a section, validated as one set.

    All-or-nothing: a single violation rejects every item.
    """
    deck_id = await _deck_id_for_section(session, user_id, section_id)
    async with locked_deck(session, user_id, deck_id) as deck:
        section = _section(deck, section_id)
        proposed = [*_current_set(section), *((i.card_print_id, i.quantity) for i in items)]
        await _validate(catalog, section, proposed)

        added = [DeckCardDB(card_print_id=i.card_print_id, quantity=i.quantity) for i in items]
        cards = [*section.cards, *added]
        _densify(cards)
        section.cards = cards
        _touch(deck)
        await session.flush()
        return added


async def update_card(
    session: AsyncSession,
    catalog: CardCatalog,
    user_id: str,
    card_id: str,
    changes: dict[str, Any],
) -> DeckCardDB:
    """
    Update a deck card's quantity, print, notes or position.

    Quantity and print changes are validated against the section's rules.
    """
    deck_id = await _deck_id_for_card(session, user_id, card_id)
    async with locked_deck(session, user_id, deck_id) as deck:
        section, card = _card(deck, card_id)

        new_print = changes.get("card_print_id") or card.card_print_id
        new_quantity = changes.get("quantity") or card.quantity
        if (new_print, new_quantity) != (card.card_print_id, card.quantity):
            proposed = [
                (new_print, new_quantity) if c.id == card.id else (c.card_print_id, c.quantity)
                for c in section.cards
            ]
            await _validate(catalog, section, proposed)
            card.card_print_id = new_print
            card.quantity = new_quantity

        if "notes" in changes:
            card.notes = changes["notes"]
        if changes.get("position") is not None:
            cards = [c for c in section.cards if c.id != card.id]
            _insert_at(cards, card, changes["position"])
            _densify(cards)
            section.cards = cards

        card.updated_at = utcnow()
        _touch(deck)
        await session.flush()
        return card


async def move_card(
    session: AsyncSession,
    catalog: CardCatalog,
    user_id: str,
    card_id: str,
    target_section_id: str,
    position: int | None = None,
) -> DeckCardDB:
    """
    Move a deck card to another section of the same deck.

    The target section's rules are checked against its set including the
    moved card. Positions in both sections stay dense.
    """
    deck_id = await _deck_id_for_card(session, user_id, card_id)
    async with locked_deck(session, user_id, deck_id) as deck:
        source, card = _card(deck, card_id)
        target = _section(deck, target_section_id)

        if target.id != source.id:
            await _validate(
                catalog, target, [*_current_set(target), (card.card_print_id, card.quantity)]
            )
            source_cards = [c for c in source.cards if c.id != card.id]
            _densify(source_cards)
            source.cards = source_cards
            target_cards = list(target.cards)
        else:
            target_cards = [c for c in target.cards if c.id != card.id]

        _insert_at(target_cards, card, position)
        _densify(target_cards)
        target.cards = target_cards
        card.section_id = target.id
        card.updated_at = utcnow()
        _touch(deck)
        await session.flush()
        return card


async def remove_card(session: AsyncSession, user_id: str, card_id: str) -> None:
    deck_id = await _deck_id_for_card(session, user_id, card_id)
    async with locked_deck(session, user_id, deck_id) as deck:
        section, card = _card(deck, card_id)
        cards = [c for c in section.cards if c.id != card.id]
        _densify(cards)
        section.cards = cards
        _touch(deck)
        await session.flush()


async def reorder_cards(
    session: AsyncSession,
    user_id: str,
    section_id: str,
    card_ids: list[str],
) -> DeckSectionDB:
    """
    Assign card positions 0..n-1 in the given order. Idempotent.

    Raises:
        ValidationFailedError: If the ids are not exactly the section's cards
    """
    deck_id = await _deck_id_for_section(session, user_id, section_id)
    async with locked_deck(session, user_id, deck_id) as deck:
        section = _section(deck, section_id)
        violation = check_reorder_membership([c.id for c in section.cards], card_ids)
        if violation is not None:
            raise violation.to_error()
        by_id = {card.id: card for card in section.cards}
        ordered = [by_id[card_id] for card_id in card_ids]
        _densify(ordered)
        section.cards = ordered
        _touch(deck)
        await session.flush()
        return section


# =============================================================================
# READS
# =============================================================================


async def resolve_deck_cards(
    catalog: CardCatalog,
    deck: DeckDB,
    playing_only: bool = True,
) -> list[ResolvedDeckCard]:
    """
    Join a deck's cards with their catalog prints.

    Args:
        playing_only: Skip sideboard, considering and maybeboard sections

    Raises:
        InconsistentStateError: If a stored print no longer resolves
    """
    rows = [
        (section, card)
        for section in deck.sections
        if not playing_only or is_playing_section(section.name)
        for card in section.cards
    ]
    resolved = await catalog.resolve_prints([card.card_print_id for _, card in rows])
    missing = sorted({card.card_print_id for _, card in rows} - set(resolved))
    if missing:
        logger.error("DECK_PRINT_UNRESOLVED", extra={"deck_id": deck.id, "print_ids": missing})
        raise InconsistentStateError(f"Deck {deck.id} references unknown prints {missing}")
    return [
        ResolvedDeckCard(
            card_id=card.id,
            section_id=section.id,
            quantity=card.quantity,
            position=card.position,
            print=resolved[card.card_print_id],
        )
        for section, card in rows
    ]

