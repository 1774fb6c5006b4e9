"""
Deck API endpoints.

Deck, section and deck-card management plus the read-side statistics and
ownership views. Every card mutation is validated against the section's
rules before it is applied.
"""

from dataclasses import asdict

from fastapi import APIRouter, status

from decksmith.analysis.ownership import get_ownership
from decksmith.api.deps import CatalogDep, SessionDep, UserId
from decksmith.api.schemas import (
    BulkDeckCardInput,
    DeckCardInput,
    DeckCardResponse,
    DeckCardUpdateInput,
    DeckInput,
    DeckResponse,
    DeckSectionResponse,
    DeckStatsResponse,
    DeckSummaryResponse,
    DeckUpdateInput,
    MoveCardInput,
    OwnershipResponse,
    ReorderInput,
    SectionInput,
    SectionUpdateInput,
)
from decksmith.services import deck_composition
from decksmith.services.deck_composition import CardAddition
from decksmith.services.recommendation_engine import compute_deck_stats

router = APIRouter(prefix="/decks", tags=["decks"])


# =============================================================================
# DECKS
# =============================================================================


@router.get("/", response_model=list[DeckSummaryResponse])
async def list_decks(user_id: UserId, session: SessionDep) -> list[DeckSummaryResponse]:
    decks = await deck_composition.list_decks(session, user_id)
    return [DeckSummaryResponse.model_validate(deck) for deck in decks]


@router.post("/", response_model=DeckResponse, status_code=status.HTTP_201_CREATED)
async def create_deck(body: DeckInput, user_id: UserId, session: SessionDep) -> DeckResponse:
    """Create a deck with the standard sections of its format."""
    deck = await deck_composition.create_deck(
        session,
        user_id,
        body.name,
        body.format,
        description=body.description,
        is_public=body.is_public,
        tag_ids=body.tag_ids,
    )
    return DeckResponse.model_validate(deck)


@router.get("/{deck_id}", response_model=DeckResponse)
async def get_deck(deck_id: str, user_id: UserId, session: SessionDep) -> DeckResponse:
    deck = await deck_composition.get_deck(session, user_id, deck_id)
    return DeckResponse.model_validate(deck)


@router.patch("/{deck_id}", response_model=DeckResponse)
async def update_deck(
    deck_id: str,
    body: DeckUpdateInput,
    user_id: UserId,
    session: SessionDep,
) -> DeckResponse:
    deck = await deck_composition.update_deck(
        session, user_id, deck_id, body.model_dump(exclude_unset=True)
    )
    return DeckResponse.model_validate(deck)


@router.delete("/{deck_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_deck(deck_id: str, user_id: UserId, session: SessionDep) -> None:
    await deck_composition.delete_deck(session, user_id, deck_id)


@router.get("/{deck_id}/stats", response_model=DeckStatsResponse)
async def deck_stats(
    deck_id: str,
    user_id: UserId,
    session: SessionDep,
    catalog: CatalogDep,
) -> DeckStatsResponse:
    """
    Statistics of the deck's playing sections.

    Owned and missing counts are measured against copies not committed to
    the caller's other decks.
    """
    deck = await deck_composition.get_deck(session, user_id, deck_id)
    stats, _cards = await compute_deck_stats(session, catalog, user_id, deck)
    fields = asdict(stats)
    fields.pop("role_counts")
    return DeckStatsResponse(deck_id=deck.id, **fields)


@router.get("/{deck_id}/ownership", response_model=list[OwnershipResponse])
async def deck_ownership(
    deck_id: str,
    user_id: UserId,
    session: SessionDep,
) -> list[OwnershipResponse]:
    """Ownership of every print referenced by the deck, across all decks."""
    deck = await deck_composition.get_deck(session, user_id, deck_id)
    print_ids = {card.card_print_id for section in deck.sections for card in section.cards}
    projection = await get_ownership(session, user_id, print_ids)
    return [
        OwnershipResponse(card_print_id=print_id, **ownership.to_dict())
        for print_id, ownership in projection.items()
    ]


# =============================================================================
# SECTIONS
# =============================================================================


@router.post(
    "/{deck_id}/sections",
    response_model=DeckSectionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_section(
    deck_id: str,
    body: SectionInput,
    user_id: UserId,
    session: SessionDep,
) -> DeckSectionResponse:
    section = await deck_composition.create_section(
        session,
        user_id,
        deck_id,
        body.name,
        description=body.description,
        validation_rules=body.validation_rules,
        position=body.position,
    )
    return DeckSectionResponse.model_validate(section)


@router.put("/{deck_id}/sections/order", response_model=DeckResponse)
async def reorder_sections(
    deck_id: str,
    body: ReorderInput,
    user_id: UserId,
    session: SessionDep,
) -> DeckResponse:
    deck = await deck_composition.reorder_sections(session, user_id, deck_id, body.ids)
    return DeckResponse.model_validate(deck)


@router.patch("/sections/{section_id}", response_model=DeckSectionResponse)
async def update_section(
    section_id: str,
    body: SectionUpdateInput,
    user_id: UserId,
    session: SessionDep,
    catalog: CatalogDep,
) -> DeckSectionResponse:
    """
    Update a section.

    `validationRules` merges into the stored rules; unknown keys are
    rejected and an explicit null clears them.
    """
    section = await deck_composition.update_section(
        session, catalog, user_id, section_id, body.model_dump(exclude_unset=True)
    )
    return DeckSectionResponse.model_validate(section)


@router.delete("/sections/{section_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_section(section_id: str, user_id: UserId, session: SessionDep) -> None:
    await deck_composition.delete_section(session, user_id, section_id)


# =============================================================================
# DECK CARDS
# =============================================================================


@router.post(
    "/sections/{section_id}/cards",
    response_model=DeckCardResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_card(
    section_id: str,
    body: DeckCardInput,
    user_id: UserId,
    session: SessionDep,
    catalog: CatalogDep,
) -> DeckCardResponse:
    card = await deck_composition.add_card(
        session,
        catalog,
        user_id,
        section_id,
        body.card_print_id,
        quantity=body.quantity,
        position=body.position,
        notes=body.notes,
    )
    return DeckCardResponse.model_validate(card)


@router.post(
    "/sections/{section_id}/cards/bulk",
    response_model=list[DeckCardResponse],
    status_code=status.HTTP_201_CREATED,
)
async def bulk_add_cards(
    section_id: str,
    body: BulkDeckCardInput,
    user_id: UserId,
    session: SessionDep,
    catalog: CatalogDep,
) -> list[DeckCardResponse]:
    """Add several cards, validated together. All-or-nothing."""
    items = [CardAddition(item.card_print_id, item.quantity) for item in body.cards]
    cards = await deck_composition.bulk_add_cards(session, catalog, user_id, section_id, items)
    return [DeckCardResponse.model_validate(card) for card in cards]


@router.put("/sections/{section_id}/cards/order", response_model=DeckSectionResponse)
async def reorder_cards(
    section_id: str,
    body: ReorderInput,
    user_id: UserId,
    session: SessionDep,
) -> DeckSectionResponse:
    section = await deck_composition.reorder_cards(session, user_id, section_id, body.ids)
    return DeckSectionResponse.model_validate(section)


@router.patch("/cards/{card_id}", response_model=DeckCardResponse)
async def update_card(
    card_id: str,
    body: DeckCardUpdateInput,
    user_id: UserId,
    session: SessionDep,
    catalog: CatalogDep,
) -> DeckCardResponse:
    card = await deck_composition.update_card(
        session, catalog, user_id, card_id, body.model_dump(exclude_unset=True)
    )
    return DeckCardResponse.model_validate(card)


@router.post("/cards/{card_id}/move", response_model=DeckCardResponse)
async def move_card(
    card_id: str,
    body: MoveCardInput,
    user_id: UserId,
    session: SessionDep,
    catalog: CatalogDep,
) -> DeckCardResponse:
    card = await deck_composition.move_card(
        session, catalog, user_id, card_id, body.target_section_id, position=body.position
    )
    return DeckCardResponse.model_validate(card)


@router.delete("/cards/{card_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_card(card_id: str, user_id: UserId, session: SessionDep) -> None:
    await deck_composition.remove_card(session, user_id, card_id)
