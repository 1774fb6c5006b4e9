"""
Tests for the deck composition service.

INVARIANTS:
- A rejected mutation leaves the section unchanged
- Card and section positions are dense and zero-based
- Every mutation bumps the deck version
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from decksmith.models.db import DeckDB
from decksmith.models.failure import NotFoundError, ValidationFailedError
from decksmith.services import deck_composition
from decksmith.services.card_catalog import SqlCardCatalog
from decksmith.services.deck_composition import CardAddition

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


def section_named(deck: DeckDB, name: str):
    return next(s for s in deck.sections if s.name == name)


async def reload(session: AsyncSession, deck_id: str) -> DeckDB:
    await session.commit()
    session.expunge_all()
    return await deck_composition.get_deck(session, USER_ID, deck_id)


class TestCreateDeck:
    async def test_commander_sections(self, session: AsyncSession) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Elves", "commander")

        assert [s.name for s in deck.sections] == [
            "Command Zone",
            "Mainboard",
            "Considering",
            "Maybeboard",
        ]
        assert [s.position for s in deck.sections] == [0, 1, 2, 3]
        assert deck.sections[0].validation_rules == {"maxCards": 2}
        assert deck.sections[1].validation_rules == {"singleton": True}
        assert deck.sections[2].validation_rules is None
        assert deck.version == 0

    async def test_constructed_sections(self, session: AsyncSession) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")

        assert [s.name for s in deck.sections] == ["Mainboard", "Sideboard", "Considering"]
        assert deck.sections[1].validation_rules == {"maxCards": 15}

    async def test_invalid_format(self, session: AsyncSession) -> None:
        with pytest.raises(ValueError):
            await deck_composition.create_deck(session, USER_ID, "Bad", "tiny-leaders")

    async def test_decks_are_user_scoped(self, session: AsyncSession) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Elves", "commander")

        with pytest.raises(NotFoundError):
            await deck_composition.get_deck(session, OTHER_USER_ID, deck.id)


class TestAddCard:
    async def test_max_cards_rejects_third_card_and_leaves_section_unchanged(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Elves", "commander")
        zone = section_named(deck, "Command Zone")
        await deck_composition.add_card(session, catalog, USER_ID, zone.id, "p-titania")
        await deck_composition.add_card(session, catalog, USER_ID, zone.id, "p-elves")
        version = deck.version

        with pytest.raises(ValidationFailedError) as exc_info:
            await deck_composition.add_card(session, catalog, USER_ID, zone.id, "p-bears")

        assert exc_info.value.rule == "maxCards"
        assert exc_info.value.limit == 2
        assert exc_info.value.attempted == 3
        deck = await reload(session, deck.id)
        zone = section_named(deck, "Command Zone")
        assert [c.card_print_id for c in zone.cards] == ["p-titania", "p-elves"]
        assert deck.version == version

    async def test_singleton_counts_prints_of_same_card(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Big Red", "commander")
        main = section_named(deck, "Mainboard")
        await deck_composition.add_card(session, catalog, USER_ID, main.id, "p-bolt")

        with pytest.raises(ValidationFailedError) as exc_info:
            await deck_composition.add_card(session, catalog, USER_ID, main.id, "p-bolt-alt")

        assert exc_info.value.rule == "singleton"

    async def test_singleton_exempts_basic_lands(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Elves", "commander")
        main = section_named(deck, "Mainboard")

        await deck_composition.add_card(session, catalog, USER_ID, main.id, "p-forest", 30)
        card = await deck_composition.add_card(session, catalog, USER_ID, main.id, "p-forest-alt", 5)

        assert card.quantity == 5

    async def test_unknown_print(self, session: AsyncSession, catalog: SqlCardCatalog) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Elves", "commander")

        with pytest.raises(NotFoundError):
            await deck_composition.add_card(
                session, catalog, USER_ID, deck.sections[1].id, "p-missing"
            )

    async def test_other_users_section_not_found(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Elves", "commander")

        with pytest.raises(NotFoundError):
            await deck_composition.add_card(
                session, catalog, OTHER_USER_ID, deck.sections[1].id, "p-elves"
            )

    async def test_insert_at_position_keeps_positions_dense(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Stompy", "modern")
        main = section_named(deck, "Mainboard")
        await deck_composition.add_card(session, catalog, USER_ID, main.id, "p-elves", 4)
        await deck_composition.add_card(session, catalog, USER_ID, main.id, "p-bears", 4)

        await deck_composition.add_card(
            session, catalog, USER_ID, main.id, "p-rampant", 2, position=1
        )

        deck = await reload(session, deck.id)
        main = section_named(deck, "Mainboard")
        assert [(c.card_print_id, c.position) for c in main.cards] == [
            ("p-elves", 0),
            ("p-rampant", 1),
            ("p-bears", 2),
        ]
        assert deck.version == 3

    async def test_bulk_add_is_all_or_nothing(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Elves", "commander")
        main = section_named(deck, "Mainboard")

        with pytest.raises(ValidationFailedError):
            await deck_composition.bulk_add_cards(
                session,
                catalog,
                USER_ID,
                main.id,
                [CardAddition("p-elves"), CardAddition("p-bears"), CardAddition("p-bears")],
            )

        deck = await reload(session, deck.id)
        assert section_named(deck, "Mainboard").cards == []

    async def test_bulk_add(self, session: AsyncSession, catalog: SqlCardCatalog) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Elves", "commander")
        main = section_named(deck, "Mainboard")

        added = await deck_composition.bulk_add_cards(
            session,
            catalog,
            USER_ID,
            main.id,
            [CardAddition("p-elves"), CardAddition("p-forest", 20)],
        )

        assert [c.position for c in added] == [0, 1]
        assert deck.version == 1


class TestUpdateAndMoveCards:
    async def test_quantity_increase_validated(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")
        side = section_named(deck, "Sideboard")
        card = await deck_composition.add_card(session, catalog, USER_ID, side.id, "p-bolt", 4)

        with pytest.raises(ValidationFailedError) as exc_info:
            await deck_composition.update_card(session, catalog, USER_ID, card.id, {"quantity": 16})

        assert exc_info.value.rule == "maxCards"

    async def test_update_notes(self, session: AsyncSession, catalog: SqlCardCatalog) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")
        card = await deck_composition.add_card(
            session, catalog, USER_ID, deck.sections[0].id, "p-bolt", 4
        )

        updated = await deck_composition.update_card(
            session, catalog, USER_ID, card.id, {"notes": "always 4"}
        )

        assert updated.notes == "always 4"
        assert updated.quantity == 4

    async def test_move_between_sections(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")
        main = section_named(deck, "Mainboard")
        side = section_named(deck, "Sideboard")
        bolt = await deck_composition.add_card(session, catalog, USER_ID, main.id, "p-bolt", 4)
        await deck_composition.add_card(session, catalog, USER_ID, main.id, "p-murder", 2)

        await deck_composition.move_card(session, catalog, USER_ID, bolt.id, side.id)

        deck = await reload(session, deck.id)
        main = section_named(deck, "Mainboard")
        side = section_named(deck, "Sideboard")
        assert [(c.card_print_id, c.position) for c in main.cards] == [("p-murder", 0)]
        assert [(c.card_print_id, c.position) for c in side.cards] == [("p-bolt", 0)]

    async def test_move_checked_against_target_rules(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Elves", "commander")
        zone = section_named(deck, "Command Zone")
        considering = section_named(deck, "Considering")
        await deck_composition.add_card(session, catalog, USER_ID, zone.id, "p-titania")
        await deck_composition.add_card(session, catalog, USER_ID, zone.id, "p-elves")
        bears = await deck_composition.add_card(
            session, catalog, USER_ID, considering.id, "p-bears"
        )

        with pytest.raises(ValidationFailedError):
            await deck_composition.move_card(session, catalog, USER_ID, bears.id, zone.id)

        deck = await reload(session, deck.id)
        assert [c.card_print_id for c in section_named(deck, "Considering").cards] == ["p-bears"]

    async def test_remove_card_densifies(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Stompy", "modern")
        main = section_named(deck, "Mainboard")
        first = await deck_composition.add_card(session, catalog, USER_ID, main.id, "p-elves")
        await deck_composition.add_card(session, catalog, USER_ID, main.id, "p-bears")

        await deck_composition.remove_card(session, USER_ID, first.id)

        deck = await reload(session, deck.id)
        assert [(c.card_print_id, c.position) for c in deck.sections[0].cards] == [("p-bears", 0)]


class TestReorder:
    async def test_reorder_cards_is_idempotent(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Stompy", "modern")
        main = section_named(deck, "Mainboard")
        ids = [
            (await deck_composition.add_card(session, catalog, USER_ID, main.id, pid)).id
            for pid in ("p-elves", "p-bears", "p-rampant")
        ]
        new_order = [ids[2], ids[0], ids[1]]

        await deck_composition.reorder_cards(session, USER_ID, main.id, new_order)
        section = await deck_composition.reorder_cards(session, USER_ID, main.id, new_order)

        assert [c.id for c in section.cards] == new_order
        assert [c.position for c in section.cards] == [0, 1, 2]
        deck = await reload(session, deck.id)
        assert [c.id for c in section_named(deck, "Mainboard").cards] == new_order

    async def test_reorder_must_name_every_card(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Stompy", "modern")
        main = section_named(deck, "Mainboard")
        first = await deck_composition.add_card(session, catalog, USER_ID, main.id, "p-elves")
        await deck_composition.add_card(session, catalog, USER_ID, main.id, "p-bears")

        with pytest.raises(ValidationFailedError) as exc_info:
            await deck_composition.reorder_cards(session, USER_ID, main.id, [first.id])

        assert exc_info.value.rule == "reorder-membership"

    async def test_reorder_sections(self, session: AsyncSession) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")
        ids = [s.id for s in deck.sections]

        await deck_composition.reorder_sections(session, USER_ID, deck.id, ids[::-1])

        deck = await reload(session, deck.id)
        assert [s.id for s in deck.sections] == ids[::-1]
        assert [s.position for s in deck.sections] == [0, 1, 2]
        assert deck.version == 1


class TestSections:
    async def test_create_section_at_position(self, session: AsyncSession) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")

        await deck_composition.create_section(
            session, USER_ID, deck.id, "Companion", validation_rules={"maxCards": 1}, position=1
        )

        deck = await reload(session, deck.id)
        assert [s.name for s in deck.sections] == [
            "Mainboard",
            "Companion",
            "Sideboard",
            "Considering",
        ]
        assert deck.sections[1].validation_rules == {"maxCards": 1}

    async def test_create_section_rejects_unknown_rule(self, session: AsyncSession) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")

        with pytest.raises(ValidationFailedError) as exc_info:
            await deck_composition.create_section(
                session, USER_ID, deck.id, "Odd", validation_rules={"minCards": 1}
            )

        assert exc_info.value.rule == "unknown-field"

    async def test_rule_change_must_fit_current_cards(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")
        main = section_named(deck, "Mainboard")
        await deck_composition.add_card(session, catalog, USER_ID, main.id, "p-bolt", 4)

        with pytest.raises(ValidationFailedError) as exc_info:
            await deck_composition.update_section(
                session, catalog, USER_ID, main.id, {"validation_rules": {"singleton": True}}
            )

        assert exc_info.value.rule == "singleton"

    async def test_partial_rule_update_merges(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")
        main = section_named(deck, "Mainboard")

        section = await deck_composition.update_section(
            session, catalog, USER_ID, main.id, {"validation_rules": {"colorIdentity": ["R"]}}
        )

        assert section.validation_rules == {"maxCards": 60, "colorIdentity": ["R"]}

    async def test_null_rules_clear(self, session: AsyncSession, catalog: SqlCardCatalog) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")
        main = section_named(deck, "Mainboard")

        section = await deck_composition.update_section(
            session, catalog, USER_ID, main.id, {"validation_rules": None}
        )

        assert section.validation_rules is None

    async def test_delete_section_densifies(self, session: AsyncSession) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")
        sideboard = section_named(deck, "Sideboard")

        await deck_composition.delete_section(session, USER_ID, sideboard.id)

        deck = await reload(session, deck.id)
        assert [(s.name, s.position) for s in deck.sections] == [
            ("Mainboard", 0),
            ("Considering", 1),
        ]


class TestDeckLifecycle:
    async def test_update_deck_does_not_bump_version(self, session: AsyncSession) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")

        updated = await deck_composition.update_deck(
            session, USER_ID, deck.id, {"name": "Burn 2", "is_public": True}
        )

        assert updated.name == "Burn 2"
        assert updated.is_public is True
        assert updated.version == 0

    async def test_delete_deck(self, session: AsyncSession, catalog: SqlCardCatalog) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")
        await deck_composition.add_card(session, catalog, USER_ID, deck.sections[0].id, "p-bolt")

        await deck_composition.delete_deck(session, USER_ID, deck.id)
        await session.commit()

        assert await deck_composition.list_decks(session, USER_ID) == []

    async def test_unknown_deck_creates_no_lock(self, session: AsyncSession) -> None:
        with pytest.raises(NotFoundError):
            await deck_composition.update_deck(session, USER_ID, "no-such-deck", {"name": "x"})

        assert "no-such-deck" not in deck_composition._deck_locks

    async def test_other_users_deck_creates_no_lock(self, session: AsyncSession) -> None:
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")

        with pytest.raises(NotFoundError):
            await deck_composition.update_deck(session, OTHER_USER_ID, deck.id, {"name": "x"})

        assert deck.id not in deck_composition._deck_locks
