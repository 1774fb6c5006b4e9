"""
Tests for the ownership ledger.

INVARIANTS:
- available = owned - used, never clamped
- A negative projection is a data-integrity defect and is raised
"""

import logging

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from decksmith.analysis.ownership import get_ownership, project_ownership
from decksmith.models.collection import CardOwnership
from decksmith.models.failure import InconsistentStateError
from decksmith.services import collection_engine, deck_composition
from decksmith.services.card_catalog import SqlCardCatalog

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


class TestProjectOwnership:
    def test_available_is_owned_minus_used(self) -> None:
        projection = project_ownership({"p-1": 4}, {"p-1": 3})

        ownership = projection["p-1"]
        assert ownership.owned_quantity == 4
        assert ownership.used_in_decks == 3
        assert ownership.available_quantity == 1
        assert ownership.is_owned

    def test_deck_demand_beyond_owned_is_not_negative(self) -> None:
        """Decks may list cards the user does not own."""
        projection = project_ownership({"p-1": 1}, {"p-1": 3})

        ownership = projection["p-1"]
        assert ownership.used_in_decks == 1
        assert ownership.available_quantity == 0
        assert ownership.deck_demand == 3
        assert ownership.overcommitted
        assert ownership.to_dict()["overcommitted"] is True

    def test_unowned_print(self) -> None:
        projection = project_ownership({}, {}, ["p-2"])

        assert projection["p-2"] == CardOwnership("p-2")
        assert not projection["p-2"].is_owned

    def test_negative_owned_raises_and_logs(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.ERROR), pytest.raises(InconsistentStateError):
            project_ownership({"p-1": -2}, {})

        assert "INCONSISTENT_OWNERSHIP" in caplog.text

    def test_inconsistent_state_hides_detail(self) -> None:
        error = InconsistentStateError("owned=-2")

        response = error.to_response()

        assert response.failure is not None
        assert response.failure.detail is None
        assert error.status_code == 500


class TestGetOwnership:
    async def test_counts_across_conditions_and_decks(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        await collection_engine.add_to_collection(session, catalog, USER_ID, "p-bolt", quantity=2)
        await collection_engine.add_to_collection(
            session, catalog, USER_ID, "p-bolt", condition="LP", quantity=1
        )
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")
        mainboard = deck.sections[0]
        await deck_composition.add_card(session, catalog, USER_ID, mainboard.id, "p-bolt", 2)
        await session.commit()

        projection = await get_ownership(session, USER_ID, ["p-bolt"])

        assert projection["p-bolt"].owned_quantity == 3
        assert projection["p-bolt"].used_in_decks == 2
        assert projection["p-bolt"].available_quantity == 1

    async def test_excluding_a_deck_ignores_its_usage(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        await collection_engine.add_to_collection(session, catalog, USER_ID, "p-bolt", quantity=2)
        deck = await deck_composition.create_deck(session, USER_ID, "Burn", "modern")
        await deck_composition.add_card(session, catalog, USER_ID, deck.sections[0].id, "p-bolt", 2)
        await session.commit()

        projection = await get_ownership(session, USER_ID, ["p-bolt"], exclude_deck_id=deck.id)

        assert projection["p-bolt"].available_quantity == 2

    async def test_other_users_are_invisible(
        self, session: AsyncSession, catalog: SqlCardCatalog
    ) -> None:
        await collection_engine.add_to_collection(
            session, catalog, OTHER_USER_ID, "p-bolt", quantity=4
        )
        await session.commit()

        projection = await get_ownership(session, USER_ID, ["p-bolt"])

        assert projection["p-bolt"].owned_quantity == 0
