"""Tests for recommendation API endpoints."""

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

import pytest
from httpx import AsyncClient

from decksmith.main import app

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock(client: AsyncClient) -> Iterator[FakeClock]:
    """Pin the engine clock for every request made through `client`."""
    fake = FakeClock(T0)
    app.state.clock = fake
    yield fake
    app.state.clock = None


@pytest.fixture
async def deck_id(client: AsyncClient) -> str:
    """Modern deck: 4 Llanowar Elves and 20 Forests."""
    deck = (await client.post("/decks/", json={"name": "Stompy", "format": "modern"})).json()
    main_id = deck["sections"][0]["id"]
    response = await client.post(
        f"/decks/sections/{main_id}/cards/bulk",
        json={
            "cards": [
                {"cardPrintId": "p-elves", "quantity": 4},
                {"cardPrintId": "p-forest", "quantity": 20},
            ]
        },
    )
    assert response.status_code == 201, response.text
    return deck["id"]


async def request_recommendation(client: AsyncClient, deck_id: str, **options) -> dict:
    response = await client.post(
        "/recommendations/", json={"deckId": deck_id, "useLlm": False, **options}
    )
    assert response.status_code == 200, response.text
    return response.json()


class TestRequestRecommendation:
    async def test_rule_only_recommendation(
        self, client: AsyncClient, clock: FakeClock, deck_id: str
    ) -> None:
        rec = await request_recommendation(client, deck_id)

        assert rec["deckId"] == deck_id
        assert rec["algorithmVersion"] == "rules-v1"
        assert rec["identifiedGaps"][0] == {
            "category": "card_draw",
            "severity": "high",
            "description": rec["identifiedGaps"][0]["description"],
        }
        names = [s["card"]["name"] for s in rec["ruleSuggestions"]]
        assert names == [
            "Grizzly Bears",
            "Harmonize",
            "Beast Within",
            "Titania, Protector of Argoth",
            "Craterhoof Behemoth",
        ]
        first = rec["ruleSuggestions"][0]
        assert first["cardPrintId"] == "p-bears"
        assert first["ownership"]["isOwned"] is False
        assert first["price"] == "0.05"
        assert rec["llmModel"] is None
        assert rec["llmSuggestions"] is None
        assert datetime.fromisoformat(rec["expiresAt"]) == T0 + timedelta(hours=24)

    async def test_refiner_absent_degrades_to_rule_only(
        self, client: AsyncClient, clock: FakeClock, deck_id: str
    ) -> None:
        rec = await request_recommendation(client, deck_id, useLlm=True)

        assert rec["ruleSuggestions"]
        assert rec["llmSummary"] is None

    async def test_repeat_request_serves_cached(
        self, client: AsyncClient, clock: FakeClock, deck_id: str
    ) -> None:
        first = await request_recommendation(client, deck_id)
        second = await request_recommendation(client, deck_id)

        assert second["id"] == first["id"]

    async def test_deck_change_invalidates(
        self, client: AsyncClient, clock: FakeClock, deck_id: str
    ) -> None:
        first = await request_recommendation(client, deck_id)
        deck = (await client.get(f"/decks/{deck_id}")).json()
        await client.post(
            f"/decks/sections/{deck['sections'][0]['id']}/cards",
            json={"cardPrintId": "p-bears", "quantity": 4},
        )

        second = await request_recommendation(client, deck_id)

        assert second["id"] != first["id"]
        assert second["deckVersion"] == first["deckVersion"] + 1
        assert "Grizzly Bears" not in [s["card"]["name"] for s in second["ruleSuggestions"]]

    async def test_expired_recommendation_is_regenerated(
        self, client: AsyncClient, clock: FakeClock, deck_id: str
    ) -> None:
        first = await request_recommendation(client, deck_id)
        clock.now = T0 + timedelta(hours=25)

        second = await request_recommendation(client, deck_id)

        assert second["id"] != first["id"]

    async def test_max_price_filters_suggestions(
        self, client: AsyncClient, clock: FakeClock, deck_id: str
    ) -> None:
        rec = await request_recommendation(client, deck_id, maxPricePerCard=1.0)

        assert [s["card"]["name"] for s in rec["ruleSuggestions"]] == [
            "Grizzly Bears",
            "Harmonize",
        ]

    async def test_unknown_deck_is_not_found(self, client: AsyncClient) -> None:
        response = await client.post("/recommendations/", json={"deckId": "nope"})

        assert response.status_code == 404
        assert response.json()["failure"]["kind"] == "not_found"


class TestCurrentRecommendation:
    async def test_current_returns_latest(
        self, client: AsyncClient, clock: FakeClock, deck_id: str
    ) -> None:
        rec = await request_recommendation(client, deck_id)

        response = await client.get(f"/recommendations/decks/{deck_id}/current")

        assert response.status_code == 200
        assert response.json()["id"] == rec["id"]

    async def test_current_without_recommendation_is_not_found(
        self, client: AsyncClient, clock: FakeClock, deck_id: str
    ) -> None:
        response = await client.get(f"/recommendations/decks/{deck_id}/current")

        assert response.status_code == 404

    async def test_get_by_id(self, client: AsyncClient, clock: FakeClock, deck_id: str) -> None:
        rec = await request_recommendation(client, deck_id)

        response = await client.get(f"/recommendations/{rec['id']}")

        assert response.status_code == 200
        assert response.json()["ruleSuggestions"] == rec["ruleSuggestions"]


class TestFeedback:
    async def test_last_feedback_wins(
        self, client: AsyncClient, clock: FakeClock, deck_id: str
    ) -> None:
        rec = await request_recommendation(client, deck_id)
        url = f"/recommendations/{rec['id']}/feedback"

        await client.post(url, json={"feedback": "helpful", "comment": "Great picks"})
        response = await client.post(url, json={"feedback": "not_helpful"})

        assert response.status_code == 200
        data = response.json()
        assert data["userFeedback"] == "not_helpful"
        assert data["feedbackComment"] is None

    async def test_feedback_on_other_users_recommendation(
        self, client: AsyncClient, clock: FakeClock, deck_id: str
    ) -> None:
        rec = await request_recommendation(client, deck_id)

        response = await client.post(
            f"/recommendations/{rec['id']}/feedback",
            json={"feedback": "helpful"},
            headers={"X-User-Id": "user-2"},
        )

        assert response.status_code == 404

    async def test_unknown_feedback_value_rejected(
        self, client: AsyncClient, clock: FakeClock, deck_id: str
    ) -> None:
        rec = await request_recommendation(client, deck_id)

        response = await client.post(
            f"/recommendations/{rec['id']}/feedback", json={"feedback": "meh"}
        )

        assert response.status_code == 422
