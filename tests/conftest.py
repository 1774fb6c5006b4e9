from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from decksmith.db.database import Database, get_session, get_session_factory
from decksmith.main import app
from decksmith.models import failure as failure_module
from decksmith.models.db import CardDB, CardPrintDB
from decksmith.models.enums import Format
from decksmith.services import deck_composition
from decksmith.services.card_catalog import SqlCardCatalog
from decksmith.services.cost_controls import reset_usage_tracker

USER_ID = "user-1"
OTHER_USER_ID = "user-2"

LEGAL_EVERYWHERE = {f.value: "legal" for f in Format}
COMMANDER_ONLY = {f.value: "banned" for f in Format} | {"commander": "legal", "duel": "legal"}

# (oracle_id, name, type_line, colors, cmc, oracle_text, legalities)
CARDS = [
    ("o-forest", "Forest", "Basic Land — Forest", [], 0, "({T}: Add {G}.)", LEGAL_EVERYWHERE),
    ("o-elves", "Llanowar Elves", "Creature — Elf Druid", ["G"], 1, "{T}: Add {G}.",
     LEGAL_EVERYWHERE),
    ("o-bears", "Grizzly Bears", "Creature — Bear", ["G"], 2, "", LEGAL_EVERYWHERE),
    ("o-rampant", "Rampant Growth", "Sorcery", ["G"], 2,
     "Search your library for a basic land card, put that card onto the battlefield tapped, "
     "then shuffle.", LEGAL_EVERYWHERE),
    ("o-cultivate", "Cultivate", "Sorcery", ["G"], 3,
     "Search your library for up to two basic land cards, reveal those cards, put one onto "
     "the battlefield tapped and the other into your hand, then shuffle.", LEGAL_EVERYWHERE),
    ("o-harmonize", "Harmonize", "Sorcery", ["G"], 4, "Draw three cards.", LEGAL_EVERYWHERE),
    ("o-beast", "Beast Within", "Instant", ["G"], 3,
     "Destroy target permanent. Its controller creates a 3/3 green Beast creature token.",
     LEGAL_EVERYWHERE),
    ("o-murder", "Murder", "Instant", ["B"], 3, "Destroy target creature.", LEGAL_EVERYWHERE),
    ("o-bolt", "Lightning Bolt", "Instant", ["R"], 1,
     "Lightning Bolt deals 3 damage to any target.", LEGAL_EVERYWHERE),
    ("o-counter", "Counterspell", "Instant", ["U"], 2, "Counter target spell.", LEGAL_EVERYWHERE),
    ("o-sol-ring", "Sol Ring", "Artifact", [], 1, "{T}: Add {C}{C}.", COMMANDER_ONLY),
    ("o-craterhoof", "Craterhoof Behemoth", "Creature — Beast", ["G"], 8,
     "Haste", LEGAL_EVERYWHERE),
    ("o-titania", "Titania, Protector of Argoth", "Legendary Creature — Elemental", ["G"], 5,
     "When a land you control is put into a graveyard from the battlefield, "
     "create a 5/3 green Elemental creature token.", LEGAL_EVERYWHERE),
]

# (print_id, oracle_id, set_code, price_usd, price_usd_foil, price_eur)
PRINTS = [
    ("p-forest", "o-forest", "m21", "0.10", "0.50", "0.08"),
    ("p-forest-alt", "o-forest", "znr", "0.15", None, None),
    ("p-elves", "o-elves", "dom", "0.25", "1.00", "0.20"),
    ("p-bears", "o-bears", "m10", "0.05", None, None),
    ("p-rampant", "o-rampant", "m21", None, None, None),
    ("p-cultivate", "o-cultivate", "m21", "0.50", None, "0.40"),
    ("p-harmonize", "o-harmonize", "plc", "0.30", None, None),
    ("p-beast", "o-beast", "c21", "1.50", None, None),
    ("p-murder", "o-murder", "m20", "0.20", None, None),
    ("p-bolt", "o-bolt", "m11", "2.00", None, None),
    ("p-bolt-alt", "o-bolt", "2xm", "0.90", None, None),
    ("p-counter", "o-counter", "mh2", "1.25", None, None),
    ("p-sol-ring", "o-sol-ring", "c21", "1.00", None, None),
    ("p-craterhoof", "o-craterhoof", "avr", None, "40.00", None),
    ("p-titania", "o-titania", "c14", "3.00", None, None),
]


@pytest.fixture(autouse=True)
def clear_finalized_responses():
    """Clear the finalized responses set between tests.

    Python reuses memory addresses for new objects, which would otherwise
    cause id() collisions with previously finalized responses.
    """
    failure_module._finalized_responses.clear()
    yield
    failure_module._finalized_responses.clear()


@pytest.fixture(autouse=True)
def fresh_process_state():
    """Reset the global usage tracker and the per-deck locks."""
    reset_usage_tracker()
    deck_composition._deck_locks.clear()
    yield
    reset_usage_tracker()
    deck_composition._deck_locks.clear()


@pytest.fixture(autouse=True)
def default_anthropic_endpoint(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep an ambient ANTHROPIC_BASE_URL from redirecting mocked API calls."""
    monkeypatch.delenv("ANTHROPIC_BASE_URL", raising=False)


@pytest.fixture
async def database() -> AsyncIterator[Database]:
    """In-memory SQLite database with all tables created."""
    db = Database("sqlite+aiosqlite:///:memory:")
    db.open()
    await db.create_all()
    yield db
    await db.drop_all()
    await db.close()


@pytest.fixture
async def session(database: Database) -> AsyncIterator[AsyncSession]:
    async with database.session_factory() as session:
        yield session


@pytest.fixture
async def catalog_cards(database: Database) -> dict[str, str]:
    """Seed the catalog. Returns card name -> default print id."""
    async with database.session_factory() as session:
        for oracle_id, name, type_line, colors, cmc, text, legalities in CARDS:
            session.add(
                CardDB(
                    oracle_id=oracle_id,
                    name=name,
                    type_line=type_line,
                    colors=colors,
                    cmc=cmc,
                    oracle_text=text,
                    legalities=legalities,
                )
            )
        await session.flush()
        for print_id, oracle_id, set_code, usd, usd_foil, eur in PRINTS:
            session.add(
                CardPrintDB(
                    id=print_id,
                    oracle_id=oracle_id,
                    set_code=set_code,
                    price_usd=usd,
                    price_usd_foil=usd_foil,
                    price_eur=eur,
                )
            )
        await session.commit()
    return {name: f"p-{oracle_id[2:]}" for oracle_id, name, *_ in CARDS}


@pytest.fixture
def catalog(session: AsyncSession, catalog_cards: dict[str, str]) -> SqlCardCatalog:
    return SqlCardCatalog(session)


@pytest.fixture
async def client(database: Database, catalog_cards: dict[str, str]) -> AsyncIterator[AsyncClient]:
    """Async test client bound to the test database, identified as USER_ID."""

    async def override_get_session():
        async with database.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: database.session_factory
    app.state.refiner = None
    app.state.clock = None

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-User-Id": USER_ID},
    ) as client:
        yield client

    app.dependency_overrides.clear()
    app.state.refiner = None
    app.state.clock = None
