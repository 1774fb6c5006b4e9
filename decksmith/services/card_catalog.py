"""
Card catalog lookup.

The catalog (cards, card_prints) is populated by an external process; the
engine only reads it. `CardCatalog` is the seam the services depend on;
`SqlCardCatalog` reads the catalog tables through the request's session.
"""

import logging
from collections.abc import Iterable
from typing import Protocol

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from decksmith.analysis.roles import ROLE_PATTERNS, TYPE_ROLES, fills_role
from decksmith.models.card import Prices, ResolvedPrint
from decksmith.models.db import CardDB, CardPrintDB
from decksmith.models.enums import GapCategory
from decksmith.models.failure import NotFoundError

logger = logging.getLogger(__name__)


class CardCatalog(Protocol):
    """Read-only access to catalog prints."""

    async def resolve_print(self, print_id: str) -> ResolvedPrint: ...

    async def resolve_prints(self, print_ids: Iterable[str]) -> dict[str, ResolvedPrint]: ...

    async def search_candidates(
        self,
        category: GapCategory,
        format_name: str,
        colors: set[str] | None,
        max_price: float | None,
        exclude_oracle_ids: set[str],
        limit: int,
        preferred_print_ids: set[str] | None = None,
    ) -> list[ResolvedPrint]: ...


def print_from_row(row: CardPrintDB) -> ResolvedPrint:
    """Join a print row with its card into a ResolvedPrint."""
    card = row.card
    return ResolvedPrint(
        print_id=row.id,
        oracle_id=card.oracle_id,
        name=card.name,
        type_line=card.type_line or "",
        colors=tuple(card.colors or ()),
        cmc=float(card.cmc or 0.0),
        mana_cost=card.mana_cost,
        oracle_text=card.oracle_text or "",
        legalities=dict(card.legalities or {}),
        rarity=row.rarity,
        set_code=row.set_code,
        prices=Prices(
            usd=row.price_usd,
            usd_foil=row.price_usd_foil,
            eur=row.price_eur,
            eur_foil=row.price_eur_foil,
        ),
    )


class SqlCardCatalog:
    """CardCatalog over the catalog tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def resolve_print(self, print_id: str) -> ResolvedPrint:
        """
        Resolve one print.

        Raises:
            NotFoundError: If the print is not in the catalog
        """
        resolved = await self.resolve_prints([print_id])
        if print_id not in resolved:
            raise NotFoundError("CardPrint", print_id)
        return resolved[print_id]

    async def resolve_prints(self, print_ids: Iterable[str]) -> dict[str, ResolvedPrint]:
        """
        Resolve many prints in one query.

        Missing ids are absent from the result; callers decide whether
        that is an error.
        """
        ids = list(dict.fromkeys(print_ids))
        if not ids:
            return {}
        result = await self.session.execute(select(CardPrintDB).where(CardPrintDB.id.in_(ids)))
        return {row.id: print_from_row(row) for row in result.unique().scalars().all()}

    async def search_candidates(
        self,
        category: GapCategory,
        format_name: str,
        colors: set[str] | None,
        max_price: float | None,
        exclude_oracle_ids: set[str],
        limit: int,
        preferred_print_ids: set[str] | None = None,
    ) -> list[ResolvedPrint]:
        """
        Find prints that fill a gap category.

        Keyword matching narrows the query in SQL; legality, color identity
        and price are applied to the resolved prints. One print per card is
        returned: a preferred print when the card has one, otherwise the
        cheapest priced one. Cards with a preferred print sort ahead of the
        rest before `limit` is applied.

        Args:
            category: Gap category to fill
            format_name: Only cards legal in this format
            colors: Deck color identity; None allows any colors
            max_price: Optional USD cap per card
            exclude_oracle_ids: Cards already in the deck
            limit: Maximum number of results
            preferred_print_ids: Prints to favour, typically the user's
                available copies
        """
        preferred = preferred_print_ids or set()
        query = select(CardPrintDB).join(CardDB, CardPrintDB.oracle_id == CardDB.oracle_id)
        if category in TYPE_ROLES:
            query = query.where(CardDB.type_line.ilike(f"%{TYPE_ROLES[category]}%"))
        elif category in ROLE_PATTERNS:
            query = query.where(
                or_(*(CardDB.oracle_text.ilike(f"%{kw}%") for kw in ROLE_PATTERNS[category]))
            )
        else:
            # Curve gaps are filled by cheap cards of any role
            query = query.where(CardDB.cmc <= 2)
        if exclude_oracle_ids:
            query = query.where(CardDB.oracle_id.not_in(list(exclude_oracle_ids)))
        query = query.order_by(CardDB.name)

        result = await self.session.execute(query)
        rows = result.unique().scalars().all()

        best: dict[str, ResolvedPrint] = {}
        allowed = (set(colors) - {"C"}) if colors is not None else None
        for row in rows:
            candidate = print_from_row(row)
            if not candidate.is_legal_in(format_name):
                continue
            if allowed is not None and not (set(candidate.colors) - {"C"}) <= allowed:
                continue
            if category in ROLE_PATTERNS and not fills_role(candidate, category):
                continue
            price = candidate.prices.best("usd")
            if max_price is not None and (price is None or price > max_price):
                continue
            current = best.get(candidate.oracle_id)
            if current is None or _better(candidate, current, preferred):
                best[candidate.oracle_id] = candidate

        candidates = sorted(best.values(), key=lambda p: (p.print_id not in preferred, p.name))
        logger.debug(
            "Catalog search for %s in %s: %d candidates", category.value, format_name, len(candidates)
        )
        return candidates[:limit]


def _better(candidate: ResolvedPrint, current: ResolvedPrint, preferred: set[str]) -> bool:
    is_preferred = candidate.print_id in preferred
    if is_preferred != (current.print_id in preferred):
        return is_preferred
    new_price = candidate.prices.best("usd")
    old_price = current.prices.best("usd")
    if new_price is None:
        return False
    return old_price is None or new_price < old_price
