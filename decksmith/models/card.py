"""
Catalog card models.

A Card is a rules identity (oracle id); a print is one printed edition of it.
Prices are kept as decimal strings exactly as the catalog provides them and
parsed only when arithmetic is needed.
"""

from dataclasses import dataclass, field
from typing import Literal

Currency = Literal["usd", "eur"]


def parse_price(price: str | None) -> float | None:
    """
    Parse a catalog price string.

    Returns None for missing, empty or malformed values.
    """
    if price is None or price == "":
        return None
    try:
        return float(price)
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class Prices:
    """Market prices of a print. Values are decimal strings or None."""

    usd: str | None = None
    usd_foil: str | None = None
    eur: str | None = None
    eur_foil: str | None = None

    def best(self, currency: Currency) -> float | None:
        """Non-foil price in the currency, falling back to the foil price."""
        if currency == "usd":
            regular, foil = self.usd, self.usd_foil
        else:
            regular, foil = self.eur, self.eur_foil
        value = parse_price(regular)
        if value is None:
            value = parse_price(foil)
        return value


@dataclass(frozen=True, slots=True)
class ResolvedPrint:
    """
    A card print resolved against the catalog, joined with its rules identity.

    Attributes:
        print_id: Catalog id of the print
        oracle_id: Rules identity shared by all prints of the card
        name: English card name
        type_line: Full type line (e.g. "Legendary Creature — Elf Druid")
        colors: Color letters, empty for colorless cards
        cmc: Mana value; may be fractional for a handful of cards
        legalities: format -> legality status
    """

    print_id: str
    oracle_id: str
    name: str
    type_line: str
    colors: tuple[str, ...] = ()
    cmc: float = 0.0
    mana_cost: str | None = None
    oracle_text: str = ""
    legalities: dict[str, str] = field(default_factory=dict)
    rarity: str = "common"
    set_code: str = ""
    prices: Prices = field(default_factory=Prices)

    @property
    def is_land(self) -> bool:
        return "Land" in self.type_line.split("//")[0]

    @property
    def is_basic_land(self) -> bool:
        front = self.type_line.split("//")[0]
        return "Basic" in front and "Land" in front

    def is_legal_in(self, format_name: str) -> bool:
        """Legal or restricted both allow inclusion in a deck."""
        return self.legalities.get(format_name) in ("legal", "restricted")
