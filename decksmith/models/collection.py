from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CardOwnership:
    """
    Ownership projection of one print for one user.

    Attributes:
        card_print_id: The print this projection describes
        owned_quantity: Copies owned across all conditions and finishes
        used_in_decks: Owned copies committed to decks
        deck_demand: Copies referenced by decks, owned or not
    """

    card_print_id: str
    owned_quantity: int = 0
    used_in_decks: int = 0
    deck_demand: int = 0

    @property
    def available_quantity(self) -> int:
        """Owned copies not committed to any deck. Never clamped."""
        return self.owned_quantity - self.used_in_decks

    @property
    def is_owned(self) -> bool:
        return self.owned_quantity > 0

    @property
    def overcommitted(self) -> bool:
        """Decks reference more copies than the user owns."""
        return self.deck_demand > self.owned_quantity

    def to_dict(self) -> dict[str, int | bool]:
        return {
            "is_owned": self.is_owned,
            "owned_quantity": self.owned_quantity,
            "used_in_decks": self.used_in_decks,
            "available_quantity": self.available_quantity,
            "deck_demand": self.deck_demand,
            "overcommitted": self.overcommitted,
        }
