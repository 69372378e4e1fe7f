from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from numbers import Real
from typing import Iterator, List, Mapping


def numeric_price(value: object) -> float:
    """Return ``value`` as a float, or 0.0 when it is not a number."""
    if isinstance(value, bool) or not isinstance(value, (Real, Decimal)):
        return 0.0
    return float(value)


def format_price(value: object) -> str:
    return f"{numeric_price(value):.2f}"


@dataclass
class CartItem:
    meal: Mapping[str, object]
    quantity: int

    @property
    def meal_id(self) -> str:
        return str(self.meal["id"])

    @property
    def line_total(self) -> float:
        return numeric_price(self.meal.get("price")) * self.quantity


class Cart:
    """Client-side staging area for meal selections, one entry per meal."""

    def __init__(self):
        self._items: List[CartItem] = []

    def add_to_cart(self, meal: Mapping[str, object], quantity: int = 1) -> None:
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        existing = self._find(str(meal["id"]))
        if existing is not None:
            existing.quantity += quantity
            return
        self._items.append(CartItem(meal=meal, quantity=quantity))

    def update_quantity(self, meal_id: str, delta: int) -> None:
        item = self._find(meal_id)
        if item is None:
            return
        item.quantity = max(0, item.quantity + delta)
        self._items = [entry for entry in self._items if entry.quantity > 0]

    def get_total_price(self) -> float:
        return sum((item.line_total for item in self._items), 0.0)

    def item_count(self) -> int:
        return sum(item.quantity for item in self._items)

    def clear(self) -> None:
        self._items = []

    @property
    def items(self) -> List[CartItem]:
        return [CartItem(meal=item.meal, quantity=item.quantity) for item in self._items]

    def _find(self, meal_id: str) -> CartItem | None:
        for item in self._items:
            if item.meal_id == meal_id:
                return item
        return None

    def __iter__(self) -> Iterator[CartItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self._items)
