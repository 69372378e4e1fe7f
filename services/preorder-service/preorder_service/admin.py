from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Tuple

from .repository import BackendError, RowNotFoundError
from .views import LiveView

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminStats:
    total_orders: int
    completed_orders: int
    available_meals: int


class AdminView(LiveView):
    watched_tables = ("meals", "orders")

    def __init__(self, store):
        super().__init__(store)
        self.meals: List[dict] = []
        self.orders: List[dict] = []

    def _fetch(self) -> Tuple[List[dict], List[dict]]:
        return self._store.select("meals"), self._store.select("orders")

    def _apply(self, data: Tuple[List[dict], List[dict]]) -> None:
        self.meals, self.orders = data

    def stats(self) -> AdminStats:
        return AdminStats(
            total_orders=len(self.orders),
            completed_orders=sum(1 for order in self.orders if order["status"] == "picked_up"),
            available_meals=sum(1 for meal in self.meals if meal["available"]),
        )

    def toggle_availability(self, meal_id: str, current_availability: bool) -> bool:
        """Write the flipped flag and return it; ``self.meals`` is left as last read."""
        available = not current_availability
        try:
            updated = self._store.update("meals", {"available": available}, {"id": meal_id})
        except BackendError as exc:
            logger.error("Error updating meal %s: %s", meal_id, exc)
            raise
        if not updated:
            raise RowNotFoundError(f"Meal {meal_id} not found")
        logger.info("Meal %s availability set to %s", meal_id, available)
        return available
