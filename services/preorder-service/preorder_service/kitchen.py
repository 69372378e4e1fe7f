from __future__ import annotations

import logging
from typing import List, Optional

from .repository import BackendError, RowNotFoundError
from .status import InvalidTransitionError, StatusAction, available_action, check_transition
from .views import LiveView

logger = logging.getLogger(__name__)


class KitchenView(LiveView):
    """All orders with their items, ordered by pickup time."""

    watched_tables = ("orders", "order_items")

    def __init__(self, store):
        super().__init__(store)
        self.orders: List[dict] = []

    def _fetch(self) -> List[dict]:
        return self._store.fetch_orders_with_items(order_by="pickup_time")

    def _apply(self, data: List[dict]) -> None:
        self.orders = data

    def find_order(self, order_id: str) -> Optional[dict]:
        for order in self.orders:
            if order["id"] == order_id:
                return order
        return None

    def action_for(self, order_id: str) -> Optional[StatusAction]:
        order = self._require(order_id)
        return available_action(order["status"])

    def update_status(self, order_id: str, new_status: str) -> None:
        """Send ``status = new_status`` for the order.

        Only the forward step from the status last read is accepted. The
        working set is not touched; it changes when the update comes back
        through a change notification or the next ``load()``.
        """
        order = self._require(order_id)
        check_transition(order["status"], new_status)
        try:
            updated = self._store.update("orders", {"status": new_status}, {"id": order_id})
        except BackendError as exc:
            logger.error("Error updating order %s status: %s", order_id, exc)
            raise
        if not updated:
            raise RowNotFoundError(f"Order {order_id} no longer exists")
        logger.info("Order %s status updated to %s", order_id, new_status)

    def advance(self, order_id: str) -> str:
        action = self.action_for(order_id)
        if action is None:
            raise InvalidTransitionError(f"Order {order_id} is already picked up")
        self.update_status(order_id, action.target)
        return action.target

    def _require(self, order_id: str) -> dict:
        order = self.find_order(order_id)
        if order is None:
            raise RowNotFoundError(f"Order {order_id} not found")
        return order
