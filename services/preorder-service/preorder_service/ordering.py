from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from .cart import Cart
from .repository import BackendError, TableStore
from .views import LiveView

logger = logging.getLogger(__name__)


class OrderValidationError(Exception):
    """Raised when an order is submitted with missing fields or an empty cart."""


class OrderItemsError(BackendError):
    """Raised when the order row was stored but its items were not.

    The order identified by ``order_id`` stays in the database without items.
    """

    def __init__(self, order_id: str, cause: BackendError):
        super().__init__(f"Order {order_id} was created but its items could not be stored: {cause}")
        self.order_id = order_id


@dataclass
class OrderForm:
    user_name: str = ""
    room_number: str = ""
    pickup_time: str = ""
    special_instructions: str = ""

    def missing_fields(self) -> List[str]:
        return [
            name
            for name in ("user_name", "room_number", "pickup_time")
            if not str(getattr(self, name) or "").strip()
        ]

    def reset(self) -> None:
        self.user_name = ""
        self.room_number = ""
        self.pickup_time = ""
        self.special_instructions = ""


def normalize_pickup_time(value: str | datetime) -> str:
    """Return ``value`` as a UTC ISO-8601 string; naive times are taken as local time."""
    if isinstance(value, datetime):
        moment = value
    else:
        text = value.strip()
        if text[-1:] in ("Z", "z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            raise OrderValidationError(f"Pickup time is not a valid date/time: {value!r}") from None
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment.astimezone(timezone.utc).isoformat()


def place_order(store: TableStore, form: OrderForm, cart: Cart) -> dict:
    """Create the order row and then its item rows; return the order with ``order_items``.

    The two writes are independent. When the second one fails the order row
    remains and ``OrderItemsError`` is raised.
    """
    missing = form.missing_fields()
    if missing:
        raise OrderValidationError(f"Please fill in all required fields: {', '.join(missing)}")
    if len(cart) == 0:
        raise OrderValidationError("Your cart is empty")
    pickup_time = normalize_pickup_time(form.pickup_time)

    instructions = (form.special_instructions or "").strip() or None
    (order,) = store.insert(
        "orders",
        [
            {
                "user_name": form.user_name.strip(),
                "room_number": form.room_number.strip(),
                "pickup_time": pickup_time,
                "special_instructions": instructions,
                "status": "pending",
            }
        ],
    )

    lines = [
        {"order_id": order["id"], "meal_id": item.meal_id, "quantity": item.quantity}
        for item in cart
    ]
    try:
        items = store.insert("order_items", lines)
    except BackendError as exc:
        logger.error("Order %s stored without items: %s", order["id"], exc)
        raise OrderItemsError(order["id"], exc) from exc

    logger.info(
        "Order %s placed for %s (room %s) with %d item(s), total %.2f",
        order["id"],
        order["user_name"],
        order["room_number"],
        len(items),
        cart.get_total_price(),
    )
    order["order_items"] = items
    return order


class OrderingView(LiveView):
    """Available meals, the cart and the order form of one customer session."""

    def __init__(self, store: TableStore):
        super().__init__(store)
        self.meals: List[dict] = []
        self.cart = Cart()
        self.form = OrderForm()

    def _fetch(self) -> List[dict]:
        return self._store.select("meals", filters={"available": True})

    def _apply(self, data: List[dict]) -> None:
        self.meals = data

    def find_meal(self, meal_id: str) -> Optional[dict]:
        for meal in self.meals:
            if meal["id"] == meal_id:
                return meal
        return None

    def add_to_cart(self, meal: dict, quantity: int = 1) -> None:
        self.cart.add_to_cart(meal, quantity)

    def update_quantity(self, meal_id: str, delta: int) -> None:
        self.cart.update_quantity(meal_id, delta)

    def get_total_price(self) -> float:
        return self.cart.get_total_price()

    def place_order(self) -> dict:
        try:
            order = place_order(self._store, self.form, self.cart)
        except OrderValidationError as exc:
            logger.info("Order rejected: %s", exc)
            raise
        except BackendError as exc:
            logger.error("Error placing order: %s", exc)
            raise
        self.cart.clear()
        self.form.reset()
        return order
