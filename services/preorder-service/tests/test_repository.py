from __future__ import annotations

import sqlite3

import pytest

from preorder_service.database import SEED_MEALS, seed_if_empty
from preorder_service.repository import BackendError, RowNotFoundError


def test_insert_assigns_id_and_timestamp(store):
    (meal,) = store.insert("meals", [{"name": "Pasta", "price": 12.0}])

    assert meal["id"]
    assert meal["created_at"]
    assert meal["available"] is True
    assert meal["description"] == ""
    assert store.get("meals", meal["id"]) == meal


def test_select_filters_and_orders(store, meals):
    available = store.select("meals", filters={"available": True}, order_by="name")
    assert [meal["name"] for meal in available] == ["Pasta", "Salad"]

    descending = store.select("meals", order_by="price", ascending=False)
    assert [meal["price"] for meal in descending] == [12.0, 8.5, 5.0]


def test_select_rejects_unknown_names(store):
    with pytest.raises(ValueError):
        store.select("payments")
    with pytest.raises(ValueError):
        store.select("meals", filters={"name; DROP TABLE meals": 1})


def test_get_missing_row(store):
    with pytest.raises(RowNotFoundError):
        store.get("orders", "does-not-exist")


def test_insert_batch_is_all_or_nothing(store, meals):
    (order,) = store.insert(
        "orders",
        [{"user_name": "Ada", "room_number": "101", "pickup_time": "2030-01-01T12:00:00+00:00"}],
    )
    with pytest.raises(BackendError):
        store.insert(
            "order_items",
            [
                {"order_id": order["id"], "meal_id": meals[0]["id"], "quantity": 1},
                {"order_id": order["id"], "meal_id": "no-such-meal", "quantity": 1},
            ],
        )
    assert store.select("order_items") == []


def test_update_returns_rows_and_publishes(store, meals):
    events = []
    store.feed.subscribe("meals", events.append)

    updated = store.update("meals", {"available": False}, {"id": meals[0]["id"]})

    assert [row["available"] for row in updated] == [False]
    assert [(event.table, event.event_type) for event in events] == [("meals", "UPDATE")]
    assert events[0].record["id"] == meals[0]["id"]


def test_update_without_match_changes_nothing(store, meals):
    assert store.update("meals", {"available": False}, {"id": "missing"}) == []


def test_fetch_orders_with_items_nests_items_and_meals(store, meals):
    late, early = store.insert(
        "orders",
        [
            {"user_name": "Bo", "room_number": "2", "pickup_time": "2030-01-01T13:00:00+00:00"},
            {"user_name": "Al", "room_number": "1", "pickup_time": "2030-01-01T11:00:00+00:00"},
        ],
    )
    store.insert(
        "order_items",
        [
            {"order_id": early["id"], "meal_id": meals[0]["id"], "quantity": 2},
            {"order_id": early["id"], "meal_id": meals[1]["id"], "quantity": 1},
        ],
    )

    orders = store.fetch_orders_with_items()

    assert [order["user_name"] for order in orders] == ["Al", "Bo"]
    assert orders[1]["order_items"] == []
    items = {item["meal"]["name"]: item["quantity"] for item in orders[0]["order_items"]}
    assert items == {"Pasta": 2, "Salad": 1}


def test_connection_failure_is_wrapped(tmp_path):
    from preorder_service.repository import TableStore

    def broken_factory():
        raise sqlite3.OperationalError("unable to open database file")

    with pytest.raises(BackendError):
        TableStore(connection_factory=broken_factory).select("meals")


def test_seed_if_empty_runs_once(connection_factory, store):
    conn = connection_factory()
    try:
        seed_if_empty(conn)
        seed_if_empty(conn)
    finally:
        conn.close()
    assert len(store.select("meals")) == len(SEED_MEALS)
