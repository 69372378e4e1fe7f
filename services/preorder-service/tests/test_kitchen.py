from __future__ import annotations

import pytest

from preorder_service.kitchen import KitchenView
from preorder_service.repository import BackendError, RowNotFoundError
from preorder_service.status import InvalidTransitionError


@pytest.fixture()
def order(store, meals):
    (row,) = store.insert(
        "orders",
        [{"user_name": "Ada", "room_number": "204", "pickup_time": "2030-05-01T12:30:00+00:00"}],
    )
    store.insert("order_items", [{"order_id": row["id"], "meal_id": meals[0]["id"], "quantity": 2}])
    return row


def test_activate_loads_orders_with_items(store, order):
    with KitchenView(store) as view:
        assert view.active
        (loaded,) = view.orders
        assert loaded["status"] == "pending"
        assert loaded["order_items"][0]["meal"]["name"] == "Pasta"
    assert not view.active
    assert store.feed.subscriber_count("orders") == 0


def test_status_moves_forward_through_every_stage(store, order):
    with KitchenView(store) as view:
        for expected in ("preparing", "ready", "picked_up"):
            assert view.advance(order["id"]) == expected
            assert view.find_order(order["id"])["status"] == expected

        assert view.action_for(order["id"]) is None
        with pytest.raises(InvalidTransitionError):
            view.advance(order["id"])


def test_update_status_rejects_skips(store, order):
    with KitchenView(store) as view:
        with pytest.raises(InvalidTransitionError):
            view.update_status(order["id"], "ready")
    assert store.get("orders", order["id"])["status"] == "pending"


def test_inactive_view_waits_for_refetch(store, order):
    view = KitchenView(store)
    view.load()

    view.update_status(order["id"], "preparing")

    assert view.find_order(order["id"])["status"] == "pending"
    view.load()
    assert view.find_order(order["id"])["status"] == "preparing"


def test_failed_update_keeps_displayed_status(flaky_store, order):
    with KitchenView(flaky_store) as view:
        flaky_store.failing_updates.add("orders")
        with pytest.raises(BackendError):
            view.update_status(order["id"], "preparing")
        assert view.find_order(order["id"])["status"] == "pending"


def test_unknown_order(store, order):
    with KitchenView(store) as view:
        with pytest.raises(RowNotFoundError):
            view.advance("missing")


def test_new_order_notification_triggers_refetch(store, meals):
    refreshes = []
    with KitchenView(store) as view:
        view.add_listener(lambda current: refreshes.append(len(current.orders)))
        (row,) = store.insert(
            "orders",
            [{"user_name": "Bo", "room_number": "7", "pickup_time": "2030-05-01T09:00:00+00:00"}],
        )
        store.insert("order_items", [{"order_id": row["id"], "meal_id": meals[1]["id"], "quantity": 1}])

        assert refreshes == [1, 1]
        assert view.orders[0]["order_items"][0]["quantity"] == 1


def test_failed_refetch_keeps_previous_orders(flaky_store, order):
    with KitchenView(flaky_store) as view:
        flaky_store.fail_reads = True
        flaky_store.update("orders", {"status": "preparing"}, {"id": order["id"]})

        assert view.orders[0]["status"] == "pending"
        assert view.last_error is not None
