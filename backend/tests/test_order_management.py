import pytest

from database import SessionLocal
from errors import InvalidTransitionError, NotFoundError, OwnershipError, ValidationError
from order_management import OrderManagementStore
from realtime import RealtimeHub


def test_create_order_computes_total_and_token(db, restaurant, make_order, recording_hub):
    order = make_order(restaurant, payment_method="mpesa", hub=recording_hub)

    assert order.total_amount == 1400.0
    assert order.owner_id == restaurant.owner_id
    assert (order.payment_status, order.order_status) == ("pending", "pending")
    assert len(order.customer_token) >= 24
    assert recording_hub.events[0][:2] == ("orders", "INSERT")


def test_create_order_rejects_empty_and_zero_quantity(db, restaurant, make_order):
    from order_management import create_order

    with pytest.raises(ValidationError):
        create_order(db, restaurant, [])
    with pytest.raises(ValidationError):
        make_order(restaurant, items=[{"menu_item_id": "x", "name": "X", "quantity": 0, "unit_price": 1.0}])


def test_fetch_orders_only_returns_own_orders_newest_first(restaurant, other_restaurant, make_order):
    first = make_order(restaurant)
    make_order(other_restaurant)
    second = make_order(restaurant)

    orders = OrderManagementStore(restaurant.owner_id, SessionLocal).fetch_orders()

    assert [o["id"] for o in orders] == [second.id, first.id]
    assert len(orders[0]["items"]) == 2


def test_mark_order_paid_sets_both_fields(restaurant, make_order):
    order = make_order(restaurant)
    notified = []
    store = OrderManagementStore(restaurant.owner_id, SessionLocal, notifier=lambda *a: notified.append(a))

    record = store.mark_order_paid(order.id)

    assert record["payment_status"] == "completed"
    assert record["order_status"] == "confirmed"
    assert notified == [(order.id, "confirmed", None)]


def test_mark_paid_keeps_completed_order_completed(restaurant, make_order):
    """Cash collected after the order was served must not reopen it."""
    order = make_order(restaurant)
    store = OrderManagementStore(restaurant.owner_id, SessionLocal)
    store.update_order_status(order.id, "completed")

    record = store.mark_order_paid(order.id)

    assert record["payment_status"] == "completed"
    assert record["order_status"] == "completed"


def test_mark_paid_keeps_order_in_the_kitchen(restaurant, make_order):
    order = make_order(restaurant)
    store = OrderManagementStore(restaurant.owner_id, SessionLocal)
    store.update_order_status(order.id, "preparing")

    assert store.mark_order_paid(order.id)["order_status"] == "preparing"


def test_cancelled_order_cannot_be_marked_paid(restaurant, make_order):
    """A cancelled order stays cancelled and unpaid."""
    order = make_order(restaurant)
    notified = []
    store = OrderManagementStore(restaurant.owner_id, SessionLocal, notifier=lambda *a: notified.append(a))
    store.update_order_status(order.id, "cancelled")
    notified.clear()

    with pytest.raises(InvalidTransitionError):
        store.mark_order_paid(order.id)

    row = store.fetch_orders()[0]
    assert (row["payment_status"], row["order_status"]) == ("pending", "cancelled")
    assert notified == []


def test_status_update_survives_notifier_failure(restaurant, make_order):
    """Push failures are logged, the status change still sticks."""
    order = make_order(restaurant, customer_name="Otieno")

    def broken_notifier(*args):
        raise RuntimeError("push service down")

    store = OrderManagementStore(restaurant.owner_id, SessionLocal, notifier=broken_notifier)
    record = store.update_order_status(order.id, "preparing")

    assert record["order_status"] == "preparing"
    assert store.fetch_orders()[0]["order_status"] == "preparing"


def test_other_owner_cannot_touch_order(restaurant, other_owner, make_order):
    order = make_order(restaurant)
    store = OrderManagementStore(other_owner.id, SessionLocal)

    with pytest.raises(OwnershipError):
        store.update_order_status(order.id, "preparing")
    with pytest.raises(OwnershipError):
        store.mark_order_paid(order.id)
    with pytest.raises(NotFoundError):
        store.update_table_number(9999, "4")


def test_terminal_orders_stay_terminal(restaurant, make_order):
    order = make_order(restaurant)
    store = OrderManagementStore(restaurant.owner_id, SessionLocal)
    store.update_order_status(order.id, "cancelled")

    with pytest.raises(InvalidTransitionError):
        store.update_order_status(order.id, "preparing")


def test_table_number_blank_clears(restaurant, make_order):
    order = make_order(restaurant, table_number="5")
    store = OrderManagementStore(restaurant.owner_id, SessionLocal)

    assert store.update_table_number(order.id, " 12 ")["table_number"] == "12"
    assert store.update_table_number(order.id, "   ")["table_number"] is None


def test_subscription_refetches_on_change(restaurant, other_restaurant, make_order):
    """Any change for the restaurant triggers a full refetch; other restaurants are ignored."""
    hub = RealtimeHub()
    store = OrderManagementStore(restaurant.owner_id, SessionLocal, hub=hub)
    store.subscribe()
    assert store.orders == []

    make_order(restaurant, hub=hub)
    assert len(store.orders) == 1

    make_order(other_restaurant, hub=hub)
    assert len(store.orders) == 1

    updater = OrderManagementStore(restaurant.owner_id, SessionLocal, hub=hub)
    updater.update_order_status(store.orders[0]["id"], "confirmed")
    assert store.orders[0]["order_status"] == "confirmed"

    store.close()
    make_order(restaurant, hub=hub)
    assert len(store.orders) == 1
