"""
Orders as the restaurant owner sees them.

Every write is scoped to the owner, and every change is announced on the
realtime hub. Subscribed stores reload the whole list instead of patching it.
"""
import logging
import secrets
from typing import Callable, List, Optional

from sqlalchemy.orm import Session, selectinload

import models
from errors import InvalidTransitionError, NotFoundError, OwnershipError, ValidationError
from order_status import apply_payment_outcome, check_order_transition

logger = logging.getLogger(__name__)

ORDERS_TABLE = "orders"


def order_record(order: models.Order) -> dict:
    """Flat dict of an order, used for realtime events and API responses."""
    return {
        "id": order.id,
        "customer_token": order.customer_token,
        "restaurant_id": order.restaurant_id,
        "owner_id": order.owner_id,
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "order_type": order.order_type,
        "scheduled_time": order.scheduled_time,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "order_status": order.order_status,
        "total_amount": order.total_amount,
        "table_number": order.table_number,
        "gateway_reference": order.gateway_reference,
        "notes": order.notes,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


def create_order(db: Session, restaurant: models.Restaurant, items: list, order_type: str = "now",
                 payment_method: Optional[str] = None, customer_name: Optional[str] = None,
                 customer_phone: Optional[str] = None, scheduled_time: Optional[str] = None,
                 table_number: Optional[str] = None, notes: Optional[str] = None,
                 hub=None) -> models.Order:
    """Checkout: turn submitted cart lines into an order with a fresh customer token."""
    if not items:
        raise ValidationError("Cannot create an order without items")
    if order_type not in ("now", "later"):
        raise ValidationError("Order type must be either 'now' or 'later'")
    for item in items:
        if item["quantity"] < 1:
            raise ValidationError("Quantity must be at least 1")

    order = models.Order(
        customer_token=secrets.token_urlsafe(24),
        restaurant_id=restaurant.id,
        owner_id=restaurant.owner_id,
        customer_name=customer_name,
        customer_phone=customer_phone,
        order_type=order_type,
        scheduled_time=scheduled_time,
        payment_method=payment_method,
        payment_status="pending",
        order_status="pending",
        total_amount=round(sum(i["unit_price"] * i["quantity"] for i in items), 2),
        table_number=(table_number or "").strip() or None,
        notes=notes,
    )
    for item in items:
        order.items.append(models.OrderItem(
            menu_item_id=str(item["menu_item_id"]),
            name=item["name"],
            quantity=item["quantity"],
            unit_price=item["unit_price"],
            customizations=item.get("customizations"),
            special_instructions=item.get("special_instructions"),
        ))

    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info(f"Order {order.id} created for restaurant {restaurant.id}, total {order.total_amount}")

    if hub is not None:
        hub.publish(ORDERS_TABLE, "INSERT", order_record(order))
    return order


class OrderManagementStore:

    def __init__(self, owner_id: int, session_factory, hub=None,
                 notifier: Optional[Callable] = None):
        self.owner_id = owner_id
        self.session_factory = session_factory
        self.hub = hub
        self.notifier = notifier
        self.orders: List[dict] = []
        self._subscription = None

    def fetch_orders(self) -> List[dict]:
        db = self.session_factory()
        try:
            rows = (
                db.query(models.Order)
                .options(selectinload(models.Order.items))
                .filter(models.Order.owner_id == self.owner_id)
                .order_by(models.Order.created_at.desc(), models.Order.id.desc())
                .all()
            )
            self.orders = [
                {**order_record(o), "items": [_item_record(i) for i in o.items]}
                for o in rows
            ]
        finally:
            db.close()
        return self.orders

    def _owned_order(self, db: Session, order_id: int) -> models.Order:
        order = db.query(models.Order).filter(models.Order.id == order_id).first()
        if not order:
            raise NotFoundError("Order not found")
        if order.owner_id != self.owner_id:
            raise OwnershipError("You can only manage your own restaurant's orders")
        return order

    def _commit_and_announce(self, db: Session, order: models.Order) -> dict:
        db.commit()
        db.refresh(order)
        record = order_record(order)
        if self.hub is not None:
            self.hub.publish(ORDERS_TABLE, "UPDATE", record)
        return record

    def _notify(self, record: dict):
        if self.notifier is None:
            return
        try:
            self.notifier(record["id"], record["order_status"], record.get("customer_name"))
        except Exception:
            # the status change is already committed
            logger.exception(f"Order status notification failed for order {record['id']}")

    def update_order_status(self, order_id: int, status: str) -> dict:
        db = self.session_factory()
        try:
            order = self._owned_order(db, order_id)
            check_order_transition(order, status)
            order.order_status = status
            record = self._commit_and_announce(db, order)
        finally:
            db.close()
        logger.info(f"Order {order_id} status changed to {status}")
        self._notify(record)
        return record

    def mark_order_paid(self, order_id: int) -> dict:
        """Staff confirm an offline payment. Pending orders become confirmed,
        orders already further along keep their status."""
        db = self.session_factory()
        try:
            order = self._owned_order(db, order_id)
            if order.order_status == "cancelled":
                raise InvalidTransitionError("A cancelled order cannot be marked as paid")
            apply_payment_outcome(order, "completed")
            record = self._commit_and_announce(db, order)
        finally:
            db.close()
        logger.info(f"Order {order_id} marked as paid")
        self._notify(record)
        return record

    def update_table_number(self, order_id: int, value: Optional[str]) -> dict:
        db = self.session_factory()
        try:
            order = self._owned_order(db, order_id)
            order.table_number = (value or "").strip() or None
            return self._commit_and_announce(db, order)
        finally:
            db.close()

    def subscribe(self):
        if self.hub is None or self._subscription is not None:
            return self._subscription
        self._subscription = self.hub.subscribe(
            ORDERS_TABLE, self._on_change, filter={"owner_id": self.owner_id}
        )
        return self._subscription

    def _on_change(self, event_type: str, record: dict):
        logger.debug(f"Order {record.get('id')} {event_type}, refreshing")
        self.fetch_orders()

    def close(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None


def _item_record(item: models.OrderItem) -> dict:
    return {
        "id": item.id,
        "menu_item_id": item.menu_item_id,
        "name": item.name,
        "quantity": item.quantity,
        "unit_price": item.unit_price,
        "customizations": item.customizations,
        "special_instructions": item.special_instructions,
    }
