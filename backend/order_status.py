"""
Status rules shared by every writer of an order.

Payment outcomes arrive from two places that race each other: the provider
webhook and the customer's verification call. Both go through
``apply_payment_outcome`` which only ever moves an order forward, so whichever
lands last cannot undo a completed payment.
"""
import logging

from errors import InvalidTransitionError, ValidationError

logger = logging.getLogger(__name__)

PAYMENT_STATUSES = ("pending", "failed", "completed")
ORDER_STATUSES = ("pending", "confirmed", "preparing", "ready", "completed", "cancelled")
TERMINAL_ORDER_STATUSES = ("completed", "cancelled")
PAID_ORDER_STATUSES = ("confirmed", "preparing", "ready", "completed")

# "paid" is what the customer-side verification sends
PAYMENT_STATUS_ALIASES = {"paid": "completed"}

_PAYMENT_RANK = {"pending": 0, "failed": 1, "completed": 2}


def normalize_payment_status(value: str) -> str:
    status = PAYMENT_STATUS_ALIASES.get(value, value)
    if status not in PAYMENT_STATUSES:
        raise ValidationError(f"Unknown payment status: {value}")
    return status


def apply_payment_outcome(order, payment_status: str) -> bool:
    """Merge a payment outcome into ``order``. Returns True if anything changed."""
    new_status = normalize_payment_status(payment_status)
    current = order.payment_status or "pending"

    if _PAYMENT_RANK[new_status] < _PAYMENT_RANK[current] or current == "completed":
        if new_status != current:
            logger.info(
                f"Ignoring payment status {new_status} for order {order.id}: already {current}"
            )
        changed = False
    else:
        changed = new_status != current
        order.payment_status = new_status

    if order.payment_status == "completed":
        if order.order_status == "pending":
            order.order_status = "confirmed"
            changed = True
        elif order.order_status == "cancelled":
            logger.warning(f"Order {order.id} was paid after it had been cancelled")

    return changed


def check_order_transition(order, new_status: str) -> None:
    """Reject staff status changes the order cannot take."""
    if new_status not in ORDER_STATUSES:
        raise ValidationError(f"Unknown order status: {new_status}")
    if new_status == order.order_status:
        return
    if order.order_status in TERMINAL_ORDER_STATUSES:
        raise InvalidTransitionError(f"Order is already {order.order_status}")
    if new_status == "pending" and order.payment_status == "completed":
        raise InvalidTransitionError("A paid order cannot go back to pending")
