import logging
from typing import Callable, List, Optional

import models
from errors import InvalidTransitionError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

WAITER_CALLS_TABLE = "waiter_calls"
CALL_STATUSES = ("pending", "acknowledged", "completed")


def call_record(call: models.WaiterCall) -> dict:
    return {
        "id": call.id,
        "restaurant_id": call.restaurant_id,
        "table_number": call.table_number,
        "customer_name": call.customer_name,
        "notes": call.notes,
        "status": call.status,
        "created_at": call.created_at,
        "updated_at": call.updated_at,
        "acknowledged_at": call.acknowledged_at,
        "completed_at": call.completed_at,
    }


class WaiterCallChannel:
    """Customers ring for a waiter; staff see the calls arrive and work them off."""

    def __init__(self, restaurant_id: int, session_factory, hub=None):
        self.restaurant_id = restaurant_id
        self.session_factory = session_factory
        self.hub = hub
        self.calls: List[dict] = []
        self._subscription = None
        self._on_insert: Optional[Callable[[dict], None]] = None

    def create_call(self, table_number: Optional[str], notes: Optional[str] = None,
                    customer_name: Optional[str] = None) -> dict:
        table_number = (table_number or "").strip()
        if not table_number:
            raise ValidationError("Table number is required")

        db = self.session_factory()
        try:
            call = models.WaiterCall(
                restaurant_id=self.restaurant_id,
                table_number=table_number,
                customer_name=(customer_name or "").strip() or None,
                notes=(notes or "").strip() or None,
                status="pending",
            )
            db.add(call)
            db.commit()
            db.refresh(call)
            record = call_record(call)
        finally:
            db.close()

        logger.info(f"Waiter called to table {table_number} at restaurant {self.restaurant_id}")
        if self.hub is not None:
            self.hub.publish(WAITER_CALLS_TABLE, "INSERT", record)
        return record

    def update_status(self, call_id: int, status: str) -> dict:
        if status not in ("acknowledged", "completed"):
            raise ValidationError("Status must be either 'acknowledged' or 'completed'")

        db = self.session_factory()
        try:
            call = db.query(models.WaiterCall).filter(
                models.WaiterCall.id == call_id,
                models.WaiterCall.restaurant_id == self.restaurant_id,
            ).first()
            if not call:
                raise NotFoundError("Waiter call not found")
            if CALL_STATUSES.index(status) < CALL_STATUSES.index(call.status):
                raise InvalidTransitionError(f"Waiter call is already {call.status}")

            now = models.utcnow()
            call.status = status
            if status == "acknowledged":
                call.acknowledged_at = now
            else:
                call.completed_at = now
            db.commit()
            db.refresh(call)
            record = call_record(call)
        finally:
            db.close()

        if self.hub is not None:
            self.hub.publish(WAITER_CALLS_TABLE, "UPDATE", record)
        return record

    def fetch_calls(self) -> List[dict]:
        db = self.session_factory()
        try:
            rows = (
                db.query(models.WaiterCall)
                .filter(models.WaiterCall.restaurant_id == self.restaurant_id)
                .order_by(models.WaiterCall.created_at.desc(), models.WaiterCall.id.desc())
                .all()
            )
            self.calls = [call_record(c) for c in rows]
        finally:
            db.close()
        return self.calls

    @property
    def pending_calls(self) -> List[dict]:
        return [c for c in self.calls if c["status"] == "pending"]

    @property
    def acknowledged_calls(self) -> List[dict]:
        return [c for c in self.calls if c["status"] == "acknowledged"]

    @property
    def completed_calls(self) -> List[dict]:
        return [c for c in self.calls if c["status"] == "completed"]

    def subscribe(self, on_insert: Optional[Callable[[dict], None]] = None):
        """Keep ``calls`` current; ``on_insert`` fires for every new call (staff alert)."""
        self._on_insert = on_insert
        if self.hub is None or self._subscription is not None:
            return self._subscription
        self._subscription = self.hub.subscribe(
            WAITER_CALLS_TABLE, self._on_change, filter={"restaurant_id": self.restaurant_id}
        )
        return self._subscription

    def _on_change(self, event_type: str, record: dict):
        self.fetch_calls()
        if event_type == "INSERT" and self._on_insert is not None:
            self._on_insert(record)

    def close(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
