"""
Change feed for orders and waiter calls.

Subscribers are told *that* something changed in a table and refetch; the
record passed along is only used to route the event to the right tenant.
"""
import logging
import threading
import uuid
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

EVENT_TYPES = ("INSERT", "UPDATE", "DELETE")
CHANNEL_PREFIX = "realtime:"


class Subscription:
    def __init__(self, hub, table: str, callback: Callable, filter: Optional[Dict] = None):
        self.hub = hub
        self.table = table
        self.callback = callback
        self.filter = filter or {}

    def matches(self, table: str, record: dict) -> bool:
        if table != self.table:
            return False
        return all(str(record.get(k)) == str(v) for k, v in self.filter.items())

    def unsubscribe(self):
        self.hub.unsubscribe(self)


class RealtimeHub:

    def __init__(self, redis=None):
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()
        self._origin = uuid.uuid4().hex
        self._redis = None
        self._listener = None
        if redis is not None:
            self.attach_redis(redis)

    def subscribe(self, table: str, callback: Callable[[str, dict], None], filter: Optional[Dict] = None) -> Subscription:
        subscription = Subscription(self, table, callback, filter)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, table: str, event_type: str, record: dict):
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        self._dispatch(table, event_type, record)
        if self._redis is not None:
            self._redis.publish(
                CHANNEL_PREFIX + table,
                {"origin": self._origin, "event": event_type, "record": record},
            )

    def _dispatch(self, table: str, event_type: str, record: dict):
        with self._lock:
            targets = [s for s in self._subscriptions if s.matches(table, record)]
        for subscription in targets:
            try:
                subscription.callback(event_type, record)
            except Exception:
                logger.exception(f"Realtime subscriber for {table} failed on {event_type}")

    def attach_redis(self, redis):
        """Mirror events through Redis so other worker processes see them too."""
        self._redis = redis
        self._listener = redis.listen(CHANNEL_PREFIX + "*", self._on_redis_message)

    def _on_redis_message(self, channel: str, message: dict):
        if message.get("origin") == self._origin:
            return
        table = channel[len(CHANNEL_PREFIX):]
        self._dispatch(table, message.get("event"), message.get("record") or {})

    def close(self):
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
        with self._lock:
            self._subscriptions.clear()
