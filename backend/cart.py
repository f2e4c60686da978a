"""
Customer cart for one restaurant.

Line items are keyed by (menu item id, customizations); the whole cart is
written back to storage after every change and read again on construction.
"""
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, asdict, field
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class CartItem:
    id: str
    name: str
    price: float
    quantity: int = 1
    customizations: Optional[str] = None
    special_instructions: Optional[str] = None

    @property
    def key(self):
        return (self.id, self.customizations)

    @property
    def line_total(self) -> float:
        return self.price * self.quantity


# ========== Storage backends ==========

class CartStorage:
    """String key/value store the cart persists into."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryStorage(CartStorage):

    def __init__(self):
        self.data: Dict[str, str] = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def delete(self, key):
        self.data.pop(key, None)


class FileStorage(CartStorage):
    """All keys in one JSON document on disk."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except ValueError:
            logger.warning(f"Cart file {self.path} is corrupted, starting over")
            return {}

    def _write(self, data: Dict[str, str]):
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)

    def get(self, key):
        with self._lock:
            return self._read().get(key)

    def set(self, key, value):
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key):
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)


class RedisStorage(CartStorage):

    def __init__(self, redis, ttl: Optional[int] = None):
        self.redis = redis
        self.ttl = ttl

    def get(self, key):
        return self.redis.get(key)

    def set(self, key, value):
        self.redis.set(key, value, ttl=self.ttl)

    def delete(self, key):
        self.redis.delete(key)


# ========== Cart ==========

@dataclass
class CustomerInfo:
    name: str = ""
    phone: str = ""
    preferred_time: str = ""


class CartStore:

    def __init__(self, restaurant_id, storage: CartStorage):
        self.restaurant_id = str(restaurant_id)
        self.storage = storage
        self.order_type = "now"
        self.customer_info = CustomerInfo()
        self._items: List[CartItem] = self._load()

    @property
    def storage_key(self) -> str:
        return f"cart_{self.restaurant_id}"

    @property
    def items(self) -> List[CartItem]:
        return [CartItem(**asdict(item)) for item in self._items]

    def _load(self) -> List[CartItem]:
        raw = self.storage.get(self.storage_key)
        if not raw:
            return []
        try:
            return [CartItem(**entry) for entry in json.loads(raw)]
        except (ValueError, TypeError) as e:
            logger.warning(f"Discarding unreadable cart for restaurant {self.restaurant_id}: {e}")
            self.storage.delete(self.storage_key)
            return []

    def _save(self):
        if self._items:
            self.storage.set(self.storage_key, json.dumps([asdict(item) for item in self._items]))
        else:
            self.storage.delete(self.storage_key)

    def _find(self, item_id, customizations) -> Optional[CartItem]:
        for item in self._items:
            if item.key == (item_id, customizations):
                return item
        return None

    def add_to_cart(self, item: CartItem):
        existing = self._find(item.id, item.customizations)
        if existing:
            existing.quantity += 1
        else:
            self._items.append(CartItem(
                id=item.id,
                name=item.name,
                price=item.price,
                quantity=1,
                customizations=item.customizations,
                special_instructions=item.special_instructions,
            ))
        self._save()

    def remove_from_cart(self, item_id, customizations=None):
        self._items = [item for item in self._items if item.key != (item_id, customizations)]
        self._save()

    def update_quantity(self, item_id, quantity: int, customizations=None):
        if quantity <= 0:
            self.remove_from_cart(item_id, customizations)
            return
        existing = self._find(item_id, customizations)
        if existing:
            existing.quantity = quantity
            self._save()

    def clear_cart(self):
        self._items = []
        self.storage.delete(self.storage_key)

    def get_cart_total(self) -> float:
        return sum(item.line_total for item in self._items)

    def get_cart_count(self) -> int:
        return sum(item.quantity for item in self._items)

    def set_order_type(self, order_type: str):
        if order_type not in ("now", "later"):
            raise ValueError("Order type must be either 'now' or 'later'")
        self.order_type = order_type

    def get_order_details(self) -> dict:
        details = {
            "items": [asdict(item) for item in self._items],
            "total": self.get_cart_total(),
            "order_type": self.order_type,
            "restaurant_id": self.restaurant_id,
        }
        if self.order_type == "later":
            details["customer_name"] = self.customer_info.name
            details["customer_phone"] = self.customer_info.phone
            details["preferred_time"] = self.customer_info.preferred_time
        return details
