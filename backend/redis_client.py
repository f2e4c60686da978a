"""
Redis access: cart storage, rate limiting and realtime fan-out
"""
import os
import json
import logging
import redis
from typing import Optional, Any, Callable, Tuple

logger = logging.getLogger(__name__)


class RedisClient:
    """Thin wrapper that turns every Redis failure into a soft miss"""

    def __init__(self, client=None):
        """Connect to Redis (or adopt an already built client)"""
        if client is not None:
            self.client = client
            return

        self.redis_host = os.getenv("REDIS_HOST", "redis")
        redis_port_env = os.getenv("REDIS_SERVICE_PORT") or os.getenv("REDIS_PORT") or "6379"
        self.redis_port = int(str(redis_port_env).split(":")[-1])

        try:
            self.client = redis.Redis(
                host=self.redis_host,
                port=self.redis_port,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
            self.client.ping()
        except redis.RedisError as e:
            logger.warning(f"Could not connect to Redis: {e}")
            self.client = None

    def is_available(self) -> bool:
        if not self.client:
            return False
        try:
            self.client.ping()
            return True
        except redis.RedisError:
            return False

    # ========== Key/value ==========

    def get(self, key: str) -> Optional[str]:
        if not self.is_available():
            return None
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            logger.warning(f"Error reading {key} from Redis: {e}")
            return None

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        if not self.is_available():
            return False
        try:
            if ttl:
                self.client.setex(key, ttl, value)
            else:
                self.client.set(key, value)
            return True
        except redis.RedisError as e:
            logger.warning(f"Error writing {key} to Redis: {e}")
            return False

    def delete(self, *keys: str) -> bool:
        if not self.is_available():
            return False
        try:
            self.client.delete(*keys)
            return True
        except redis.RedisError as e:
            logger.warning(f"Error deleting {keys} from Redis: {e}")
            return False

    # ========== Rate Limiting ==========

    def check_rate_limit(self, key: str, max_requests: int = 10, window: int = 60) -> Tuple[bool, int]:
        """
        Fixed-window counter.
        Returns (allowed, remaining requests)
        """
        if not self.is_available():
            return True, max_requests  # no Redis, no limit

        try:
            current = self.client.incr(key)
            if current == 1:
                self.client.expire(key, window)

            remaining = max(0, max_requests - current)
            allowed = current <= max_requests

            return allowed, remaining
        except redis.RedisError as e:
            logger.warning(f"Rate limit check failed: {e}")
            return True, max_requests

    # ========== Pub/Sub ==========

    def publish(self, channel: str, message: Any) -> bool:
        if not self.is_available():
            return False
        try:
            self.client.publish(channel, json.dumps(message, default=str))
            return True
        except redis.RedisError as e:
            logger.warning(f"Error publishing to {channel}: {e}")
            return False

    def listen(self, pattern: str, handler: Callable[[str, dict], None]):
        """
        Run handler(channel, message) for every message on channels matching pattern.
        Returns the worker thread, or None when Redis is unavailable.
        """
        if not self.is_available():
            return None

        def on_message(raw):
            try:
                handler(raw["channel"], json.loads(raw["data"]))
            except (ValueError, TypeError) as e:
                logger.warning(f"Dropping malformed message on {raw.get('channel')}: {e}")

        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        pubsub.psubscribe(**{pattern: on_message})
        return pubsub.run_in_thread(sleep_time=0.5, daemon=True)


redis_client = RedisClient()
