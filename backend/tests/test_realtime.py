import pytest

from realtime import CHANNEL_PREFIX, RealtimeHub


def test_filter_matches_on_columns():
    hub = RealtimeHub()
    seen = []
    hub.subscribe("orders", lambda event, record: seen.append((event, record["id"])), filter={"owner_id": 1})

    hub.publish("orders", "INSERT", {"id": 10, "owner_id": 1})
    hub.publish("orders", "INSERT", {"id": 11, "owner_id": 2})
    hub.publish("waiter_calls", "INSERT", {"id": 12, "owner_id": 1})

    assert seen == [("INSERT", 10)]


def test_failing_subscriber_does_not_block_others():
    """One broken listener must not starve the rest."""
    hub = RealtimeHub()
    seen = []

    def broken(event, record):
        raise RuntimeError("boom")

    hub.subscribe("orders", broken)
    hub.subscribe("orders", lambda event, record: seen.append(event))
    hub.publish("orders", "UPDATE", {"id": 1})

    assert seen == ["UPDATE"]


def test_unknown_event_type():
    with pytest.raises(ValueError):
        RealtimeHub().publish("orders", "UPSERT", {})


def test_unsubscribe():
    hub = RealtimeHub()
    seen = []
    sub = hub.subscribe("orders", lambda event, record: seen.append(event))
    sub.unsubscribe()
    hub.publish("orders", "INSERT", {"id": 1})
    assert seen == []


class FakeRedis:
    def __init__(self):
        self.published = []
        self.handler = None

    def publish(self, channel, message):
        self.published.append((channel, message))
        return True

    def listen(self, pattern, handler):
        self.handler = handler
        return None


def test_events_are_mirrored_and_remote_ones_dispatched():
    """Local events go out on redis; events from other workers come back in."""
    redis = FakeRedis()
    hub = RealtimeHub(redis)
    seen = []
    hub.subscribe("orders", lambda event, record: seen.append(record["id"]))

    hub.publish("orders", "INSERT", {"id": 1})
    channel, message = redis.published[0]
    assert channel == CHANNEL_PREFIX + "orders"

    # own message echoed back by redis is ignored
    redis.handler(channel, message)
    redis.handler(channel, {"origin": "other-worker", "event": "UPDATE", "record": {"id": 2}})

    assert seen == [1, 2]
