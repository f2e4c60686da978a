import os

# must be set before database/auth/redis_client are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-for-pytest"
os.environ["REDIS_HOST"] = "127.0.0.1"
os.environ["REDIS_PORT"] = "1"
os.environ.pop("VAPID_PRIVATE_KEY", None)

import pytest

import auth
import models
from database import Base, SessionLocal, engine
from order_management import create_order


class FakeFunctions:
    """Stands in for FunctionsClient: canned answers per function name."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    def invoke(self, name, body):
        self.calls.append((name, body))
        answer = self.responses[name]
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            return answer(body)
        return answer

    def called(self, name):
        return [body for fn, body in self.calls if fn == name]


class RecordingHub:
    """Hub double that only remembers what was published."""

    def __init__(self):
        self.events = []

    def publish(self, table, event_type, record):
        self.events.append((table, event_type, record))


@pytest.fixture(autouse=True)
def tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def owner(db):
    user = models.User(username="mama_oliech", password=auth.get_password_hash("secret-pass"), role="owner")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def other_owner(db):
    user = models.User(username="java_house", password=auth.get_password_hash("secret-pass"), role="owner")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def restaurant(db, owner):
    r = models.Restaurant(name="Mama Oliech", owner_id=owner.id)
    db.add(r)
    db.commit()
    db.refresh(r)
    return r


@pytest.fixture
def other_restaurant(db, other_owner):
    r = models.Restaurant(name="Java House", owner_id=other_owner.id)
    db.add(r)
    db.commit()
    db.refresh(r)
    return r


@pytest.fixture
def make_order(db):
    def _make(restaurant, **kwargs):
        items = kwargs.pop("items", None) or [
            {"menu_item_id": "fish-1", "name": "Tilapia", "quantity": 2, "unit_price": 650.0},
            {"menu_item_id": "ugali-1", "name": "Ugali", "quantity": 1, "unit_price": 100.0},
        ]
        return create_order(db, restaurant, items, **kwargs)
    return _make


@pytest.fixture
def fake_functions():
    return FakeFunctions


@pytest.fixture
def recording_hub():
    return RecordingHub()
