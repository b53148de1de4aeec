"""
Shared pytest configuration: an in-memory Mongo store behind the real Database wrapper,
recording notifiers and small factories for users and events.
"""
import datetime as dt
import os

os.environ.setdefault("SESSION_SECRET_KEY", "test-session-secret")
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from database.DB import Database, EVENTS
from helpers.CredentialStrategy import CredentialStrategy
from main import app
from models.models import Event
from routes.dependencies import get_current_user
from services import accounts
from services.notifications import NotificationDispatcher, NotificationLog
from services.storage import LocalFileStore


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def send(self, to_address, template, data):
        self.sent.append((to_address, template, data))

    def templates(self, to_address=None):
        return [template for address, template, _ in self.sent if to_address in (None, address)]


class FailingNotifier:
    async def send(self, to_address, template, data):
        raise ConnectionError("SMTP server unavailable")


@pytest.fixture(autouse=True)
def fast_credentials(monkeypatch):
    """Full-strength Scrypt is needlessly slow for tests"""
    monkeypatch.setattr(accounts, "credentials", CredentialStrategy(n=2 ** 10))


@pytest.fixture
async def db():
    database = Database(client=AsyncMongoMockClient())
    await database.ensure_indexes()
    return database


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier):
    return NotificationDispatcher(notifier)


@pytest.fixture
def failing_dispatcher():
    return NotificationDispatcher(FailingNotifier())


@pytest.fixture
def logged_dispatcher(db, notifier):
    return NotificationDispatcher(notifier, log=NotificationLog(db))


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def _make_user(name=None, email=None, phone=None, college="IIIT", password="secret123", role=None):
        counter["n"] += 1
        n = counter["n"]
        user = await accounts.create_account(
            db,
            name=name or f"User {n}",
            email=email or f"user{n}@example.com",
            phone=phone or f"90000000{n:02d}",
            college=college,
            password=password,
        )
        if role:
            await db.update("users", {"user_id": user["user_id"]}, {"$set": {"role": role}})
            user["role"] = role
        return user

    return _make_user


@pytest.fixture
def make_event(db):
    async def _make_event(**fields):
        values = {
            "name": "Coding Contest",
            "date": dt.date(2025, 3, 10),
            "time": "10:00 AM",
            "venue": "Main Hall",
        }
        values.update(fields)
        result = await db.add(EVENTS, Event(**values).to_document())
        return result["data"]

    return _make_event


@pytest.fixture
def client(tmp_path):
    """Test client wired to an in-memory store, a recording notifier and a temp upload dir"""
    app.state.db = Database(client=AsyncMongoMockClient())
    app.state.dispatcher = NotificationDispatcher(RecordingNotifier(), log=NotificationLog(app.state.db))
    app.state.file_store = LocalFileStore(str(tmp_path / "uploads"))
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db = None
    app.state.dispatcher = None
    app.state.file_store = None


@pytest.fixture
def login_as():
    """Replace the session identity for the following requests"""
    def _login_as(user, role=None):
        identity = {
            "user_id": user["user_id"],
            "name": user["name"],
            "email": user["email"],
            "role": role or user.get("role", "participant"),
        }
        app.dependency_overrides[get_current_user] = lambda: identity
        return identity

    return _login_as
