"""
Pytest configuration and fixtures for gateway tests.
"""

import os

# Settings are read once at import time; pin them before anything imports shared.config
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("ALLOW_MOCK_TOKENS", "true")
os.environ.setdefault("PERSISTENCE_ENABLED", "false")
os.environ.setdefault("MIN_GROUP_MEMBERS", "3")
os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-long-enough-for-hs256")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.websockets import WebSocketState

from shared.models import Base
from circle_gateway.components.connection.index import SocketUserIndex
from circle_gateway.components.connection.registry import ConnectionRegistry
from circle_gateway.components.core.context import UserIdentity
from circle_gateway.components.data.group_store import AsyncGroupStore, NullGroupStore
from circle_gateway.connection_manager import ConnectionManager
from circle_gateway.core.connection.broadcaster import ConnectionBroadcaster


class FakeWebSocket:
    """Records outbound frames instead of writing them to a socket."""

    def __init__(self, headers: dict | None = None, fail_sends: bool = False):
        self.headers = headers or {}
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.fail_sends = fail_sends
        self.accepted = False
        self.close_code = None
        self.sent: list[dict] = []
        self.sent_text: list[str] = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail_sends:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    async def send_text(self, data):
        self.sent_text.append(data)

    async def close(self, code: int = 1000, reason: str | None = None):
        self.close_code = code
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED

    def events(self, event_type: str | None = None) -> list[dict]:
        """Sent envelopes, optionally filtered by type."""
        return [m for m in self.sent if event_type is None or m["type"] == event_type]

    def clear(self):
        self.sent.clear()
        self.sent_text.clear()


class RecordingStore:
    """Synchronous GroupStore double that records every call."""

    def __init__(self):
        self.calls: list[tuple] = []

    def create_group(self, group_id, name, member_count):
        self.calls.append(("create_group", group_id, name, member_count))

    def add_member(self, group_id, user_id):
        self.calls.append(("add_member", group_id, user_id))

    def deactivate_member(self, group_id, user_id):
        self.calls.append(("deactivate_member", group_id, user_id))

    def store_message(self, group_id, sender_id, payload, message_type="text"):
        self.calls.append(("store_message", group_id, sender_id, payload))
        return payload.get("messageId", "generated")

    def load_messages(self, group_id, limit):
        return []

    def record_group_stats(self, group_id, current_members):
        self.calls.append(("record_group_stats", group_id, current_members))

    def named(self, operation: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == operation]


# =============================================================================
# Component fixtures
# =============================================================================


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def index():
    return SocketUserIndex()


@pytest.fixture
def broadcaster(registry):
    return ConnectionBroadcaster(registry, send_timeout=1.0)


@pytest.fixture
def add_connection(registry, index):
    """
    Register a fake connection directly in the registry and index.

    Returns (connection_id, websocket).
    """
    counter = {"n": 0}

    def _add(username: str, user_id: str | None = None, connection_id: str | None = None):
        counter["n"] += 1
        cid = connection_id or f"conn-{counter['n']:04d}-{username}"
        ws = FakeWebSocket()
        identity = UserIdentity(user_id=user_id or username, username=username)
        registry.add(cid, ws, identity)
        index.register(cid, identity.user_id)
        return cid, ws

    return _add


@pytest.fixture
def recording_store():
    return RecordingStore()


@pytest.fixture
def async_store(recording_store):
    return AsyncGroupStore(recording_store, timeout=1.0)


@pytest.fixture
def manager():
    """ConnectionManager with persistence disabled and a quorum of 3."""
    return ConnectionManager(store=AsyncGroupStore(NullGroupStore()), min_group_members=3)


@pytest.fixture
def connect_user(manager):
    """
    Connect a fake client through the manager.

    Returns (connection_id, websocket, identity).
    """

    async def _connect(username: str, user_id: str | None = None):
        ws = FakeWebSocket()
        identity = UserIdentity(user_id=user_id or username, username=username)
        cid = await manager.connect(ws, identity)
        return cid, ws, identity

    return _connect


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(scope="function")
def session_factory():
    """
    In-memory SQLite session factory shared across threads.

    StaticPool keeps one connection so worker threads see the same database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
