"""
Tests for group and message persistence.
"""

import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from circle_gateway.components.core.exceptions import PersistenceError
from circle_gateway.components.data.group_store import (
    AsyncGroupStore,
    NullGroupStore,
    SqlGroupStore,
    create_group_store,
)
from shared.infrastructure.db import build_engine
from shared.models import ChatGroup, ChatGroupMember


class TestSqlGroupStore:
    """Synchronous SQLAlchemy store against in-memory SQLite."""

    @pytest.fixture
    def store(self, session_factory):
        return SqlGroupStore(session_factory)

    def test_create_group_and_members(self, store, session_factory):
        store.create_group("g1", "Cercle de parole 10:00:00", 2)
        store.add_member("g1", "1001")
        store.add_member("g1", "1002")

        with session_factory() as db:
            group = db.get(ChatGroup, "g1")
            assert group.name == "Cercle de parole 10:00:00"
            assert group.current_members == 2
            assert group.is_active is True

    def test_add_member_twice_reactivates(self, store, session_factory):
        store.add_member("g1", "1001")
        store.deactivate_member("g1", "1001")
        store.add_member("g1", "1001")

        with session_factory() as db:
            rows = db.execute(select(ChatGroupMember).where(ChatGroupMember.group_id == "g1")).scalars().all()
            assert len(rows) == 1
            assert rows[0].is_active is True
            assert db.get(ChatGroup, "g1").current_members == 1

    def test_implicit_group_named_after_id(self, store, session_factory):
        store.add_member("adhoc", "1001")

        with session_factory() as db:
            assert db.get(ChatGroup, "adhoc").name == "adhoc"

    def test_deactivate_updates_count(self, store, session_factory):
        store.create_group("g1", "name", 2)
        store.add_member("g1", "1001")
        store.add_member("g1", "1002")
        store.deactivate_member("g1", "1002")

        with session_factory() as db:
            assert db.get(ChatGroup, "g1").current_members == 1

    def test_deactivate_unknown_member_is_noop(self, store):
        store.deactivate_member("g1", "1001")

    def test_messages_round_trip_oldest_first(self, store):
        for i in range(5):
            store.store_message("g1", "1001", {"messageId": f"m-{i}", "encryptedPayload": f"c{i}"})

        history = store.load_messages("g1", 3)

        assert [m["messageId"] for m in history] == ["m-2", "m-3", "m-4"]
        assert history[0]["encryptedMessage"] == {"messageId": "m-2", "encryptedPayload": "c2"}
        assert history[0]["senderId"] == "1001"
        assert history[0]["messageType"] == "text"
        assert history[0]["createdAt"] is not None

    def test_message_without_id_gets_one(self, store):
        message_id = store.store_message("g1", "1001", {"encryptedPayload": "x"})
        assert message_id
        assert store.load_messages("g1", 10)[0]["messageId"] == message_id

    def test_load_messages_for_unknown_group(self, store):
        assert store.load_messages("missing", 10) == []

    def test_record_group_stats_deactivates_empty_group(self, store, session_factory):
        store.create_group("g1", "name", 3)
        store.record_group_stats("g1", 0)

        with session_factory() as db:
            group = db.get(ChatGroup, "g1")
            assert group.current_members == 0
            assert group.is_active is False


class _FailingStore(NullGroupStore):
    def add_member(self, group_id, user_id):
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    def load_messages(self, group_id, limit):
        raise OperationalError("SELECT", {}, Exception("database is locked"))


class TestAsyncGroupStore:
    """Fire-and-forget facade."""

    @pytest.mark.asyncio
    async def test_writes_run_in_background(self, session_factory):
        store = AsyncGroupStore(SqlGroupStore(session_factory), timeout=2.0)

        # one SQLite connection is shared, so let each write finish before the next
        await store.create_group("g1", "name", ["1001", "1002"])
        await store.store_message("g1", "1001", {"messageId": "m-1"})
        assert await store.drain() == 0

        history = await store.load_messages("g1", 10)
        assert [m["messageId"] for m in history] == ["m-1"]
        assert store.pending_count == 0

    @pytest.mark.asyncio
    async def test_write_failure_is_logged_not_raised(self):
        store = AsyncGroupStore(_FailingStore(), timeout=1.0)

        task = store.add_member("g1", "1001")
        assert await task is None
        assert store.get_stats()["errors"] == 1

    @pytest.mark.asyncio
    async def test_read_failure_raises_persistence_error(self):
        store = AsyncGroupStore(_FailingStore(), timeout=1.0)

        with pytest.raises(PersistenceError):
            await store.load_messages("g1", 10)

    @pytest.mark.asyncio
    async def test_drain_cancels_stuck_writes(self):
        class _SlowStore(NullGroupStore):
            def store_message(self, group_id, sender_id, payload, message_type="text"):
                import time
                time.sleep(0.5)
                return "m"

        store = AsyncGroupStore(_SlowStore(), timeout=5.0)
        store.store_message("g1", "1001", {})
        await asyncio.sleep(0)

        cancelled = await store.drain(timeout=0.05)

        assert cancelled == 1

    def test_disabled_persistence_uses_null_store(self):
        store = create_group_store(enabled=False)
        assert isinstance(store.store, NullGroupStore)


class TestConcurrentFirstWrites:
    """Formation, the first join_group and the first message land together."""

    @pytest.fixture
    def file_store(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'circle.db'}")
        factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        store = SqlGroupStore(factory)
        store.create_tables()
        try:
            yield store, factory
        finally:
            engine.dispose()

    @pytest.mark.asyncio
    async def test_new_group_writes_do_not_collide(self, file_store):
        store, factory = file_store
        async_store = AsyncGroupStore(store, timeout=10.0)

        for n in range(10):
            group_id = f"group_{n}"
            async_store.create_group(group_id, "Cercle de parole 10:00:00", ["1001", "1002"])
            async_store.add_member(group_id, "1003")
            async_store.store_message(group_id, "1001", {"messageId": f"m-{n}"})

        assert await async_store.drain(timeout=10.0) == 0
        assert async_store.get_stats()["errors"] == 0

        with factory() as db:
            for n in range(10):
                group_id = f"group_{n}"
                members = db.execute(
                    select(ChatGroupMember).where(ChatGroupMember.group_id == group_id)
                ).scalars().all()
                assert {m.user_id for m in members} == {"1001", "1002", "1003"}
                assert db.get(ChatGroup, group_id).current_members == 3
        assert len(store.load_messages("group_3", 10)) == 1
