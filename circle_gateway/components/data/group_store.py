"""
Group Store - persistence collaborator for groups and encrypted messages.

The relay never waits on the database. Writes are scheduled as background
tasks through AsyncGroupStore; a slow or failing database costs log lines,
never a delivery.

Usage:
    store = AsyncGroupStore(SqlGroupStore())
    store.store_message("group_1", "1001", payload)      # fire-and-forget
    history = await store.load_messages("group_1", 50)  # awaited (HTTP only)
    await store.drain()                                  # on shutdown
"""

from __future__ import annotations

import asyncio
import json
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Protocol, TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from circle_gateway.components.core.constants import WSConstants
from circle_gateway.components.core.exceptions import PersistenceError
from shared.config.logging import get_logger
from shared.models import Base, ChatGroup, ChatGroupMember, ChatMessage

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

logger = get_logger(__name__)


MESSAGE_TYPE_TEXT = "text"
MESSAGE_TYPE_SYSTEM = "system"


class GroupStore(Protocol):
    """Synchronous persistence contract. Implementations run in worker threads."""

    def create_group(self, group_id: str, name: str, member_count: int) -> None: ...

    def add_member(self, group_id: str, user_id: str) -> None: ...

    def deactivate_member(self, group_id: str, user_id: str) -> None: ...

    def store_message(
        self,
        group_id: str,
        sender_id: str,
        payload: dict[str, Any],
        message_type: str = MESSAGE_TYPE_TEXT,
    ) -> str: ...

    def load_messages(self, group_id: str, limit: int) -> list[dict[str, Any]]: ...

    def record_group_stats(self, group_id: str, current_members: int) -> None: ...


# =============================================================================
# SQLAlchemy implementation
# =============================================================================


class SqlGroupStore:
    """
    GroupStore backed by the SQLAlchemy models in shared.models.

    Groups created implicitly by join_group have no row until their first
    member or message is persisted; such rows are named after their id.

    Writes are serialized: formation, the first join_group and the first
    message of a new group all get-or-create the same ChatGroup row from
    different worker threads.
    """

    def __init__(self, session_factory: "sessionmaker | None" = None) -> None:
        if session_factory is None:
            from shared.infrastructure.db import SessionLocal
            session_factory = SessionLocal
        self._session_factory = session_factory
        self._write_lock = threading.Lock()

    @contextmanager
    def _write_session(self) -> Iterator["Session"]:
        from shared.infrastructure.db import get_db_context

        with self._write_lock, get_db_context(self._session_factory) as db:
            yield db

    def create_tables(self) -> None:
        """Create missing tables on the bound engine."""
        bind = self._session_factory.kw.get("bind")
        Base.metadata.create_all(bind=bind)

    def create_group(self, group_id: str, name: str, member_count: int) -> None:
        from shared.infrastructure.db import safe_commit

        with self._write_session() as db:
            group = db.get(ChatGroup, group_id)
            if group is None:
                db.add(ChatGroup(id=group_id, name=name, current_members=member_count))
            else:
                group.name = name
                group.current_members = member_count
                group.is_active = True
            safe_commit(db)

        logger.debug("Group persisted", group_id=group_id, member_count=member_count)

    def add_member(self, group_id: str, user_id: str) -> None:
        from shared.infrastructure.db import safe_commit

        with self._write_session() as db:
            self._ensure_group(db, group_id)
            member = db.execute(
                select(ChatGroupMember).where(
                    ChatGroupMember.group_id == group_id,
                    ChatGroupMember.user_id == str(user_id),
                )
            ).scalar_one_or_none()

            if member is None:
                db.add(ChatGroupMember(group_id=group_id, user_id=str(user_id)))
            else:
                member.is_active = True
            db.flush()
            self._refresh_member_count(db, group_id)
            safe_commit(db)

    def deactivate_member(self, group_id: str, user_id: str) -> None:
        from shared.infrastructure.db import safe_commit

        with self._write_session() as db:
            member = db.execute(
                select(ChatGroupMember).where(
                    ChatGroupMember.group_id == group_id,
                    ChatGroupMember.user_id == str(user_id),
                )
            ).scalar_one_or_none()
            if member is None:
                return
            member.is_active = False
            db.flush()
            self._refresh_member_count(db, group_id)
            safe_commit(db)

    def store_message(
        self,
        group_id: str,
        sender_id: str,
        payload: dict[str, Any],
        message_type: str = MESSAGE_TYPE_TEXT,
    ) -> str:
        """
        Persist an encrypted message exactly as relayed.

        Returns:
            The stored message id (the client's messageId when present).
        """
        from shared.infrastructure.db import safe_commit

        message_id = str(payload.get("messageId") or uuid.uuid4())
        with self._write_session() as db:
            self._ensure_group(db, group_id)
            db.add(
                ChatMessage(
                    message_id=message_id,
                    group_id=group_id,
                    sender_id=str(sender_id),
                    encrypted_content=json.dumps(payload),
                    message_type=message_type,
                    created_at=datetime.now(timezone.utc),
                )
            )
            safe_commit(db)
        return message_id

    def load_messages(self, group_id: str, limit: int) -> list[dict[str, Any]]:
        """Most recent ``limit`` messages of a group, oldest first."""
        from shared.infrastructure.db import get_db_context

        with get_db_context(self._session_factory) as db:
            rows = db.execute(
                select(ChatMessage)
                .where(ChatMessage.group_id == group_id)
                .order_by(ChatMessage.id.desc())
                .limit(limit)
            ).scalars().all()

            return [
                {
                    "messageId": row.message_id,
                    "groupId": row.group_id,
                    "senderId": row.sender_id,
                    "messageType": row.message_type,
                    "encryptedMessage": json.loads(row.encrypted_content),
                    "createdAt": row.created_at.isoformat() if row.created_at else None,
                }
                for row in reversed(rows)
            ]

    def record_group_stats(self, group_id: str, current_members: int) -> None:
        from shared.infrastructure.db import safe_commit

        with self._write_session() as db:
            group = db.get(ChatGroup, group_id)
            if group is None:
                return
            group.current_members = current_members
            group.is_active = current_members > 0
            safe_commit(db)

    def _ensure_group(self, db: "Session", group_id: str) -> ChatGroup:
        group = db.get(ChatGroup, group_id)
        if group is None:
            group = ChatGroup(id=group_id, name=group_id, current_members=0)
            db.add(group)
            db.flush()
        return group

    def _refresh_member_count(self, db: "Session", group_id: str) -> None:
        active = db.execute(
            select(func.count())
            .select_from(ChatGroupMember)
            .where(
                ChatGroupMember.group_id == group_id,
                ChatGroupMember.is_active.is_(True),
            )
        ).scalar_one()
        group = db.get(ChatGroup, group_id)
        if group is not None:
            group.current_members = active


class NullGroupStore:
    """GroupStore used when persistence is disabled."""

    def create_group(self, group_id: str, name: str, member_count: int) -> None:
        pass

    def add_member(self, group_id: str, user_id: str) -> None:
        pass

    def deactivate_member(self, group_id: str, user_id: str) -> None:
        pass

    def store_message(
        self,
        group_id: str,
        sender_id: str,
        payload: dict[str, Any],
        message_type: str = MESSAGE_TYPE_TEXT,
    ) -> str:
        return str(payload.get("messageId") or "")

    def load_messages(self, group_id: str, limit: int) -> list[dict[str, Any]]:
        return []

    def record_group_stats(self, group_id: str, current_members: int) -> None:
        pass


# =============================================================================
# Async facade
# =============================================================================


class AsyncGroupStore:
    """
    Fire-and-forget scheduler around a synchronous GroupStore.

    Each write runs in a worker thread under a timeout, inside a task the
    facade keeps a strong reference to until it finishes. Failures are
    logged in the task and never reach the caller.
    """

    def __init__(
        self,
        store: GroupStore,
        timeout: float = 2.0,
    ) -> None:
        """
        Args:
            store: Synchronous store doing the actual work.
            timeout: Seconds a single write may take before it is abandoned.
        """
        self._store = store
        self._timeout = timeout
        self._pending: set[asyncio.Task] = set()

        self._completed = 0
        self._timeouts = 0
        self._errors = 0

    @property
    def store(self) -> GroupStore:
        return self._store

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # =========================================================================
    # Fire-and-forget writes
    # =========================================================================

    def create_group(self, group_id: str, name: str, member_ids: list[str]) -> asyncio.Task:
        """Persist a formed group and its initial members."""
        return self._schedule("create_group", self._create_group_with_members, group_id, name, list(member_ids))

    def add_member(self, group_id: str, user_id: str) -> asyncio.Task:
        return self._schedule("add_member", self._store.add_member, group_id, user_id)

    def deactivate_member(self, group_id: str, user_id: str) -> asyncio.Task:
        return self._schedule("deactivate_member", self._store.deactivate_member, group_id, user_id)

    def store_message(
        self,
        group_id: str,
        sender_id: str,
        payload: dict[str, Any],
        message_type: str = MESSAGE_TYPE_TEXT,
    ) -> asyncio.Task:
        return self._schedule(
            "store_message", self._store.store_message, group_id, sender_id, payload, message_type
        )

    def record_group_stats(self, group_id: str, current_members: int) -> asyncio.Task:
        return self._schedule("record_group_stats", self._store.record_group_stats, group_id, current_members)

    # =========================================================================
    # Awaited reads
    # =========================================================================

    async def load_messages(self, group_id: str, limit: int) -> list[dict[str, Any]]:
        """
        Load stored history for a group.

        Raises:
            PersistenceError: If the read fails or times out.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._store.load_messages, group_id, limit),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            self._timeouts += 1
            raise PersistenceError("History lookup timed out", group_id=group_id)
        except SQLAlchemyError as e:
            self._errors += 1
            logger.error("Failed to load messages", group_id=group_id, error=str(e))
            raise PersistenceError("History lookup failed", group_id=group_id) from e

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def drain(self, timeout: float = WSConstants.STORE_SHUTDOWN_TIMEOUT) -> int:
        """
        Wait for pending writes, cancelling whatever is left after timeout.

        Returns:
            Number of tasks that had to be cancelled.
        """
        if not self._pending:
            return 0

        pending = list(self._pending)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()

        if still_running:
            logger.warning("Persistence tasks cancelled at shutdown", count=len(still_running))
        return len(still_running)

    def get_stats(self) -> dict[str, int]:
        return {
            "pending": len(self._pending),
            "completed": self._completed,
            "timeouts": self._timeouts,
            "errors": self._errors,
        }

    # =========================================================================
    # Internals
    # =========================================================================

    def _create_group_with_members(self, group_id: str, name: str, member_ids: list[str]) -> None:
        self._store.create_group(group_id, name, len(member_ids))
        for user_id in member_ids:
            self._store.add_member(group_id, user_id)

    def _schedule(self, operation: str, fn: Callable[..., Any], *args: Any) -> asyncio.Task:
        task = asyncio.create_task(self._run(operation, fn, *args), name=f"store_{operation}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            result = await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self._timeout)
            self._completed += 1
            return result
        except asyncio.TimeoutError:
            self._timeouts += 1
            logger.warning("Persistence call timed out", operation=operation, timeout=self._timeout)
        except SQLAlchemyError as e:
            self._errors += 1
            logger.error("Persistence call failed", operation=operation, error=str(e))
        except Exception as e:
            self._errors += 1
            logger.error(
                "Unexpected persistence error",
                operation=operation,
                error=str(e),
                exc_info=True,
            )
        return None


def create_group_store(enabled: bool | None = None, timeout: float | None = None) -> AsyncGroupStore:
    """Build the store from settings, creating missing tables for the SQL store."""
    from shared.config.settings import settings

    if enabled is None:
        enabled = settings.persistence_enabled
    if timeout is None:
        timeout = settings.persistence_timeout

    if not enabled:
        logger.info("Persistence disabled, messages will not be stored")
        return AsyncGroupStore(NullGroupStore(), timeout=timeout)

    store = SqlGroupStore()
    try:
        store.create_tables()
    except SQLAlchemyError as e:
        logger.error("Could not create persistence tables", error=str(e))
    return AsyncGroupStore(store, timeout=timeout)
