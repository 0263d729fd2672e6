"""
Waitroom Manager - accumulates users until a quorum forms a group.

Every mutation and every decision derived from it runs in one critical
section under the waitroom lock: insert, quorum check, snapshot and clear
all happen before any frame is sent. Two concurrent joiners can therefore
never both trigger a formation, and nobody can slip into or out of a
group that is being formed.

Formation does not enroll anyone in the GroupRegistry. Clients receive
group_created and then send join_group themselves.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, TYPE_CHECKING

from circle_gateway.components.core.constants import OutboundEvent, WSConstants
from circle_gateway.components.core.context import UserIdentity
from shared.config.logging import get_logger, mask_user_id

if TYPE_CHECKING:
    from circle_gateway.components.data.group_store import AsyncGroupStore
    from circle_gateway.core.connection.broadcaster import ConnectionBroadcaster

logger = get_logger(__name__)

_BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


@dataclass(slots=True)
class WaitingEntry:
    """A user waiting for a group. At most one per user."""

    user_id: str
    username: str
    connection_id: str

    def to_public_dict(self) -> dict[str, str]:
        return {"userId": self.user_id, "username": self.username}


@dataclass(frozen=True, slots=True)
class FormedGroup:
    """A group minted from the waitroom snapshot."""

    group_id: str
    group_name: str
    members: tuple[WaitingEntry, ...] = field(default_factory=tuple)

    def to_event_data(self) -> dict[str, Any]:
        return {
            "groupId": self.group_id,
            "groupName": self.group_name,
            "members": [m.to_public_dict() for m in self.members],
        }


def generate_group_id(now: float) -> str:
    """group_<epoch-ms>_<9 base36 chars>."""
    suffix = "".join(
        secrets.choice(_BASE36_ALPHABET) for _ in range(WSConstants.GROUP_ID_SUFFIX_LENGTH)
    )
    return f"{WSConstants.GROUP_ID_PREFIX}{int(now * 1000)}_{suffix}"


def generate_group_name(now: float) -> str:
    return f"{WSConstants.GROUP_NAME_PREFIX} {time.strftime('%H:%M:%S', time.localtime(now))}"


class WaitroomManager:
    """
    Holds the waiting set and forms groups at quorum.

    Outbound events:
    - waitroom_joined: to the joining connection only
    - waitroom_updated: to every waiting connection after a change
    - group_created: to every member of a formed group
    - waitroom_error: to remaining waiters if formation fails
    """

    def __init__(
        self,
        lock: asyncio.Lock,
        broadcaster: "ConnectionBroadcaster",
        min_members: int,
        store: "AsyncGroupStore | None" = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            lock: LockManager.waitroom_lock.
            broadcaster: Delivers outbound events by connection id.
            min_members: Quorum size, fixed for the process lifetime.
            store: Optional persistence for formed groups.
            clock: Time source for group id and name generation.
        """
        if min_members < 1:
            raise ValueError("min_members must be at least 1")

        self._lock = lock
        self._broadcaster = broadcaster
        self._min_members = min_members
        self._store = store
        self._clock = clock

        # user_id -> entry; insertion order is join order
        self._waiting: dict[str, WaitingEntry] = {}
        self._groups_formed = 0

    @property
    def min_members(self) -> int:
        return self._min_members

    @property
    def waiting_count(self) -> int:
        return len(self._waiting)

    def is_waiting(self, user_id: str) -> bool:
        return str(user_id) in self._waiting

    # =========================================================================
    # Operations
    # =========================================================================

    async def join(self, connection_id: str, identity: UserIdentity) -> FormedGroup | None:
        """
        Add the caller to the waitroom.

        Re-entry by a user already waiting only refreshes the connection id
        and re-sends the current state to the caller.

        Returns:
            The formed group if this join reached quorum, else None.
        """
        error_targets: list[str] = []
        formed: FormedGroup | None = None

        async with self._lock:
            existing = self._waiting.get(identity.user_id)
            if existing is not None:
                existing.connection_id = connection_id
                state = self._state()
                logger.debug("User already in waitroom", user_id=mask_user_id(identity.user_id))
                rejoined = True
            else:
                self._waiting[identity.user_id] = WaitingEntry(
                    user_id=identity.user_id,
                    username=identity.username,
                    connection_id=connection_id,
                )
                state = self._state()
                update_targets = self._connection_ids()
                rejoined = False

                if len(self._waiting) >= self._min_members:
                    try:
                        formed = self._form_group()
                    except Exception as e:
                        logger.error("Failed to create group", error=str(e), exc_info=True)
                        error_targets = self._connection_ids()

        await self._broadcaster.send_to_connection(connection_id, OutboundEvent.WAITROOM_JOINED, state)
        if rejoined:
            return None

        logger.info(
            "User joined waitroom",
            user_id=mask_user_id(identity.user_id),
            waiting=state["currentCount"],
            min_members=self._min_members,
        )
        await self._broadcaster.send_to_connections(update_targets, OutboundEvent.WAITROOM_UPDATED, state)

        if formed is not None:
            await self._announce(formed)
        elif error_targets:
            await self._broadcaster.send_to_connections(
                error_targets,
                OutboundEvent.WAITROOM_ERROR,
                {"message": "Failed to create group. Please try again."},
            )
        return formed

    async def leave(self, user_id: str) -> bool:
        """
        Remove a user from the waitroom (leave_waitroom).

        Returns:
            True if an entry was removed.
        """
        async with self._lock:
            entry = self._waiting.pop(str(user_id), None)
            if entry is None:
                return False
            state = self._state()
            targets = self._connection_ids()

        logger.info("User left waitroom", user_id=mask_user_id(user_id), waiting=state["currentCount"])
        await self._broadcaster.send_to_connections(targets, OutboundEvent.WAITROOM_UPDATED, state)
        return True

    async def remove_connection(self, connection_id: str, user_id: str) -> bool:
        """
        Disconnect path: remove the user's entry only if it still belongs to
        this connection. A user who re-joined from a newer connection keeps
        their place.
        """
        async with self._lock:
            entry = self._waiting.get(str(user_id))
            if entry is None or entry.connection_id != connection_id:
                return False
            del self._waiting[str(user_id)]
            state = self._state()
            targets = self._connection_ids()

        logger.info("Waiting user disconnected", user_id=mask_user_id(user_id), waiting=state["currentCount"])
        await self._broadcaster.send_to_connections(targets, OutboundEvent.WAITROOM_UPDATED, state)
        return True

    def stats(self) -> dict[str, int]:
        """Current waitroom statistics."""
        waiting = len(self._waiting)
        return {
            "waitingUsers": waiting,
            "minMembers": self._min_members,
            "needMore": max(0, self._min_members - waiting),
        }

    def get_stats(self) -> dict[str, int]:
        return {**self.stats(), "groupsFormed": self._groups_formed}

    # =========================================================================
    # Internals (callers hold the lock unless noted)
    # =========================================================================

    def _state(self) -> dict[str, Any]:
        return {
            "waitingUsers": [e.to_public_dict() for e in self._waiting.values()],
            "minMembers": self._min_members,
            "currentCount": len(self._waiting),
        }

    def _connection_ids(self) -> list[str]:
        return [e.connection_id for e in self._waiting.values()]

    def _form_group(self) -> FormedGroup:
        now = self._clock()
        formed = FormedGroup(
            group_id=generate_group_id(now),
            group_name=generate_group_name(now),
            members=tuple(self._waiting.values()),
        )
        self._waiting.clear()
        self._groups_formed += 1
        return formed

    async def _announce(self, formed: FormedGroup) -> None:
        """Send group_created to the snapshot. Runs without the lock."""
        data = formed.to_event_data()
        delivered = await self._broadcaster.send_to_connections(
            [m.connection_id for m in formed.members],
            OutboundEvent.GROUP_CREATED,
            data,
        )
        logger.info(
            "Group created from waitroom",
            group_id=formed.group_id,
            members=len(formed.members),
            notified=delivered,
        )

        if self._store is not None:
            self._store.create_group(
                formed.group_id,
                formed.group_name,
                [m.user_id for m in formed.members],
            )
