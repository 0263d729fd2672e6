"""
Lock Manager for the Circle Gateway.

One asyncio lock per registry. A critical section covers a mutation and
every decision derived from it (quorum check, snapshot + clear, member set
change) and never awaits I/O; sends happen after the lock is released.

LOCK ORDERING CONSTRAINTS:
==========================
asyncio.Lock is NON-REENTRANT. When more than one lock is needed, acquire
them in this order and release in reverse:

1. connections_lock (ConnectionRegistry + SocketUserIndex)
2. waitroom_lock (WaitroomManager)
3. groups_lock (GroupRegistry)

No component currently holds two of them at once; the ordering exists so
that one added later cannot deadlock.
"""

from __future__ import annotations

import asyncio

from shared.config.logging import get_logger

logger = get_logger(__name__)


class LockManager:
    """
    Owns the per-registry locks.

    Components receive the lock they need at construction time instead of
    creating their own, so tests can share or inspect them.
    """

    def __init__(self) -> None:
        self._connections_lock = asyncio.Lock()
        self._waitroom_lock = asyncio.Lock()
        self._groups_lock = asyncio.Lock()

    @property
    def connections_lock(self) -> asyncio.Lock:
        """Lock for connection registry and socket/user index."""
        return self._connections_lock

    @property
    def waitroom_lock(self) -> asyncio.Lock:
        """Lock for the waiting set."""
        return self._waitroom_lock

    @property
    def groups_lock(self) -> asyncio.Lock:
        """Lock for group membership."""
        return self._groups_lock

    def get_stats(self) -> dict[str, bool]:
        """Which locks are currently held."""
        return {
            "connections_locked": self._connections_lock.locked(),
            "waitroom_locked": self._waitroom_lock.locked(),
            "groups_locked": self._groups_lock.locked(),
        }
