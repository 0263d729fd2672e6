"""
Connection Cleanup.

Removes a connection from every component that tracked it. Runs on every
disconnect path (client close, receive timeout, oversized frame, server
shutdown) and is idempotent: only the first call for a connection id does
anything.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from shared.config.logging import get_logger, mask_user_id

if TYPE_CHECKING:
    from circle_gateway.components.connection.index import SocketUserIndex
    from circle_gateway.components.connection.locks import LockManager
    from circle_gateway.components.connection.registry import ConnectionRegistry
    from circle_gateway.components.groups.registry import GroupRegistry
    from circle_gateway.components.waitroom.manager import WaitroomManager

logger = get_logger(__name__)


class ConnectionCleanup:
    """
    Tears down a connection's footprint.

    Order:
    1. Registry and index entries are dropped under connections_lock, so no
       further send can resolve to this connection.
    2. The waitroom entry is removed (if it still belongs to this connection)
       and remaining waiters get waitroom_updated.
    3. Every group membership is removed; each group's remaining members get
       one member_left and empty groups are deleted.
    """

    def __init__(
        self,
        lock_manager: "LockManager",
        registry: "ConnectionRegistry",
        index: "SocketUserIndex",
        waitroom: "WaitroomManager",
        groups: "GroupRegistry",
    ) -> None:
        self._lock_manager = lock_manager
        self._registry = registry
        self._index = index
        self._waitroom = waitroom
        self._groups = groups

        self._cleaned = 0

    @property
    def cleaned_total(self) -> int:
        return self._cleaned

    async def cleanup(self, connection_id: str) -> bool:
        """
        Remove a connection everywhere.

        Returns:
            True if this call did the cleanup, False if the connection was
            already gone.
        """
        async with self._lock_manager.connections_lock:
            entry = self._registry.remove(connection_id)
            if entry is None:
                return False
            went_offline = self._index.unregister(connection_id)

        identity = entry.identity
        left_waitroom = await self._waitroom.remove_connection(connection_id, identity.user_id)
        left_groups = await self._groups.leave_all(connection_id, identity)

        self._cleaned += 1
        logger.info(
            "Connection cleaned up",
            connection=connection_id[:8],
            user_id=mask_user_id(identity.user_id),
            went_offline=went_offline,
            left_waitroom=left_waitroom,
            left_groups=len(left_groups),
        )
        return True
