"""
Circle Gateway Connection Manager.

Thin orchestrator that composes the gateway components:
- ConnectionLifecycle: accept and register connections
- ConnectionBroadcaster: best-effort sends by connection id
- WaitroomManager: waiting set and quorum-based group formation
- GroupRegistry: group membership and membership events
- MessageRelay: encrypted group message fan-out
- KeySignalingRouter: sender-key and pairwise session signaling
- ClientEventRouter: inbound event validation and dispatch
- ConnectionCleanup: idempotent teardown on disconnect
"""

from __future__ import annotations

import asyncio
from types import MappingProxyType
from typing import Any, TYPE_CHECKING

from shared.config.logging import get_logger
from shared.config.settings import settings
from circle_gateway.components.connection.index import SocketUserIndex
from circle_gateway.components.connection.locks import LockManager
from circle_gateway.components.connection.registry import ConnectionRegistry, RegisteredConnection
from circle_gateway.components.core.constants import WSCloseCode, WSConstants
from circle_gateway.components.core.context import UserIdentity
from circle_gateway.components.data.group_store import AsyncGroupStore, create_group_store
from circle_gateway.components.events.router import ClientEventRouter, ClientSession, DispatchOutcome
from circle_gateway.components.groups.registry import GroupRegistry
from circle_gateway.components.relay.message_relay import MessageRelay
from circle_gateway.components.signaling.router import KeySignalingRouter
from circle_gateway.components.waitroom.manager import WaitroomManager
from circle_gateway.core.connection import (
    ConnectionBroadcaster,
    ConnectionCleanup,
    ConnectionLifecycle,
    new_connection_id,
)

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = get_logger(__name__)

__all__ = ["ConnectionManager"]


class ConnectionManager:
    """
    Owns every piece of live gateway state and wires the components.

    One instance per process. It is created once at startup and passed to
    each endpoint; nothing else holds gateway state.

    Lock Ordering (to prevent deadlocks):
    1. connections_lock
    2. waitroom_lock
    3. groups_lock
    No code path currently holds two of them at once.
    """

    def __init__(
        self,
        store: AsyncGroupStore | None = None,
        min_group_members: int | None = None,
    ) -> None:
        """
        Args:
            store: Persistence facade. Built from settings when None.
            min_group_members: Waitroom quorum. Read from settings when None.
        """
        if min_group_members is None:
            min_group_members = settings.min_group_members

        # Core components
        self._lock_manager = LockManager()
        self._registry = ConnectionRegistry()
        self._index = SocketUserIndex()
        self._store = store if store is not None else create_group_store()

        self._broadcaster = ConnectionBroadcaster(self._registry)
        self._lifecycle = ConnectionLifecycle(
            lock_manager=self._lock_manager,
            registry=self._registry,
            index=self._index,
        )

        # Domain components
        self._waitroom = WaitroomManager(
            lock=self._lock_manager.waitroom_lock,
            broadcaster=self._broadcaster,
            min_members=min_group_members,
            store=self._store,
        )
        self._groups = GroupRegistry(
            lock=self._lock_manager.groups_lock,
            broadcaster=self._broadcaster,
            store=self._store,
        )
        self._relay = MessageRelay(self._groups, self._broadcaster, store=self._store)
        self._signaling = KeySignalingRouter(self._index, self._groups, self._broadcaster)

        self._router = ClientEventRouter(
            waitroom=self._waitroom,
            groups=self._groups,
            relay=self._relay,
            signaling=self._signaling,
        )
        self._cleanup = ConnectionCleanup(
            lock_manager=self._lock_manager,
            registry=self._registry,
            index=self._index,
            waitroom=self._waitroom,
            groups=self._groups,
        )

    # =========================================================================
    # Public properties
    # =========================================================================

    @property
    def connections(self) -> MappingProxyType[str, RegisteredConnection]:
        """Registered connections by connection id."""
        return self._registry.connections

    @property
    def total_connections(self) -> int:
        return self._lifecycle.total_connections

    @property
    def waitroom(self) -> WaitroomManager:
        return self._waitroom

    @property
    def groups(self) -> GroupRegistry:
        return self._groups

    @property
    def index(self) -> SocketUserIndex:
        return self._index

    @property
    def store(self) -> AsyncGroupStore:
        return self._store

    # =========================================================================
    # Connection management
    # =========================================================================

    @staticmethod
    def new_connection_id() -> str:
        return new_connection_id()

    async def connect(
        self,
        websocket: "WebSocket",
        identity: UserIdentity,
        connection_id: str | None = None,
        timeout: float = WSConstants.WS_ACCEPT_TIMEOUT,
    ) -> str:
        """Accept and register a new WebSocket connection."""
        return await self._lifecycle.connect(
            websocket=websocket,
            identity=identity,
            connection_id=connection_id,
            timeout=timeout,
        )

    async def disconnect(self, connection_id: str) -> bool:
        """Remove a connection from the waitroom, its groups and the registry."""
        return await self._cleanup.cleanup(connection_id)

    async def dispatch(self, session: ClientSession, raw: str) -> DispatchOutcome:
        """Validate and route one inbound text frame."""
        return await self._router.dispatch(session, raw)

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_public_stats(self) -> dict[str, int]:
        """Waitroom and group counters exposed on /ws/stats."""
        return {**self._waitroom.stats(), **self._groups.stats()}

    def get_stats_sync(self) -> dict[str, Any]:
        """Get gateway statistics (sync version for health check)."""
        return {
            "total_connections": self._registry.count,
            "accepted_total": self._lifecycle.accepted_total,
            "cleaned_total": self._cleanup.cleaned_total,
            "index": self._index.get_stats(),
            "waitroom": self._waitroom.get_stats(),
            "groups": self._groups.get_stats(),
            "broadcaster": self._broadcaster.get_stats(),
            "relay": self._relay.get_stats(),
            "events": self._router.get_stats(),
            "store": self._store.get_stats(),
            "locks": self._lock_manager.get_stats(),
        }

    async def get_stats(self) -> dict[str, Any]:
        """Get gateway statistics."""
        async with self._lock_manager.connections_lock:
            return self.get_stats_sync()

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self, store_timeout: float = WSConstants.STORE_SHUTDOWN_TIMEOUT) -> int:
        """
        Graceful shutdown: close every connection, clean up, drain the store.

        Returns:
            Number of connections closed successfully.
        """
        self._lifecycle.set_shutdown(True)
        logger.info("Circle gateway shutting down...")

        async with self._lock_manager.connections_lock:
            entries = list(self._registry.connections.values())

        async def close_one(entry: RegisteredConnection) -> bool:
            try:
                await entry.websocket.close(code=WSCloseCode.GOING_AWAY, reason="Server shutdown")
                return True
            except Exception:
                return False

        results = await asyncio.gather(
            *[close_one(entry) for entry in entries],
            return_exceptions=True,
        )
        closed = sum(1 for r in results if r is True)

        for entry in entries:
            await self.disconnect(entry.connection_id)

        cancelled = await self._store.drain(timeout=store_timeout)
        logger.info(
            "Circle gateway shutdown complete",
            closed=closed,
            store_tasks_cancelled=cancelled,
        )
        return closed

    def is_shutting_down(self) -> bool:
        """Check if the manager is in shutdown mode."""
        return self._lifecycle.is_shutdown
