"""
Connection Lifecycle Management.

Handles WebSocket acceptance and registration of authenticated
connections. Teardown lives in cleanup.py.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING

from circle_gateway.components.core.constants import WSConstants
from circle_gateway.components.core.context import UserIdentity
from shared.config.logging import get_logger

if TYPE_CHECKING:
    from fastapi import WebSocket
    from circle_gateway.components.connection.index import SocketUserIndex
    from circle_gateway.components.connection.locks import LockManager
    from circle_gateway.components.connection.registry import ConnectionRegistry

logger = get_logger(__name__)


def new_connection_id() -> str:
    """Gateway-assigned connection id."""
    return uuid.uuid4().hex


class ConnectionLifecycle:
    """
    Accepts authenticated connections and registers them.

    Registration puts the connection in the ConnectionRegistry and maps its
    user in the SocketUserIndex, both under connections_lock. A user's
    newest connection supersedes older ones for point-to-point routing;
    the older connections stay open and keep their group memberships.
    """

    def __init__(
        self,
        lock_manager: "LockManager",
        registry: "ConnectionRegistry",
        index: "SocketUserIndex",
    ) -> None:
        self._lock_manager = lock_manager
        self._registry = registry
        self._index = index
        self._shutdown = False
        self._accepted_total = 0

    @property
    def total_connections(self) -> int:
        """Current number of registered connections."""
        return self._registry.count

    @property
    def accepted_total(self) -> int:
        return self._accepted_total

    @property
    def is_shutdown(self) -> bool:
        """Whether shutdown has been initiated."""
        return self._shutdown

    def set_shutdown(self, value: bool) -> None:
        self._shutdown = value

    async def connect(
        self,
        websocket: "WebSocket",
        identity: UserIdentity,
        connection_id: str | None = None,
        timeout: float = WSConstants.WS_ACCEPT_TIMEOUT,
    ) -> str:
        """
        Accept a WebSocket connection and register it.

        Args:
            websocket: The WebSocket to connect.
            identity: Identity resolved by authentication.
            connection_id: Pre-minted id, or None to mint one.
            timeout: Timeout for accepting the WebSocket.

        Returns:
            The connection id.

        Raises:
            ConnectionError: If the server is shutting down or accept fails.
        """
        if self._shutdown:
            raise ConnectionError("Server is shutting down")

        try:
            await asyncio.wait_for(websocket.accept(), timeout=timeout)
        except asyncio.TimeoutError:
            raise ConnectionError("WebSocket accept timed out")
        except Exception as e:
            raise ConnectionError(f"WebSocket accept failed: {e}")

        connection_id = connection_id or new_connection_id()
        async with self._lock_manager.connections_lock:
            self._registry.add(connection_id, websocket, identity)
            self._index.register(connection_id, identity.user_id)

        self._accepted_total += 1
        return connection_id
