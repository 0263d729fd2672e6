"""
Connection Registry - live connection handles by connection id.

The rest of the gateway only holds connection ids. Whenever a component
needs to send, it resolves the id here; a missing entry means the
connection is gone and the send is skipped.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING

from circle_gateway.components.core.context import UserIdentity

if TYPE_CHECKING:
    from fastapi import WebSocket


@dataclass(frozen=True, slots=True)
class RegisteredConnection:
    """A live connection and the identity it authenticated as."""

    connection_id: str
    websocket: "WebSocket"
    identity: UserIdentity


class ConnectionRegistry:
    """
    Maps connection_id -> RegisteredConnection.

    Thread Safety:
    - Mutations require LockManager.connections_lock from the caller
    - Lookups are plain dict reads and need no lock
    """

    def __init__(self) -> None:
        self._connections: dict[str, RegisteredConnection] = {}

    @property
    def connections(self) -> MappingProxyType[str, RegisteredConnection]:
        """All registered connections (immutable view)."""
        return MappingProxyType(self._connections)

    @property
    def count(self) -> int:
        return len(self._connections)

    def add(self, connection_id: str, websocket: "WebSocket", identity: UserIdentity) -> None:
        """Register a connection. MUST be called with connections_lock."""
        self._connections[connection_id] = RegisteredConnection(
            connection_id=connection_id,
            websocket=websocket,
            identity=identity,
        )

    def remove(self, connection_id: str) -> RegisteredConnection | None:
        """Unregister a connection. MUST be called with connections_lock."""
        return self._connections.pop(connection_id, None)

    def get_websocket(self, connection_id: str) -> "WebSocket | None":
        entry = self._connections.get(connection_id)
        return entry.websocket if entry else None

    def connection_ids(self) -> list[str]:
        """Snapshot of all registered connection ids."""
        return list(self._connections)
