"""
Socket/User Index - bidirectional connection_id <-> user_id mapping.

A user may hold several live connections. Point-to-point routing targets
the most recently registered one; when it closes, routing falls back to
the newest connection the user still has open.
"""

from __future__ import annotations

from shared.config.logging import get_logger, mask_user_id

logger = get_logger(__name__)


class SocketUserIndex:
    """
    Manages the connection/user indices used for point-to-point routing.

    Indices maintained:
    - _by_user: user_id -> [connection_id, ...] in registration order
    - _by_connection: connection_id -> user_id (every registered connection)

    Thread Safety:
    - All mutations require LockManager.connections_lock from the caller
    """

    def __init__(self) -> None:
        self._by_user: dict[str, list[str]] = {}
        self._by_connection: dict[str, str] = {}

    # =========================================================================
    # Query methods (no locks needed - read-only)
    # =========================================================================

    def connection_for_user(self, user_id: str) -> str | None:
        """Resolve a user to their newest live connection, if any."""
        connections = self._by_user.get(str(user_id))
        return connections[-1] if connections else None

    def is_online(self, user_id: str) -> bool:
        return str(user_id) in self._by_user

    # =========================================================================
    # Registration methods (require locks from caller)
    # =========================================================================

    def register(self, connection_id: str, user_id: str) -> str | None:
        """
        Map a connection to a user. MUST be called with connections_lock.

        Returns:
            The connection id that routed for this user before, or None.
        """
        user_id = str(user_id)
        connections = self._by_user.setdefault(user_id, [])
        previous = connections[-1] if connections else None
        if connection_id in connections:
            connections.remove(connection_id)
        connections.append(connection_id)
        self._by_connection[connection_id] = user_id

        if previous is not None and previous != connection_id:
            logger.info(
                "User reconnected, newer connection takes over",
                user_id=mask_user_id(user_id),
                previous_connection=previous[:8],
                connection=connection_id[:8],
                open_connections=len(connections),
            )
            return previous
        return None

    def unregister(self, connection_id: str) -> bool:
        """
        Remove a connection. MUST be called with connections_lock.

        If the connection was the user's routing target, the newest remaining
        connection takes over.

        Returns:
            True if the user has no connection left (user is now offline).
        """
        user_id = self._by_connection.pop(connection_id, None)
        if user_id is None:
            return False

        connections = self._by_user.get(user_id, [])
        was_routing = bool(connections) and connections[-1] == connection_id
        if connection_id in connections:
            connections.remove(connection_id)

        if not connections:
            self._by_user.pop(user_id, None)
            return True

        if was_routing:
            logger.info(
                "Routing fell back to an older connection",
                user_id=mask_user_id(user_id),
                connection=connections[-1][:8],
            )
        return False

    def get_stats(self) -> dict[str, int]:
        return {
            "online_users": len(self._by_user),
            "indexed_connections": len(self._by_connection),
        }
