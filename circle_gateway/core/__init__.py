"""
Circle Gateway Core Module.

Connection components composed by ConnectionManager:
- connection/: Connection lifecycle, broadcasting, cleanup
"""

from circle_gateway.core.connection import (
    ConnectionLifecycle,
    ConnectionBroadcaster,
    ConnectionCleanup,
    build_envelope,
    is_ws_connected,
    new_connection_id,
)

__all__ = [
    "ConnectionLifecycle",
    "ConnectionBroadcaster",
    "ConnectionCleanup",
    "build_envelope",
    "is_ws_connected",
    "new_connection_id",
]
