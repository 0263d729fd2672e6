"""
Connection Management Module.

Modular components used by ConnectionManager:
- lifecycle.py: Connection accept/registration
- broadcaster.py: Best-effort sends by connection id
- cleanup.py: Idempotent teardown on disconnect
"""

from circle_gateway.core.connection.lifecycle import ConnectionLifecycle, new_connection_id
from circle_gateway.core.connection.broadcaster import ConnectionBroadcaster, build_envelope, is_ws_connected
from circle_gateway.core.connection.cleanup import ConnectionCleanup

__all__ = [
    "ConnectionLifecycle",
    "ConnectionBroadcaster",
    "ConnectionCleanup",
    "build_envelope",
    "is_ws_connected",
    "new_connection_id",
]
