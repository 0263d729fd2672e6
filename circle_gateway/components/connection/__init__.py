"""
Connection management components.

Handles connection bookkeeping: registry, socket/user index, locks, heartbeat.
"""

from circle_gateway.components.connection.registry import ConnectionRegistry, RegisteredConnection
from circle_gateway.components.connection.index import SocketUserIndex
from circle_gateway.components.connection.locks import LockManager
from circle_gateway.components.connection.heartbeat import handle_heartbeat, is_heartbeat

__all__ = [
    "ConnectionRegistry",
    "RegisteredConnection",
    "SocketUserIndex",
    "LockManager",
    "handle_heartbeat",
    "is_heartbeat",
]
