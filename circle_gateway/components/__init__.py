"""
Circle Gateway Components.

Organized into domain-specific modules:
- core/       - Foundational components (constants, context, exceptions)
- connection/ - Connection registry, user index, locks, heartbeat
- auth/       - Authentication strategies (mock token, JWT)
- events/     - Inbound event schema and router
- waitroom/   - Waiting set and group formation
- groups/     - Group membership registry
- relay/      - Encrypted group message fan-out
- signaling/  - Sender-key and pairwise session signaling
- data/       - Persistence collaborator
- endpoints/  - WebSocket endpoints (base, mixins, handlers)

New code should import from specific submodules for clarity.
"""

# =============================================================================
# Core Components
# =============================================================================
from circle_gateway.components.core.constants import (
    WSCloseCode,
    WSConstants,
    InboundEvent,
    OutboundEvent,
    MSG_PING_PLAIN,
    MSG_PING_JSON,
    MSG_PONG_JSON,
    DEFAULT_ALLOWED_ORIGINS,
    validate_websocket_origin,
)
from circle_gateway.components.core.context import UserIdentity, WebSocketContext, sanitize_log_data
from circle_gateway.components.core.exceptions import (
    GatewayError,
    AuthenticationError,
    RoutingError,
    EventValidationError,
    PersistenceError,
)

# =============================================================================
# Connection Management
# =============================================================================
from circle_gateway.components.connection.registry import ConnectionRegistry, RegisteredConnection
from circle_gateway.components.connection.index import SocketUserIndex
from circle_gateway.components.connection.locks import LockManager
from circle_gateway.components.connection.heartbeat import handle_heartbeat

# =============================================================================
# Authentication
# =============================================================================
from circle_gateway.components.auth.strategies import (
    AuthStrategy,
    AuthResult,
    MockTokenAuthStrategy,
    JWTAuthStrategy,
    CompositeAuthStrategy,
    create_circle_auth_strategy,
)

# =============================================================================
# Events
# =============================================================================
from circle_gateway.components.events.types import ClientEvent, parse_client_event
from circle_gateway.components.events.router import (
    ClientEventRouter,
    ClientSession,
    DispatchOutcome,
)

# =============================================================================
# Domain
# =============================================================================
from circle_gateway.components.waitroom.manager import WaitroomManager, FormedGroup
from circle_gateway.components.groups.registry import GroupRegistry
from circle_gateway.components.relay.message_relay import MessageRelay, RelayResult
from circle_gateway.components.signaling.router import KeySignalingRouter

# =============================================================================
# Data Access
# =============================================================================
from circle_gateway.components.data.group_store import (
    AsyncGroupStore,
    NullGroupStore,
    SqlGroupStore,
    create_group_store,
)

# =============================================================================
# Endpoints
# =============================================================================
from circle_gateway.components.endpoints.base import WebSocketEndpointBase
from circle_gateway.components.endpoints.handlers import CircleEndpoint

__all__ = [
    # Core
    "WSCloseCode",
    "WSConstants",
    "InboundEvent",
    "OutboundEvent",
    "MSG_PING_PLAIN",
    "MSG_PING_JSON",
    "MSG_PONG_JSON",
    "DEFAULT_ALLOWED_ORIGINS",
    "validate_websocket_origin",
    "UserIdentity",
    "WebSocketContext",
    "sanitize_log_data",
    "GatewayError",
    "AuthenticationError",
    "RoutingError",
    "EventValidationError",
    "PersistenceError",
    # Connection
    "ConnectionRegistry",
    "RegisteredConnection",
    "SocketUserIndex",
    "LockManager",
    "handle_heartbeat",
    # Auth
    "AuthStrategy",
    "AuthResult",
    "MockTokenAuthStrategy",
    "JWTAuthStrategy",
    "CompositeAuthStrategy",
    "create_circle_auth_strategy",
    # Events
    "ClientEvent",
    "parse_client_event",
    "ClientEventRouter",
    "ClientSession",
    "DispatchOutcome",
    # Domain
    "WaitroomManager",
    "FormedGroup",
    "GroupRegistry",
    "MessageRelay",
    "RelayResult",
    "KeySignalingRouter",
    # Data
    "AsyncGroupStore",
    "NullGroupStore",
    "SqlGroupStore",
    "create_group_store",
    # Endpoints
    "WebSocketEndpointBase",
    "CircleEndpoint",
]
