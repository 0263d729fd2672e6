"""
Core Circle Gateway components.

Foundational components: constants, context, and the error taxonomy.
"""

from circle_gateway.components.core.constants import (
    WSCloseCode,
    WSConstants,
    InboundEvent,
    OutboundEvent,
)
from circle_gateway.components.core.context import (
    UserIdentity,
    WebSocketContext,
    sanitize_log_data,
)
from circle_gateway.components.core.exceptions import (
    GatewayError,
    AuthenticationError,
    RoutingError,
    EventValidationError,
    PersistenceError,
)

__all__ = [
    # Constants
    "WSCloseCode",
    "WSConstants",
    "InboundEvent",
    "OutboundEvent",
    # Context
    "UserIdentity",
    "WebSocketContext",
    "sanitize_log_data",
    # Errors
    "GatewayError",
    "AuthenticationError",
    "RoutingError",
    "EventValidationError",
    "PersistenceError",
]
