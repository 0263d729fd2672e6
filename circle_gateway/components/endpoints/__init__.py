"""
WebSocket endpoint components.

Base class, mixins, and the circle endpoint handler.
"""

from circle_gateway.components.endpoints.base import WebSocketEndpointBase
from circle_gateway.components.endpoints.mixins import (
    MessageValidationMixin,
    ConnectionLifecycleMixin,
)
from circle_gateway.components.endpoints.handlers import CircleEndpoint

__all__ = [
    # Base classes
    "WebSocketEndpointBase",
    # Mixins
    "MessageValidationMixin",
    "ConnectionLifecycleMixin",
    # Handlers
    "CircleEndpoint",
]
