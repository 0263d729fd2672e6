"""
WebSocket Endpoint Mixins.

Each mixin handles a single concern for WebSocket endpoints.

Mixins:
    MessageValidationMixin: Inbound frame size limit
    ConnectionLifecycleMixin: Connect / disconnect / rejection logging

Usage:
    class MyEndpoint(MessageValidationMixin, ConnectionLifecycleMixin, WebSocketEndpointBase):
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from fastapi import WebSocket

from circle_gateway.components.core.constants import WSCloseCode
from shared.config.logging import get_logger

if TYPE_CHECKING:
    from circle_gateway.components.core.context import WebSocketContext

logger = get_logger(__name__)


# =============================================================================
# Protocols for mixin dependencies
# =============================================================================


class HasWebSocket(Protocol):
    """Protocol for classes with websocket attribute."""

    websocket: WebSocket
    endpoint_name: str
    context: "WebSocketContext | None"


# =============================================================================
# MessageValidationMixin
# =============================================================================


class MessageValidationMixin:
    """
    Mixin for inbound frame validation.

    Requires:
        - self.websocket: WebSocket
        - self.endpoint_name: str
        - self.context: WebSocketContext | None
    """

    async def validate_message_size(self: HasWebSocket, data: str) -> bool:
        """
        Validate message size against configured limit.

        Args:
            data: Message data to validate.

        Returns:
            True if valid, False if too large (connection closed).
        """
        from shared.config.settings import settings

        max_size = getattr(settings, "ws_max_message_size", 64 * 1024)

        if len(data) > max_size:
            logger.warning(
                "Message size exceeded limit",
                endpoint=self.endpoint_name,
                identifier=self.context.identifier if self.context else "unknown",
                size=len(data),
                max_size=max_size,
            )
            await self.websocket.close(
                code=WSCloseCode.MESSAGE_TOO_BIG,
                reason="Message too large",
            )
            return False
        return True


# =============================================================================
# ConnectionLifecycleMixin
# =============================================================================


class ConnectionLifecycleMixin:
    """
    Mixin for connection lifecycle logging.

    Every line goes both to the module logger and, through
    WebSocketContext.audit, to the security audit logger.

    Requires:
        - self.endpoint_name: str
        - self.context: WebSocketContext | None
    """

    def log_connect(self: HasWebSocket) -> None:
        """Log connection event."""
        logger.info(
            "Circle client connected",
            endpoint=self.endpoint_name,
            identifier=self.context.identifier if self.context else "unknown",
        )
        if self.context:
            self.context.audit("CONNECT")

    def log_disconnect(self: HasWebSocket, reason: str = "client_disconnect") -> None:
        """Log disconnection event."""
        logger.info(
            "Circle client disconnected",
            endpoint=self.endpoint_name,
            identifier=self.context.identifier if self.context else "unknown",
            reason=reason,
        )
        if self.context:
            self.context.audit("DISCONNECT", reason=reason)

    def log_connect_rejected(self: HasWebSocket, reason: str) -> None:
        """Log connection rejection event."""
        logger.warning(
            "Connection rejected",
            endpoint=self.endpoint_name,
            identifier=self.context.identifier if self.context else "unknown",
            reason=reason,
        )
        if self.context:
            self.context.audit("CONNECT_REJECTED", reason=reason)


__all__ = [
    "MessageValidationMixin",
    "ConnectionLifecycleMixin",
    "HasWebSocket",
]
