"""
Concrete WebSocket Endpoint Implementations.

The gateway exposes a single endpoint, /ws/circle, used by every client
for waitroom, group messaging and key signaling traffic.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import WebSocket

from circle_gateway.components.auth.strategies import (
    AuthResult,
    CompositeAuthStrategy,
    create_circle_auth_strategy,
)
from circle_gateway.components.core.constants import WSCloseCode, WSConstants
from circle_gateway.components.core.context import WebSocketContext
from circle_gateway.components.endpoints.base import WebSocketEndpointBase
from circle_gateway.components.events.router import ClientSession, DispatchOutcome
from shared.config.logging import audit_ws_connection, get_logger
from shared.infrastructure.correlation import bind_connection_id, request_id_var

if TYPE_CHECKING:
    from circle_gateway.connection_manager import ConnectionManager

logger = get_logger(__name__)


class CircleEndpoint(WebSocketEndpointBase):
    """
    WebSocket endpoint for circle clients.

    Features:
    - Mock token (development) or JWT authentication
    - Waitroom, group and relay events
    - Sender-key and pairwise session signaling
    """

    def __init__(
        self,
        websocket: WebSocket,
        manager: "ConnectionManager",
        token: str,
        auth_strategy: CompositeAuthStrategy | None = None,
        receive_timeout: float = WSConstants.WS_RECEIVE_TIMEOUT,
    ):
        super().__init__(
            websocket=websocket,
            manager=manager,
            endpoint_name="/ws/circle",
            receive_timeout=receive_timeout,
        )
        self.token = token
        self._auth_strategy = auth_strategy or create_circle_auth_strategy()
        self._session: ClientSession | None = None
        self._correlation_token = None

    async def validate_auth(self) -> AuthResult | None:
        """Authenticate the token; close with the strategy's code on failure."""
        result = await self._auth_strategy.authenticate_connection(self.websocket, self.token)
        if result.success:
            return result

        origin = self.websocket.headers.get("origin")
        logger.warning(
            "WebSocket authentication failed",
            endpoint=self.endpoint_name,
            reason=result.audit_reason,
            origin=origin,
        )
        audit_ws_connection(
            event_type="AUTH_FAILED",
            endpoint=self.endpoint_name,
            origin=origin,
            reason=result.audit_reason,
        )
        await self.websocket.close(
            code=result.close_code,
            reason=result.error_message or "Authentication failed",
        )
        return None

    async def create_context(self, auth: AuthResult) -> WebSocketContext:
        """Mint the connection id and build the audit context."""
        connection_id = self.manager.new_connection_id()
        self._session = ClientSession(connection_id=connection_id, identity=auth.identity)
        return WebSocketContext.from_identity(
            self.websocket,
            auth.identity,
            self.endpoint_name,
            connection_id,
            auth_scheme=auth.scheme,
        )

    async def register_connection(self, context: WebSocketContext) -> None:
        await self.manager.connect(
            self.websocket,
            self._session.identity,
            connection_id=context.connection_id,
        )
        self._correlation_token = bind_connection_id(context.connection_id)

    async def unregister_connection(self, context: WebSocketContext) -> None:
        """Unregister from connection manager."""
        try:
            await self.manager.disconnect(context.connection_id)
        finally:
            if self._correlation_token is not None:
                request_id_var.reset(self._correlation_token)
                self._correlation_token = None

    async def handle_message(self, data: str) -> bool:
        """Route a client event; a ``disconnect`` event closes the socket."""
        outcome = await self.manager.dispatch(self._session, data)
        if outcome is DispatchOutcome.CLOSE:
            await self.websocket.close(code=WSCloseCode.NORMAL, reason="Client disconnect")
            return False
        return True
