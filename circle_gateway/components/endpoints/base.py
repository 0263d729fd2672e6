"""
WebSocket Endpoint Base Class.

Owns the lifecycle every gateway endpoint shares: authenticate, register,
read frames until the peer goes away, then clean up exactly once.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from fastapi import WebSocket, WebSocketDisconnect

from circle_gateway.components.auth.strategies import AuthResult
from circle_gateway.components.connection.heartbeat import handle_heartbeat
from circle_gateway.components.core.constants import WSCloseCode, WSConstants
from circle_gateway.components.core.context import WebSocketContext, sanitize_log_data
from circle_gateway.components.endpoints.mixins import (
    ConnectionLifecycleMixin,
    MessageValidationMixin,
)
from shared.config.logging import get_logger

if TYPE_CHECKING:
    from circle_gateway.connection_manager import ConnectionManager

logger = get_logger(__name__)


class WebSocketEndpointBase(
    MessageValidationMixin,
    ConnectionLifecycleMixin,
    ABC,
):
    """
    Base class for WebSocket endpoints.

    Uses mixins for single concerns:
    - MessageValidationMixin: Frame size limit
    - ConnectionLifecycleMixin: Lifecycle logging

    Subclasses implement:
    - validate_auth(): Authenticate the credential
    - create_context(): Build the WebSocketContext
    - register_connection(): Register with ConnectionManager
    - unregister_connection(): Clean up on exit
    - handle_message(): Process non-heartbeat frames

    Usage:
        endpoint = CircleEndpoint(websocket, manager, token)
        await endpoint.run()
    """

    def __init__(
        self,
        websocket: WebSocket,
        manager: "ConnectionManager",
        endpoint_name: str,
        receive_timeout: float = WSConstants.WS_RECEIVE_TIMEOUT,
    ):
        """
        Initialize the endpoint handler.

        Args:
            websocket: The WebSocket connection.
            manager: ConnectionManager instance.
            endpoint_name: Name for logging (e.g., "/ws/circle").
            receive_timeout: Seconds of silence before the connection is closed.
        """
        self.websocket = websocket
        self.manager = manager
        self.endpoint_name = endpoint_name
        self.receive_timeout = receive_timeout

        self.context: WebSocketContext | None = None
        self._is_running = False

    @abstractmethod
    async def validate_auth(self) -> AuthResult | None:
        """
        Validate authentication for this connection.

        Returns:
            Successful AuthResult, or None if invalid. If invalid, the
            implementation closes the WebSocket before returning.
        """
        pass

    @abstractmethod
    async def create_context(self, auth: AuthResult) -> WebSocketContext:
        """Create WebSocketContext from a successful AuthResult."""
        pass

    @abstractmethod
    async def register_connection(self, context: WebSocketContext) -> None:
        """
        Register the connection with ConnectionManager.

        Raises:
            ConnectionError: If registration fails.
        """
        pass

    @abstractmethod
    async def unregister_connection(self, context: WebSocketContext) -> None:
        """Unregister the connection on disconnect."""
        pass

    async def handle_message(self, data: str) -> bool:
        """
        Handle a non-heartbeat frame.

        Returns:
            True to keep reading, False to stop the loop.
        """
        logger.debug(
            "Unknown message received",
            endpoint=self.endpoint_name,
            identifier=self.context.identifier if self.context else "unknown",
            message=sanitize_log_data(data),
        )
        return True

    async def run(self) -> None:
        """
        Main entry point - run the WebSocket endpoint.

        Handles the complete lifecycle:
        1. Validate authentication
        2. Create context
        3. Register connection
        4. Message loop
        5. Unregister on disconnect
        """
        # Step 1: Validate authentication
        auth = await self.validate_auth()
        if auth is None:
            return  # Auth failed, connection already closed

        # Step 2: Create context
        self.context = await self.create_context(auth)

        # Step 3: Register connection
        try:
            await self.register_connection(self.context)
        except ConnectionError as e:
            self.log_connect_rejected(str(e))
            return
        except Exception as e:
            logger.error(
                "Unexpected error during connection",
                endpoint=self.endpoint_name,
                identifier=self.context.identifier,
                error=str(e),
            )
            return

        self.log_connect()

        # Step 4: Message loop
        self._is_running = True
        reason = "server_close"
        try:
            await self._message_loop()
        except WebSocketDisconnect:
            reason = "client_disconnect"
        except Exception as e:
            reason = "error"
            logger.error(
                "Unexpected error in message loop",
                endpoint=self.endpoint_name,
                identifier=self.context.identifier,
                error=str(e),
                exc_info=True,
            )
        finally:
            # Step 5: Unregister
            self._is_running = False
            self.log_disconnect(reason)
            await self.unregister_connection(self.context)

    async def _message_loop(self) -> None:
        """
        Main message processing loop.

        Handles:
        - Receive with timeout
        - Message size validation
        - Heartbeat responses
        - Event handling
        """
        while self._is_running:
            data = await self._receive_with_timeout()
            if data is None:
                logger.info(
                    "Connection timed out (no messages)",
                    endpoint=self.endpoint_name,
                    identifier=self.context.identifier if self.context else "unknown",
                    timeout=self.receive_timeout,
                )
                await self.websocket.close(
                    code=WSCloseCode.NORMAL,
                    reason="Connection timeout",
                )
                break

            if not await self.validate_message_size(data):
                break

            if await handle_heartbeat(self.websocket, data):
                continue

            if not await self.handle_message(data):
                break

    async def _receive_with_timeout(self) -> str | None:
        """
        Receive message with timeout.

        Returns:
            Message data, or None if timeout.
        """
        try:
            return await asyncio.wait_for(
                self.websocket.receive_text(),
                timeout=self.receive_timeout,
            )
        except asyncio.TimeoutError:
            return None
