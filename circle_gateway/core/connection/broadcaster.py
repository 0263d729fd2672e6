"""
Connection Broadcaster.

Handles sending event envelopes to WebSocket connections by connection id.
Every send is best effort: a failed or timed-out send is reported as
False and never raised, so one broken peer cannot stall a fan-out.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any, TYPE_CHECKING

from starlette.websockets import WebSocketState

from circle_gateway.components.core.constants import WSConstants
from shared.config.logging import get_logger

if TYPE_CHECKING:
    from fastapi import WebSocket
    from circle_gateway.components.connection.registry import ConnectionRegistry

logger = get_logger(__name__)


def is_ws_connected(ws: "WebSocket") -> bool:
    """
    Check if WebSocket is in connected state before sending.

    Starlette WebSockets have limited state visibility, so connections may
    appear connected briefly after a disconnect was initiated.
    """
    return (
        ws.client_state == WebSocketState.CONNECTED
        and ws.application_state == WebSocketState.CONNECTED
    )


def build_envelope(event: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    """Wire envelope shared by every outbound event."""
    return {"type": event, "data": data if data is not None else {}}


class ConnectionBroadcaster:
    """
    Sends envelopes to connections resolved through the ConnectionRegistry.

    Responsibilities:
    - Send to a single connection id
    - Fan out to many connection ids in parallel (asyncio.gather)
    - Count sent and failed deliveries
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        send_timeout: float = WSConstants.SEND_TIMEOUT,
    ) -> None:
        """
        Initialize broadcaster with dependencies.

        Args:
            registry: Resolves connection ids to live WebSockets.
            send_timeout: Upper bound for a single frame write.
        """
        self._registry = registry
        self._send_timeout = send_timeout
        self._sent = 0
        self._failed = 0
        self._unresolved = 0

    async def send_to_connection(
        self,
        connection_id: str,
        event: str,
        data: dict[str, Any] | None = None,
    ) -> bool:
        """
        Send one event to one connection.

        Args:
            connection_id: Target connection id.
            event: Outbound event name.
            data: Event payload.

        Returns:
            True if sent successfully, False if the connection is unknown,
            closed, slow, or the write failed.
        """
        ws = self._registry.get_websocket(connection_id)
        if ws is None:
            self._unresolved += 1
            logger.debug("Send skipped, connection not registered", connection=connection_id[:8], event=event)
            return False

        return await self._send(ws, build_envelope(event, data), connection_id)

    async def send_to_connections(
        self,
        connection_ids: Iterable[str],
        event: str,
        data: dict[str, Any] | None = None,
    ) -> int:
        """
        Send one event to many connections in parallel.

        Args:
            connection_ids: Target connection ids.
            event: Outbound event name.
            data: Event payload, shared by every recipient.

        Returns:
            Number of connections that received the message.
        """
        targets = list(connection_ids)
        if not targets:
            return 0

        results = await asyncio.gather(
            *[self.send_to_connection(cid, event, data) for cid in targets],
            return_exceptions=True,
        )
        delivered = sum(1 for r in results if r is True)

        if delivered < len(targets):
            logger.debug(
                "Fan-out partially delivered",
                event=event,
                targets=len(targets),
                delivered=delivered,
            )
        return delivered

    async def _send(self, ws: "WebSocket", payload: dict[str, Any], connection_id: str) -> bool:
        if not is_ws_connected(ws):
            self._failed += 1
            return False
        try:
            await asyncio.wait_for(ws.send_json(payload), timeout=self._send_timeout)
            self._sent += 1
            return True
        except asyncio.TimeoutError:
            self._failed += 1
            logger.warning("Send timed out", connection=connection_id[:8], event=payload.get("type"))
            return False
        except Exception as e:
            self._failed += 1
            logger.debug("Send failed: %s", str(e))
            return False

    def get_stats(self) -> dict[str, int]:
        return {
            "messages_sent": self._sent,
            "messages_failed": self._failed,
            "sends_unresolved": self._unresolved,
        }
