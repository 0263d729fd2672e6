"""
Heartbeat handling for the Circle Gateway.

Clients ping every 30 seconds. Pings are answered directly and never
reach the event router; the receive timeout in the endpoint loop is what
eventually closes silent connections.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from circle_gateway.components.core.constants import MSG_PING_PLAIN, MSG_PING_JSON, MSG_PONG_JSON
from shared.config.logging import get_logger

if TYPE_CHECKING:
    from fastapi import WebSocket

_heartbeat_logger = get_logger(__name__)


def is_heartbeat(data: str) -> bool:
    """Whether a text frame is a heartbeat ping."""
    return data == MSG_PING_PLAIN or data == MSG_PING_JSON


async def handle_heartbeat(ws: "WebSocket", data: str) -> bool:
    """
    Respond to ping messages with pong.

    Supports both plain text and JSON formatted pings. Only expected
    connection errors are swallowed; the caller's receive loop notices a
    dead socket on its next receive.

    Args:
        ws: The WebSocket connection.
        data: The received message data.

    Returns:
        True if message was a heartbeat and was handled, False otherwise.
    """
    if not is_heartbeat(data):
        return False

    try:
        await ws.send_text(MSG_PONG_JSON)
    except (ConnectionError, RuntimeError, OSError):
        # Connection may have closed - caller will handle cleanup
        pass
    except Exception as e:
        _heartbeat_logger.warning(
            "Unexpected error sending heartbeat response",
            error=type(e).__name__,
            message=str(e),
        )
    return True
