"""
Connection identity and context for audit logging.

UserIdentity is what authentication resolves a credential to. WebSocketContext
carries the metadata needed to audit a connection's lifecycle.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import WebSocket


# Pattern to remove control characters from log data
_CONTROL_CHAR_PATTERN = re.compile(
    r'[\x00-\x1f\x7f-\x9f'  # ASCII control characters
    r'\u200b-\u200f'  # Zero-width and direction marks
    r'\u202a-\u202e'  # Bidirectional text formatting (RTL override, etc.)
    r'\u2066-\u2069'  # Isolate formatting characters
    r'\ufeff]'  # BOM / Zero-width no-break space
)


def sanitize_log_data(data: str, max_length: int = 100) -> str:
    """
    Sanitize user-provided data before logging.

    Truncates first, then strips control characters and escapes
    JSON-dangerous characters.

    Args:
        data: Raw user data.
        max_length: Maximum length to include in logs.

    Returns:
        Sanitized, truncated string safe for structured logging.
    """
    truncated = data[:max_length] if len(data) > max_length else data
    was_truncated = len(data) > max_length

    sanitized = _CONTROL_CHAR_PATTERN.sub('', truncated)

    # Replace backslashes first to avoid double-escaping
    sanitized = sanitized.replace('\\', '\\\\')
    sanitized = sanitized.replace('"', '\\"')
    sanitized = sanitized.replace('\n', '\\n')
    sanitized = sanitized.replace('\r', '\\r')
    sanitized = sanitized.replace('\t', '\\t')

    if was_truncated:
        return sanitized + "..."
    return sanitized


@dataclass(frozen=True, slots=True)
class UserIdentity:
    """
    Authenticated user behind a connection.

    Resolved once when the connection is authenticated and never changed
    for the connection's lifetime.
    """

    user_id: str
    username: str

    def to_public_dict(self) -> dict[str, str]:
        """Wire representation used in member lists."""
        return {"userId": self.user_id, "username": self.username}


@dataclass
class WebSocketContext:
    """
    Context object for WebSocket connection metadata.

    Usage:
        ctx = WebSocketContext.from_identity(websocket, identity, "/ws/circle", connection_id)
        ctx.audit("CONNECT")
        # ... later
        ctx.audit("DISCONNECT", reason="client_disconnect")
    """

    endpoint: str
    connection_id: str
    origin: str | None = None
    user_id: str | None = None
    username: str | None = None
    auth_scheme: str | None = None

    @property
    def identifier(self) -> str:
        """Short identifier used in log lines."""
        return f"user:{self.user_id}" if self.user_id else f"conn:{self.connection_id[:8]}"

    @classmethod
    def from_identity(
        cls,
        websocket: "WebSocket",
        identity: UserIdentity,
        endpoint: str,
        connection_id: str,
        auth_scheme: str | None = None,
    ) -> "WebSocketContext":
        """
        Create context for an authenticated connection.

        Args:
            websocket: The WebSocket connection.
            identity: The resolved user identity.
            endpoint: The endpoint path.
            connection_id: Gateway-assigned connection ID.
            auth_scheme: "mock" or "jwt".

        Returns:
            WebSocketContext populated from the identity.
        """
        return cls(
            endpoint=endpoint,
            connection_id=connection_id,
            origin=websocket.headers.get("origin"),
            user_id=identity.user_id,
            username=identity.username,
            auth_scheme=auth_scheme,
        )

    def to_audit_dict(self, event_type: str, **extra: Any) -> dict[str, Any]:
        """
        Convert to dictionary for audit logging.

        Only includes non-None fields to reduce log noise.
        """
        result: dict[str, Any] = {
            "event_type": event_type,
            "endpoint": self.endpoint,
            "connection_id": self.connection_id,
        }

        if self.origin:
            result["origin"] = self.origin
        if self.user_id:
            result["user_id"] = self.user_id
        if self.auth_scheme:
            result["auth_scheme"] = self.auth_scheme

        result.update(extra)

        return result

    def audit(
        self,
        event_type: str,
        logger_func: Any = None,
        **extra: Any,
    ) -> None:
        """
        Log an audit event.

        Args:
            event_type: The audit event type.
            logger_func: Optional custom logger function (default: audit_ws_connection).
            **extra: Additional fields to log.
        """
        if logger_func is None:
            from shared.config.logging import audit_ws_connection
            logger_func = audit_ws_connection

        logger_func(**self.to_audit_dict(event_type, **extra))
