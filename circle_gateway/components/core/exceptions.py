"""
Gateway error taxonomy.

None of these is fatal to the process. The worst outcome of a single
inbound event is that it has no effect beyond a log line; only
AuthenticationError ends a connection.
"""

from __future__ import annotations

from typing import Any


class GatewayError(Exception):
    """Base class for gateway errors, carrying structured log context."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class AuthenticationError(GatewayError):
    """Credential missing, unknown or invalid. The connection is closed."""

    def __init__(self, message: str, audit_reason: str = "auth_failed", **context: Any) -> None:
        super().__init__(message, **context)
        self.audit_reason = audit_reason


class RoutingError(GatewayError):
    """Destination group or user cannot be resolved."""


class EventValidationError(GatewayError):
    """Malformed inbound frame. The frame is dropped, the connection stays open."""


class PersistenceError(GatewayError):
    """Persistence collaborator failure. Logged, never surfaced to clients."""
