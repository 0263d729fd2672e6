"""
Inbound event components.

Frame schema (pydantic) and dispatch of client events to components.
"""

from circle_gateway.components.events.types import (
    EventEnvelope,
    EncryptedGroupMessage,
    ClientEvent,
    EVENT_SCHEMAS,
    parse_client_event,
)
from circle_gateway.components.events.router import (
    ClientEventRouter,
    ClientSession,
    DispatchOutcome,
)

__all__ = [
    "EventEnvelope",
    "EncryptedGroupMessage",
    "ClientEvent",
    "EVENT_SCHEMAS",
    "parse_client_event",
    "ClientEventRouter",
    "ClientSession",
    "DispatchOutcome",
]
