"""
Inbound event schema for the Circle Gateway.

Every text frame that is not a heartbeat must be a JSON envelope
``{"type": <event>, "data": {...}}``. The envelope and each event's data
are validated with pydantic; opaque cryptographic material (bundles,
device info, ciphertexts) is typed as Any and forwarded verbatim.

Validation never rewrites what is relayed: the validated models are used
for routing fields only, and the raw client dicts are what gets forwarded.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from circle_gateway.components.core.constants import InboundEvent, WSConstants
from circle_gateway.components.core.context import sanitize_log_data
from circle_gateway.components.core.exceptions import EventValidationError


# =============================================================================
# Envelope
# =============================================================================


class EventEnvelope(BaseModel):
    """Outer frame shape shared by every inbound event."""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(min_length=1, max_length=64)
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def _null_data_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value


# =============================================================================
# Event data models
# =============================================================================


class EventData(BaseModel):
    """
    Base for event payloads.

    Unknown fields are ignored and numeric ids are accepted as strings,
    since clients send user ids both ways.
    """

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class GroupEventData(EventData):
    """join_group / leave_group / request_sender_keys."""

    groupId: str = Field(min_length=1, max_length=128)


class EncryptedGroupMessage(BaseModel):
    """
    An end-to-end encrypted group message as produced by the client.

    Every field is optional and unknown fields are kept. Ciphertext and
    signature are opaque (base64 strings or byte arrays); only the routing
    and version fields are type-checked.
    """

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    groupId: str | None = None
    senderId: str | None = None
    messageId: str | None = None
    timestamp: float | None = None
    encryptedPayload: Any = None
    signature: Any = None
    keyVersion: int | None = None


class GroupMessageData(GroupEventData):
    """group_message. ``encryptedMessage`` stays the client's own dict."""

    encryptedMessage: dict[str, Any]

    @field_validator("encryptedMessage")
    @classmethod
    def _check_message_shape(cls, value: dict[str, Any]) -> dict[str, Any]:
        EncryptedGroupMessage.model_validate(value)
        return value


class ShareSenderKeyData(GroupEventData):
    targetUserId: str = Field(min_length=1)
    bundle: Any = None


class RequestSenderKeyData(GroupEventData):
    fromUserId: str = Field(min_length=1)


class DeviceInfoExchangeData(EventData):
    targetUserId: str = Field(min_length=1)
    deviceInfo: Any = None


class InitialMessageData(EventData):
    targetUserId: str = Field(min_length=1)
    initialMessage: Any = None
    remoteIdentityKey: Any = None


class KeyRotationData(GroupEventData):
    newBundle: Any = None


# Event name -> data model (None means the event carries no data)
EVENT_SCHEMAS: dict[str, type[EventData] | None] = {
    InboundEvent.JOIN_WAITROOM: None,
    InboundEvent.LEAVE_WAITROOM: None,
    InboundEvent.JOIN_GROUP: GroupEventData,
    InboundEvent.LEAVE_GROUP: GroupEventData,
    InboundEvent.GROUP_MESSAGE: GroupMessageData,
    InboundEvent.SHARE_SENDER_KEY: ShareSenderKeyData,
    InboundEvent.REQUEST_SENDER_KEYS: GroupEventData,
    InboundEvent.REQUEST_SENDER_KEY: RequestSenderKeyData,
    InboundEvent.DEVICE_INFO_EXCHANGE: DeviceInfoExchangeData,
    InboundEvent.INITIAL_MESSAGE: InitialMessageData,
    InboundEvent.KEY_ROTATION: KeyRotationData,
    InboundEvent.DISCONNECT: None,
}


@dataclass(frozen=True, slots=True)
class ClientEvent:
    """A parsed, validated inbound event."""

    type: str
    data: EventData | None


def parse_client_event(raw: str) -> ClientEvent:
    """
    Parse and validate one inbound text frame.

    Raises:
        EventValidationError: Malformed JSON, bad envelope, unknown event
            type, or data that does not match the event's schema.
    """
    preview = sanitize_log_data(raw, WSConstants.MAX_LOGGED_FRAME_LENGTH)

    try:
        decoded = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise EventValidationError("Frame is not valid JSON", frame=preview, error=str(e)) from e

    try:
        envelope = EventEnvelope.model_validate(decoded)
    except ValidationError as e:
        raise EventValidationError("Invalid event envelope", frame=preview, errors=e.error_count()) from e

    if envelope.type not in EVENT_SCHEMAS:
        raise EventValidationError(
            "Unknown event type",
            frame=preview,
            event_type=sanitize_log_data(envelope.type, 64),
        )

    schema = EVENT_SCHEMAS[envelope.type]
    if schema is None:
        return ClientEvent(type=envelope.type, data=None)

    try:
        data = schema.model_validate(envelope.data)
    except ValidationError as e:
        raise EventValidationError(
            "Invalid event data",
            frame=preview,
            event_type=envelope.type,
            errors=e.error_count(),
        ) from e

    return ClientEvent(type=envelope.type, data=data)
