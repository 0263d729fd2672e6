"""
Circle Gateway Constants.

Centralized constants with documentation explaining the value of each one,
plus the wire names of every inbound and outbound event.
"""

from enum import IntEnum
from typing import Final

__all__ = [
    "WSCloseCode",
    "WSConstants",
    "InboundEvent",
    "OutboundEvent",
    "MSG_PING_PLAIN",
    "MSG_PING_JSON",
    "MSG_PONG_JSON",
    "DEFAULT_ALLOWED_ORIGINS",
    "validate_websocket_origin",
]


class WSCloseCode(IntEnum):
    """
    WebSocket close codes used by the gateway.

    Standard codes (1000-1999) from RFC 6455.
    Custom codes (4000-4999) for application-specific errors.
    """

    # Standard codes (RFC 6455)
    NORMAL = 1000  # Normal closure
    GOING_AWAY = 1001  # Server shutting down or client navigating away
    POLICY_VIOLATION = 1008  # Generic policy violation
    MESSAGE_TOO_BIG = 1009  # Message too large to process
    SERVER_ERROR = 1011  # Unexpected server error

    # Custom application codes (4000-4999)
    AUTH_FAILED = 4001  # Token missing, unknown mock user, bad signature or expired
    FORBIDDEN = 4003  # Origin not allowed


class WSConstants:
    """
    Gateway operational constants.

    Values that operators may want to change live in settings; these are
    the compile-time defaults and internal limits.
    """

    # ==========================================================================
    # Timeout Constants
    # ==========================================================================

    # WS_RECEIVE_TIMEOUT: 90 seconds
    # Three times the 30s client ping interval, so jitter never closes a
    # healthy connection. Overridden by settings.ws_receive_timeout.
    WS_RECEIVE_TIMEOUT: Final[float] = 90.0

    # WS_ACCEPT_TIMEOUT: 5 seconds
    # WebSocket handshake should complete within TCP timeout.
    WS_ACCEPT_TIMEOUT: Final[float] = 5.0

    # SEND_TIMEOUT: 5 seconds
    # A single outbound frame that cannot be written within this window is
    # treated as a failed delivery; the relay never waits longer on one peer.
    SEND_TIMEOUT: Final[float] = 5.0

    # STORE_SHUTDOWN_TIMEOUT: 5 seconds
    # Pending persistence tasks are awaited this long on shutdown.
    STORE_SHUTDOWN_TIMEOUT: Final[float] = 5.0

    # ==========================================================================
    # Waitroom Constants
    # ==========================================================================

    # GROUP_ID_PREFIX / GROUP_ID_SUFFIX_LENGTH
    # Generated ids look like group_<epoch-ms>_<9 base36 chars>.
    GROUP_ID_PREFIX: Final[str] = "group_"
    GROUP_ID_SUFFIX_LENGTH: Final[int] = 9

    # GROUP_NAME_PREFIX
    # Display name shown to members of a freshly formed group.
    GROUP_NAME_PREFIX: Final[str] = "Cercle de parole"

    # ==========================================================================
    # Logging Constants
    # ==========================================================================

    # MAX_LOGGED_FRAME_LENGTH: 100
    # Rejected frames are logged truncated to this many characters.
    MAX_LOGGED_FRAME_LENGTH: Final[int] = 100


class InboundEvent:
    """Event names clients may send."""

    JOIN_WAITROOM: Final[str] = "join_waitroom"
    LEAVE_WAITROOM: Final[str] = "leave_waitroom"
    JOIN_GROUP: Final[str] = "join_group"
    LEAVE_GROUP: Final[str] = "leave_group"
    GROUP_MESSAGE: Final[str] = "group_message"
    SHARE_SENDER_KEY: Final[str] = "share_sender_key"
    REQUEST_SENDER_KEYS: Final[str] = "request_sender_keys"
    REQUEST_SENDER_KEY: Final[str] = "request_sender_key"
    DEVICE_INFO_EXCHANGE: Final[str] = "device_info_exchange"
    INITIAL_MESSAGE: Final[str] = "initial_message"
    KEY_ROTATION: Final[str] = "key_rotation"
    DISCONNECT: Final[str] = "disconnect"


class OutboundEvent:
    """Event names the gateway emits."""

    WAITROOM_JOINED: Final[str] = "waitroom_joined"
    WAITROOM_UPDATED: Final[str] = "waitroom_updated"
    WAITROOM_ERROR: Final[str] = "waitroom_error"
    GROUP_CREATED: Final[str] = "group_created"
    MEMBER_JOINED: Final[str] = "member_joined"
    MEMBER_LEFT: Final[str] = "member_left"
    GROUP_MEMBERS: Final[str] = "group_members"
    GROUP_MESSAGE: Final[str] = "group_message"
    SENDER_KEY_BUNDLE: Final[str] = "sender_key_bundle"
    SENDER_KEY_REQUEST: Final[str] = "sender_key_request"
    REQUEST_SENDER_KEY: Final[str] = "request_sender_key"
    DEVICE_INFO_RECEIVED: Final[str] = "device_info_received"
    DEVICE_INFO_ERROR: Final[str] = "device_info_error"
    INITIAL_MESSAGE_RECEIVED: Final[str] = "initial_message_received"
    INITIAL_MESSAGE_ERROR: Final[str] = "initial_message_error"
    KEY_ROTATION: Final[str] = "key_rotation"


# Message type constants for heartbeat protocol
MSG_PING_PLAIN: Final[str] = "ping"
MSG_PING_JSON: Final[str] = '{"type":"ping"}'
MSG_PONG_JSON: Final[str] = '{"type":"pong"}'

# Error text sent back when a point-to-point target has no live connection
USER_NOT_ONLINE: Final[str] = "User not online"


# Default development origins
DEFAULT_ALLOWED_ORIGINS: Final[tuple[str, ...]] = (
    "http://localhost:3000", "http://localhost:5173",
    "http://localhost:8081", "http://localhost:19006",  # Expo web
    "http://127.0.0.1:3000", "http://127.0.0.1:5173",
    "http://127.0.0.1:8081", "http://127.0.0.1:19006",
)


def validate_websocket_origin(origin: str | None, settings: object) -> bool:
    """
    Validate WebSocket origin header against allowed origins.

    Native mobile clients send no Origin header; that is accepted in
    development and rejected in production.

    Args:
        origin: The Origin header value, or None if not present.
        settings: Settings object with environment and allowed_origins attributes.

    Returns:
        True if origin is allowed, False otherwise.
    """
    from shared.config.logging import get_logger
    _logger = get_logger(__name__)

    allowed_origins_str = getattr(settings, "allowed_origins", None)
    if allowed_origins_str:
        allowed = [o.strip() for o in allowed_origins_str.split(",") if o.strip()]
    else:
        allowed = list(DEFAULT_ALLOWED_ORIGINS)

    if not origin:
        is_dev = getattr(settings, "environment", "production") == "development"
        if is_dev:
            _logger.debug("WebSocket connection with missing Origin header (allowed in dev mode only)")
            return True
        _logger.warning("WebSocket connection rejected: missing Origin header in production")
        return False

    if origin in allowed:
        return True

    _logger.warning(
        "WebSocket connection rejected: origin not in allowed list",
        origin=origin,
        allowed_count=len(allowed),
    )
    return False
