"""
Client Event Router - dispatches inbound events to gateway components.

Separates frame parsing and validation from the components that act on
events. One router is shared by every connection; per-connection state
travels in a ClientSession.

Usage:
    router = ClientEventRouter(waitroom, groups, relay, signaling)
    outcome = await router.dispatch(session, raw_frame)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TYPE_CHECKING

from circle_gateway.components.core.constants import InboundEvent
from circle_gateway.components.core.context import UserIdentity
from circle_gateway.components.core.exceptions import EventValidationError
from circle_gateway.components.events.types import (
    ClientEvent,
    DeviceInfoExchangeData,
    GroupEventData,
    GroupMessageData,
    InitialMessageData,
    KeyRotationData,
    RequestSenderKeyData,
    ShareSenderKeyData,
    parse_client_event,
)
from shared.config.logging import get_logger, mask_user_id

if TYPE_CHECKING:
    from circle_gateway.components.groups.registry import GroupRegistry
    from circle_gateway.components.relay.message_relay import MessageRelay
    from circle_gateway.components.signaling.router import KeySignalingRouter
    from circle_gateway.components.waitroom.manager import WaitroomManager

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ClientSession:
    """The connection an inbound event arrived on."""

    connection_id: str
    identity: UserIdentity


class DispatchOutcome(str, Enum):
    """What the endpoint loop should do after a frame was dispatched."""

    HANDLED = "handled"
    INVALID = "invalid"
    FAILED = "failed"
    CLOSE = "close"

    @property
    def keep_open(self) -> bool:
        return self is not DispatchOutcome.CLOSE


Handler = Callable[[ClientSession, Any], Awaitable[None]]


class ClientEventRouter:
    """
    Routes validated client events to the waitroom, group registry,
    message relay and signaling router.

    Error policy:
    - Invalid frames are logged (sanitized) and dropped
    - Handler errors are logged with traceback and dropped
    - Neither closes the connection; only ``disconnect`` does
    """

    def __init__(
        self,
        waitroom: "WaitroomManager",
        groups: "GroupRegistry",
        relay: "MessageRelay",
        signaling: "KeySignalingRouter",
    ) -> None:
        self._waitroom = waitroom
        self._groups = groups
        self._relay = relay
        self._signaling = signaling

        self._handlers: dict[str, Handler] = {
            InboundEvent.JOIN_WAITROOM: self._on_join_waitroom,
            InboundEvent.LEAVE_WAITROOM: self._on_leave_waitroom,
            InboundEvent.JOIN_GROUP: self._on_join_group,
            InboundEvent.LEAVE_GROUP: self._on_leave_group,
            InboundEvent.GROUP_MESSAGE: self._on_group_message,
            InboundEvent.SHARE_SENDER_KEY: self._on_share_sender_key,
            InboundEvent.REQUEST_SENDER_KEYS: self._on_request_sender_keys,
            InboundEvent.REQUEST_SENDER_KEY: self._on_request_sender_key,
            InboundEvent.DEVICE_INFO_EXCHANGE: self._on_device_info_exchange,
            InboundEvent.INITIAL_MESSAGE: self._on_initial_message,
            InboundEvent.KEY_ROTATION: self._on_key_rotation,
        }

        self._dispatched = 0
        self._invalid = 0
        self._failed = 0

    async def dispatch(self, session: ClientSession, raw: str) -> DispatchOutcome:
        """
        Parse one text frame and run its handler.

        Args:
            session: Connection the frame arrived on.
            raw: The frame text (heartbeats are filtered out before this).

        Returns:
            DispatchOutcome telling the caller whether to keep reading.
        """
        try:
            event = parse_client_event(raw)
        except EventValidationError as e:
            self._invalid += 1
            logger.warning(
                e.message,
                connection=session.connection_id[:8],
                user_id=mask_user_id(session.identity.user_id),
                **e.context,
            )
            return DispatchOutcome.INVALID

        return await self.handle(session, event)

    async def handle(self, session: ClientSession, event: ClientEvent) -> DispatchOutcome:
        """Run the handler for an already parsed event."""
        if event.type == InboundEvent.DISCONNECT:
            logger.debug("Client requested disconnect", connection=session.connection_id[:8])
            return DispatchOutcome.CLOSE

        handler = self._handlers[event.type]
        try:
            await handler(session, event.data)
        except Exception as e:
            self._failed += 1
            logger.error(
                "Error handling client event",
                event_type=event.type,
                connection=session.connection_id[:8],
                error=str(e),
                exc_info=True,
            )
            return DispatchOutcome.FAILED

        self._dispatched += 1
        return DispatchOutcome.HANDLED

    def get_stats(self) -> dict[str, int]:
        return {
            "events_dispatched": self._dispatched,
            "events_invalid": self._invalid,
            "events_failed": self._failed,
        }

    # =========================================================================
    # Waitroom
    # =========================================================================

    async def _on_join_waitroom(self, session: ClientSession, data: None) -> None:
        await self._waitroom.join(session.connection_id, session.identity)

    async def _on_leave_waitroom(self, session: ClientSession, data: None) -> None:
        await self._waitroom.leave(session.identity.user_id)

    # =========================================================================
    # Groups and relay
    # =========================================================================

    async def _on_join_group(self, session: ClientSession, data: GroupEventData) -> None:
        await self._groups.join(data.groupId, session.connection_id, session.identity)

    async def _on_leave_group(self, session: ClientSession, data: GroupEventData) -> None:
        await self._groups.leave(data.groupId, session.connection_id, session.identity)

    async def _on_group_message(self, session: ClientSession, data: GroupMessageData) -> None:
        await self._relay.relay(session.connection_id, session.identity, data.groupId, data.encryptedMessage)

    # =========================================================================
    # Key signaling
    # =========================================================================

    async def _on_share_sender_key(self, session: ClientSession, data: ShareSenderKeyData) -> None:
        await self._signaling.share_sender_key(session.identity, data.groupId, data.targetUserId, data.bundle)

    async def _on_request_sender_keys(self, session: ClientSession, data: GroupEventData) -> None:
        await self._signaling.request_sender_keys(session.connection_id, session.identity, data.groupId)

    async def _on_request_sender_key(self, session: ClientSession, data: RequestSenderKeyData) -> None:
        await self._signaling.request_specific_sender_key(session.identity, data.groupId, data.fromUserId)

    async def _on_device_info_exchange(self, session: ClientSession, data: DeviceInfoExchangeData) -> None:
        await self._signaling.exchange_device_info(
            session.connection_id, session.identity, data.targetUserId, data.deviceInfo
        )

    async def _on_initial_message(self, session: ClientSession, data: InitialMessageData) -> None:
        await self._signaling.send_initial_message(
            session.connection_id,
            session.identity,
            data.targetUserId,
            data.initialMessage,
            data.remoteIdentityKey,
        )

    async def _on_key_rotation(self, session: ClientSession, data: KeyRotationData) -> None:
        await self._signaling.notify_key_rotation(
            session.connection_id, session.identity, data.groupId, data.newBundle
        )
