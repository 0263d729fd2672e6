"""
Message Relay - fans encrypted group messages out to the other members.

The server never decrypts. The client's message fields are forwarded
as-is; only senderId, senderName and groupId are injected, and those
always win over any client-supplied values.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

from circle_gateway.components.core.constants import OutboundEvent
from circle_gateway.components.core.context import UserIdentity, sanitize_log_data
from shared.config.logging import get_logger, mask_user_id

if TYPE_CHECKING:
    from circle_gateway.components.data.group_store import AsyncGroupStore
    from circle_gateway.components.groups.registry import GroupRegistry
    from circle_gateway.core.connection.broadcaster import ConnectionBroadcaster

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RelayResult:
    """Outcome of relaying one message."""

    group_id: str
    recipients: int = 0
    delivered: int = 0
    skipped: int = 0
    dropped: bool = False

    @property
    def success(self) -> bool:
        return not self.dropped


def build_relay_payload(
    message: dict[str, Any],
    identity: UserIdentity,
    group_id: str,
) -> dict[str, Any]:
    """Client fields first, then the server-authoritative sender fields."""
    return {
        **message,
        "senderId": identity.user_id,
        "senderName": identity.username,
        "groupId": group_id,
    }


class MessageRelay:
    """
    Relays group_message events.

    Usage:
        relay = MessageRelay(groups, broadcaster, store)
        result = await relay.relay(connection_id, identity, "group_1", message)
    """

    def __init__(
        self,
        groups: "GroupRegistry",
        broadcaster: "ConnectionBroadcaster",
        store: "AsyncGroupStore | None" = None,
    ) -> None:
        self._groups = groups
        self._broadcaster = broadcaster
        self._store = store

        self._relayed = 0
        self._dropped = 0

    async def relay(
        self,
        sender_connection_id: str,
        identity: UserIdentity,
        group_id: str,
        message: dict[str, Any],
    ) -> RelayResult:
        """
        Deliver a message to every member of the group except the sender's
        own connection.

        An unknown group drops the message without telling the sender.
        """
        members = self._groups.members_of(group_id)
        if not members:
            self._dropped += 1
            logger.warning(
                "Group message dropped, group not found",
                group_id=sanitize_log_data(str(group_id)),
                sender=mask_user_id(identity.user_id),
            )
            return RelayResult(group_id=group_id, dropped=True)

        payload = build_relay_payload(message, identity, group_id)
        recipients = [cid for cid in members if cid != sender_connection_id]
        delivered = await self._broadcaster.send_to_connections(
            recipients, OutboundEvent.GROUP_MESSAGE, payload
        )

        self._relayed += 1
        encrypted = message.get("encryptedPayload")
        logger.info(
            "Group message relayed",
            group_id=group_id,
            sender=mask_user_id(identity.user_id),
            message_id=sanitize_log_data(str(message.get("messageId", ""))),
            payload_length=len(encrypted) if isinstance(encrypted, (str, list)) else 0,
            recipients=len(recipients),
            delivered=delivered,
        )

        if self._store is not None:
            self._store.store_message(group_id, identity.user_id, payload)

        return RelayResult(
            group_id=group_id,
            recipients=len(recipients),
            delivered=delivered,
            skipped=len(recipients) - delivered,
        )

    def get_stats(self) -> dict[str, int]:
        return {"messages_relayed": self._relayed, "messages_dropped": self._dropped}
