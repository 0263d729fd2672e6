"""
Key Signaling Router - point-to-point and group key distribution.

Bundles, device info and initial messages are opaque to the server and
forwarded verbatim. Point-to-point targets resolve through the
SocketUserIndex (latest connection per user); group fan-outs resolve
through the GroupRegistry.

Unresolvable targets are silent for sender-key traffic and answered with
an explicit error for device-info and initial-message traffic, because
those two start a session the caller would otherwise wait on.
"""

from __future__ import annotations

from typing import Any, TYPE_CHECKING

from circle_gateway.components.core.constants import OutboundEvent, USER_NOT_ONLINE
from circle_gateway.components.core.context import UserIdentity, sanitize_log_data
from circle_gateway.components.core.exceptions import RoutingError
from shared.config.logging import get_logger, mask_user_id

if TYPE_CHECKING:
    from circle_gateway.components.connection.index import SocketUserIndex
    from circle_gateway.components.groups.registry import GroupRegistry
    from circle_gateway.core.connection.broadcaster import ConnectionBroadcaster

logger = get_logger(__name__)


class KeySignalingRouter:
    """
    Routes key distribution events. Holds no state of its own.
    """

    def __init__(
        self,
        index: "SocketUserIndex",
        groups: "GroupRegistry",
        broadcaster: "ConnectionBroadcaster",
    ) -> None:
        self._index = index
        self._groups = groups
        self._broadcaster = broadcaster

    # =========================================================================
    # Point-to-point
    # =========================================================================

    async def share_sender_key(
        self,
        sender: UserIdentity,
        group_id: str,
        target_user_id: str,
        bundle: Any,
    ) -> bool:
        """Forward a sender-key bundle to one user. Silent if they are offline."""
        return await self._send_to_user(
            target_user_id,
            OutboundEvent.SENDER_KEY_BUNDLE,
            {"groupId": group_id, "fromUserId": sender.user_id, "bundle": bundle},
        )

    async def request_specific_sender_key(
        self,
        sender: UserIdentity,
        group_id: str,
        from_user_id: str,
    ) -> bool:
        """Ask one user for their sender key. Silent if they are offline."""
        return await self._send_to_user(
            from_user_id,
            OutboundEvent.REQUEST_SENDER_KEY,
            {"groupId": group_id, "fromUserId": sender.user_id},
        )

    async def exchange_device_info(
        self,
        sender_connection_id: str,
        sender: UserIdentity,
        target_user_id: str,
        device_info: Any,
    ) -> bool:
        """Forward device info; the caller gets device_info_error if the target is offline."""
        delivered = await self._send_to_user(
            target_user_id,
            OutboundEvent.DEVICE_INFO_RECEIVED,
            {"fromUserId": sender.user_id, "deviceInfo": device_info},
        )
        if not delivered:
            await self._broadcaster.send_to_connection(
                sender_connection_id,
                OutboundEvent.DEVICE_INFO_ERROR,
                {"targetUserId": target_user_id, "error": USER_NOT_ONLINE},
            )
        return delivered

    async def send_initial_message(
        self,
        sender_connection_id: str,
        sender: UserIdentity,
        target_user_id: str,
        initial_message: Any,
        remote_identity_key: Any,
    ) -> bool:
        """Forward a session-opening message; initial_message_error if the target is offline."""
        delivered = await self._send_to_user(
            target_user_id,
            OutboundEvent.INITIAL_MESSAGE_RECEIVED,
            {
                "fromUserId": sender.user_id,
                "initialMessage": initial_message,
                "remoteIdentityKey": remote_identity_key,
            },
        )
        if not delivered:
            await self._broadcaster.send_to_connection(
                sender_connection_id,
                OutboundEvent.INITIAL_MESSAGE_ERROR,
                {"targetUserId": target_user_id, "error": USER_NOT_ONLINE},
            )
        return delivered

    # =========================================================================
    # Group fan-out
    # =========================================================================

    async def request_sender_keys(
        self,
        sender_connection_id: str,
        sender: UserIdentity,
        group_id: str,
    ) -> int:
        """Ask every other member of a group for their sender key."""
        return await self._send_to_group(
            sender_connection_id,
            group_id,
            OutboundEvent.SENDER_KEY_REQUEST,
            {"groupId": group_id, "fromUserId": sender.user_id},
        )

    async def notify_key_rotation(
        self,
        sender_connection_id: str,
        sender: UserIdentity,
        group_id: str,
        new_bundle: Any,
    ) -> int:
        """Tell every other member of a group that the sender rotated keys."""
        return await self._send_to_group(
            sender_connection_id,
            group_id,
            OutboundEvent.KEY_ROTATION,
            {"groupId": group_id, "fromUserId": sender.user_id, "newBundle": new_bundle},
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _resolve_user(self, user_id: str) -> str:
        connection_id = self._index.connection_for_user(str(user_id))
        if connection_id is None:
            raise RoutingError(
                "Signaling target not online",
                target=mask_user_id(sanitize_log_data(str(user_id))),
            )
        return connection_id

    async def _send_to_user(self, user_id: str, event: str, data: dict[str, Any]) -> bool:
        try:
            connection_id = self._resolve_user(user_id)
        except RoutingError as e:
            logger.info(e.message, event=event, **e.context)
            return False

        delivered = await self._broadcaster.send_to_connection(connection_id, event, data)
        logger.debug("Signaling event forwarded", event=event, target=mask_user_id(user_id), delivered=delivered)
        return delivered

    async def _send_to_group(
        self,
        sender_connection_id: str,
        group_id: str,
        event: str,
        data: dict[str, Any],
    ) -> int:
        recipients = [cid for cid in self._groups.members_of(group_id) if cid != sender_connection_id]
        if not recipients:
            logger.debug("Signaling fan-out has no recipients", event=event, group_id=sanitize_log_data(str(group_id)))
            return 0
        return await self._broadcaster.send_to_connections(recipients, event, data)
