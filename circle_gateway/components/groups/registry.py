"""
Group Registry - relay group membership by connection.

A group exists while it has at least one member connection. It is created
implicitly by the first join_group for an unseen id and deleted as soon as
its last member leaves or disconnects.

Membership is tracked per connection, not per user: a user reconnecting
on a new connection has to join again.
"""

from __future__ import annotations

import asyncio
from types import MappingProxyType
from typing import TYPE_CHECKING

from circle_gateway.components.core.constants import OutboundEvent
from circle_gateway.components.core.context import UserIdentity
from shared.config.logging import get_logger, mask_user_id

if TYPE_CHECKING:
    from circle_gateway.components.data.group_store import AsyncGroupStore
    from circle_gateway.core.connection.broadcaster import ConnectionBroadcaster

logger = get_logger(__name__)


class GroupRegistry:
    """
    Maintains group_id -> {connection_id: identity} and its reverse.

    Thread Safety:
    - Every mutation runs under LockManager.groups_lock
    - member_joined / member_left / group_members are sent after release
    """

    def __init__(
        self,
        lock: asyncio.Lock,
        broadcaster: "ConnectionBroadcaster",
        store: "AsyncGroupStore | None" = None,
    ) -> None:
        self._lock = lock
        self._broadcaster = broadcaster
        self._store = store

        # group_id -> connection_id -> identity (insertion order is join order)
        self._groups: dict[str, dict[str, UserIdentity]] = {}
        # connection_id -> group ids
        self._connection_groups: dict[str, set[str]] = {}

        self._groups_created = 0
        self._groups_deleted = 0

    # =========================================================================
    # Query methods (no locks needed - read-only)
    # =========================================================================

    @property
    def groups(self) -> MappingProxyType[str, dict[str, UserIdentity]]:
        """All groups (immutable view)."""
        return MappingProxyType(self._groups)

    def exists(self, group_id: str) -> bool:
        return group_id in self._groups

    def members_of(self, group_id: str) -> frozenset[str]:
        """Connection ids currently in a group (empty if the group does not exist)."""
        return frozenset(self._groups.get(group_id, ()))

    def groups_of(self, connection_id: str) -> frozenset[str]:
        return frozenset(self._connection_groups.get(connection_id, ()))

    # =========================================================================
    # Operations
    # =========================================================================

    async def join(self, group_id: str, connection_id: str, identity: UserIdentity) -> list[UserIdentity]:
        """
        Add a connection to a group, creating the group if needed.

        The caller receives group_members with everyone else in the group;
        pre-existing members receive member_joined. Joining a group the
        connection is already in re-sends group_members only.

        Returns:
            Identities of the other members, excluding the caller's user.
        """
        async with self._lock:
            members = self._groups.get(group_id)
            if members is None:
                members = {}
                self._groups[group_id] = members
                self._groups_created += 1
                logger.info("Group created on first join", group_id=group_id)

            already_member = connection_id in members
            existing = [cid for cid in members if cid != connection_id]
            others = [
                ident for cid, ident in members.items()
                if cid != connection_id and ident.user_id != identity.user_id
            ]
            members[connection_id] = identity
            self._connection_groups.setdefault(connection_id, set()).add(group_id)
            member_count = len(members)

        await self._broadcaster.send_to_connection(
            connection_id,
            OutboundEvent.GROUP_MEMBERS,
            {"groupId": group_id, "members": [m.to_public_dict() for m in others]},
        )
        if already_member:
            return others

        await self._broadcaster.send_to_connections(
            existing,
            OutboundEvent.MEMBER_JOINED,
            {**identity.to_public_dict(), "groupId": group_id},
        )
        logger.info(
            "Member joined group",
            group_id=group_id,
            user_id=mask_user_id(identity.user_id),
            members=member_count,
        )

        if self._store is not None:
            self._store.add_member(group_id, identity.user_id)
        return others

    async def leave(self, group_id: str, connection_id: str, identity: UserIdentity) -> bool:
        """
        Remove a connection from a group.

        Returns:
            True if the connection was a member. Leaving a group one is not
            in changes nothing and notifies nobody.
        """
        async with self._lock:
            removed, remaining, deleted = self._remove_locked(group_id, connection_id)

        if not removed:
            logger.debug("Leave for non-member ignored", group_id=group_id, connection=connection_id[:8])
            return False

        await self._after_leave(group_id, identity, remaining, deleted)
        return True

    async def leave_all(self, connection_id: str, identity: UserIdentity) -> list[str]:
        """
        Disconnect path: remove a connection from every group it is in.

        Each group's remaining members receive exactly one member_left.

        Returns:
            The group ids the connection was removed from.
        """
        results: list[tuple[str, list[str], bool]] = []
        async with self._lock:
            for group_id in list(self._connection_groups.get(connection_id, ())):
                removed, remaining, deleted = self._remove_locked(group_id, connection_id)
                if removed:
                    results.append((group_id, remaining, deleted))
            self._connection_groups.pop(connection_id, None)

        for group_id, remaining, deleted in results:
            await self._after_leave(group_id, identity, remaining, deleted)
        return [group_id for group_id, _, _ in results]

    def stats(self) -> dict[str, int]:
        return {
            "activeGroups": len(self._groups),
            "groupMemberships": sum(len(m) for m in self._groups.values()),
            "groupsCreated": self._groups_created,
            "groupsDeleted": self._groups_deleted,
        }

    def get_stats(self) -> dict[str, int]:
        return self.stats()

    # =========================================================================
    # Internals
    # =========================================================================

    def _remove_locked(self, group_id: str, connection_id: str) -> tuple[bool, list[str], bool]:
        """Remove membership. MUST be called with the groups lock."""
        members = self._groups.get(group_id)
        if members is None or connection_id not in members:
            return False, [], False

        del members[connection_id]
        groups = self._connection_groups.get(connection_id)
        if groups is not None:
            groups.discard(group_id)
            if not groups:
                del self._connection_groups[connection_id]

        if not members:
            del self._groups[group_id]
            self._groups_deleted += 1
            return True, [], True
        return True, list(members), False

    async def _after_leave(
        self,
        group_id: str,
        identity: UserIdentity,
        remaining: list[str],
        deleted: bool,
    ) -> None:
        await self._broadcaster.send_to_connections(
            remaining,
            OutboundEvent.MEMBER_LEFT,
            {**identity.to_public_dict(), "groupId": group_id},
        )
        logger.info(
            "Member left group",
            group_id=group_id,
            user_id=mask_user_id(identity.user_id),
            remaining=len(remaining),
            group_deleted=deleted,
        )

        if self._store is not None:
            self._store.deactivate_member(group_id, identity.user_id)
            if deleted:
                self._store.record_group_stats(group_id, 0)
