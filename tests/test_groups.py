"""
Tests for the group registry: membership and membership events.
"""

import asyncio

import pytest

from circle_gateway.components.core.context import UserIdentity
from circle_gateway.components.groups.registry import GroupRegistry

ALICE = UserIdentity("1001", "alice")
BOB = UserIdentity("1002", "bob")
CHARLIE = UserIdentity("1003", "charlie")


@pytest.fixture
def groups(broadcaster):
    return GroupRegistry(asyncio.Lock(), broadcaster)


class TestGroupJoin:
    """join_group behaviour."""

    @pytest.mark.asyncio
    async def test_first_join_creates_group(self, groups, add_connection):
        cid, ws = add_connection("alice", "1001")
        others = await groups.join("g1", cid, ALICE)

        assert others == []
        assert groups.exists("g1")
        assert groups.members_of("g1") == frozenset({cid})
        assert ws.events("group_members") == [
            {"type": "group_members", "data": {"groupId": "g1", "members": []}}
        ]

    @pytest.mark.asyncio
    async def test_second_join_notifies_existing_members(self, groups, add_connection):
        cid_a, ws_a = add_connection("alice", "1001")
        cid_b, ws_b = add_connection("bob", "1002")
        await groups.join("g1", cid_a, ALICE)
        ws_a.clear()

        await groups.join("g1", cid_b, BOB)

        assert ws_a.events("member_joined") == [
            {"type": "member_joined", "data": {"userId": "1002", "username": "bob", "groupId": "g1"}}
        ]
        members = ws_b.events("group_members")[0]["data"]["members"]
        assert members == [{"userId": "1001", "username": "alice"}]
        assert ws_b.events("member_joined") == []

    @pytest.mark.asyncio
    async def test_rejoin_only_resends_member_list(self, groups, add_connection):
        cid_a, ws_a = add_connection("alice", "1001")
        cid_b, ws_b = add_connection("bob", "1002")
        await groups.join("g1", cid_a, ALICE)
        await groups.join("g1", cid_b, BOB)
        ws_a.clear()
        ws_b.clear()

        await groups.join("g1", cid_b, BOB)

        assert ws_a.sent == []
        assert [m["type"] for m in ws_b.sent] == ["group_members"]
        assert len(groups.members_of("g1")) == 2

    @pytest.mark.asyncio
    async def test_join_is_persisted(self, broadcaster, add_connection, async_store, recording_store):
        groups = GroupRegistry(asyncio.Lock(), broadcaster, store=async_store)
        cid, _ = add_connection("alice", "1001")
        await groups.join("g1", cid, ALICE)
        await async_store.drain()

        assert recording_store.named("add_member") == [("add_member", "g1", "1001")]


class TestGroupLeave:
    """leave_group and disconnect."""

    @pytest.mark.asyncio
    async def test_leave_notifies_remaining_only(self, groups, add_connection):
        cid_a, ws_a = add_connection("alice", "1001")
        cid_b, ws_b = add_connection("bob", "1002")
        await groups.join("g1", cid_a, ALICE)
        await groups.join("g1", cid_b, BOB)
        ws_a.clear()
        ws_b.clear()

        assert await groups.leave("g1", cid_b, BOB) is True

        assert groups.members_of("g1") == frozenset({cid_a})
        assert ws_a.events("member_left") == [
            {"type": "member_left", "data": {"userId": "1002", "username": "bob", "groupId": "g1"}}
        ]
        assert ws_b.sent == []

    @pytest.mark.asyncio
    async def test_group_deleted_when_last_member_leaves(self, groups, add_connection):
        cid_a, _ = add_connection("alice", "1001")
        await groups.join("g1", cid_a, ALICE)

        await groups.leave("g1", cid_a, ALICE)

        assert not groups.exists("g1")
        assert groups.stats()["activeGroups"] == 0
        assert groups.stats()["groupsDeleted"] == 1

    @pytest.mark.asyncio
    async def test_leave_non_member_is_noop(self, groups, add_connection):
        cid_a, ws_a = add_connection("alice", "1001")
        cid_b, _ = add_connection("bob", "1002")
        await groups.join("g1", cid_a, ALICE)
        ws_a.clear()

        assert await groups.leave("g1", cid_b, BOB) is False
        assert await groups.leave("missing", cid_b, BOB) is False
        assert ws_a.sent == []
        assert groups.exists("g1")

    @pytest.mark.asyncio
    async def test_leave_all_sends_one_member_left_per_group(self, groups, add_connection):
        cid_a, ws_a = add_connection("alice", "1001")
        cid_b, ws_b = add_connection("bob", "1002")
        cid_c, _ = add_connection("charlie", "1003")
        await groups.join("g1", cid_a, ALICE)
        await groups.join("g2", cid_b, BOB)
        await groups.join("g1", cid_c, CHARLIE)
        await groups.join("g2", cid_c, CHARLIE)
        ws_a.clear()
        ws_b.clear()

        left = await groups.leave_all(cid_c, CHARLIE)

        assert sorted(left) == ["g1", "g2"]
        assert groups.groups_of(cid_c) == frozenset()
        assert [m["data"]["groupId"] for m in ws_a.events("member_left")] == ["g1"]
        assert [m["data"]["groupId"] for m in ws_b.events("member_left")] == ["g2"]

    @pytest.mark.asyncio
    async def test_leave_is_persisted(self, broadcaster, add_connection, async_store, recording_store):
        groups = GroupRegistry(asyncio.Lock(), broadcaster, store=async_store)
        cid, _ = add_connection("alice", "1001")
        await groups.join("g1", cid, ALICE)
        await groups.leave("g1", cid, ALICE)
        await async_store.drain()

        assert recording_store.named("deactivate_member") == [("deactivate_member", "g1", "1001")]
        assert recording_store.named("record_group_stats") == [("record_group_stats", "g1", 0)]
