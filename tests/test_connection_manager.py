"""
Tests for connection lifecycle, disconnect cleanup and shutdown.
"""

import json

import pytest

from circle_gateway.components.core.constants import WSCloseCode
from circle_gateway.components.events.router import ClientSession, DispatchOutcome


def frame(event_type: str, data: dict | None = None) -> str:
    return json.dumps({"type": event_type, "data": data or {}})


class TestConnect:
    """Accept and registration."""

    @pytest.mark.asyncio
    async def test_connect_registers(self, manager, connect_user):
        cid, ws, identity = await connect_user("alice", "1001")

        assert ws.accepted
        assert cid in manager.connections
        assert manager.index.connection_for_user("1001") == cid
        assert manager.total_connections == 1

    @pytest.mark.asyncio
    async def test_connection_ids_are_unique(self, manager, connect_user):
        first, _, _ = await connect_user("alice", "1001")
        second, _, _ = await connect_user("alice", "1001")

        assert first != second
        assert manager.index.connection_for_user("1001") == second

    @pytest.mark.asyncio
    async def test_connect_refused_during_shutdown(self, manager, connect_user):
        await manager.shutdown()

        with pytest.raises(ConnectionError):
            await connect_user("alice", "1001")


class TestDisconnectCleanup:
    """Everything a connection owned is released on disconnect."""

    @pytest.mark.asyncio
    async def test_disconnect_leaves_waitroom(self, manager, connect_user):
        cid_a, ws_a, identity_a = await connect_user("alice", "1001")
        cid_b, _, identity_b = await connect_user("bob", "1002")
        await manager.dispatch(ClientSession(cid_a, identity_a), frame("join_waitroom"))
        await manager.dispatch(ClientSession(cid_b, identity_b), frame("join_waitroom"))
        ws_a.clear()

        assert await manager.disconnect(cid_b) is True

        assert not manager.waitroom.is_waiting("1002")
        updated = ws_a.events("waitroom_updated")
        assert len(updated) == 1
        assert updated[0]["data"]["currentCount"] == 1

    @pytest.mark.asyncio
    async def test_disconnect_leaves_every_group(self, manager, connect_user):
        cid_a, ws_a, identity_a = await connect_user("alice", "1001")
        cid_b, ws_b, identity_b = await connect_user("bob", "1002")
        cid_c, _, identity_c = await connect_user("charlie", "1003")
        await manager.dispatch(ClientSession(cid_a, identity_a), frame("join_group", {"groupId": "g1"}))
        await manager.dispatch(ClientSession(cid_b, identity_b), frame("join_group", {"groupId": "g2"}))
        for group_id in ("g1", "g2"):
            await manager.dispatch(ClientSession(cid_c, identity_c), frame("join_group", {"groupId": group_id}))
        ws_a.clear()
        ws_b.clear()

        await manager.disconnect(cid_c)

        assert len(ws_a.events("member_left")) == 1
        assert len(ws_b.events("member_left")) == 1
        assert manager.groups.groups_of(cid_c) == frozenset()
        assert cid_c not in manager.connections

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, manager, connect_user):
        cid_a, ws_a, identity_a = await connect_user("alice", "1001")
        cid_b, _, identity_b = await connect_user("bob", "1002")
        await manager.dispatch(ClientSession(cid_a, identity_a), frame("join_group", {"groupId": "g1"}))
        await manager.dispatch(ClientSession(cid_b, identity_b), frame("join_group", {"groupId": "g1"}))
        ws_a.clear()

        assert await manager.disconnect(cid_b) is True
        assert await manager.disconnect(cid_b) is False

        assert len(ws_a.events("member_left")) == 1

    @pytest.mark.asyncio
    async def test_old_connection_disconnect_keeps_newer_mapping(self, manager, connect_user):
        old_cid, _, _ = await connect_user("alice", "1001")
        new_cid, _, _ = await connect_user("alice", "1001")

        await manager.disconnect(old_cid)

        assert manager.index.connection_for_user("1001") == new_cid

    @pytest.mark.asyncio
    async def test_closing_newest_connection_falls_back_to_older(self, manager, connect_user):
        old_cid, ws_old, _ = await connect_user("alice", "1001")
        new_cid, _, _ = await connect_user("alice", "1001")
        cid_b, ws_b, identity_b = await connect_user("bob", "1002")

        await manager.disconnect(new_cid)

        assert manager.index.is_online("1001")
        assert manager.index.connection_for_user("1001") == old_cid

        device_info = {"registrationId": 9}
        await manager.dispatch(
            ClientSession(cid_b, identity_b),
            frame("device_info_exchange", {"targetUserId": "1001", "deviceInfo": device_info}),
        )

        assert ws_b.events("device_info_error") == []
        assert ws_old.events("device_info_received")[0]["data"] == {
            "fromUserId": "1002",
            "deviceInfo": device_info,
        }

    @pytest.mark.asyncio
    async def test_offline_after_last_connection(self, manager, connect_user):
        cid, _, _ = await connect_user("alice", "1001")
        await manager.disconnect(cid)

        assert not manager.index.is_online("1001")


class TestDispatchEndToEnd:
    """Full flows through the composed manager."""

    @pytest.mark.asyncio
    async def test_waitroom_to_group_message(self, manager, connect_user):
        users = [await connect_user(name, uid) for name, uid in (("alice", "1001"), ("bob", "1002"), ("charlie", "1003"))]

        for cid, _, identity in users:
            outcome = await manager.dispatch(ClientSession(cid, identity), frame("join_waitroom"))
            assert outcome is DispatchOutcome.HANDLED

        group_ids = {ws.events("group_created")[0]["data"]["groupId"] for _, ws, _ in users}
        assert len(group_ids) == 1
        group_id = group_ids.pop()

        for cid, _, identity in users:
            await manager.dispatch(ClientSession(cid, identity), frame("join_group", {"groupId": group_id}))
        for _, ws, _ in users:
            ws.clear()

        sender_cid, sender_ws, sender = users[0]
        message = {"messageId": "m-1", "encryptedPayload": "3q2+7w==", "keyVersion": 1}
        await manager.dispatch(
            ClientSession(sender_cid, sender),
            frame("group_message", {"groupId": group_id, "encryptedMessage": message}),
        )

        assert sender_ws.sent == []
        for _, ws, _ in users[1:]:
            data = ws.events("group_message")[0]["data"]
            assert data["encryptedPayload"] == "3q2+7w=="
            assert data["senderId"] == "1001"
            assert data["groupId"] == group_id

    @pytest.mark.asyncio
    async def test_public_stats(self, manager, connect_user):
        cid, _, identity = await connect_user("alice", "1001")
        await manager.dispatch(ClientSession(cid, identity), frame("join_waitroom"))
        await manager.dispatch(ClientSession(cid, identity), frame("join_group", {"groupId": "g1"}))

        stats = manager.get_public_stats()

        assert stats["waitingUsers"] == 1
        assert stats["minMembers"] == 3
        assert stats["needMore"] == 2
        assert stats["activeGroups"] == 1


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_closes_everything(self, manager, connect_user):
        cid_a, ws_a, identity_a = await connect_user("alice", "1001")
        _, ws_b, _ = await connect_user("bob", "1002")
        await manager.dispatch(ClientSession(cid_a, identity_a), frame("join_waitroom"))

        closed = await manager.shutdown()

        assert closed == 2
        assert ws_a.close_code == WSCloseCode.GOING_AWAY
        assert ws_b.close_code == WSCloseCode.GOING_AWAY
        assert manager.total_connections == 0
        assert manager.waitroom.waiting_count == 0
        assert manager.is_shutting_down()
