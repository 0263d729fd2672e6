"""
Tests for sender-key and pairwise session signaling.
"""

import asyncio

import pytest

from circle_gateway.components.core.constants import USER_NOT_ONLINE
from circle_gateway.components.core.context import UserIdentity
from circle_gateway.components.groups.registry import GroupRegistry
from circle_gateway.components.signaling.router import KeySignalingRouter

ALICE = UserIdentity("1001", "alice")
BOB = UserIdentity("1002", "bob")
CHARLIE = UserIdentity("1003", "charlie")


@pytest.fixture
def groups(broadcaster):
    return GroupRegistry(asyncio.Lock(), broadcaster)


@pytest.fixture
def signaling(index, groups, broadcaster):
    return KeySignalingRouter(index, groups, broadcaster)


class TestPointToPoint:
    """Events addressed to a single user."""

    @pytest.mark.asyncio
    async def test_share_sender_key_reaches_target(self, signaling, add_connection):
        _, ws_bob = add_connection("bob", "1002")
        bundle = {"chainKey": "AAEC", "signingKey": "BQYH", "iteration": 0}

        assert await signaling.share_sender_key(ALICE, "g1", "1002", bundle) is True

        assert ws_bob.events("sender_key_bundle") == [
            {"type": "sender_key_bundle", "data": {"groupId": "g1", "fromUserId": "1001", "bundle": bundle}}
        ]

    @pytest.mark.asyncio
    async def test_share_sender_key_to_offline_user_is_silent(self, signaling, add_connection):
        _, ws_alice = add_connection("alice", "1001")

        assert await signaling.share_sender_key(ALICE, "g1", "4242", {"k": 1}) is False
        assert ws_alice.sent == []

    @pytest.mark.asyncio
    async def test_request_specific_sender_key(self, signaling, add_connection):
        _, ws_bob = add_connection("bob", "1002")

        await signaling.request_specific_sender_key(ALICE, "g1", "1002")

        assert ws_bob.events("request_sender_key")[0]["data"] == {"groupId": "g1", "fromUserId": "1001"}

    @pytest.mark.asyncio
    async def test_device_info_to_offline_user_reports_error(self, signaling, add_connection):
        cid_alice, ws_alice = add_connection("alice", "1001")

        delivered = await signaling.exchange_device_info(cid_alice, ALICE, "4242", {"registrationId": 7})

        assert delivered is False
        assert ws_alice.events("device_info_error") == [
            {"type": "device_info_error", "data": {"targetUserId": "4242", "error": USER_NOT_ONLINE}}
        ]

    @pytest.mark.asyncio
    async def test_device_info_delivered(self, signaling, add_connection):
        cid_alice, ws_alice = add_connection("alice", "1001")
        _, ws_bob = add_connection("bob", "1002")
        device_info = {"registrationId": 7, "identityKey": "BQ=="}

        assert await signaling.exchange_device_info(cid_alice, ALICE, "1002", device_info) is True

        assert ws_bob.events("device_info_received")[0]["data"] == {
            "fromUserId": "1001",
            "deviceInfo": device_info,
        }
        assert ws_alice.sent == []

    @pytest.mark.asyncio
    async def test_initial_message_to_offline_user_reports_error(self, signaling, add_connection):
        cid_alice, ws_alice = add_connection("alice", "1001")

        await signaling.send_initial_message(cid_alice, ALICE, "4242", {"body": "x"}, "idk")

        errors = ws_alice.events("initial_message_error")
        assert len(errors) == 1
        assert errors[0]["data"]["targetUserId"] == "4242"

    @pytest.mark.asyncio
    async def test_initial_message_delivered(self, signaling, add_connection):
        cid_alice, _ = add_connection("alice", "1001")
        _, ws_bob = add_connection("bob", "1002")

        await signaling.send_initial_message(cid_alice, ALICE, "1002", {"type": 3, "body": "AwQ="}, "BQ==")

        assert ws_bob.events("initial_message_received")[0]["data"] == {
            "fromUserId": "1001",
            "initialMessage": {"type": 3, "body": "AwQ="},
            "remoteIdentityKey": "BQ==",
        }

    @pytest.mark.asyncio
    async def test_latest_connection_receives_point_to_point(self, signaling, add_connection):
        _, ws_old = add_connection("bob", "1002")
        _, ws_new = add_connection("bob", "1002")

        await signaling.share_sender_key(ALICE, "g1", "1002", {"k": 1})

        assert ws_old.sent == []
        assert len(ws_new.events("sender_key_bundle")) == 1


class TestGroupFanOut:
    """Events fanned out to a group."""

    @pytest.mark.asyncio
    async def test_request_sender_keys_excludes_requester(self, signaling, groups, add_connection):
        cid_a, ws_a = add_connection("alice", "1001")
        cid_b, ws_b = add_connection("bob", "1002")
        cid_c, ws_c = add_connection("charlie", "1003")
        for cid, identity in ((cid_a, ALICE), (cid_b, BOB), (cid_c, CHARLIE)):
            await groups.join("g1", cid, identity)
        for ws in (ws_a, ws_b, ws_c):
            ws.clear()

        sent = await signaling.request_sender_keys(cid_a, ALICE, "g1")

        assert sent == 2
        assert ws_a.sent == []
        for ws in (ws_b, ws_c):
            assert ws.events("sender_key_request")[0]["data"] == {"groupId": "g1", "fromUserId": "1001"}

    @pytest.mark.asyncio
    async def test_key_rotation_fans_out(self, signaling, groups, add_connection):
        cid_a, _ = add_connection("alice", "1001")
        cid_b, ws_b = add_connection("bob", "1002")
        await groups.join("g1", cid_a, ALICE)
        await groups.join("g1", cid_b, BOB)
        ws_b.clear()

        await signaling.notify_key_rotation(cid_a, ALICE, "g1", {"iteration": 1})

        assert ws_b.events("key_rotation")[0]["data"] == {
            "groupId": "g1",
            "fromUserId": "1001",
            "newBundle": {"iteration": 1},
        }

    @pytest.mark.asyncio
    async def test_fan_out_to_unknown_group(self, signaling, add_connection):
        cid_a, _ = add_connection("alice", "1001")
        assert await signaling.request_sender_keys(cid_a, ALICE, "nope") == 0
