"""
Tests for the HTTP routes and the /ws/circle WebSocket endpoint.
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from circle_gateway.main import app
from shared.security.auth import sign_jwt


@pytest.fixture(scope="module")
def client():
    with TestClient(app) as test_client:
        yield test_client


def receive_until(ws, event_type: str, limit: int = 10) -> dict:
    """Read frames until one of the given type arrives."""
    for _ in range(limit):
        message = ws.receive_json()
        if message["type"] == event_type:
            return message
    raise AssertionError(f"{event_type} not received")


class TestHealthEndpoints:
    """Health and stats routes."""

    def test_health_check(self, client):
        response = client.get("/ws/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "circle-gateway"
        assert "total_connections" in data

    def test_stats(self, client):
        response = client.get("/ws/stats")
        assert response.status_code == 200
        data = response.json()
        assert data["minMembers"] == 3
        assert {"waitingUsers", "needMore", "activeGroups"} <= set(data)

    def test_message_history_limit_validated(self, client):
        response = client.get(
            "/ws/groups/group_1/messages",
            params={"limit": 0, "token": "mock_jwt_token_alice"},
        )
        assert response.status_code == 422


class TestMessageHistoryAuth:
    """Stored history is only served to authenticated callers."""

    def test_rejected_without_credential(self, client):
        response = client.get("/ws/groups/group_1/messages")
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    def test_rejected_with_bad_token(self, client):
        response = client.get("/ws/groups/group_1/messages", params={"token": "not.a.jwt"})
        assert response.status_code == 401

    def test_rejected_with_malformed_header(self, client):
        response = client.get(
            "/ws/groups/group_1/messages",
            headers={"Authorization": "Token abc"},
        )
        assert response.status_code == 401

    def test_accepted_with_query_token(self, client):
        response = client.get(
            "/ws/groups/group_1/messages",
            params={"limit": 5, "token": "mock_jwt_token_alice"},
        )
        assert response.status_code == 200
        assert response.json() == {"groupId": "group_1", "messages": []}

    def test_accepted_with_bearer_jwt(self, client):
        token = sign_jwt({"id": 77, "login": "jwt-user"})
        response = client.get(
            "/ws/groups/group_1/messages",
            headers={"Authorization": f"Bearer {token}"},
        )
        assert response.status_code == 200
        assert response.json()["messages"] == []


class TestCircleAuthentication:
    """Handshake authentication."""

    def test_unknown_mock_user_rejected(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/circle?token=mock_jwt_token_mallory"):
                pass
        assert exc.value.code == 4001

    def test_missing_token_rejected(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/circle"):
                pass
        assert exc.value.code == 4001

    def test_invalid_jwt_rejected(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/circle?token=not.a.jwt"):
                pass
        assert exc.value.code == 4001

    def test_signed_jwt_accepted(self, client):
        token = sign_jwt({"id": 77, "login": "jwt-user"})
        with client.websocket_connect(f"/ws/circle?token={token}") as ws:
            ws.send_text("ping")
            assert ws.receive_json() == {"type": "pong"}


class TestCircleSession:
    """Traffic over an authenticated connection."""

    def test_plain_and_json_ping(self, client):
        with client.websocket_connect("/ws/circle?token=mock_jwt_token_eve") as ws:
            ws.send_text("ping")
            assert ws.receive_json() == {"type": "pong"}
            ws.send_text('{"type":"ping"}')
            assert ws.receive_json() == {"type": "pong"}

    def test_invalid_frame_keeps_connection_open(self, client):
        with client.websocket_connect("/ws/circle?token=mock_jwt_token_eve") as ws:
            ws.send_text("this is not json")
            ws.send_json({"type": "no_such_event", "data": {}})
            ws.send_text("ping")
            assert ws.receive_json() == {"type": "pong"}

    def test_disconnect_event_closes_normally(self, client):
        with client.websocket_connect("/ws/circle?token=mock_jwt_token_eve") as ws:
            ws.send_json({"type": "disconnect", "data": {}})
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
            assert exc.value.code == 1000

    def test_waitroom_forms_group(self, client):
        with client.websocket_connect("/ws/circle?token=mock_jwt_token_alice") as alice, \
                client.websocket_connect("/ws/circle?token=mock_jwt_token_bob") as bob, \
                client.websocket_connect("/ws/circle?token=mock_jwt_token_charlie") as charlie:
            alice.send_json({"type": "join_waitroom"})
            joined = receive_until(alice, "waitroom_joined")
            assert joined["data"]["currentCount"] == 1

            bob.send_json({"type": "join_waitroom"})
            assert receive_until(bob, "waitroom_joined")["data"]["currentCount"] == 2

            charlie.send_json({"type": "join_waitroom"})
            created = [receive_until(ws, "group_created") for ws in (alice, bob, charlie)]

            group_ids = {c["data"]["groupId"] for c in created}
            assert len(group_ids) == 1
            assert group_ids.pop().startswith("group_")
            usernames = [m["username"] for m in created[0]["data"]["members"]]
            assert usernames == ["alice", "bob", "charlie"]

        assert client.get("/ws/stats").json()["waitingUsers"] == 0

    def test_group_message_relay(self, client):
        with client.websocket_connect("/ws/circle?token=mock_jwt_token_diana") as diana, \
                client.websocket_connect("/ws/circle?token=mock_jwt_token_eve") as eve:
            diana.send_json({"type": "join_group", "data": {"groupId": "g-relay"}})
            assert receive_until(diana, "group_members")["data"]["members"] == []

            eve.send_json({"type": "join_group", "data": {"groupId": "g-relay"}})
            members = receive_until(eve, "group_members")["data"]["members"]
            assert members == [{"userId": "1004", "username": "diana"}]
            assert receive_until(diana, "member_joined")["data"]["userId"] == "1005"

            message = {"messageId": "m-1", "encryptedPayload": "3q2+7w==", "signature": "c2ln", "keyVersion": 1}
            diana.send_json({"type": "group_message", "data": {"groupId": "g-relay", "encryptedMessage": message}})

            relayed = receive_until(eve, "group_message")["data"]
            assert relayed["encryptedPayload"] == "3q2+7w=="
            assert relayed["signature"] == "c2ln"
            assert relayed["senderId"] == "1004"
            assert relayed["senderName"] == "diana"

            eve.send_json({"type": "leave_group", "data": {"groupId": "g-relay"}})
            left = receive_until(diana, "member_left")["data"]
            assert left == {"userId": "1005", "username": "eve", "groupId": "g-relay"}

    def test_device_info_to_offline_user(self, client):
        with client.websocket_connect("/ws/circle?token=mock_jwt_token_diana") as diana:
            diana.send_json({
                "type": "device_info_exchange",
                "data": {"targetUserId": 424242, "deviceInfo": {"registrationId": 1}},
            })
            error = receive_until(diana, "device_info_error")["data"]
            assert error == {"targetUserId": "424242", "error": "User not online"}
