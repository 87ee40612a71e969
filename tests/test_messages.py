"""
Tests for the /messages endpoints.

Tests cover:
- Sending (sender taken from the token, unknown recipient)
- Viewing (sender and recipient only)
- Marking read (recipient only, read_at set once)
- The full register/send/read flow
"""

from datetime import datetime

import pytest

from app.auth import AuthService
from app.config import settings
from conftest import register_user, auth_header


@pytest.fixture
def tokens(client):
    """Register alice, bob and carol; return their tokens."""
    return {name: register_user(client, name) for name in ("alice", "bob", "carol")}


def send(client, token: str, to_username: str, body: str = "hi") -> dict:
    response = client.post(
        "/messages",
        json={"to_username": to_username, "body": body},
        headers=auth_header(token),
    )
    assert response.status_code == 200, response.text
    return response.json()["message"]


class TestSendMessage:
    """Test POST /messages."""

    def test_send_message(self, client, tokens):
        message = send(client, tokens["bob"], "alice", "hello")

        assert message["from_username"] == "bob"
        assert message["to_username"] == "alice"
        assert message["body"] == "hello"
        assert set(message.keys()) == {"id", "from_username", "to_username", "body", "sent_at"}

    def test_sender_comes_from_token(self, client, tokens):
        response = client.post(
            "/messages",
            json={"to_username": "alice", "body": "spoof", "from_username": "carol"},
            headers=auth_header(tokens["bob"]),
        )

        assert response.status_code == 200
        assert response.json()["message"]["from_username"] == "bob"

    def test_unknown_recipient(self, client, tokens):
        response = client.post(
            "/messages",
            json={"to_username": "ghost", "body": "anyone?"},
            headers=auth_header(tokens["bob"]),
        )
        assert response.status_code == 404
        assert response.json() == {"detail": "No user: ghost"}

    def test_sender_without_account(self, client, tokens):
        # Validly signed, but nobody registered as "ghost"
        token = AuthService(settings.SECRET_KEY).issue_token("ghost")

        response = client.post(
            "/messages",
            json={"to_username": "alice", "body": "boo"},
            headers=auth_header(token),
        )

        assert response.status_code == 404
        assert response.json() == {"detail": "No user: ghost"}

    def test_requires_token(self, client, tokens):
        response = client.post("/messages", json={"to_username": "alice", "body": "hi"})
        assert response.status_code == 401


class TestGetMessage:
    """Test GET /messages/{id}."""

    def test_sender_and_recipient_can_view(self, client, tokens):
        message = send(client, tokens["alice"], "bob")

        for name in ("alice", "bob"):
            response = client.get(f"/messages/{message['id']}", headers=auth_header(tokens[name]))
            assert response.status_code == 200

    def test_detail_fields(self, client, tokens):
        message = send(client, tokens["alice"], "bob", "details")

        detail = client.get(
            f"/messages/{message['id']}", headers=auth_header(tokens["bob"])
        ).json()["message"]

        assert detail["id"] == message["id"]
        assert detail["body"] == "details"
        assert detail["read_at"] is None
        assert detail["from_user"] == {
            "username": "alice", "first_name": "Alice", "last_name": "Test", "phone": "+14155550100"
        }
        assert detail["to_user"]["username"] == "bob"

    def test_third_party_unauthorized(self, client, tokens):
        message = send(client, tokens["alice"], "bob")

        response = client.get(f"/messages/{message['id']}", headers=auth_header(tokens["carol"]))

        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized"}

    def test_unknown_message(self, client, tokens):
        response = client.get("/messages/999", headers=auth_header(tokens["alice"]))
        assert response.status_code == 404


class TestMarkRead:
    """Test POST /messages/{id}/read."""

    def test_recipient_marks_read(self, client, tokens):
        message = send(client, tokens["alice"], "bob")

        response = client.post(f"/messages/{message['id']}/read", headers=auth_header(tokens["bob"]))

        assert response.status_code == 200
        result = response.json()["message"]
        assert result["id"] == message["id"]
        assert result["read_at"] is not None

        read_at = datetime.fromisoformat(result["read_at"])
        sent_at = datetime.fromisoformat(message["sent_at"])
        assert read_at.replace(tzinfo=None) >= sent_at.replace(tzinfo=None)

    @pytest.mark.parametrize("name", ["alice", "carol"])
    def test_non_recipient_unauthorized(self, client, tokens, name):
        message = send(client, tokens["alice"], "bob")

        response = client.post(f"/messages/{message['id']}/read", headers=auth_header(tokens[name]))
        assert response.status_code == 401

        detail = client.get(f"/messages/{message['id']}", headers=auth_header(tokens["bob"]))
        assert detail.json()["message"]["read_at"] is None

    def test_second_mark_keeps_timestamp(self, client, tokens):
        message = send(client, tokens["alice"], "bob")
        url = f"/messages/{message['id']}/read"

        first = client.post(url, headers=auth_header(tokens["bob"])).json()["message"]["read_at"]
        second = client.post(url, headers=auth_header(tokens["bob"])).json()["message"]["read_at"]

        assert second == first

    def test_unknown_message(self, client, tokens):
        response = client.post("/messages/999/read", headers=auth_header(tokens["bob"]))
        assert response.status_code == 404


class TestMessagingFlow:
    """Register two users and exchange a message end to end."""

    def test_flow(self, client):
        t_alice = register_user(client, "alice", "pw1")
        t_bob = register_user(client, "bob", "pw2")

        message = send(client, t_bob, "alice", "hi")
        message_id = message["id"]

        detail = client.get(f"/messages/{message_id}", headers=auth_header(t_alice))
        assert detail.status_code == 200
        assert detail.json()["message"]["read_at"] is None

        inbox = client.get("/users/alice/to", headers=auth_header(t_alice)).json()["messages"]
        assert [m["id"] for m in inbox] == [message_id]
        assert inbox[0]["from_user"]["username"] == "bob"

        # bob sent it, so bob cannot mark it read
        response = client.post(f"/messages/{message_id}/read", headers=auth_header(t_bob))
        assert response.status_code == 401

        response = client.post(f"/messages/{message_id}/read", headers=auth_header(t_alice))
        assert response.status_code == 200
        assert response.json()["message"]["read_at"] is not None

        outbox = client.get("/users/bob/from", headers=auth_header(t_bob)).json()["messages"]
        assert outbox[0]["read_at"] is not None
