"""Tests for the /ws socket: handshake auth, rooms and event relaying."""

from unittest.mock import AsyncMock, patch

import asyncpg
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from api import app
from api.websockets import RoomManager, UNAUTHORIZED_CLOSE_CODE, rooms
from auth import manager as auth_manager, InvalidTokenError

from conftest import ALICE, BOB

# Test data
TOKENS = {"alice-token": ALICE, "bob-token": BOB}
ROOM_CODE = "aB3_x-9QzK"

async def fake_verify(token):
    if token not in TOKENS:
        raise InvalidTokenError("Invalid token")
    return TOKENS[token]

@pytest.fixture
def socket_client():
    """Client whose socket handshakes resolve the tokens in TOKENS."""
    with patch.object(auth_manager, "verify_token", AsyncMock(side_effect=fake_verify)):
        with TestClient(app) as client:
            yield client

def test_handshake_without_token(socket_client):
    """Sockets without a token are closed before they are accepted."""
    with pytest.raises(WebSocketDisconnect) as exc:
        with socket_client.websocket_connect("/ws"):
            pass
    assert exc.value.code == UNAUTHORIZED_CLOSE_CODE

def test_handshake_with_bad_token(socket_client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with socket_client.websocket_connect("/ws?token=stolen"):
            pass
    assert exc.value.code == UNAUTHORIZED_CLOSE_CODE

def test_room_messages_reach_other_members(socket_client):
    """Room events go to everyone in the room except the sender."""
    with socket_client.websocket_connect("/ws?token=alice-token") as alice, \
            socket_client.websocket_connect("/ws", headers={"Authorization": "Bearer bob-token"}) as bob:
        alice.send_json({"event": "joinRoom", "data": ROOM_CODE})
        assert alice.receive_json() == {"event": "roomUsers", "data": {"users": ["alice"]}}

        bob.send_json({"event": "joinRoom", "data": {"roomCode": ROOM_CODE}})
        joined = bob.receive_json()
        assert joined["event"] == "roomUsers"
        assert sorted(joined["data"]["users"]) == ["alice", "bob"]
        assert alice.receive_json() == {
            "event": "userJoined",
            "data": {"user": "bob", "userId": BOB["id"]}
        }

        alice.send_json({"event": "sendMessage", "data": {"roomCode": ROOM_CODE, "text": "Trade my Furret?"}})
        assert bob.receive_json() == {
            "event": "receiveMessage",
            "data": {"user": "alice", "userId": ALICE["id"], "text": "Trade my Furret?"}
        }

        bob.send_json({"event": "tradeReady", "data": {"roomCode": ROOM_CODE, "accepted": True}})
        assert alice.receive_json()["data"]["accepted"] is True

        # The sender's next frame is the answer to its next event, not its own message
        alice.send_json({"event": "dance", "data": None})
        error = alice.receive_json()
        assert error["event"] == "error"
        assert "dance" in error["data"]["message"]

def test_malformed_frames_get_an_error(socket_client):
    with socket_client.websocket_connect("/ws?token=alice-token") as alice:
        alice.send_text("not json")
        assert alice.receive_json()["event"] == "error"

        alice.send_json({"event": "sendMessage", "data": {"text": "no room"}})
        assert alice.receive_json()["event"] == "error"

def test_user_rooms_are_private(socket_client):
    """Nobody else can join or post to a user's own room."""
    alice_room = f"user:{ALICE['id']}"
    with socket_client.websocket_connect("/ws?token=alice-token"), \
            socket_client.websocket_connect("/ws?token=bob-token") as bob:
        bob.send_json({"event": "joinRoom", "data": alice_room})
        error = bob.receive_json()
        assert error["event"] == "error"
        assert rooms.usernames(alice_room) == ["alice"]

        bob.send_json({"event": "sendMessage", "data": {"roomCode": alice_room, "text": "hi"}})
        assert bob.receive_json()["event"] == "error"

def test_own_user_room_can_be_joined(socket_client):
    with socket_client.websocket_connect("/ws?token=bob-token") as bob:
        bob.send_json({"event": "joinRoom", "data": f"user:{BOB['id']}"})
        assert bob.receive_json() == {"event": "roomUsers", "data": {"users": ["bob"]}}

def test_database_failure_keeps_socket_open(socket_client):
    """A private message that cannot be stored gets an error; the socket stays usable."""
    failing_save = AsyncMock(side_effect=asyncpg.PostgresError("relation does not exist"))
    with patch("api.websockets.save_private_message", failing_save):
        with socket_client.websocket_connect("/ws?token=alice-token") as alice:
            alice.send_json({"event": "privateMessage", "data": {"to": BOB["id"], "text": "hi"}})
            assert alice.receive_json()["event"] == "error"

            alice.send_json({"event": "joinRoom", "data": ROOM_CODE})
            assert alice.receive_json()["event"] == "roomUsers"
    failing_save.assert_awaited_once()

@pytest.mark.asyncio
async def test_emit_to_room_drops_dead_sockets():
    """A socket that fails to receive is removed from every room."""
    class Socket:
        def __init__(self, fail=False):
            self.fail = fail
            self.sent = []

        async def send_json(self, data):
            if self.fail:
                raise RuntimeError("closed")
            self.sent.append(data)

    manager = RoomManager()
    healthy, dead = Socket(), Socket(fail=True)
    manager.register(healthy, ALICE)
    manager.register(dead, BOB)
    manager.join(healthy, ROOM_CODE)
    manager.join(dead, ROOM_CODE)

    delivered = await manager.emit_to_room(ROOM_CODE, "cardSelected", {"card": None})

    assert delivered == 1
    assert healthy.sent == [{"event": "cardSelected", "data": {"card": None}}]
    assert dead not in manager.users
    assert manager.usernames(ROOM_CODE) == ["alice"]
    assert f"user:{BOB['id']}" not in manager.rooms
