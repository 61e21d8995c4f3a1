"""WebSocket endpoint for trade rooms, private chat and live notifications.

Clients send JSON frames shaped ``{"event": name, "data": payload}`` and
receive frames of the same shape. Every authenticated socket joins its
user's private room ``user:<id>``, which is where notifications and private
messages are delivered.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Set

import asyncpg
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from auth import manager as auth_manager, AuthError
from database.exceptions import DatabaseError
from notifications import user_room
from ..chat import save_private_message
from ..chat.db import ChatError
from ..chat.models import SocketEvent, RoomMessage, CardSelection, TradeReady, PrivateMessage

# Configure logging
logger = logging.getLogger(__name__)

# Close code for handshakes without a valid token
UNAUTHORIZED_CLOSE_CODE = 4001

# Prefix of the per-user rooms; only their owner may use them
USER_ROOM_PREFIX = user_room("")

# Room events relayed to the other members: incoming name -> (payload model, outgoing name, field)
ROOM_EVENTS = {
    "sendMessage": (RoomMessage, "receiveMessage", "text"),
    "selectCard": (CardSelection, "cardSelected", "card"),
    "tradeReady": (TradeReady, "tradeReady", "accepted")
}

router = APIRouter(tags=["WebSocket"])

class RoomManager:
    """Track which sockets are in which rooms and deliver events to them."""

    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = {}
        self.users: Dict[WebSocket, Dict[str, Any]] = {}

    def register(self, websocket: WebSocket, user: Dict[str, Any]):
        """Remember a socket's user and join it to the user's private room."""
        self.users[websocket] = user
        self.join(websocket, user_room(user['id']))
        logger.info(f"Socket connected for {user['username']}")

    def join(self, websocket: WebSocket, room: str):
        self.rooms.setdefault(room, set()).add(websocket)

    def disconnect(self, websocket: WebSocket):
        """Drop a socket from every room."""
        user = self.users.pop(websocket, None)
        for room in list(self.rooms):
            members = self.rooms[room]
            members.discard(websocket)
            if not members:
                del self.rooms[room]
        if user:
            logger.info(f"Socket disconnected for {user['username']}")

    def usernames(self, room: str) -> List[str]:
        """Usernames of the sockets currently in a room."""
        return [
            self.users[ws]['username']
            for ws in self.rooms.get(room, set())
            if ws in self.users
        ]

    async def send(self, websocket: WebSocket, event: str, data: Any) -> bool:
        """Send one event to one socket. A socket that fails is dropped."""
        try:
            await websocket.send_json({"event": event, "data": data})
            return True
        except Exception as e:
            logger.error(f"Failed to send {event} to socket: {e}")
            self.disconnect(websocket)
            return False

    async def emit_to_room(
        self,
        room: str,
        event: str,
        data: Any,
        exclude: Optional[WebSocket] = None
    ) -> int:
        """Send an event to every socket in a room except exclude.

        Returns:
            Number of sockets the event reached
        """
        delivered = 0
        for websocket in list(self.rooms.get(room, set())):
            if websocket is exclude:
                continue
            if await self.send(websocket, event, data):
                delivered += 1
        return delivered

# Create room manager instance
rooms = RoomManager()

def extract_token(websocket: WebSocket) -> Optional[str]:
    """Read the session token from the query string or Authorization header."""
    token = websocket.query_params.get("token")
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None

def can_use_room(user: Dict[str, Any], room: str) -> bool:
    """Trade rooms are open to anyone with the code; user rooms only to their owner."""
    return not room.startswith(USER_ROOM_PREFIX) or room == user_room(user['id'])

async def handle_event(websocket: WebSocket, user: Dict[str, Any], message: SocketEvent):
    """Dispatch one client event."""
    sender = {"user": user['username'], "userId": user['id']}
    data = message.data

    if message.event == "joinRoom":
        room = data.get("roomCode") if isinstance(data, dict) else data
        if not room or not isinstance(room, str):
            await rooms.send(websocket, "error", {"message": "joinRoom needs a room code"})
            return
        if not can_use_room(user, room):
            logger.warning(f"{user['username']} tried to join private room {room}")
            await rooms.send(websocket, "error", {"message": "You cannot join another user's room"})
            return
        rooms.join(websocket, room)
        logger.info(f"{user['username']} joined room {room}")
        await rooms.emit_to_room(room, "userJoined", sender, exclude=websocket)
        await rooms.send(websocket, "roomUsers", {"users": rooms.usernames(room)})

    elif message.event in ROOM_EVENTS:
        model, outgoing, field = ROOM_EVENTS[message.event]
        payload = model(**data)
        if not can_use_room(user, payload.roomCode):
            await rooms.send(websocket, "error", {"message": "You cannot post to another user's room"})
            return
        await rooms.emit_to_room(
            payload.roomCode, outgoing, dict(sender, **{field: getattr(payload, field)}), exclude=websocket
        )

    elif message.event == "privateMessage":
        payload = PrivateMessage(**data)
        chat_message = await save_private_message(user['id'], payload.to, payload.text)
        await rooms.emit_to_room(user_room(payload.to), "privateMessage", chat_message.to_event())

    else:
        await rooms.send(websocket, "error", {"message": f"Unknown event: {message.event}"})

@router.websocket("/ws")
async def socket_endpoint(websocket: WebSocket):
    """Authenticated socket for rooms, private messages and notifications."""
    token = extract_token(websocket)
    user = None
    if token:
        try:
            user = await auth_manager.verify_token(token)
        except AuthError as e:
            logger.info(f"Rejected socket handshake: {e}")

    if not user:
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE, reason="Authentication required")
        return

    await websocket.accept()
    rooms.register(websocket, user)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = SocketEvent(**json.loads(raw))
                await handle_event(websocket, user, message)
            except (ValueError, TypeError, ValidationError, ChatError) as e:
                await rooms.send(websocket, "error", {"message": f"Invalid message: {str(e)}"})
            except (asyncpg.PostgresError, DatabaseError, OSError) as e:
                logger.error(f"Database error handling socket event from {user['username']}: {e}")
                await rooms.send(websocket, "error", {"message": "Could not process the event"})
    except WebSocketDisconnect:
        pass
    finally:
        rooms.disconnect(websocket)

async def emit_to_room(room: str, event: str, data: Any):
    """Deliver an event to a room from outside the socket handlers."""
    await rooms.emit_to_room(room, event, data)

# Export the router and room helpers
__all__ = ['router', 'rooms', 'RoomManager', 'emit_to_room']
