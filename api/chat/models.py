from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID
from pydantic import BaseModel


class ChatMessage(BaseModel):
    id: UUID
    from_user_id: UUID
    to_user_id: UUID
    text: str
    created_at: datetime

    def to_event(self) -> Dict[str, Any]:
        """Payload of the privateMessage socket event"""
        return {
            "id": str(self.id),
            "from": str(self.from_user_id),
            "to": str(self.to_user_id),
            "text": self.text,
            "createdAt": self.created_at.isoformat()
        }


class SocketEvent(BaseModel):
    event: str
    data: Any = None


# Socket payloads keep the client's camelCase keys
class RoomMessage(BaseModel):
    roomCode: str
    text: str = ""


class CardSelection(BaseModel):
    roomCode: str
    card: Optional[Dict[str, Any]] = None


class TradeReady(BaseModel):
    roomCode: str
    accepted: bool = False


class PrivateMessage(BaseModel):
    to: UUID
    text: str
