from datetime import datetime
from typing import List, Optional
from uuid import UUID

import asyncpg

from database import command_count
from .models import ChatMessage


class ChatError(Exception):
    """Raised when a chat message is invalid."""
    pass


def _to_message(row) -> ChatMessage:
    return ChatMessage(
        id=row['id'],
        from_user_id=row['from_user_id'],
        to_user_id=row['to_user_id'],
        text=row['text'],
        created_at=row['created_at']
    )


async def create_message(
    conn: asyncpg.Connection,
    from_user_id: UUID,
    to_user_id: UUID,
    text: str
) -> ChatMessage:
    """Store a private message"""
    text = (text or '').strip()
    if not text:
        raise ChatError("Message text is required")
    if from_user_id == to_user_id:
        raise ChatError("Cannot send a message to yourself")

    row = await conn.fetchrow(
        """
        INSERT INTO chat_messages (from_user_id, to_user_id, text)
        VALUES ($1, $2, $3)
        RETURNING id, from_user_id, to_user_id, text, created_at
        """,
        from_user_id, to_user_id, text
    )
    return _to_message(row)


async def get_conversation(
    conn: asyncpg.Connection,
    user_id: UUID,
    other_user_id: UUID,
    limit: int = 50,
    before: Optional[datetime] = None
) -> List[ChatMessage]:
    """Get the messages exchanged by two users, newest first"""
    query = """
        SELECT id, from_user_id, to_user_id, text, created_at
        FROM chat_messages
        WHERE ((from_user_id = $1 AND to_user_id = $2)
            OR (from_user_id = $2 AND to_user_id = $1))
    """
    params = [user_id, other_user_id]

    if before:
        query += f" AND created_at < ${len(params) + 1}"
        params.append(before)

    query += " ORDER BY created_at DESC LIMIT $" + str(len(params) + 1)
    params.append(limit)

    rows = await conn.fetch(query, *params)
    return [_to_message(row) for row in rows]


async def purge_expired(conn: asyncpg.Connection, retention_days: int) -> int:
    """Delete messages older than the retention period, returning how many went"""
    status = await conn.execute(
        """
        DELETE FROM chat_messages
        WHERE created_at < now() - make_interval(days => $1)
        """,
        retention_days
    )
    return command_count(status)
