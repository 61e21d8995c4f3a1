"""
Private chat between users.
Messages are sent over the socket and expire after the retention period;
this router serves the stored history.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Security, status

from auth import get_current_user
from config import settings_conf
from database import get_pool
from . import db
from .models import ChatMessage

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/chat",
    tags=["Chat"]
)

async def save_private_message(from_user_id: Any, to_user_id: Any, text: str) -> ChatMessage:
    """Persist a private message sent over the socket."""
    pool = await get_pool()
    async with pool.acquire() as conn:
        return await db.create_message(conn, UUID(str(from_user_id)), UUID(str(to_user_id)), text)

async def purge_expired_messages() -> int:
    """Delete private messages past the retention period."""
    pool = await get_pool()
    async with pool.acquire() as conn:
        return await db.purge_expired(conn, settings_conf['chat_retention_days'])

@router.get("/{other_user_id}")
async def get_conversation(
    other_user_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    before: Optional[datetime] = None,
    pool = Depends(get_pool),
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Get the current user's conversation with another user, newest first."""
    try:
        async with pool.acquire() as conn:
            messages = await db.get_conversation(
                conn,
                UUID(current_user['id']),
                other_user_id,
                limit=limit,
                before=before
            )
    except Exception as e:
        logger.error(f"Error loading conversation: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
    return {"messages": [message.to_event() for message in messages]}

# Export the router
__all__ = ['router', 'save_private_message', 'purge_expired_messages']
