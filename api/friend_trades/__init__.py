"""Friend trade room invitation endpoints."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Security, status
from pydantic import BaseModel

from auth import get_current_user
from trades.friend_invites import manager
from ..trades import trade_error

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/friend-trade-rooms",
    tags=["Friend Trade Rooms"]
)

class InviteFriendBody(BaseModel):
    """Request model for inviting a friend to trade."""
    friendId: Optional[str] = None

@router.get("/invites")
async def list_invites(current_user: Dict[str, Any] = Security(get_current_user)):
    """Invitations the current user received and sent."""
    try:
        return await manager.list_invites(current_user['id'])
    except Exception as e:
        raise trade_error(e)

@router.post("/invite", status_code=status.HTTP_201_CREATED)
async def invite_friend(
    body: InviteFriendBody,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Invite a friend to a private trade room."""
    try:
        invite = await manager.invite(current_user['id'], body.friendId)
    except Exception as e:
        raise trade_error(e)
    return {"message": "Invitation sent", "invite": invite}

@router.post("/invites/{invite_id}/accept")
async def accept_invite(
    invite_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Accept an invitation and open the private trade room."""
    try:
        return await manager.accept(invite_id, current_user['id'])
    except Exception as e:
        raise trade_error(e)

@router.post("/invites/{invite_id}/reject")
async def reject_invite(
    invite_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    try:
        return {"message": "Invitation rejected", "invite": await manager.reject(invite_id, current_user['id'])}
    except Exception as e:
        raise trade_error(e)

# Export the router
__all__ = ['router']
