"""Trade request API endpoints."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Security, status
from pydantic import BaseModel

from auth import get_current_user
from trades.requests import manager
from ..trades import trade_error

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/trade-requests",
    tags=["Trade Requests"]
)

class OfferedCard(BaseModel):
    """Card offered in return by a quick request."""
    pokemon_tcg_id: str
    card_name: str = ""
    card_image: str = ""

class CreateTradeRequestBody(BaseModel):
    """Request model for asking another user for a card."""
    receiver_identifier: Optional[str] = None
    pokemon_tcg_id: Optional[str] = None
    card_name: str = ""
    card_image: str = ""
    note: str = ""
    is_manual: bool = False
    offered_card: Optional[OfferedCard] = None
    offered_price: Optional[float] = None
    target_price: Optional[float] = None
    offered_user_card_id: Optional[str] = None
    target_user_card_id: Optional[str] = None

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_request(
    body: CreateTradeRequestBody,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Ask another user for a card, offer a quick swap or invite them to a room."""
    try:
        request = await manager.create_request(
            current_user['id'],
            body.receiver_identifier,
            pokemon_tcg_id=body.pokemon_tcg_id,
            card_name=body.card_name,
            card_image=body.card_image,
            note=body.note,
            is_manual=body.is_manual,
            offered_card=body.offered_card.dict() if body.offered_card else None,
            offered_price=body.offered_price,
            target_price=body.target_price,
            offered_user_card_id=body.offered_user_card_id,
            target_user_card_id=body.target_user_card_id
        )
    except Exception as e:
        raise trade_error(e)
    return {"message": "Trade request sent", "request": request}

@router.get("/received/{user_id}")
async def received_requests(
    user_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Requests sent to the current user."""
    try:
        return {"requests": await manager.received(user_id, current_user['id'])}
    except Exception as e:
        raise trade_error(e)

@router.get("/sent/{user_id}")
async def sent_requests(
    user_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Requests sent by the current user."""
    try:
        return {"requests": await manager.sent(user_id, current_user['id'])}
    except Exception as e:
        raise trade_error(e)

@router.post("/{request_id}/accept")
async def accept_request(
    request_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Accept a request, opening a trade room or completing a quick swap."""
    try:
        return await manager.accept(request_id, current_user['id'])
    except Exception as e:
        raise trade_error(e)

@router.post("/{request_id}/open-room")
async def open_room(
    request_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Open a private trade room for a request."""
    try:
        return await manager.open_room(request_id, current_user['id'])
    except Exception as e:
        raise trade_error(e)

@router.post("/{request_id}/reject")
async def reject_request(
    request_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Reject a request."""
    try:
        return {"message": "Request rejected", "request": await manager.reject(request_id, current_user['id'])}
    except Exception as e:
        raise trade_error(e)

@router.delete("/{request_id}/cancel")
async def cancel_request(
    request_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Cancel a request you sent."""
    try:
        return {"message": "Request cancelled", "request": await manager.cancel(request_id, current_user['id'])}
    except Exception as e:
        raise trade_error(e)

# Export the router
__all__ = ['router']
