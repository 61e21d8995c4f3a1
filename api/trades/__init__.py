"""Trade API endpoints."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Security, status
from pydantic import BaseModel

from auth import get_current_user
from trades import (
    manager,
    TradeError,
    TradeNotFoundError,
    TradePermissionError,
    TradeUserNotFoundError
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/trades",
    tags=["Trades"]
)

class TradeCard(BaseModel):
    """One offered card of a trade side."""
    user_card_id: str
    card_id: Optional[str] = None
    estimated_value: Optional[float] = None

class CreateTradeRequest(BaseModel):
    """Request model for creating a trade."""
    receiver_user_id: str
    initiator_cards: List[TradeCard] = []
    receiver_cards: List[TradeCard] = []
    trade_type: str = "private"

def trade_error(e: Exception) -> HTTPException:
    """Map a trade exception to its HTTP status."""
    if isinstance(e, (TradeNotFoundError, TradeUserNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, TradePermissionError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, TradeError):
        error_code = getattr(e, 'error_code', None)
        if error_code:
            return HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": str(e), "errorCode": error_code}
            )
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.error(f"Unexpected trade error: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(e)
    )

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_trade(
    request: CreateTradeRequest,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Propose a trade to another user."""
    try:
        result = await manager.create_trade(
            current_user['id'],
            request.receiver_user_id,
            [card.dict() for card in request.initiator_cards],
            [card.dict() for card in request.receiver_cards],
            trade_type=request.trade_type
        )
    except Exception as e:
        raise trade_error(e)
    return {"message": "Trade created", **result}

@router.get("")
async def list_trades(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    trade_type: Optional[str] = Query(None, alias="tradeType"),
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """List trades, newest first."""
    try:
        return await manager.list_trades(page, limit, status_filter, trade_type)
    except Exception as e:
        raise trade_error(e)

@router.get("/room/{code}")
async def get_trade_by_room(
    code: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Get a private trade by its room code."""
    try:
        return await manager.get_trade_by_room_code(code)
    except Exception as e:
        raise trade_error(e)

@router.get("/{trade_id}")
async def get_trade(
    trade_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Get a trade with its users, cards and messages."""
    try:
        return await manager.get_trade(trade_id)
    except Exception as e:
        raise trade_error(e)

@router.patch("/{trade_id}")
async def update_trade(
    trade_id: str,
    updates: Dict[str, Any],
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Patch a trade's status, completion time or messages."""
    try:
        return await manager.update_trade(trade_id, updates)
    except Exception as e:
        raise trade_error(e)

@router.delete("/{trade_id}")
async def delete_trade(
    trade_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Delete a trade."""
    try:
        return await manager.delete_trade(trade_id)
    except Exception as e:
        raise trade_error(e)

@router.post("/{trade_id}/complete")
async def complete_trade(
    trade_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Complete an accepted trade, swapping the offered cards."""
    try:
        return await manager.complete_trade(trade_id, current_user['id'])
    except Exception as e:
        raise trade_error(e)

# Export the router
__all__ = ['router', 'trade_error']
