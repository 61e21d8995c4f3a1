"""Collection and wishlist API endpoints."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Security, status
from pydantic import BaseModel

from auth import get_current_user
from cards import manager as card_manager
from cards.tcgdex import TCGdexClient, TCGApiError
from collection import (
    manager,
    is_valid_collection_type,
    UserCardError,
    UserCardNotFoundError,
    CollectionUserNotFoundError
)
from ..cards import get_tcg_client
from ..users import ensure_self

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/usercards",
    tags=["User Cards"]
)

class ImportRequest(BaseModel):
    """Request model for importing cards found by name."""
    username: Optional[str] = None
    query: str = ""
    limit: int = 5
    for_trade: bool = True

def _usercard_error(e: Exception) -> HTTPException:
    if isinstance(e, (UserCardNotFoundError, CollectionUserNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, UserCardError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, TCGApiError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    logger.error(f"Unexpected collection error: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(e)
    )

def _check_type(collection_type: str):
    if not is_valid_collection_type(collection_type):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid type, must be collection or wishlist"
        )

@router.post("/import")
async def import_cards(
    request: ImportRequest,
    client: TCGdexClient = Depends(get_tcg_client),
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Import cards matching a name search into a collection."""
    username = request.username or current_user['username']
    ensure_self(username, current_user)
    try:
        imported = await manager.import_cards(
            client,
            card_manager,
            username,
            query=request.query,
            limit=request.limit,
            for_trade=request.for_trade
        )
    except Exception as e:
        raise _usercard_error(e)
    return {"message": f"Imported {len(imported)} cards", "cards": imported}

@router.get("/discover")
async def discover(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    exclude_username: Optional[str] = Query(None, alias="excludeUsername")
):
    """Public cards offered for trade by any user."""
    try:
        return await manager.discover(page, limit, exclude_username)
    except Exception as e:
        raise _usercard_error(e)

@router.post("/{username}/{collection_type}", status_code=status.HTTP_201_CREATED)
async def add_card(
    username: str,
    collection_type: str,
    fields: Dict[str, Any],
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Add a card to a user's collection or wishlist."""
    _check_type(collection_type)
    ensure_self(username, current_user)
    try:
        return await manager.add_card(username, collection_type, fields)
    except Exception as e:
        raise _usercard_error(e)

@router.get("/{username}")
async def list_all_cards(
    username: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    for_trade: Optional[bool] = Query(None, alias="forTrade")
):
    """List every card a user owns or wants."""
    try:
        return await manager.list_cards(username, None, page, limit, for_trade)
    except Exception as e:
        raise _usercard_error(e)

@router.get("/{username}/{collection_type}")
async def list_cards(
    username: str,
    collection_type: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    for_trade: Optional[bool] = Query(None, alias="forTrade")
):
    """List a user's collection or wishlist."""
    _check_type(collection_type)
    try:
        return await manager.list_cards(username, collection_type, page, limit, for_trade)
    except Exception as e:
        raise _usercard_error(e)

@router.patch("/{username}/cards/{user_card_id}")
async def update_card(
    username: str,
    user_card_id: str,
    updates: Dict[str, Any],
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Update condition, notes, quantity, trade flag and the like."""
    ensure_self(username, current_user)
    try:
        return await manager.update_card(username, user_card_id, updates)
    except Exception as e:
        raise _usercard_error(e)

@router.delete("/{username}/cards/{user_card_id}")
async def delete_card(
    username: str,
    user_card_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Remove a card from a user's lists."""
    ensure_self(username, current_user)
    try:
        return await manager.delete_card(username, user_card_id)
    except Exception as e:
        raise _usercard_error(e)

# Export the router
__all__ = ['router']
