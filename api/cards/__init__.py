"""Card catalog API endpoints."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Security, status
from pydantic import BaseModel

from auth import get_current_user
from cards import manager, CardError, CardNotFoundError
from cards.sync import sync_all_cards
from cards.tcgdex import TCGdexClient, TCGApiError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/cards",
    tags=["Cards"]
)

sync_router = APIRouter(
    prefix="/sync",
    tags=["Sync"]
)

class CardRequest(BaseModel):
    """Request model for caching a card by its TCG id."""
    id: str

async def get_tcg_client():
    """Yield an open TCGdex client for the duration of a request."""
    async with TCGdexClient() as client:
        yield client

def _card_error(e: Exception) -> HTTPException:
    if isinstance(e, CardNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, CardError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, TCGApiError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    logger.error(f"Unexpected catalog error: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(e)
    )

# Fixed paths first so /{card_id} does not capture them
@router.get("/featured")
async def featured_cards(client: TCGdexClient = Depends(get_tcg_client)):
    """A showcase of well-known cards, loaded live from TCGdex."""
    try:
        return {"data": await manager.featured_cards(client)}
    except Exception as e:
        raise _card_error(e)

@router.get("/search/quick")
async def quick_search(q: str = Query(..., min_length=1)):
    """Up to 10 catalog cards whose name contains q."""
    try:
        cards = await manager.quick_search(q)
    except Exception as e:
        raise _card_error(e)
    return {"data": cards, "count": len(cards)}

@router.get("/search/tcg")
async def search_tcg(
    q: str = Query(..., min_length=1),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    set: Optional[str] = None,
    rarity: Optional[str] = None,
    client: TCGdexClient = Depends(get_tcg_client)
):
    """Search TCGdex directly without caching the results."""
    try:
        return await manager.search_remote(client, q, page, limit, set_name=set, rarity=rarity)
    except Exception as e:
        raise _card_error(e)

@router.get("/tcg/{tcg_id}")
async def get_cached_card(tcg_id: str):
    """Get a cached card by its TCG id."""
    try:
        return {"source": "cache", "card": await manager.get_card_by_tcg_id(tcg_id)}
    except Exception as e:
        raise _card_error(e)

@router.get("")
async def list_cards(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    name: Optional[str] = None,
    rarity: Optional[str] = None,
    series: Optional[str] = None,
    set: Optional[str] = None,
    type: Optional[str] = None
):
    """Browse the catalog by name prefix, rarity, series, set or category."""
    try:
        return await manager.list_cards(
            page=page,
            limit=limit,
            name=name,
            rarity=rarity,
            series=series,
            set_name=set,
            category=type
        )
    except Exception as e:
        raise _card_error(e)

@router.get("/{card_id}")
async def get_card(card_id: str):
    """Get a catalog card by its local id."""
    try:
        return await manager.get_card(card_id)
    except Exception as e:
        raise _card_error(e)

@router.post("")
async def cache_card(
    request: CardRequest,
    client: TCGdexClient = Depends(get_tcg_client),
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Return a card from the catalog, fetching it from TCGdex on a miss."""
    try:
        return await manager.fetch_or_cache(request.id, client)
    except Exception as e:
        raise _card_error(e)

@sync_router.post("/cards")
async def sync_cards(
    client: TCGdexClient = Depends(get_tcg_client),
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Import every set and card from TCGdex into the catalog."""
    try:
        total = await sync_all_cards(client, manager)
    except Exception as e:
        logger.error(f"Card sync failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error syncing cards: {str(e)}"
        )
    return {"message": "Card sync completed", "total": total}

# Export the routers
__all__ = ['router', 'sync_router', 'get_tcg_client']
