"""REST API module for the card trading platform.

This module provides HTTP endpoints for:
- Accounts, login, friends and preferences
- Browsing the card catalog and syncing it from TCGdex
- Managing collections and wishlists
- Proposing, negotiating and completing trades
- Trade requests and quick trades
- Private trade room invitations between friends
- Notifications and private chat history
- Real-time rooms over WebSocket
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings_conf
from notifications import manager as notification_manager
from .chat import router as chat_router, purge_expired_messages
from .websockets import router as websocket_router, emit_to_room

logger = logging.getLogger(__name__)

# Background task for expiring private chat messages
async def purge_chat_task():
    """Delete private messages older than the retention period, periodically."""
    interval = settings_conf['chat_purge_interval']
    while True:
        try:
            await asyncio.sleep(interval)
            purged = await purge_expired_messages()
            if purged > 0:
                logger.info(f"Purged {purged} expired chat messages")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in chat purge task: {e}")

# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Initializing API...")
    # The database pool is created on first use or by __main__.py
    notification_manager.set_publisher(emit_to_room)

    purge_task = asyncio.create_task(purge_chat_task())
    logger.info(
        f"Started chat purge task (messages expire after "
        f"{settings_conf['chat_retention_days']} days)"
    )

    yield

    logger.info("Shutting down API...")
    purge_task.cancel()
    try:
        await purge_task
    except asyncio.CancelledError:
        pass
    notification_manager.set_publisher(None)

# Create FastAPI app
app = FastAPI(
    title="Card Trading API",
    description="REST API for collecting and trading Pokémon cards",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings_conf['cors_origins'],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as {"error": ...}."""
    content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None)
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed requests are client errors."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())}
    )

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"}
    )

@app.get("/")
async def root():
    return {
        "name": "Card Trading API",
        "version": "1.0.0",
        "status": "running"
    }

# Import and include all routers
from .users import router as users_router
from .cards import router as cards_router, sync_router
from .usercards import router as usercards_router
from .trades import router as trades_router
from .trade_requests import router as trade_requests_router
from .friend_trades import router as friend_trades_router
from .notifications import router as notifications_router

# Include all routers
app.include_router(users_router)
app.include_router(cards_router)
app.include_router(sync_router)
app.include_router(usercards_router)
app.include_router(trades_router)
app.include_router(trade_requests_router)
app.include_router(friend_trades_router)
app.include_router(notifications_router)
app.include_router(chat_router)
app.include_router(websocket_router)
