"""Notification API endpoints.

Notifications are also pushed live over the ``/ws`` socket as the
``notification`` event.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Query, Security, status

from auth import get_current_user
from notifications import manager, NotificationError, NotificationNotFoundError
from ..users import ensure_self

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"]
)

def _notification_error(e: Exception) -> HTTPException:
    if isinstance(e, NotificationNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, NotificationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.error(f"Unexpected notification error: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(e)
    )

@router.get("/{user_id}")
async def get_notifications(
    user_id: str,
    limit: int = Query(10, ge=1, le=100),
    skip: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Get a user's notifications with total and unread counts."""
    ensure_self(user_id, current_user)
    try:
        return await manager.list_notifications(current_user['id'], limit, skip)
    except Exception as e:
        raise _notification_error(e)

@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Mark a notification as read."""
    try:
        return await manager.mark_read(notification_id, current_user['id'])
    except Exception as e:
        raise _notification_error(e)

@router.patch("/{user_id}/read-all")
async def mark_all_read(
    user_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Mark every notification of a user as read."""
    ensure_self(user_id, current_user)
    try:
        modified = await manager.mark_all_read(current_user['id'])
    except Exception as e:
        raise _notification_error(e)
    return {"message": "All notifications marked as read", "modified_count": modified}

@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Delete a notification."""
    try:
        await manager.delete_notification(notification_id, current_user['id'])
    except Exception as e:
        raise _notification_error(e)
    return {"message": "Notification deleted"}

# Export the router
__all__ = ['router']
