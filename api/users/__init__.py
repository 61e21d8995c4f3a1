"""User API endpoints: accounts, login, friends, blocks and preferences."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Security, status
from pydantic import BaseModel

from auth import manager as auth_manager, get_current_user, create_access_token, AuthError
from notifications import manager as notification_manager
from users import (
    manager,
    UserError,
    UserNotFoundError
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/users",
    tags=["Users"]
)

class RegisterRequest(BaseModel):
    """Request model for creating an account."""
    username: str
    email: str
    password: str

class LoginRequest(BaseModel):
    """Request model for login by email or username."""
    email: Optional[str] = None
    username: Optional[str] = None
    password: str

def _user_error(e: UserError) -> HTTPException:
    if isinstance(e, UserNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

def _server_error(e: Exception) -> HTTPException:
    logger.error(f"Unexpected error: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(e)
    )

def ensure_self(identifier: str, current_user: Dict[str, Any]):
    """Only let users change their own account."""
    if identifier not in (current_user['id'], current_user['username']):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only modify your own account"
        )

async def _create(request: RegisterRequest):
    try:
        return await manager.create_user(request.username, request.email, request.password)
    except UserError as e:
        raise _user_error(e)
    except Exception as e:
        raise _server_error(e)

@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest):
    """Create an account and log it in."""
    user = await _create(request)
    return {"token": create_access_token(user["id"], user["username"]), "user": user}

@router.post("/login")
async def login(request: LoginRequest):
    """Log in with email or username and password."""
    identifier = request.email or request.username
    if not identifier:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email or username is required"
        )
    try:
        return await auth_manager.login(identifier, request.password)
    except AuthError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except Exception as e:
        raise _server_error(e)

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(request: RegisterRequest):
    """Create a user without logging in."""
    return await _create(request)

@router.get("")
async def list_users():
    """List all users."""
    try:
        return {"users": await manager.list_users()}
    except Exception as e:
        raise _server_error(e)

@router.get("/me")
async def get_me(current_user: Dict[str, Any] = Security(get_current_user)):
    """Get the logged in user."""
    try:
        return await manager.get_user(current_user['id'])
    except UserError as e:
        raise _user_error(e)
    except Exception as e:
        raise _server_error(e)

@router.get("/{identifier}")
async def get_user(identifier: str):
    """Get a user by id or username."""
    try:
        return await manager.get_user(identifier)
    except UserError as e:
        raise _user_error(e)
    except Exception as e:
        raise _server_error(e)

@router.patch("/{identifier}")
async def update_user(
    identifier: str,
    updates: Dict[str, Any],
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Update username, email, password, profile image or settings."""
    ensure_self(identifier, current_user)
    try:
        return await manager.update_user(identifier, updates)
    except UserError as e:
        raise _user_error(e)
    except Exception as e:
        raise _server_error(e)

@router.delete("/{identifier}")
async def delete_user(
    identifier: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Delete an account. Its cards and trades are kept."""
    ensure_self(identifier, current_user)
    try:
        return await manager.delete_user(identifier)
    except UserError as e:
        raise _user_error(e)
    except Exception as e:
        raise _server_error(e)

@router.post("/{identifier}/friends/{friend}")
async def add_friend(
    identifier: str,
    friend: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Add a friend and let them know."""
    ensure_self(identifier, current_user)
    try:
        user = await manager.add_friend(identifier, friend)
        added = next(
            (f for f in user['friends'] if friend in (f['id'], f['username'])),
            None
        )
        if added:
            await notification_manager.create_notification(
                added['id'],
                'friendRequest',
                'New friend',
                f"{user['username']} added you as a friend.",
                related_id=user['id']
            )
        return user
    except UserError as e:
        raise _user_error(e)
    except Exception as e:
        raise _server_error(e)

@router.delete("/{identifier}/friends/{friend}")
async def remove_friend(
    identifier: str,
    friend: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Remove a friend."""
    ensure_self(identifier, current_user)
    try:
        return await manager.remove_friend(identifier, friend)
    except UserError as e:
        raise _user_error(e)
    except Exception as e:
        raise _server_error(e)

@router.post("/{identifier}/block/{blocked}")
async def block_user(
    identifier: str,
    blocked: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Block another user."""
    ensure_self(identifier, current_user)
    try:
        return await manager.block_user(identifier, blocked)
    except UserError as e:
        raise _user_error(e)
    except Exception as e:
        raise _server_error(e)

@router.delete("/{identifier}/block/{blocked}")
async def unblock_user(
    identifier: str,
    blocked: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Unblock another user."""
    ensure_self(identifier, current_user)
    try:
        return await manager.unblock_user(identifier, blocked)
    except UserError as e:
        raise _user_error(e)
    except Exception as e:
        raise _server_error(e)

@router.get("/{user_id}/preferences")
async def get_preferences(
    user_id: str,
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Get a user's language, theme, notification and privacy settings."""
    ensure_self(user_id, current_user)
    try:
        return await manager.get_preferences(user_id)
    except UserError as e:
        raise _user_error(e)
    except Exception as e:
        raise _server_error(e)

@router.patch("/{user_id}/preferences")
async def update_preferences(
    user_id: str,
    settings: Dict[str, Any],
    current_user: Dict[str, Any] = Security(get_current_user)
):
    """Merge partial settings into a user's preferences."""
    ensure_self(user_id, current_user)
    try:
        return await manager.update_preferences(user_id, settings)
    except UserError as e:
        raise _user_error(e)
    except Exception as e:
        raise _server_error(e)

# Export the router
__all__ = ['router']
