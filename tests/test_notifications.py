"""Tests for notification delivery rules and real-time publishing."""

from typing import Any, Dict, List, Tuple

import pytest

from notifications import (
    NotificationError,
    NotificationManager,
    should_deliver,
    user_room
)

# Test data
USER_ID = "6f1c1f0e-7a6b-4a52-9d1b-0d6f3f1a2b01"
PREFERENCES = {
    "notify_trades": True,
    "notify_messages": False,
    "notify_friend_requests": True
}
NOTIFICATION = {"id": "n1", "type": "trade", "title": "New trade", "message": "bob wants Furret"}

def test_user_room():
    assert user_room(USER_ID) == f"user:{USER_ID}"

def test_toggles_gate_delivery():
    """Each toggled type follows its switch; system notifications always go out."""
    assert should_deliver("trade", PREFERENCES)
    assert not should_deliver("message", PREFERENCES)
    assert should_deliver("friendRequest", PREFERENCES)
    assert should_deliver("system", {"notify_trades": False, "notify_messages": False,
                                     "notify_friend_requests": False})

@pytest.mark.asyncio
async def test_publish_to_user_room():
    """Stored notifications are pushed as the notification event."""
    published: List[Tuple[str, str, Dict[str, Any]]] = []

    async def publisher(room, event, payload):
        published.append((room, event, payload))

    manager = NotificationManager(pool=object(), publisher=publisher)
    await manager.publish(USER_ID, NOTIFICATION)

    assert published == [(f"user:{USER_ID}", "notification", NOTIFICATION)]

@pytest.mark.asyncio
async def test_publish_failure_is_not_raised():
    """A broken socket layer never fails the write that triggered it."""
    async def publisher(room, event, payload):
        raise RuntimeError("socket gone")

    manager = NotificationManager(pool=object(), publisher=publisher)
    await manager.publish(USER_ID, NOTIFICATION)

@pytest.mark.asyncio
async def test_publish_without_publisher():
    manager = NotificationManager(pool=object())
    await manager.publish(USER_ID, NOTIFICATION)
    manager.set_publisher(None)
    assert manager.publisher is None

@pytest.mark.asyncio
async def test_unknown_type_is_rejected():
    """Type checks happen before any database access."""
    manager = NotificationManager(pool=object())
    with pytest.raises(NotificationError):
        await manager.create_notification(USER_ID, "shipping", "Shipped", "Your card shipped")

@pytest.mark.asyncio
async def test_unknown_user_is_skipped():
    manager = NotificationManager(pool=object())
    assert await manager.create_notification("not-a-uuid", "system", "Hi", "Welcome") is None
