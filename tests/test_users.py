"""Tests for user preferences and identifier handling."""

import uuid

import pytest

from users import (
    InvalidUserDataError,
    parse_uuid,
    preference_updates,
    serialize_preferences
)

# Test data
USER_ROW = {
    "language": "es",
    "dark_mode": True,
    "notify_trades": True,
    "notify_messages": False,
    "notify_friend_requests": True,
    "show_collection": True,
    "show_wishlist": False
}

def test_serialize_preferences():
    """Flat columns become the nested settings document."""
    preferences = serialize_preferences(USER_ROW)
    assert preferences == {
        "language": "es",
        "dark_mode": True,
        "notifications": {"trades": True, "messages": False, "friend_requests": True},
        "privacy": {"show_collection": True, "show_wishlist": False}
    }

def test_partial_preference_update():
    """Only the supplied settings turn into column updates."""
    columns = preference_updates({"language": "en", "notifications": {"messages": True}})
    assert columns == {"language": "en", "notify_messages": True}

def test_privacy_update():
    columns = preference_updates({"privacy": {"show_wishlist": True}, "dark_mode": False})
    assert columns == {"show_wishlist": True, "dark_mode": False}

@pytest.mark.parametrize("settings", [
    {"language": "fr"},
    {"theme": "dark"},
    {"notifications": {"emails": True}},
    {"privacy": True}
])
def test_invalid_preference_update(settings):
    with pytest.raises(InvalidUserDataError):
        preference_updates(settings)

def test_parse_uuid():
    value = uuid.uuid4()
    assert parse_uuid(str(value)) == value
    assert parse_uuid(value) == value
    assert parse_uuid("alice") is None
    assert parse_uuid(None) is None
