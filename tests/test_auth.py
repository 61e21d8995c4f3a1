"""Tests for password hashing and session tokens."""

from datetime import timedelta

import pytest
from jose import jwt

from auth import (
    hash_password,
    verify_password,
    create_access_token,
    decode_token,
    InvalidTokenError,
    SessionExpiredError
)
from config import settings_conf

# Test data
USER_ID = "6f1c1f0e-7a6b-4a52-9d1b-0d6f3f1a2b01"
USERNAME = "alice"

def test_password_hash_round_trip():
    """A hash verifies its own password and no other."""
    password_hash = hash_password("pikachu123")
    assert password_hash != "pikachu123"
    assert verify_password("pikachu123", password_hash)
    assert not verify_password("raichu123", password_hash)

def test_verify_password_with_malformed_hash():
    assert not verify_password("pikachu123", "not-a-hash")

def test_token_carries_user():
    """The token subject is the user id; the username rides along."""
    payload = decode_token(create_access_token(USER_ID, USERNAME))
    assert payload["sub"] == USER_ID
    assert payload["username"] == USERNAME
    assert "exp" in payload

def test_expired_token():
    token = create_access_token(USER_ID, USERNAME, expires_delta=timedelta(seconds=-60))
    with pytest.raises(SessionExpiredError):
        decode_token(token)

def test_tampered_token():
    """A token signed with another secret is rejected."""
    token = jwt.encode(
        {"sub": USER_ID, "username": USERNAME},
        "some-other-secret",
        algorithm=settings_conf["jwt_algorithm"]
    )
    with pytest.raises(InvalidTokenError):
        decode_token(token)

def test_token_without_subject():
    token = jwt.encode(
        {"username": USERNAME},
        settings_conf["jwt_secret"],
        algorithm=settings_conf["jwt_algorithm"]
    )
    with pytest.raises(InvalidTokenError):
        decode_token(token)
