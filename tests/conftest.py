"""Shared fixtures for the API tests.

None of these fixtures touch a database: managers are patched per test and
the current user is injected through dependency overrides.
"""

import pytest
from fastapi.testclient import TestClient

from api import app
from auth import get_current_user

# Test data
ALICE = {"id": "6f1c1f0e-7a6b-4a52-9d1b-0d6f3f1a2b01", "username": "alice"}
BOB = {"id": "0b8e4c2d-93d7-4e0b-8f2f-5c1a7d9e3c02", "username": "bob"}

@pytest.fixture
def client():
    """Unauthenticated test client."""
    return TestClient(app)

@pytest.fixture
def auth_client():
    """Test client whose requests run as ALICE."""
    app.dependency_overrides[get_current_user] = lambda: ALICE
    yield TestClient(app)
    app.dependency_overrides.pop(get_current_user, None)
