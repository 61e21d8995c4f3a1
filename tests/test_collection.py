"""Tests for collection field validation and ownership transfer."""

import uuid
from typing import Any, List, Optional, Tuple

import pytest

from collection import (
    InsufficientQuantityError,
    UserCardError,
    is_valid_collection_type,
    transfer_one_copy,
    validate_user_card_fields
)

# Test data
ALICE_ID = uuid.UUID("6f1c1f0e-7a6b-4a52-9d1b-0d6f3f1a2b01")
BOB_ID = uuid.UUID("0b8e4c2d-93d7-4e0b-8f2f-5c1a7d9e3c02")
USER_CARD_ID = uuid.UUID("3d2c1b0a-9f8e-4d7c-8b6a-5f4e3d2c1b07")
CARD_ID = uuid.UUID("9a8b7c6d-5e4f-4a3b-9c2d-1e0f9a8b7c08")

def source_row(quantity: int):
    return {
        "id": USER_CARD_ID,
        "user_id": ALICE_ID,
        "card_id": CARD_ID,
        "pokemon_tcg_id": "swsh3-136",
        "condition": "Near Mint",
        "estimated_value": 4.5,
        "collection_type": "collection",
        "is_public": True,
        "quantity": quantity
    }

class ScriptedConnection:
    """Answers the source and destination lookups; records every write."""

    def __init__(self, source, destination_id: Optional[uuid.UUID] = None):
        self.source = source
        self.destination_id = destination_id
        self.writes: List[Tuple[str, Tuple[Any, ...]]] = []

    async def fetchrow(self, sql: str, *args: Any):
        return self.source

    async def fetchval(self, sql: str, *args: Any):
        return self.destination_id

    async def execute(self, sql: str, *args: Any) -> str:
        self.writes.append((' '.join(sql.split()), args))
        return 'OK'

def test_collection_types():
    assert is_valid_collection_type("collection")
    assert is_valid_collection_type("wishlist")
    assert not is_valid_collection_type("binder")

def test_valid_fields():
    validate_user_card_fields({
        "condition": "Near Mint",
        "collection_type": "wishlist",
        "quantity": 3,
        "estimated_value": 0
    })

@pytest.mark.parametrize("fields", [
    {"condition": "Played"},
    {"collection_type": "binder"},
    {"quantity": 0},
    {"quantity": "2"},
    {"quantity": True},
    {"estimated_value": -1}
])
def test_invalid_fields(fields):
    with pytest.raises(UserCardError):
        validate_user_card_fields(fields)

@pytest.mark.asyncio
async def test_transfer_last_copy_moves_the_record():
    """The receiver gets a new record and the sender's single copy is removed."""
    conn = ScriptedConnection(source_row(quantity=1))
    await transfer_one_copy(conn, USER_CARD_ID, ALICE_ID, BOB_ID)

    inserted, removed = conn.writes
    assert inserted[0].startswith("INSERT INTO user_cards")
    assert inserted[1][0] == BOB_ID
    assert inserted[1][1] == CARD_ID
    assert removed == ("DELETE FROM user_cards WHERE id = $1", (USER_CARD_ID,))

@pytest.mark.asyncio
async def test_transfer_one_of_several_copies():
    """Matching destination records are stacked; the source keeps the rest."""
    destination = uuid.uuid4()
    conn = ScriptedConnection(source_row(quantity=3), destination_id=destination)
    await transfer_one_copy(conn, USER_CARD_ID, ALICE_ID, BOB_ID)

    stacked, decremented = conn.writes
    assert "quantity = quantity + 1" in stacked[0]
    assert stacked[1] == (destination,)
    assert "quantity = quantity - 1" in decremented[0]
    assert decremented[1] == (USER_CARD_ID,)

@pytest.mark.asyncio
async def test_transfer_of_a_card_no_longer_held():
    conn = ScriptedConnection(None)
    with pytest.raises(InsufficientQuantityError):
        await transfer_one_copy(conn, USER_CARD_ID, ALICE_ID, BOB_ID)
    assert conn.writes == []
