"""Tests for trade creation and completion against a scripted connection."""

import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, patch

import pytest

from trades import (
    ROOM_CODE_ALPHABET,
    ROOM_CODE_LENGTH,
    TradeError,
    TradeManager,
    TradePermissionError,
    TradeStateError,
    TradeValueError
)

# Test data
ALICE_ID = uuid.UUID("6f1c1f0e-7a6b-4a52-9d1b-0d6f3f1a2b01")
BOB_ID = uuid.UUID("0b8e4c2d-93d7-4e0b-8f2f-5c1a7d9e3c02")
CAROL_ID = uuid.UUID("9e8d7c6b-5a49-4382-a1b0-c9d8e7f6a503")
TRADE_ID = uuid.UUID("5c4b3a29-1807-4f6e-9d5c-4b3a29180709")
ALICE_CARD = uuid.UUID("1f2e3d4c-5b6a-4978-8695-a4b3c2d1e010")
BOB_CARD = uuid.UUID("2a3b4c5d-6e7f-4081-9293-a4b5c6d7e811")
FURRET_ID = uuid.UUID("9a8b7c6d-5e4f-4a3b-9c2d-1e0f9a8b7c08")

class TradeConnection:
    """Answers user and user card lookups; records trade writes."""

    def __init__(self, user_cards: Dict[uuid.UUID, Dict[str, Any]], trade=None, trade_cards=None):
        self.user_cards = user_cards
        self.trade = trade
        self.trade_cards = trade_cards or []
        self.inserted_trades: List[tuple] = []
        self.executed: List[str] = []
        self.status_updates: List[str] = []

    async def fetchval(self, sql: str, *args: Any):
        if 'INSERT INTO trades' in sql:
            self.inserted_trades.append(args)
            return TRADE_ID
        # receiver lookup by username or email
        return BOB_ID

    async def fetchrow(self, sql: str, *args: Any):
        if 'FROM user_cards' in sql:
            return self.user_cards.get(args[0])
        if 'UPDATE trades' in sql:
            self.status_updates.append(' '.join(sql.split()))
            return dict(self.trade, status='completed')
        return self.trade

    async def fetch(self, sql: str, *args: Any):
        return self.trade_cards

    async def execute(self, sql: str, *args: Any) -> str:
        self.executed.append(' '.join(sql.split()))
        return 'INSERT 0 1'

    @asynccontextmanager
    async def transaction(self):
        yield

class FakePool:
    def __init__(self, conn: TradeConnection):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn

def owned(user_id: uuid.UUID, value: Optional[float]) -> Dict[str, Any]:
    return {'user_id': user_id, 'card_id': FURRET_ID, 'estimated_value': value}

def trade_row(status: str = 'accepted') -> Dict[str, Any]:
    return {
        'id': TRADE_ID,
        'initiator_user_id': ALICE_ID,
        'receiver_user_id': BOB_ID,
        'status': status
    }

@pytest.mark.asyncio
async def test_create_trade_within_parity():
    """Totals, the difference and a room code are stored with the trade."""
    conn = TradeConnection({ALICE_CARD: owned(ALICE_ID, 100.0), BOB_CARD: owned(BOB_ID, 92.0)})
    result = await TradeManager(pool=object()).create_trade(
        str(ALICE_ID), 'bob',
        [{'user_card_id': str(ALICE_CARD)}],
        [{'user_card_id': str(BOB_CARD)}],
        conn=conn
    )

    assert result['trade_id'] == str(TRADE_ID)
    code = result['private_room_code']
    assert len(code) == ROOM_CODE_LENGTH
    assert set(code) <= set(ROOM_CODE_ALPHABET)

    (args,) = conn.inserted_trades
    assert args[:6] == (ALICE_ID, BOB_ID, 'private', code, 100.0, 92.0)
    assert args[6] == pytest.approx(8.0)
    assert len([sql for sql in conn.executed if sql.startswith('INSERT INTO trade_cards')]) == 2

@pytest.mark.asyncio
async def test_create_trade_beyond_parity_writes_nothing():
    """100 against 85 is a 15% gap; nothing is inserted."""
    conn = TradeConnection({ALICE_CARD: owned(ALICE_ID, 100.0), BOB_CARD: owned(BOB_ID, 85.0)})
    with pytest.raises(TradeValueError):
        await TradeManager(pool=object()).create_trade(
            str(ALICE_ID), 'bob',
            [{'user_card_id': str(ALICE_CARD)}],
            [{'user_card_id': str(BOB_CARD)}],
            conn=conn
        )

    assert conn.inserted_trades == []
    assert conn.executed == []

@pytest.mark.asyncio
async def test_create_trade_with_someone_elses_card():
    conn = TradeConnection({ALICE_CARD: owned(BOB_ID, 10.0)})
    with pytest.raises(TradeError):
        await TradeManager(pool=object()).create_trade(
            str(ALICE_ID), 'bob', [{'user_card_id': str(ALICE_CARD)}], [], conn=conn
        )
    assert conn.inserted_trades == []

@pytest.mark.asyncio
async def test_complete_moves_every_card_then_flips_status():
    """Each offered card changes hands before the trade is marked completed."""
    conn = TradeConnection(
        {},
        trade=trade_row(),
        trade_cards=[
            {'side': 'initiator', 'user_card_id': ALICE_CARD},
            {'side': 'receiver', 'user_card_id': BOB_CARD}
        ]
    )
    manager = TradeManager(pool=FakePool(conn))
    transfer = AsyncMock()
    with patch('trades.transfer_one_copy', transfer), \
            patch.object(manager, '_serialize', AsyncMock(side_effect=lambda conn, row: dict(row))):
        trade = await manager.complete_trade(str(TRADE_ID), str(BOB_ID))

    assert trade['status'] == 'completed'
    assert [call.args[1:] for call in transfer.await_args_list] == [
        (ALICE_CARD, ALICE_ID, BOB_ID),
        (BOB_CARD, BOB_ID, ALICE_ID)
    ]
    (update,) = conn.status_updates
    assert "SET status = 'completed'" in update

@pytest.mark.asyncio
@pytest.mark.parametrize("status", ['pending', 'rejected', 'completed', 'cancelled'])
async def test_only_accepted_trades_complete(status):
    conn = TradeConnection({}, trade=trade_row(status))
    transfer = AsyncMock()
    with patch('trades.transfer_one_copy', transfer):
        with pytest.raises(TradeStateError):
            await TradeManager(pool=FakePool(conn)).complete_trade(str(TRADE_ID), str(ALICE_ID))
    transfer.assert_not_awaited()
    assert conn.status_updates == []

@pytest.mark.asyncio
async def test_outsiders_cannot_complete():
    conn = TradeConnection({}, trade=trade_row())
    transfer = AsyncMock()
    with patch('trades.transfer_one_copy', transfer):
        with pytest.raises(TradePermissionError):
            await TradeManager(pool=FakePool(conn)).complete_trade(str(TRADE_ID), str(CAROL_ID))
    transfer.assert_not_awaited()
