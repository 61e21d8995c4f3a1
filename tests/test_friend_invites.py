"""Tests for inviting friends to private trade rooms."""

import re
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, patch

import pytest

from trades import manager as trade_manager, TradePermissionError, TradeStateError, TradeUserNotFoundError
from trades.friend_invites import (
    FriendInviteError,
    FriendInviteExistsError,
    FriendInviteManager,
    FriendInviteNotFoundError
)

# Test data
ALICE_ID = uuid.UUID("6f1c1f0e-7a6b-4a52-9d1b-0d6f3f1a2b01")
BOB_ID = uuid.UUID("0b8e4c2d-93d7-4e0b-8f2f-5c1a7d9e3c02")
INVITE_ID = uuid.UUID("3d2c1b0a-9f8e-4d7c-a6b5-4c3d2e1f0a04")
TRADE_ID = uuid.UUID("5c4b3a29-1807-4f6e-9d5c-4b3a29180709")
ROOM_CODE = "Kd8_2mQx-a"

def invite_row(**overrides) -> Dict[str, Any]:
    row = {
        'id': INVITE_ID,
        'from_user_id': ALICE_ID,
        'to_user_id': BOB_ID,
        'status': 'pending',
        'private_room_code': None,
        'trade_id': None,
        'completed_at': None,
        'created_at': datetime(2024, 5, 1, tzinfo=timezone.utc)
    }
    row.update(overrides)
    return row

class InviteConnection:
    """Answers friendship and invitation lookups; records writes."""

    def __init__(
        self,
        friend_id: Optional[uuid.UUID] = BOB_ID,
        is_friend: bool = True,
        pending: bool = False,
        stored=None,
        listed=None
    ):
        self.friend_id = friend_id
        self.is_friend = is_friend
        self.pending = pending
        self.stored = stored
        self.listed = listed or []
        self.inserted: List[tuple] = []
        self.updates: List[tuple] = []
        self.listings: List[str] = []

    async def fetchval(self, sql: str, *args: Any):
        if 'FROM user_friends' in sql:
            return self.is_friend
        if 'FROM friend_trade_invites' in sql:
            return self.pending
        if sql.startswith('SELECT username FROM users'):
            return 'alice' if args[0] == ALICE_ID else 'bob'
        return self.friend_id

    async def fetchrow(self, sql: str, *args: Any):
        if 'INSERT INTO friend_trade_invites' in sql:
            self.inserted.append(args)
            return invite_row(from_user_id=args[0], to_user_id=args[1])
        if 'UPDATE friend_trade_invites' in sql:
            self.updates.append(args)
            new_status = re.search(r"status = '(\w+)'", sql).group(1)
            row = dict(self.stored, status=new_status)
            if new_status == 'accepted':
                row.update(trade_id=args[1], private_room_code=args[2])
            return row
        return self.stored

    async def fetch(self, sql: str, *args: Any):
        self.listings.append(' '.join(sql.split()))
        return self.listed

    @asynccontextmanager
    async def transaction(self):
        yield

class FakePool:
    def __init__(self, conn: InviteConnection):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn

def make_manager(conn: InviteConnection) -> FriendInviteManager:
    return FriendInviteManager(pool=FakePool(conn), notifier=AsyncMock())

@pytest.mark.asyncio
async def test_invite_a_friend():
    """The invitation is stored pending and the friend is notified."""
    conn = InviteConnection()
    manager = make_manager(conn)
    invite = await manager.invite(str(ALICE_ID), 'bob')

    assert invite['status'] == 'pending'
    assert invite['to_user_id'] == str(BOB_ID)
    assert invite['private_room_code'] is None
    assert conn.inserted == [(ALICE_ID, BOB_ID)]

    notify = manager.notifier.create_notification
    notify.assert_awaited_once()
    assert notify.await_args.args[:2] == (BOB_ID, 'trade')
    assert 'alice' in notify.await_args.args[3]

@pytest.mark.asyncio
async def test_only_friends_can_be_invited():
    conn = InviteConnection(is_friend=False)
    manager = make_manager(conn)
    with pytest.raises(FriendInviteError):
        await manager.invite(str(ALICE_ID), 'bob')

    assert conn.inserted == []
    manager.notifier.create_notification.assert_not_awaited()

@pytest.mark.asyncio
async def test_invite_yourself():
    conn = InviteConnection(friend_id=ALICE_ID)
    with pytest.raises(FriendInviteError):
        await make_manager(conn).invite(str(ALICE_ID), 'alice')
    assert conn.inserted == []

@pytest.mark.asyncio
async def test_invite_unknown_user():
    with pytest.raises(TradeUserNotFoundError):
        await make_manager(InviteConnection(friend_id=None)).invite(str(ALICE_ID), 'nobody')

@pytest.mark.asyncio
async def test_invite_requires_a_friend():
    with pytest.raises(FriendInviteError):
        await FriendInviteManager(pool=object(), notifier=AsyncMock()).invite(str(ALICE_ID), None)

@pytest.mark.asyncio
async def test_pending_invite_blocks_another():
    conn = InviteConnection(pending=True)
    with pytest.raises(FriendInviteExistsError) as exc:
        await make_manager(conn).invite(str(ALICE_ID), 'bob')

    assert exc.value.error_code == 'INVITE_ALREADY_EXISTS'
    assert conn.inserted == []

@pytest.mark.asyncio
async def test_list_invites_both_directions():
    row = invite_row(other_id=BOB_ID, other_username='bob', other_profile_image='')
    conn = InviteConnection(listed=[row])
    invites = await make_manager(conn).list_invites(str(ALICE_ID))

    assert set(invites) == {'received', 'sent'}
    assert invites['sent'][0]['user']['username'] == 'bob'
    received_sql, sent_sql = conn.listings
    assert 'WHERE i.to_user_id = $1' in received_sql
    assert 'WHERE i.from_user_id = $1' in sent_sql

@pytest.mark.asyncio
async def test_accept_opens_a_private_trade():
    """Accepting stores the new trade and its room code on the invitation."""
    conn = InviteConnection(stored=invite_row())
    manager = make_manager(conn)
    opened = AsyncMock(return_value={'trade_id': str(TRADE_ID), 'private_room_code': ROOM_CODE})
    with patch.object(trade_manager, 'create_trade', opened):
        result = await manager.accept(str(INVITE_ID), str(BOB_ID))

    assert result['trade_id'] == str(TRADE_ID)
    assert result['private_room_code'] == ROOM_CODE
    assert result['invite']['status'] == 'accepted'
    assert result['invite']['private_room_code'] == ROOM_CODE

    assert opened.await_args.args == (str(ALICE_ID), str(BOB_ID), [], [])
    assert opened.await_args.kwargs['trade_type'] == 'private'
    assert opened.await_args.kwargs['conn'] is conn

    notify = manager.notifier.create_notification
    assert notify.await_args.args[0] == ALICE_ID
    assert notify.await_args.kwargs['data']['private_room_code'] == ROOM_CODE

@pytest.mark.asyncio
async def test_only_the_friend_may_accept():
    conn = InviteConnection(stored=invite_row())
    opened = AsyncMock()
    with patch.object(trade_manager, 'create_trade', opened):
        with pytest.raises(TradePermissionError):
            await make_manager(conn).accept(str(INVITE_ID), str(ALICE_ID))
    opened.assert_not_awaited()
    assert conn.updates == []

@pytest.mark.asyncio
@pytest.mark.parametrize("status", ['accepted', 'rejected', 'cancelled', 'completed'])
async def test_answered_invites_stay_answered(status):
    conn = InviteConnection(stored=invite_row(status=status))
    with pytest.raises(TradeStateError):
        await make_manager(conn).reject(str(INVITE_ID), str(BOB_ID))
    assert conn.updates == []

@pytest.mark.asyncio
async def test_reject():
    conn = InviteConnection(stored=invite_row())
    invite = await make_manager(conn).reject(str(INVITE_ID), str(BOB_ID))

    assert invite['status'] == 'rejected'
    assert invite['trade_id'] is None

@pytest.mark.asyncio
async def test_unknown_invite():
    with pytest.raises(FriendInviteNotFoundError):
        await make_manager(InviteConnection()).reject('not-a-uuid', str(BOB_ID))
