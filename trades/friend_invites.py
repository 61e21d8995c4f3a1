"""Friend trade room invitations.

A user invites someone on their friends list to trade privately. The friend
accepts, which opens an empty private trade whose room code both sides then
use to negotiate, or rejects.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from database import get_pool
from notifications import manager as notification_manager
from users import resolve_user_id, parse_uuid
from . import manager as trade_manager, TradeUserNotFoundError
from .validation import TradeError, TradeNotFoundError, TradePermissionError, TradeStateError

logger = logging.getLogger(__name__)

class FriendInviteError(TradeError):
    """Raised when an invitation is not allowed."""
    pass

class FriendInviteNotFoundError(TradeNotFoundError):
    """Raised when an invitation is not found."""
    pass

class FriendInviteExistsError(TradeError):
    """Raised when the same invitation is already pending."""
    error_code = 'INVITE_ALREADY_EXISTS'

def serialize_invite(row) -> Dict[str, Any]:
    """Convert a friend_trade_invites row, optionally joined with the other user."""
    invite = {
        'id': str(row['id']),
        'from_user_id': str(row['from_user_id']),
        'to_user_id': str(row['to_user_id']),
        'status': row['status'],
        'private_room_code': row['private_room_code'],
        'trade_id': str(row['trade_id']) if row['trade_id'] else None,
        'completed_at': row['completed_at'].isoformat() if row['completed_at'] else None,
        'created_at': row['created_at'].isoformat() if row['created_at'] else None
    }
    if 'other_username' in row.keys():
        invite['user'] = {
            'id': str(row['other_id']) if row['other_id'] else None,
            'username': row['other_username'],
            'profile_image': row['other_profile_image']
        }
    return invite

class FriendInviteManager:
    """Manager class for friend trade room invitations."""

    def __init__(self, pool=None, notifier=None):
        """Initialize the invitation manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
            notifier: Notification manager, defaults to the global one
        """
        self.pool = pool
        self.notifier = notifier or notification_manager

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def _username(self, conn, user_id: uuid.UUID) -> str:
        return await conn.fetchval('SELECT username FROM users WHERE id = $1', user_id) or 'A user'

    async def invite(self, from_user_id: str, friend_identifier: Optional[str]) -> Dict[str, Any]:
        """Invite a friend to a private trade room.

        Args:
            from_user_id: The inviting user's id
            friend_identifier: The friend's id or username

        Returns:
            The pending invitation

        Raises:
            FriendInviteError: If the target is yourself or not on your friends list
            TradeUserNotFoundError: If the friend doesn't exist
            FriendInviteExistsError: If an invitation to them is already pending
        """
        if not friend_identifier:
            raise FriendInviteError("friendId is required")
        sender = parse_uuid(from_user_id)

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            friend = await resolve_user_id(conn, friend_identifier)
            if not friend:
                raise TradeUserNotFoundError(f"User {friend_identifier} not found")
            if friend == sender:
                raise FriendInviteError("You cannot invite yourself")

            is_friend = await conn.fetchval(
                'SELECT EXISTS (SELECT 1 FROM user_friends WHERE user_id = $1 AND friend_id = $2)',
                sender, friend
            )
            if not is_friend:
                raise FriendInviteError("You can only invite users on your friends list")

            pending = await conn.fetchval(
                '''
                SELECT EXISTS (
                    SELECT 1 FROM friend_trade_invites
                    WHERE from_user_id = $1 AND to_user_id = $2 AND status = 'pending'
                )
                ''',
                sender, friend
            )
            if pending:
                raise FriendInviteExistsError("You already invited this friend")

            row = await conn.fetchrow(
                '''
                INSERT INTO friend_trade_invites (from_user_id, to_user_id)
                VALUES ($1, $2)
                RETURNING *
                ''',
                sender, friend
            )
            invite = serialize_invite(row)
            logger.info(f"User {sender} invited friend {friend} to trade")

            sender_name = await self._username(conn, sender)
            await self.notifier.create_notification(
                friend, 'trade', 'Trade invitation',
                f"{sender_name} invited you to a private trade.",
                related_id=invite['id'],
                data={'type': 'friendTradeInvite', 'invite_id': invite['id']}
            )
        return invite

    async def list_invites(self, user_id: str) -> Dict[str, List[Dict[str, Any]]]:
        """Invitations the user received and sent, newest first."""
        user_uuid = parse_uuid(user_id)
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            result = {}
            for key, own, other in (
                ('received', 'to_user_id', 'from_user_id'),
                ('sent', 'from_user_id', 'to_user_id')
            ):
                rows = await conn.fetch(
                    f'''
                    SELECT i.*,
                           u.id AS other_id,
                           u.username AS other_username,
                           u.profile_image AS other_profile_image
                    FROM friend_trade_invites i
                    LEFT JOIN users u ON u.id = i.{other}
                    WHERE i.{own} = $1
                    ORDER BY i.created_at DESC
                    ''',
                    user_uuid
                )
                result[key] = [serialize_invite(row) for row in rows]
        return result

    async def _lock_pending(self, conn, invite_id: str, user_id: str):
        """Lock a pending invitation addressed to the user."""
        invite_uuid = parse_uuid(invite_id)
        row = None
        if invite_uuid:
            row = await conn.fetchrow('SELECT * FROM friend_trade_invites WHERE id = $1 FOR UPDATE', invite_uuid)
        if not row:
            raise FriendInviteNotFoundError(f"Invitation {invite_id} not found")
        if row['to_user_id'] != parse_uuid(user_id):
            raise TradePermissionError("Only the invited friend can answer this invitation")
        if row['status'] != 'pending':
            raise TradeStateError("The invitation is no longer pending")
        return row

    async def accept(self, invite_id: str, user_id: str) -> Dict[str, Any]:
        """Accept an invitation, opening an empty private trade.

        Returns:
            Dict with the updated invite, trade_id and private_room_code

        Raises:
            FriendInviteNotFoundError: If the invitation doesn't exist
            TradePermissionError: If the user is not the invited friend
            TradeStateError: If the invitation is not pending
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await self._lock_pending(conn, invite_id, user_id)
                trade = await trade_manager.create_trade(
                    str(row['from_user_id']),
                    str(row['to_user_id']),
                    [],
                    [],
                    trade_type='private',
                    conn=conn
                )
                updated = await conn.fetchrow(
                    '''
                    UPDATE friend_trade_invites
                    SET status = 'accepted', trade_id = $2, private_room_code = $3
                    WHERE id = $1
                    RETURNING *
                    ''',
                    row['id'],
                    uuid.UUID(trade['trade_id']),
                    trade['private_room_code']
                )

            logger.info(f"Accepted friend invitation {invite_id}, trade {trade['trade_id']}")
            friend_name = await self._username(conn, row['to_user_id'])
            await self.notifier.create_notification(
                row['from_user_id'], 'trade', 'Trade invitation accepted',
                f"{friend_name} accepted your trade invitation.",
                related_id=str(row['id']),
                data={
                    'type': 'friendTradeAccepted',
                    'trade_id': trade['trade_id'],
                    'private_room_code': trade['private_room_code']
                }
            )
        return {'invite': serialize_invite(updated), **trade}

    async def reject(self, invite_id: str, user_id: str) -> Dict[str, Any]:
        """Reject an invitation as the invited friend."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await self._lock_pending(conn, invite_id, user_id)
                updated = await conn.fetchrow(
                    '''
                    UPDATE friend_trade_invites
                    SET status = 'rejected'
                    WHERE id = $1
                    RETURNING *
                    ''',
                    row['id']
                )
        return serialize_invite(updated)

# Create global instance
manager = FriendInviteManager()
