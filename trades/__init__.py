"""Trades module for negotiating and completing card exchanges.

This module provides functionality for:
- Creating trades between two users, public or in a private room
- Listing and fetching trades, including by private room code
- Patching a trade's status and messages
- Completing an accepted trade by swapping card ownership atomically
"""

import logging
import math
import secrets
import string
import uuid
from typing import Dict, List, Optional, Any

import asyncpg

from database import get_pool
from collection import transfer_one_copy, InsufficientQuantityError
from users import resolve_user_id, parse_uuid
from .validation import (
    STATUSES,
    TRADE_TYPES,
    ALLOWED_UPDATES,
    TradeError,
    TradeNotFoundError,
    TradeValueError,
    TradeUpdateError,
    TradePermissionError,
    TradeStateError,
    compute_value_difference,
    side_total,
    validate_value_parity,
    validate_trade_updates
)

logger = logging.getLogger(__name__)

ROOM_CODE_ALPHABET = string.ascii_letters + string.digits + '_-'
ROOM_CODE_LENGTH = 10
ROOM_CODE_ATTEMPTS = 5

class TradeUserNotFoundError(TradeError):
    """Raised when the other party of a trade cannot be resolved."""
    pass

def generate_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    """Random URL-safe code identifying a private trade room."""
    return ''.join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(length))

def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None

class TradeManager:
    """Manager class for handling trade operations."""

    def __init__(self, pool=None):
        """Initialize the trade manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def _resolve_cards(
        self,
        conn,
        owner_id: uuid.UUID,
        cards: List[Dict[str, Any]],
        side: str
    ) -> List[Dict[str, Any]]:
        """Check a side's offered cards belong to its user and fill in missing fields."""
        resolved = []
        for card in cards:
            user_card_id = parse_uuid(card.get('user_card_id'))
            if not user_card_id:
                raise TradeError(f"Invalid user card id on {side} side: {card.get('user_card_id')}")

            row = await conn.fetchrow(
                'SELECT user_id, card_id, estimated_value FROM user_cards WHERE id = $1',
                user_card_id
            )
            if not row or row['user_id'] != owner_id:
                raise TradeError(f"User card {user_card_id} does not belong to the {side}")

            estimated_value = card.get('estimated_value')
            resolved.append({
                'user_card_id': user_card_id,
                'card_id': parse_uuid(card.get('card_id')) or row['card_id'],
                'estimated_value': row['estimated_value'] if estimated_value is None else float(estimated_value)
            })
        return resolved

    async def create_trade(
        self,
        initiator_id: str,
        receiver_identifier: str,
        initiator_cards: List[Dict[str, Any]],
        receiver_cards: List[Dict[str, Any]],
        trade_type: str = 'private',
        request_id: Optional[uuid.UUID] = None,
        requested_pokemon_tcg_id: Optional[str] = None,
        conn=None
    ) -> Dict[str, Any]:
        """Create a trade.

        Args:
            initiator_id: The initiating user's id
            receiver_identifier: Receiver's id, username or email
            initiator_cards: Offered cards, each with user_card_id and optional
                card_id and estimated_value
            receiver_cards: Requested cards, same shape
            trade_type: public or private
            request_id: Trade request this trade was opened from
            requested_pokemon_tcg_id: Card the originating request asked for
            conn: Optional connection to run on, e.g. inside a transaction

        Returns:
            Dict with trade_id and private_room_code

        Raises:
            TradeError: If the type or a card is invalid
            TradeUserNotFoundError: If the receiver doesn't exist
            TradeValueError: If the two sides differ too much in value
        """
        if trade_type not in TRADE_TYPES:
            raise TradeError(f"Invalid trade type: {trade_type}")

        if conn is None:
            await self.ensure_pool()
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    return await self.create_trade(
                        initiator_id, receiver_identifier, initiator_cards, receiver_cards,
                        trade_type, request_id, requested_pokemon_tcg_id, conn
                    )

        initiator_uuid = parse_uuid(initiator_id)
        receiver_uuid = await resolve_user_id(conn, receiver_identifier, allow_email=True)
        if not receiver_uuid:
            raise TradeUserNotFoundError(f"Receiver not found: {receiver_identifier}")
        if receiver_uuid == initiator_uuid:
            raise TradeError("Cannot trade with yourself")

        sides = {
            'initiator': await self._resolve_cards(conn, initiator_uuid, initiator_cards or [], 'initiator'),
            'receiver': await self._resolve_cards(conn, receiver_uuid, receiver_cards or [], 'receiver')
        }

        initiator_total = side_total(sides['initiator'])
        receiver_total = side_total(sides['receiver'])
        difference = validate_value_parity(initiator_total, receiver_total)

        room_code = generate_room_code() if trade_type == 'private' else None
        for attempt in range(ROOM_CODE_ATTEMPTS):
            try:
                async with conn.transaction():
                    trade_id = await conn.fetchval(
                        '''
                        INSERT INTO trades (
                            initiator_user_id, receiver_user_id, trade_type,
                            private_room_code, initiator_total_value,
                            receiver_total_value, value_difference_percentage,
                            request_id, requested_pokemon_tcg_id
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                        RETURNING id
                        ''',
                        initiator_uuid,
                        receiver_uuid,
                        trade_type,
                        room_code,
                        initiator_total,
                        receiver_total,
                        difference,
                        request_id,
                        requested_pokemon_tcg_id
                    )
                break
            except asyncpg.UniqueViolationError:
                if attempt == ROOM_CODE_ATTEMPTS - 1:
                    raise TradeError("Could not allocate a private room code")
                room_code = generate_room_code()

        for side, cards in sides.items():
            for position, card in enumerate(cards):
                await conn.execute(
                    '''
                    INSERT INTO trade_cards (
                        trade_id, side, position, user_card_id, card_id, estimated_value
                    ) VALUES ($1, $2, $3, $4, $5, $6)
                    ''',
                    trade_id,
                    side,
                    position,
                    card['user_card_id'],
                    card['card_id'],
                    card['estimated_value']
                )

        logger.info(f"Created {trade_type} trade {trade_id}")
        return {'trade_id': str(trade_id), 'private_room_code': room_code}

    async def _serialize(self, conn, row) -> Dict[str, Any]:
        users = await conn.fetch(
            'SELECT id, username, email FROM users WHERE id = ANY($1::uuid[])',
            [row['initiator_user_id'], row['receiver_user_id']]
        )
        by_id = {u['id']: {'id': str(u['id']), 'username': u['username'], 'email': u['email']} for u in users}

        cards = await conn.fetch(
            '''
            SELECT tc.*, c.name, c.image_small
            FROM trade_cards tc
            LEFT JOIN cards c ON c.id = tc.card_id
            WHERE tc.trade_id = $1
            ORDER BY tc.side, tc.position
            ''',
            row['id']
        )
        messages = await conn.fetch(
            '''
            SELECT sender_user_id, message, created_at
            FROM trade_messages
            WHERE trade_id = $1
            ORDER BY created_at
            ''',
            row['id']
        )

        def side_cards(side: str) -> List[Dict[str, Any]]:
            return [
                {
                    'user_card_id': str(c['user_card_id']),
                    'card_id': str(c['card_id']) if c['card_id'] else None,
                    'estimated_value': c['estimated_value'],
                    'name': c['name'],
                    'image_small': c['image_small']
                }
                for c in cards if c['side'] == side
            ]

        return {
            'id': str(row['id']),
            'initiator': by_id.get(row['initiator_user_id'], {'id': str(row['initiator_user_id'])}),
            'receiver': by_id.get(row['receiver_user_id'], {'id': str(row['receiver_user_id'])}),
            'status': row['status'],
            'trade_type': row['trade_type'],
            'private_room_code': row['private_room_code'],
            'request_id': str(row['request_id']) if row['request_id'] else None,
            'requested_pokemon_tcg_id': row['requested_pokemon_tcg_id'],
            'initiator_cards': side_cards('initiator'),
            'receiver_cards': side_cards('receiver'),
            'initiator_accepted': row['initiator_accepted'],
            'receiver_accepted': row['receiver_accepted'],
            'initiator_total_value': row['initiator_total_value'],
            'receiver_total_value': row['receiver_total_value'],
            'value_difference_percentage': row['value_difference_percentage'],
            'messages': [
                {
                    'sender_user_id': str(m['sender_user_id']),
                    'message': m['message'],
                    'created_at': _iso(m['created_at'])
                }
                for m in messages
            ],
            'completed_at': _iso(row['completed_at']),
            'created_at': _iso(row['created_at']),
            'updated_at': _iso(row['updated_at'])
        }

    async def list_trades(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        trade_type: Optional[str] = None
    ) -> Dict[str, Any]:
        """List trades, newest first.

        Raises:
            TradeError: If a filter value is invalid
        """
        page, limit = max(1, page), max(1, limit)

        conditions: List[str] = []
        params: List[Any] = []
        if status:
            if status not in STATUSES:
                raise TradeError(f"Invalid status: {status}")
            params.append(status)
            conditions.append(f'status = ${len(params)}')
        if trade_type:
            if trade_type not in TRADE_TYPES:
                raise TradeError(f"Invalid trade type: {trade_type}")
            params.append(trade_type)
            conditions.append(f'trade_type = ${len(params)}')
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ''

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            total = await conn.fetchval(f'SELECT COUNT(*) FROM trades {where}', *params)
            rows = await conn.fetch(
                f'''
                SELECT * FROM trades {where}
                ORDER BY created_at DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                ''',
                *params,
                limit,
                (page - 1) * limit
            )
            return {
                'page': page,
                'total_pages': math.ceil(total / limit),
                'total_results': total,
                'results_per_page': limit,
                'trades': [await self._serialize(conn, row) for row in rows]
            }

    async def get_trade(self, trade_id: str) -> Dict[str, Any]:
        """Get a trade by id.

        Raises:
            TradeNotFoundError: If the trade doesn't exist
        """
        trade_uuid = parse_uuid(trade_id)
        if not trade_uuid:
            raise TradeNotFoundError(f"Trade {trade_id} not found")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow('SELECT * FROM trades WHERE id = $1', trade_uuid)
            if not row:
                raise TradeNotFoundError(f"Trade {trade_id} not found")
            return await self._serialize(conn, row)

    async def get_trade_by_room_code(self, code: str) -> Dict[str, Any]:
        """Get a private trade by its room code.

        Raises:
            TradeNotFoundError: If no room has that code
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow('SELECT * FROM trades WHERE private_room_code = $1', code)
            if not row:
                raise TradeNotFoundError(f"Room {code} not found")
            return await self._serialize(conn, row)

    async def update_trade(self, trade_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Patch a trade's status, completion time or messages.

        Args:
            trade_id: The trade UUID
            updates: Only keys in ALLOWED_UPDATES; 'messages' replaces the list

        Returns:
            The updated trade

        Raises:
            TradeUpdateError: If the update carries other keys or bad values
            TradeNotFoundError: If the trade doesn't exist
        """
        updates = validate_trade_updates(updates)

        trade_uuid = parse_uuid(trade_id)
        if not trade_uuid:
            raise TradeNotFoundError(f"Trade {trade_id} not found")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow('SELECT id FROM trades WHERE id = $1 FOR UPDATE', trade_uuid)
                if not row:
                    raise TradeNotFoundError(f"Trade {trade_id} not found")

                columns = {k: v for k, v in updates.items() if k in ('status', 'completed_at')}
                if columns:
                    fields = [f"{column} = ${i}" for i, column in enumerate(columns, start=1)]
                    await conn.execute(
                        f"UPDATE trades SET {', '.join(fields)} WHERE id = ${len(columns) + 1}",
                        *columns.values(),
                        trade_uuid
                    )

                if 'messages' in updates:
                    await conn.execute('DELETE FROM trade_messages WHERE trade_id = $1', trade_uuid)
                    for message in updates['messages']:
                        sender = parse_uuid(message['sender_user_id'])
                        if not sender:
                            raise TradeUpdateError(f"Invalid sender: {message['sender_user_id']}")
                        await conn.execute(
                            '''
                            INSERT INTO trade_messages (trade_id, sender_user_id, message, created_at)
                            VALUES ($1, $2, $3, COALESCE($4, now()))
                            ''',
                            trade_uuid,
                            sender,
                            message['message'],
                            message.get('created_at')
                        )

                row = await conn.fetchrow('SELECT * FROM trades WHERE id = $1', trade_uuid)
                return await self._serialize(conn, row)

    async def delete_trade(self, trade_id: str) -> Dict[str, Any]:
        """Delete a trade with its cards and messages.

        Returns:
            The deleted trade

        Raises:
            TradeNotFoundError: If the trade doesn't exist
        """
        trade_uuid = parse_uuid(trade_id)
        if not trade_uuid:
            raise TradeNotFoundError(f"Trade {trade_id} not found")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow('SELECT * FROM trades WHERE id = $1 FOR UPDATE', trade_uuid)
                if not row:
                    raise TradeNotFoundError(f"Trade {trade_id} not found")
                trade = await self._serialize(conn, row)
                await conn.execute('DELETE FROM trades WHERE id = $1', trade_uuid)
                logger.info(f"Deleted trade {trade_id}")
                return trade

    async def complete_trade(self, trade_id: str, user_id: str) -> Dict[str, Any]:
        """Complete an accepted trade.

        One copy of every offered card moves to the other party, and the trade
        is marked completed, in a single transaction. The trade row is locked
        so that concurrent completions run one after the other; the second
        one finds the trade already completed.

        Returns:
            The completed trade

        Raises:
            TradeNotFoundError: If the trade doesn't exist
            TradePermissionError: If the user is not a party to the trade
            TradeStateError: If the trade is not accepted or a card is gone
        """
        trade_uuid = parse_uuid(trade_id)
        if not trade_uuid:
            raise TradeNotFoundError(f"Trade {trade_id} not found")
        user_uuid = parse_uuid(user_id)

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow('SELECT * FROM trades WHERE id = $1 FOR UPDATE', trade_uuid)
                if not row:
                    raise TradeNotFoundError(f"Trade {trade_id} not found")
                if user_uuid not in (row['initiator_user_id'], row['receiver_user_id']):
                    raise TradePermissionError("Only a participant can complete this trade")
                if row['status'] != 'accepted':
                    raise TradeStateError(f"Only an accepted trade can be completed (status is {row['status']})")

                cards = await conn.fetch(
                    'SELECT side, user_card_id FROM trade_cards WHERE trade_id = $1 ORDER BY side, position',
                    trade_uuid
                )
                owners = {
                    'initiator': (row['initiator_user_id'], row['receiver_user_id']),
                    'receiver': (row['receiver_user_id'], row['initiator_user_id'])
                }
                try:
                    for card in cards:
                        from_user, to_user = owners[card['side']]
                        await transfer_one_copy(conn, card['user_card_id'], from_user, to_user)
                except InsufficientQuantityError as e:
                    raise TradeStateError(str(e))

                row = await conn.fetchrow(
                    '''
                    UPDATE trades
                    SET status = 'completed',
                        completed_at = now(),
                        initiator_accepted = true,
                        receiver_accepted = true
                    WHERE id = $1
                    RETURNING *
                    ''',
                    trade_uuid
                )
                logger.info(f"Completed trade {trade_id}")
                return await self._serialize(conn, row)

# Create global instance
manager = TradeManager()

__all__ = [
    'manager',
    'TradeManager',
    'generate_room_code',
    'compute_value_difference',
    'validate_value_parity',
    'validate_trade_updates',
    'STATUSES',
    'TRADE_TYPES',
    'ALLOWED_UPDATES',
    'TradeError',
    'TradeNotFoundError',
    'TradeValueError',
    'TradeUpdateError',
    'TradePermissionError',
    'TradeStateError',
    'TradeUserNotFoundError'
]
