"""Trade requests.

A trade request asks another user for one of their cards, or (when manual)
invites them to a private trading room. Accepting a normal request opens a
private trade. A quick request also names the card offered in return;
accepting it swaps one copy of each card straight away.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from database import get_pool
from collection import transfer_one_copy, InsufficientQuantityError
from notifications import manager as notification_manager
from users import resolve_user_id, parse_uuid
from . import manager as trade_manager, TradeUserNotFoundError
from .validation import (
    TradeError,
    TradeNotFoundError,
    TradePermissionError,
    TradeStateError,
    validate_quick_trade_prices,
    validate_value_parity
)

logger = logging.getLogger(__name__)

MANUAL_CARD_NAME = 'Private trade room'

class TradeRequestError(TradeError):
    """Raised when a trade request is malformed."""
    pass

class TradeRequestNotFoundError(TradeNotFoundError):
    """Raised when a trade request is not found."""
    pass

class TradeRequestExistsError(TradeError):
    """Raised when an equivalent request is already pending between two users."""
    error_code = 'TRADE_ALREADY_EXISTS'

def _str(value) -> Optional[str]:
    return str(value) if value is not None else None

def serialize_request(row) -> Dict[str, Any]:
    """Convert a trade_requests row, optionally joined with a user and a trade."""
    request = {
        'id': str(row['id']),
        'from_user_id': str(row['from_user_id']),
        'to_user_id': str(row['to_user_id']),
        'pokemon_tcg_id': row['pokemon_tcg_id'],
        'card_name': row['card_name'],
        'card_image': row['card_image'],
        'note': row['note'],
        'is_manual': row['is_manual'],
        'offered_card': None,
        'offered_price': row['offered_price'],
        'target_price': row['target_price'],
        'offered_user_card_id': _str(row['offered_user_card_id']),
        'target_user_card_id': _str(row['target_user_card_id']),
        'status': row['status'],
        'trade_id': _str(row['trade_id']),
        'finished_at': row['finished_at'].isoformat() if row['finished_at'] else None,
        'created_at': row['created_at'].isoformat() if row['created_at'] else None
    }
    if row['offered_pokemon_tcg_id']:
        request['offered_card'] = {
            'pokemon_tcg_id': row['offered_pokemon_tcg_id'],
            'card_name': row['offered_card_name'],
            'card_image': row['offered_card_image']
        }

    keys = row.keys()
    if 'other_username' in keys:
        request['user'] = {
            'id': _str(row['other_id']),
            'username': row['other_username'],
            'email': row['other_email'],
            'profile_image': row['other_profile_image']
        }
    if 'trade_room_code' in keys and row['trade_id']:
        request['trade'] = {
            'id': str(row['trade_id']),
            'private_room_code': row['trade_room_code'],
            'status': row['trade_status']
        }
    return request

def is_quick(row) -> bool:
    """A quick request names the card offered in exchange."""
    return bool(row['offered_pokemon_tcg_id']) and not row['is_manual']

class TradeRequestManager:
    """Manager class for trade requests."""

    def __init__(self, pool=None, notifier=None):
        """Initialize the trade request manager.

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

    async def _check_owner(self, conn, user_card_id: Any, owner_id: uuid.UUID, label: str):
        user_card_uuid = parse_uuid(user_card_id)
        row = None
        if user_card_uuid:
            row = await conn.fetchrow(
                '''
                SELECT uc.user_id, c.name, c.image_small, c.image_large
                FROM user_cards uc
                LEFT JOIN cards c ON c.id = uc.card_id
                WHERE uc.id = $1
                ''',
                user_card_uuid
            )
        if not row:
            raise TradeRequestNotFoundError(f"The {label} card does not exist")
        if row['user_id'] != owner_id:
            raise TradeRequestError(f"The {label} card does not belong to its user")
        return user_card_uuid, row

    async def create_request(
        self,
        from_user_id: str,
        receiver_identifier: Optional[str],
        pokemon_tcg_id: Optional[str] = None,
        card_name: str = '',
        card_image: str = '',
        note: str = '',
        is_manual: bool = False,
        offered_card: Optional[Dict[str, Any]] = None,
        offered_price: Optional[float] = None,
        target_price: Optional[float] = None,
        offered_user_card_id: Optional[str] = None,
        target_user_card_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create a trade request and notify the receiver.

        Args:
            from_user_id: Sender's id
            receiver_identifier: Receiver's id, username or email
            pokemon_tcg_id: Requested card, required unless is_manual
            card_name: Display name of the requested card
            card_image: Image of the requested card
            note: Free text for the receiver
            is_manual: Invitation to a private room rather than a card request
            offered_card: Card offered in return, makes this a quick request
            offered_price: Offered card's price, checked on accept
            target_price: Requested card's price, checked on accept
            offered_user_card_id: Sender's ownership record of the offered card
            target_user_card_id: Receiver's ownership record of the requested card

        Returns:
            The created request

        Raises:
            TradeRequestError: If the request is malformed or targets the sender
            TradeUserNotFoundError: If either user doesn't exist
            TradeRequestExistsError: If an equivalent request is already pending
        """
        if not receiver_identifier:
            raise TradeRequestError("receiver_identifier is required")
        if not is_manual and not pokemon_tcg_id:
            raise TradeRequestError("pokemon_tcg_id is required for card requests")

        offered_tcg_id = (offered_card or {}).get('pokemon_tcg_id')
        quick = not is_manual and bool(offered_tcg_id)

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            sender_id = parse_uuid(from_user_id)
            sender_name = await conn.fetchval('SELECT username FROM users WHERE id = $1', sender_id)
            if not sender_name:
                raise TradeUserNotFoundError("Current user not found")

            receiver_id = await resolve_user_id(conn, receiver_identifier, allow_email=True)
            if not receiver_id:
                raise TradeUserNotFoundError(f"Receiver not found: {receiver_identifier}")
            if receiver_id == sender_id:
                raise TradeRequestError("You cannot send a request to yourself")

            conditions = [
                "status = 'pending'",
                '((from_user_id = $1 AND to_user_id = $2) OR (from_user_id = $2 AND to_user_id = $1))'
            ]
            params: List[Any] = [sender_id, receiver_id]
            if is_manual:
                conditions.append('is_manual')
            else:
                params.append(pokemon_tcg_id)
                conditions.append(f'NOT is_manual AND pokemon_tcg_id = ${len(params)}')
                if quick:
                    params.append(offered_tcg_id)
                    conditions.append(f'offered_pokemon_tcg_id = ${len(params)}')

            exists = await conn.fetchval(
                f"SELECT EXISTS (SELECT 1 FROM trade_requests WHERE {' AND '.join(conditions)})",
                *params
            )
            if exists:
                raise TradeRequestExistsError(
                    "A private room invitation is already pending between these users"
                    if is_manual else
                    "A request for this card is already pending between these users"
                )

            offered_name = offered_image = None
            offered_uuid = target_uuid = None
            if quick:
                offered_name = offered_card.get('card_name') or ''
                offered_image = offered_card.get('card_image') or ''
                if offered_user_card_id:
                    offered_uuid, offered_row = await self._check_owner(
                        conn, offered_user_card_id, sender_id, 'offered'
                    )
                    offered_name = offered_name or offered_row['name'] or ''
                    offered_image = offered_image or offered_row['image_large'] or offered_row['image_small'] or ''
                if target_user_card_id:
                    target_uuid, _ = await self._check_owner(conn, target_user_card_id, receiver_id, 'requested')
                offered_name = offered_name or 'Offered card'

            row = await conn.fetchrow(
                '''
                INSERT INTO trade_requests (
                    from_user_id, to_user_id, pokemon_tcg_id, card_name, card_image,
                    note, is_manual, offered_pokemon_tcg_id, offered_card_name,
                    offered_card_image, offered_price, target_price,
                    offered_user_card_id, target_user_card_id
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
                RETURNING *
                ''',
                sender_id,
                receiver_id,
                None if is_manual else pokemon_tcg_id,
                (card_name or MANUAL_CARD_NAME) if is_manual else card_name,
                '' if is_manual else card_image,
                note or '',
                bool(is_manual),
                offered_tcg_id if quick else None,
                offered_name,
                offered_image,
                offered_price if quick else None,
                target_price if quick else None,
                offered_uuid,
                target_uuid
            )

        request = serialize_request(row)
        logger.info(f"Created trade request {request['id']}")

        if is_manual:
            title = 'Private trade room invitation'
            message = f"{sender_name} wants to open a private trade room with you."
        elif quick:
            title = 'New quick trade offer'
            message = f"{sender_name} offers {offered_name} for your {card_name or 'card'}."
        else:
            title = 'New trade request'
            message = f"{sender_name} wants to trade for {card_name or 'a card'}."
        await self.notifier.create_notification(
            receiver_id, 'trade', title, message,
            related_id=request['id'],
            data={'type': 'tradeRequest', 'request_id': request['id']}
        )
        return request

    async def _list(self, user_id: str, current_user_id: str, direction: str) -> List[Dict[str, Any]]:
        if str(user_id) != str(current_user_id):
            raise TradePermissionError("You cannot view another user's requests")
        user_uuid = parse_uuid(user_id)
        if not user_uuid:
            raise TradeRequestError(f"Invalid user id: {user_id}")

        own, other = ('to_user_id', 'from_user_id') if direction == 'received' else ('from_user_id', 'to_user_id')

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f'''
                SELECT r.*,
                       u.id AS other_id,
                       u.username AS other_username,
                       u.email AS other_email,
                       u.profile_image AS other_profile_image,
                       t.private_room_code AS trade_room_code,
                       t.status AS trade_status
                FROM trade_requests r
                LEFT JOIN users u ON u.id = r.{other}
                LEFT JOIN trades t ON t.id = r.trade_id
                WHERE r.{own} = $1
                ORDER BY r.created_at DESC
                ''',
                user_uuid
            )
        return [serialize_request(row) for row in rows]

    async def received(self, user_id: str, current_user_id: str) -> List[Dict[str, Any]]:
        """Requests sent to a user. Only that user may list them.

        Raises:
            TradePermissionError: If current_user_id is someone else
        """
        return await self._list(user_id, current_user_id, 'received')

    async def sent(self, user_id: str, current_user_id: str) -> List[Dict[str, Any]]:
        """Requests sent by a user. Only that user may list them.

        Raises:
            TradePermissionError: If current_user_id is someone else
        """
        return await self._list(user_id, current_user_id, 'sent')

    async def _lock_pending(self, conn, request_id: str, user_id: str, party: str):
        """Lock a pending request the given party may act on."""
        request_uuid = parse_uuid(request_id)
        row = None
        if request_uuid:
            row = await conn.fetchrow('SELECT * FROM trade_requests WHERE id = $1 FOR UPDATE', request_uuid)
        if not row:
            raise TradeRequestNotFoundError(f"Trade request {request_id} not found")
        if row[party] != parse_uuid(user_id):
            raise TradePermissionError("You cannot act on this request")
        if row['status'] != 'pending':
            raise TradeStateError("The request is no longer pending")
        return row

    async def _open_trade(self, conn, row) -> Dict[str, Any]:
        trade = await trade_manager.create_trade(
            str(row['from_user_id']),
            str(row['to_user_id']),
            [],
            [],
            trade_type='private',
            request_id=row['id'],
            requested_pokemon_tcg_id=row['pokemon_tcg_id'],
            conn=conn
        )
        updated = await conn.fetchrow(
            '''
            UPDATE trade_requests
            SET status = 'accepted', trade_id = $2, finished_at = NULL
            WHERE id = $1
            RETURNING *
            ''',
            row['id'],
            uuid.UUID(trade['trade_id'])
        )
        return {'request': serialize_request(updated), **trade}

    async def _find_quick_card(self, conn, user_card_id, owner_id, pokemon_tcg_id) -> Optional[uuid.UUID]:
        if user_card_id:
            found = await conn.fetchval(
                'SELECT id FROM user_cards WHERE id = $1 AND user_id = $2',
                user_card_id,
                owner_id
            )
            if found:
                return found
        return await conn.fetchval(
            '''
            SELECT id FROM user_cards
            WHERE user_id = $1 AND pokemon_tcg_id = $2
            ORDER BY created_at
            LIMIT 1
            ''',
            owner_id,
            pokemon_tcg_id
        )

    async def _complete_quick(self, conn, row) -> Dict[str, Any]:
        sender, receiver = row['from_user_id'], row['to_user_id']

        offered_id = await self._find_quick_card(
            conn, row['offered_user_card_id'], sender, row['offered_pokemon_tcg_id']
        )
        target_id = await self._find_quick_card(
            conn, row['target_user_card_id'], receiver, row['pokemon_tcg_id']
        )
        if not offered_id or not target_id:
            raise TradeRequestNotFoundError("The cards for this quick trade are no longer in the collections")

        validate_quick_trade_prices(row['offered_price'], row['target_price'])
        # A missing or zero price leaves that side without a total
        offered_total = row['offered_price'] or None
        target_total = row['target_price'] or None
        difference = validate_value_parity(offered_total, target_total)

        trade_id = await conn.fetchval(
            '''
            INSERT INTO trades (
                initiator_user_id, receiver_user_id, status, trade_type,
                initiator_accepted, receiver_accepted,
                initiator_total_value, receiver_total_value, value_difference_percentage,
                request_id, requested_pokemon_tcg_id, completed_at
            ) VALUES ($1, $2, 'completed', 'private', true, true, $3, $4, $5, $6, $7, now())
            RETURNING id
            ''',
            sender,
            receiver,
            offered_total,
            target_total,
            difference,
            row['id'],
            row['pokemon_tcg_id']
        )
        await conn.executemany(
            '''
            INSERT INTO trade_cards (trade_id, side, position, user_card_id, estimated_value)
            VALUES ($1, $2, 0, $3, $4)
            ''',
            [
                (trade_id, 'initiator', offered_id, row['offered_price']),
                (trade_id, 'receiver', target_id, row['target_price'])
            ]
        )

        try:
            await transfer_one_copy(conn, offered_id, sender, receiver)
            await transfer_one_copy(conn, target_id, receiver, sender)
        except InsufficientQuantityError as e:
            raise TradeStateError(str(e))

        updated = await conn.fetchrow(
            '''
            UPDATE trade_requests
            SET status = 'completed', trade_id = $2, finished_at = now()
            WHERE id = $1
            RETURNING *
            ''',
            row['id'],
            trade_id
        )
        return {'request': serialize_request(updated), 'trade_id': str(trade_id)}

    async def _notify_sender(self, conn, row, title: str, template: str, data: Optional[Dict[str, Any]] = None):
        receiver_name = await self._username(conn, row['to_user_id'])
        await self.notifier.create_notification(
            row['from_user_id'], 'trade', title,
            template.format(user=receiver_name, card=row['card_name'] or 'a card'),
            related_id=str(row['id']),
            data=data
        )

    async def accept(self, request_id: str, user_id: str) -> Dict[str, Any]:
        """Accept a pending request as its receiver.

        A normal request opens a private trade. A quick request checks the
        two prices, swaps one copy of each card and records a completed
        trade, all in one transaction.

        Returns:
            Dict with the updated request, trade_id and, for normal
            requests, private_room_code

        Raises:
            TradeRequestNotFoundError: If the request or its cards are gone
            TradePermissionError: If the user is not the receiver
            TradeStateError: If the request is not pending
            TradeValueError: If a quick trade's prices are too far apart
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await self._lock_pending(conn, request_id, user_id, 'to_user_id')
                quick = is_quick(row)
                result = await (self._complete_quick(conn, row) if quick else self._open_trade(conn, row))

            logger.info(f"Accepted trade request {request_id}, trade {result['trade_id']}")
            if quick:
                await self._notify_sender(
                    conn, row, 'Quick trade completed',
                    '{user} accepted your quick trade.',
                    {'type': 'quickTradeCompleted', 'trade_id': result['trade_id']}
                )
            else:
                await self._notify_sender(
                    conn, row, 'Trade request accepted',
                    '{user} accepted your request for {card}.',
                    {
                        'type': 'tradeAccepted',
                        'trade_id': result['trade_id'],
                        'private_room_code': result['private_room_code']
                    }
                )
        return result

    async def open_room(self, request_id: str, user_id: str) -> Dict[str, Any]:
        """Open a private trade room for a pending request, as its receiver.

        Raises:
            TradeRequestNotFoundError: If the request doesn't exist
            TradePermissionError: If the user is not the receiver
            TradeStateError: If the request is not pending
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await self._lock_pending(conn, request_id, user_id, 'to_user_id')
                result = await self._open_trade(conn, row)

            await self._notify_sender(
                conn, row, 'Trade room created',
                '{user} created a room to negotiate the trade.',
                {
                    'type': 'tradeRoomCreated',
                    'trade_id': result['trade_id'],
                    'private_room_code': result['private_room_code']
                }
            )
        return result

    async def reject(self, request_id: str, user_id: str) -> Dict[str, Any]:
        """Reject a pending request as its receiver.

        Raises:
            TradeRequestNotFoundError: If the request doesn't exist
            TradePermissionError: If the user is not the receiver
            TradeStateError: If the request is not pending
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await self._lock_pending(conn, request_id, user_id, 'to_user_id')
                updated = await conn.fetchrow(
                    '''
                    UPDATE trade_requests
                    SET status = 'rejected', finished_at = now()
                    WHERE id = $1
                    RETURNING *
                    ''',
                    row['id']
                )

            await self._notify_sender(
                conn, row, 'Trade request rejected',
                '{user} rejected your trade request.'
            )
        return serialize_request(updated)

    async def cancel(self, request_id: str, user_id: str) -> Dict[str, Any]:
        """Cancel a pending request as its sender.

        Raises:
            TradeRequestNotFoundError: If the request doesn't exist
            TradePermissionError: If the user is not the sender
            TradeStateError: If the request is not pending
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await self._lock_pending(conn, request_id, user_id, 'from_user_id')
                updated = await conn.fetchrow(
                    '''
                    UPDATE trade_requests
                    SET status = 'cancelled', finished_at = now()
                    WHERE id = $1
                    RETURNING *
                    ''',
                    row['id']
                )
        return serialize_request(updated)

# Create global instance
manager = TradeRequestManager()
