"""Collection module for per-user card ownership records.

This module provides functionality for:
- Adding cards to a user's collection or wishlist
- Listing a user's cards and discovering cards other users offer for trade
- Updating and removing ownership records
- Importing cards from the card API into a collection
- Moving one copy of a card between users during a trade
"""

import logging
import math
import uuid
from typing import Dict, List, Optional, Any

from database import get_pool, command_count
from users import resolve_user_id, parse_uuid
from cards.builder import has_full_details

logger = logging.getLogger(__name__)

CONDITIONS = ('Mint', 'Near Mint', 'Excellent', 'Good', 'Poor')
COLLECTION_TYPES = ('collection', 'wishlist')

# Fields a user may set on their own ownership records
MUTABLE_FIELDS = {
    'condition',
    'is_public',
    'is_favorite',
    'notes',
    'quantity',
    'estimated_value',
    'for_trade',
    'collection_type'
}

USER_CARD_SELECT = '''
    SELECT
        uc.*,
        c.name AS card_name,
        c.image_small AS card_image,
        c.rarity AS card_rarity,
        c.set_name AS card_set,
        c.category AS card_category,
        c.price_avg AS card_price,
        u.username AS owner_username,
        u.profile_image AS owner_profile_image
    FROM user_cards uc
    LEFT JOIN cards c ON c.id = uc.card_id
    LEFT JOIN users u ON u.id = uc.user_id
'''

class UserCardError(Exception):
    """Base exception for collection operations."""
    pass

class UserCardNotFoundError(UserCardError):
    """Raised when an ownership record is not found."""
    pass

class CollectionUserNotFoundError(UserCardError):
    """Raised when the owning user is not found."""
    pass

class InsufficientQuantityError(UserCardError):
    """Raised when a user no longer holds a copy being transferred."""
    pass

def is_valid_collection_type(collection_type: str) -> bool:
    return collection_type in COLLECTION_TYPES

def validate_user_card_fields(fields: Dict[str, Any]) -> None:
    """Check enum and range constraints on ownership fields.

    Raises:
        UserCardError: If a value is invalid
    """
    if 'condition' in fields and fields['condition'] not in CONDITIONS:
        raise UserCardError(f"Invalid condition: {fields['condition']}")
    if 'collection_type' in fields and not is_valid_collection_type(fields['collection_type']):
        raise UserCardError('Invalid type. Use "collection" or "wishlist".')
    if 'quantity' in fields:
        quantity = fields['quantity']
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise UserCardError("Quantity must be an integer of at least 1")
    if fields.get('estimated_value') is not None and fields['estimated_value'] < 0:
        raise UserCardError("Estimated value cannot be negative")

def serialize_user_card(row) -> Dict[str, Any]:
    """Convert a joined user_cards row to a JSON-ready dict."""
    result = {
        'id': str(row['id']),
        'user_id': str(row['user_id']),
        'card_id': str(row['card_id']),
        'pokemon_tcg_id': row['pokemon_tcg_id'],
        'condition': row['condition'],
        'is_public': row['is_public'],
        'is_favorite': row['is_favorite'],
        'acquisition_date': row['acquisition_date'].isoformat() if row['acquisition_date'] else None,
        'notes': row['notes'],
        'quantity': row['quantity'],
        'estimated_value': row['estimated_value'],
        'for_trade': row['for_trade'],
        'collection_type': row['collection_type'],
        'created_at': row['created_at'].isoformat() if row['created_at'] else None,
        'updated_at': row['updated_at'].isoformat() if row['updated_at'] else None
    }
    if 'card_name' in row.keys():
        result['card'] = {
            'id': str(row['card_id']),
            'name': row['card_name'],
            'image_small': row['card_image'],
            'rarity': row['card_rarity'],
            'set': row['card_set'],
            'category': row['card_category'],
            'price_avg': row['card_price']
        }
        result['owner'] = {
            'username': row['owner_username'],
            'profile_image': row['owner_profile_image']
        }
    return result

def _paginated(page: int, limit: int, total: int, rows) -> Dict[str, Any]:
    return {
        'page': page,
        'total_pages': math.ceil(total / limit),
        'total_results': total,
        'results_per_page': limit,
        'cards': [serialize_user_card(row) for row in rows]
    }

async def transfer_one_copy(conn, user_card_id: uuid.UUID, from_user_id: uuid.UUID, to_user_id: uuid.UUID) -> None:
    """Move one copy of an ownership record to another user.

    Must run inside a transaction. The destination gets one more copy on a
    record with the same card, collection type and condition, or a new
    record not flagged for trade. The source loses one copy and its record
    is deleted when none remain.

    Raises:
        InsufficientQuantityError: If the source no longer holds the card
    """
    source = await conn.fetchrow(
        'SELECT * FROM user_cards WHERE id = $1 AND user_id = $2 FOR UPDATE',
        user_card_id,
        from_user_id
    )
    if not source or source['quantity'] < 1:
        raise InsufficientQuantityError(f"User card {user_card_id} is no longer held by its owner")

    destination_id = await conn.fetchval(
        '''
        SELECT id FROM user_cards
        WHERE user_id = $1 AND card_id = $2
        AND collection_type = $3 AND condition = $4
        ORDER BY created_at
        LIMIT 1
        FOR UPDATE
        ''',
        to_user_id,
        source['card_id'],
        source['collection_type'],
        source['condition']
    )
    if destination_id:
        await conn.execute(
            'UPDATE user_cards SET quantity = quantity + 1, for_trade = false WHERE id = $1',
            destination_id
        )
    else:
        await conn.execute(
            '''
            INSERT INTO user_cards (
                user_id, card_id, pokemon_tcg_id, condition,
                estimated_value, for_trade, collection_type, quantity, is_public
            ) VALUES ($1, $2, $3, $4, $5, false, $6, 1, $7)
            ''',
            to_user_id,
            source['card_id'],
            source['pokemon_tcg_id'],
            source['condition'],
            source['estimated_value'],
            source['collection_type'],
            source['is_public']
        )

    if source['quantity'] > 1:
        await conn.execute(
            'UPDATE user_cards SET quantity = quantity - 1, for_trade = false WHERE id = $1',
            user_card_id
        )
    else:
        await conn.execute('DELETE FROM user_cards WHERE id = $1', user_card_id)

class UserCardManager:
    """Manager class for ownership records."""

    def __init__(self, pool=None):
        """Initialize the collection manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def _owner_id(self, conn, username: str) -> uuid.UUID:
        user_id = await resolve_user_id(conn, username)
        if not user_id:
            raise CollectionUserNotFoundError(f"User {username} not found")
        return user_id

    async def add_card(
        self,
        username: str,
        collection_type: str,
        fields: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Add a card to a user's collection or wishlist.

        Args:
            username: Owner's username or id
            collection_type: collection or wishlist
            fields: card_id or pokemon_tcg_id, plus any of MUTABLE_FIELDS

        Returns:
            The created record

        Raises:
            UserCardError: If the type or a field is invalid, or the card is unknown
            CollectionUserNotFoundError: If the user doesn't exist
        """
        if not is_valid_collection_type(collection_type):
            raise UserCardError('Invalid type. Use "collection" or "wishlist".')

        values = {k: v for k, v in fields.items() if k in MUTABLE_FIELDS and v is not None}
        values['collection_type'] = collection_type
        validate_user_card_fields(values)

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            user_id = await self._owner_id(conn, username)

            card_uuid = parse_uuid(fields.get('card_id'))
            if card_uuid:
                card = await conn.fetchrow(
                    'SELECT id, pokemon_tcg_id, price_avg FROM cards WHERE id = $1',
                    card_uuid
                )
            elif fields.get('pokemon_tcg_id'):
                card = await conn.fetchrow(
                    'SELECT id, pokemon_tcg_id, price_avg FROM cards WHERE pokemon_tcg_id = $1',
                    fields['pokemon_tcg_id']
                )
            else:
                raise UserCardError("card_id or pokemon_tcg_id is required")

            if not card:
                raise UserCardError("Card not found in catalog")

            if values.get('estimated_value') is None and card['price_avg']:
                values['estimated_value'] = card['price_avg']

            columns = ['user_id', 'card_id', 'pokemon_tcg_id'] + list(values)
            params = [user_id, card['id'], card['pokemon_tcg_id']] + list(values.values())
            placeholders = ', '.join(f'${i}' for i in range(1, len(params) + 1))

            user_card_id = await conn.fetchval(
                f'''
                INSERT INTO user_cards ({', '.join(columns)})
                VALUES ({placeholders})
                RETURNING id
                ''',
                *params
            )
            row = await conn.fetchrow(f'{USER_CARD_SELECT} WHERE uc.id = $1', user_card_id)
            return serialize_user_card(row)

    async def list_cards(
        self,
        username: str,
        collection_type: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        for_trade: Optional[bool] = None
    ) -> Dict[str, Any]:
        """List a user's records, newest first.

        Raises:
            UserCardError: If the type is invalid
            CollectionUserNotFoundError: If the user doesn't exist
        """
        if collection_type is not None and not is_valid_collection_type(collection_type):
            raise UserCardError('Invalid type. Use "collection" or "wishlist".')
        page, limit = max(1, page), max(1, limit)

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            user_id = await self._owner_id(conn, username)

            conditions = ['uc.user_id = $1']
            params: List[Any] = [user_id]
            if collection_type:
                params.append(collection_type)
                conditions.append(f'uc.collection_type = ${len(params)}')
            if for_trade is not None:
                params.append(for_trade)
                conditions.append(f'uc.for_trade = ${len(params)}')
            where = ' AND '.join(conditions)

            total = await conn.fetchval(f'SELECT COUNT(*) FROM user_cards uc WHERE {where}', *params)
            rows = await conn.fetch(
                f'''
                {USER_CARD_SELECT}
                WHERE {where}
                ORDER BY uc.created_at DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                ''',
                *params,
                limit,
                (page - 1) * limit
            )
            return _paginated(page, limit, total, rows)

    async def discover(
        self,
        page: int = 1,
        limit: int = 20,
        exclude_username: Optional[str] = None
    ) -> Dict[str, Any]:
        """List collection cards offered for trade, optionally hiding one user's own."""
        page, limit = max(1, page), max(1, limit)

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            conditions = ["uc.for_trade", "uc.collection_type = 'collection'"]
            params: List[Any] = []
            if exclude_username:
                excluded_id = await resolve_user_id(conn, exclude_username)
                if excluded_id:
                    params.append(excluded_id)
                    conditions.append(f'uc.user_id <> ${len(params)}')
            where = ' AND '.join(conditions)

            total = await conn.fetchval(f'SELECT COUNT(*) FROM user_cards uc WHERE {where}', *params)
            rows = await conn.fetch(
                f'''
                {USER_CARD_SELECT}
                WHERE {where}
                ORDER BY uc.created_at DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                ''',
                *params,
                limit,
                (page - 1) * limit
            )
            return _paginated(page, limit, total, rows)

    async def update_card(
        self,
        username: str,
        user_card_id: str,
        updates: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Update one of a user's records.

        Raises:
            UserCardError: If updates contain invalid fields or values
            CollectionUserNotFoundError: If the user doesn't exist
            UserCardNotFoundError: If the user holds no such record
        """
        invalid_fields = set(updates.keys()) - MUTABLE_FIELDS
        if invalid_fields:
            raise UserCardError(f"Cannot update fields: {sorted(invalid_fields)}")
        validate_user_card_fields(updates)

        record_id = parse_uuid(user_card_id)
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            user_id = await self._owner_id(conn, username)
            if not record_id:
                raise UserCardNotFoundError(f"Card {user_card_id} not found")

            if updates:
                fields = [f"{field} = ${i}" for i, field in enumerate(updates, start=1)]
                status = await conn.execute(
                    f'''
                    UPDATE user_cards
                    SET {', '.join(fields)}
                    WHERE id = ${len(updates) + 1} AND user_id = ${len(updates) + 2}
                    ''',
                    *updates.values(),
                    record_id,
                    user_id
                )
                if command_count(status) == 0:
                    raise UserCardNotFoundError(f"Card {user_card_id} not found")

            row = await conn.fetchrow(
                f'{USER_CARD_SELECT} WHERE uc.id = $1 AND uc.user_id = $2',
                record_id,
                user_id
            )
            if not row:
                raise UserCardNotFoundError(f"Card {user_card_id} not found")
            return serialize_user_card(row)

    async def delete_card(self, username: str, user_card_id: str) -> Dict[str, Any]:
        """Remove one of a user's records.

        Returns:
            The deleted record

        Raises:
            CollectionUserNotFoundError: If the user doesn't exist
            UserCardNotFoundError: If the user holds no such record
        """
        record_id = parse_uuid(user_card_id)
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            user_id = await self._owner_id(conn, username)
            if not record_id:
                raise UserCardNotFoundError(f"Card {user_card_id} not found")

            row = await conn.fetchrow(
                'DELETE FROM user_cards WHERE id = $1 AND user_id = $2 RETURNING *',
                record_id,
                user_id
            )
            if not row:
                raise UserCardNotFoundError(f"Card {user_card_id} not found")
            return serialize_user_card(row)

    async def import_cards(
        self,
        client,
        card_manager,
        username: str,
        query: str = '',
        limit: int = 5,
        for_trade: bool = True
    ) -> List[Dict[str, Any]]:
        """Import cards matching a name search into a user's collection.

        Only cards with an image are imported, at most limit of them. A card
        the user already holds is not duplicated.

        Raises:
            CollectionUserNotFoundError: If the user doesn't exist
            UserCardNotFoundError: If the search finds no usable card
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            user_id = await self._owner_id(conn, username)

        results = await client.get_cards_by_name(query)
        if isinstance(results, dict):
            results = results.get('data') or results.get('cards') or []
        if not results:
            raise UserCardNotFoundError("No cards found in the external API")

        with_images = [
            raw for raw in results
            if raw.get('image') or (raw.get('images') or {}).get('small') or (raw.get('images') or {}).get('large')
        ][:max(0, limit)]
        if not with_images:
            raise UserCardNotFoundError("No cards with an available image were found")

        imported = []
        async with self.pool.acquire() as conn:
            for raw in with_images:
                if not has_full_details(raw):
                    raw = await client.get_card_by_id(raw['id'])
                async with conn.transaction():
                    card = await card_manager.upsert_raw(raw, conn)
                    card_id = uuid.UUID(card['id'])
                    existing = await conn.fetchval(
                        'SELECT id FROM user_cards WHERE user_id = $1 AND card_id = $2 LIMIT 1',
                        user_id,
                        card_id
                    )
                    if not existing:
                        existing = await conn.fetchval(
                            '''
                            INSERT INTO user_cards (user_id, card_id, pokemon_tcg_id, for_trade, collection_type)
                            VALUES ($1, $2, $3, $4, 'collection')
                            RETURNING id
                            ''',
                            user_id,
                            card_id,
                            card['pokemon_tcg_id'],
                            for_trade
                        )
                    row = await conn.fetchrow(f'{USER_CARD_SELECT} WHERE uc.id = $1', existing)
                    imported.append(serialize_user_card(row))

        logger.info(f"Imported {len(imported)} cards for {username}")
        return imported

# Create global instance
manager = UserCardManager()

__all__ = [
    'manager',
    'UserCardManager',
    'transfer_one_copy',
    'validate_user_card_fields',
    'serialize_user_card',
    'CONDITIONS',
    'COLLECTION_TYPES',
    'MUTABLE_FIELDS',
    'UserCardError',
    'UserCardNotFoundError',
    'CollectionUserNotFoundError',
    'InsufficientQuantityError'
]
