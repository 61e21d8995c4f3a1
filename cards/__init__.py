"""Card catalog module.

This module provides functionality for:
- Storing catalog cards keyed by their external TCG id
- Browsing and searching the local catalog
- Fetching cards from TCGdex on demand and caching them locally
"""

import asyncio
import logging
import math
import uuid
from typing import Dict, List, Optional, Any

from database import get_pool
from .builder import (
    CATEGORIES,
    build_card_data,
    get_card_category,
    normalize_image_url,
    extract_prices,
    normalize_search_card
)
from .tcgdex import TCGdexClient, TCGApiError

logger = logging.getLogger(__name__)

# Columns written by an upsert, in insert order
CARD_COLUMNS = [
    'pokemon_tcg_id',
    'name',
    'category',
    'supertype',
    'subtype',
    'series',
    'set_name',
    'rarity',
    'image_small',
    'image_large',
    'illustrator',
    'card_number',
    'price_cardmarket_avg',
    'price_tcgplayer_market',
    'price_avg',
    'last_price_update',
    'details'
]

FEATURED_CARD_IDS = [
    'swsh3-136',
    'swsh3-25',
    'swsh4-74',
    'swsh1-25',
    'swsh2-192',
    'swsh5-123',
    'swsh6-71'
]

QUICK_SEARCH_LIMIT = 10

class CardError(Exception):
    """Base exception for catalog operations."""
    pass

class CardNotFoundError(CardError):
    """Raised when a card is not found."""
    pass

def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user input matches literally."""
    return value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')

def serialize_card(row) -> Dict[str, Any]:
    """Convert a cards row to a JSON-ready dict."""
    return {
        'id': str(row['id']),
        'pokemon_tcg_id': row['pokemon_tcg_id'],
        'name': row['name'],
        'category': row['category'],
        'supertype': row['supertype'],
        'subtype': row['subtype'],
        'series': row['series'],
        'set': row['set_name'],
        'rarity': row['rarity'],
        'images': {
            'small': row['image_small'],
            'large': row['image_large']
        },
        'illustrator': row['illustrator'],
        'card_number': row['card_number'],
        'price': {
            'cardmarket_avg': row['price_cardmarket_avg'],
            'tcgplayer_market_price': row['price_tcgplayer_market'],
            'avg': row['price_avg']
        },
        'last_price_update': row['last_price_update'].isoformat() if row['last_price_update'] else None,
        **(row['details'] or {}),
        'created_at': row['created_at'].isoformat() if row['created_at'] else None,
        'updated_at': row['updated_at'].isoformat() if row['updated_at'] else None
    }

class CardManager:
    """Manager class for the local card catalog."""

    def __init__(self, pool=None):
        """Initialize the card manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def upsert_card(self, card_data: Dict[str, Any], conn=None) -> Dict[str, Any]:
        """Insert a built card or update the existing row with the same TCG id.

        Args:
            card_data: Output of build_card_data
            conn: Optional connection to run on, e.g. inside a transaction

        Returns:
            The stored card
        """
        if conn is None:
            await self.ensure_pool()
            async with self.pool.acquire() as conn:
                return await self.upsert_card(card_data, conn)

        values = [card_data.get(column) for column in CARD_COLUMNS]
        values[CARD_COLUMNS.index('details')] = card_data.get('details') or {}
        placeholders = ', '.join(f'${i}' for i in range(1, len(CARD_COLUMNS) + 1))
        updates = ', '.join(
            f'{column} = EXCLUDED.{column}'
            for column in CARD_COLUMNS if column != 'pokemon_tcg_id'
        )

        row = await conn.fetchrow(
            f'''
            INSERT INTO cards ({', '.join(CARD_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT (pokemon_tcg_id) DO UPDATE
            SET {updates}
            RETURNING *
            ''',
            *values
        )
        return serialize_card(row)

    async def upsert_raw(self, raw: Dict[str, Any], conn=None) -> Dict[str, Any]:
        """Build a catalog record from a raw API payload and upsert it."""
        return await self.upsert_card(build_card_data(raw), conn)

    async def list_cards(
        self,
        page: int = 1,
        limit: int = 20,
        name: Optional[str] = None,
        rarity: Optional[str] = None,
        series: Optional[str] = None,
        set_name: Optional[str] = None,
        category: Optional[str] = None
    ) -> Dict[str, Any]:
        """List catalog cards by name with optional filters.

        Args:
            page: 1-based page number
            limit: Page size
            name: Case-insensitive name prefix
            rarity: Exact rarity
            series: Exact series
            set_name: Exact set name
            category: pokemon, trainer, energy or unknown

        Returns:
            Paginated result with the cards under 'cards'
        """
        page = max(1, page)
        limit = max(1, limit)

        conditions: List[str] = []
        params: List[Any] = []
        if name:
            params.append(f"{escape_like(name.lower())}%")
            conditions.append(f"lower(name) LIKE ${len(params)}")
        for column, value in (('rarity', rarity), ('series', series), ('set_name', set_name)):
            if value:
                params.append(value)
                conditions.append(f"{column} = ${len(params)}")
        if category:
            if category not in CATEGORIES:
                raise CardError(f"Invalid category: {category}")
            params.append(category)
            conditions.append(f"category = ${len(params)}")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ''

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            total = await conn.fetchval(f'SELECT COUNT(*) FROM cards {where}', *params)
            rows = await conn.fetch(
                f'''
                SELECT * FROM cards {where}
                ORDER BY name
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
            'cards': [serialize_card(row) for row in rows]
        }

    async def get_card(self, card_id: str) -> Dict[str, Any]:
        """Get a card by its local id.

        Raises:
            CardNotFoundError: If the card doesn't exist
        """
        try:
            card_uuid = uuid.UUID(str(card_id))
        except ValueError:
            raise CardNotFoundError(f"Card {card_id} not found")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow('SELECT * FROM cards WHERE id = $1', card_uuid)
        if not row:
            raise CardNotFoundError(f"Card {card_id} not found")
        return serialize_card(row)

    async def get_card_by_tcg_id(self, tcg_id: str) -> Dict[str, Any]:
        """Get a cached card by its TCG id.

        Raises:
            CardNotFoundError: If the card isn't in the catalog
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow('SELECT * FROM cards WHERE pokemon_tcg_id = $1', tcg_id)
        if not row:
            raise CardNotFoundError(f"Card {tcg_id} not found")
        return serialize_card(row)

    async def quick_search(self, query: str) -> List[Dict[str, Any]]:
        """Find up to 10 catalog cards whose name contains the query."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM cards
                WHERE name ILIKE '%' || $1 || '%'
                ORDER BY name
                LIMIT $2
                ''',
                escape_like(query),
                QUICK_SEARCH_LIMIT
            )
        return [serialize_card(row) for row in rows]

    async def fetch_or_cache(self, tcg_id: str, client: TCGdexClient) -> Dict[str, Any]:
        """Return a card from the catalog, fetching and caching it from TCGdex on a miss.

        Returns:
            Dict with 'source' ('cache' or 'tcgdex') and 'card'

        Raises:
            CardNotFoundError: If TCGdex doesn't know the card either
            TCGApiError: For other upstream failures
        """
        try:
            return {'source': 'cache', 'card': await self.get_card_by_tcg_id(tcg_id)}
        except CardNotFoundError:
            pass

        try:
            raw = await client.get_card_by_id(tcg_id)
        except TCGApiError as e:
            if e.status_code == 404:
                raise CardNotFoundError(f"Card {tcg_id} not found in external API")
            raise

        card = await self.upsert_raw(raw)
        logger.info(f"Cached card {tcg_id} from TCGdex")
        return {'source': 'tcgdex', 'card': card}

    async def search_remote(
        self,
        client: TCGdexClient,
        query: str,
        page: int = 1,
        limit: int = 20,
        set_name: Optional[str] = None,
        rarity: Optional[str] = None
    ) -> Dict[str, Any]:
        """Search TCGdex by name without caching, paginating the results locally."""
        results = await client.search_cards(name=query, set=set_name, rarity=rarity)
        if isinstance(results, dict):
            results = results.get('cards') or results.get('data') or []

        cards = [normalize_search_card(raw) for raw in results or []]
        page = max(1, page)
        limit = max(1, limit)
        start = (page - 1) * limit
        return {
            'data': cards[start:start + limit],
            'total': len(cards),
            'page': page,
            'limit': limit
        }

    async def featured_cards(self, client: TCGdexClient) -> List[Dict[str, Any]]:
        """Build a showcase of well-known cards straight from TCGdex.

        Cards that fail to load are left out.
        """
        async def load(card_id: str) -> Optional[Dict[str, Any]]:
            try:
                return build_card_data(await client.get_card_by_id(card_id))
            except (TCGApiError, ValueError) as e:
                logger.error(f"Error fetching featured card {card_id}: {e}")
                return None

        cards = await asyncio.gather(*(load(card_id) for card_id in FEATURED_CARD_IDS))
        return [card for card in cards if card is not None]

# Create global instance
manager = CardManager()

__all__ = [
    'manager',
    'CardManager',
    'serialize_card',
    'escape_like',
    'build_card_data',
    'get_card_category',
    'normalize_image_url',
    'extract_prices',
    'TCGdexClient',
    'TCGApiError',
    'CardError',
    'CardNotFoundError'
]
