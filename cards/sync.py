"""Catalog sync job.

Walks every set TCGdex knows, then every card of each set, and upserts the
cards into the local catalog by their TCG id. A set or card that fails is
logged and skipped so one bad record never stops the run.
"""

import logging
from typing import Any, Dict, List, Optional

from .builder import build_card_data, has_full_details
from .tcgdex import TCGdexClient, TCGApiError

logger = logging.getLogger(__name__)

def _items(payload: Any, key: str) -> List[Dict[str, Any]]:
    if isinstance(payload, dict):
        payload = payload.get(key) or payload.get('data') or []
    return payload or []

async def sync_set(client: TCGdexClient, manager, set_id: str) -> int:
    """Sync the cards of one set.

    Returns:
        Number of cards stored

    Raises:
        TCGApiError: If the set itself cannot be fetched
    """
    set_payload = await client.get_cards_by_set(set_id)
    count = 0

    for brief in _items(set_payload, 'cards'):
        card_id = (brief.get('id') or brief.get('name')) if isinstance(brief, dict) else brief
        try:
            raw = brief if has_full_details(brief) else await client.get_card_by_id(brief['id'])
            await manager.upsert_card(build_card_data(raw))
            count += 1
        except Exception as e:
            logger.error(f"Error saving card {card_id}: {e}")

    return count

async def sync_all_cards(client: TCGdexClient, manager, set_ids: Optional[List[str]] = None) -> int:
    """Sync the whole catalog.

    Args:
        client: Open TCGdex client
        manager: Catalog store exposing upsert_card
        set_ids: Optional subset of set ids, defaults to every set

    Returns:
        Total number of cards processed

    Raises:
        TCGApiError: If the set list cannot be fetched
    """
    logger.info("Starting card sync")

    if set_ids is None:
        set_ids = [
            s.get('id') or s.get('code')
            for s in _items(await client.get_all_sets(), 'sets')
            if isinstance(s, dict)
        ]

    count = 0
    for set_id in set_ids:
        if not set_id:
            continue
        logger.info(f"Syncing set {set_id}")
        try:
            count += await sync_set(client, manager, set_id)
        except (TCGApiError, ValueError, KeyError) as e:
            logger.error(f"Error syncing set {set_id}: {e}")

    logger.info(f"Card sync complete. Total cards processed: {count}")
    return count
