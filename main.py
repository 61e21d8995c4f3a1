"""Catalog sync job.

Imports every set and card from TCGdex into the local catalog, or only the
sets named on the command line:

    python main.py            # all sets
    python main.py swsh3 sv1  # selected sets
"""
import asyncio
import logging
import sys
from typing import List, Optional

from cards import manager as card_manager
from cards.sync import sync_all_cards
from cards.tcgdex import TCGdexClient, TCGApiError
from database import init_db, close as db_close

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

async def main(set_ids: Optional[List[str]] = None) -> int:
    """Run one catalog sync.

    Returns:
        Number of cards processed
    """
    try:
        logger.info("Initializing database...")
        await init_db()

        async with TCGdexClient() as client:
            return await sync_all_cards(client, card_manager, set_ids)

    except TCGApiError as e:
        logger.error(f"Could not reach TCGdex: {e}")
        raise
    finally:
        logger.info("Closing database connections...")
        await db_close()

if __name__ == "__main__":
    try:
        total = asyncio.run(main(sys.argv[1:] or None))
        logger.info(f"Synced {total} cards")
    except KeyboardInterrupt:
        pass
    except TCGApiError:
        sys.exit(1)
