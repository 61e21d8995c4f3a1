"""Tests for the TCGdex client and the catalog sync job."""

from typing import Any, Dict, List
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx

from cards import CardManager, CardNotFoundError
from cards.sync import sync_all_cards, sync_set
from cards.tcgdex import TCGdexClient, TCGApiError

# Test data
BASE_URL = "https://tcgdex.test/v2/en"

FURRET = {
    "id": "swsh3-136",
    "localId": "136",
    "name": "Furret",
    "category": "Pokemon",
    "rarity": "Uncommon",
    "image": "https://assets.tcgdex.net/en/swsh/swsh3/136"
}

SENTRET_BRIEF = {"id": "swsh3-135", "localId": "135", "name": "Sentret"}
SENTRET = dict(SENTRET_BRIEF, category="Pokemon", rarity="Common")

class FakeCatalog:
    """Stands in for the card manager, keyed by TCG id like the real table."""

    def __init__(self):
        self.cards: Dict[str, Dict[str, Any]] = {}
        self.writes: List[str] = []

    async def upsert_card(self, card_data: Dict[str, Any]) -> Dict[str, Any]:
        self.cards[card_data["pokemon_tcg_id"]] = card_data
        self.writes.append(card_data["pokemon_tcg_id"])
        return card_data

@pytest.mark.asyncio
async def test_get_card_by_id():
    """Cards are fetched from /cards/{id} under the configured base URL."""
    with respx.mock:
        route = respx.get(f"{BASE_URL}/cards/swsh3-136").mock(
            return_value=httpx.Response(200, json=FURRET)
        )
        async with TCGdexClient(base_url=BASE_URL) as client:
            card = await client.get_card_by_id("swsh3-136")

    assert route.called
    assert card["name"] == "Furret"

@pytest.mark.asyncio
async def test_search_omits_empty_filters():
    with respx.mock:
        route = respx.get(f"{BASE_URL}/cards").mock(
            return_value=httpx.Response(200, json=[FURRET])
        )
        async with TCGdexClient(base_url=BASE_URL) as client:
            results = await client.search_cards(name="Furret", rarity="", types=None)

    assert results == [FURRET]
    assert dict(route.calls.last.request.url.params) == {"name": "Furret"}

@pytest.mark.asyncio
async def test_error_status_raises():
    """Non-2xx answers surface as TCGApiError with the status code."""
    with respx.mock:
        respx.get(f"{BASE_URL}/cards/nope").mock(
            return_value=httpx.Response(404, json={"error": "not found"})
        )
        async with TCGdexClient(base_url=BASE_URL) as client:
            with pytest.raises(TCGApiError) as exc:
                await client.get_card_by_id("nope")

    assert exc.value.status_code == 404

@pytest.mark.asyncio
async def test_network_error_raises():
    with respx.mock:
        respx.get(f"{BASE_URL}/sets").mock(side_effect=httpx.ConnectError("refused"))
        async with TCGdexClient(base_url=BASE_URL) as client:
            with pytest.raises(TCGApiError) as exc:
                await client.get_all_sets()

    assert exc.value.status_code is None

@pytest.mark.asyncio
async def test_sync_set_fetches_missing_details():
    """Briefs without details are fetched in full before storing."""
    catalog = FakeCatalog()
    with respx.mock:
        respx.get(f"{BASE_URL}/sets/swsh3").mock(
            return_value=httpx.Response(200, json={"id": "swsh3", "cards": [FURRET, SENTRET_BRIEF]})
        )
        detail = respx.get(f"{BASE_URL}/cards/swsh3-135").mock(
            return_value=httpx.Response(200, json=SENTRET)
        )
        async with TCGdexClient(base_url=BASE_URL) as client:
            count = await sync_set(client, catalog, "swsh3")

    assert count == 2
    assert detail.call_count == 1
    assert catalog.cards["swsh3-135"]["rarity"] == "Common"

@pytest.mark.asyncio
async def test_sync_is_idempotent_and_skips_failing_sets():
    """Re-running the sync updates the same records; a broken set is skipped."""
    catalog = FakeCatalog()
    with respx.mock:
        respx.get(f"{BASE_URL}/sets").mock(
            return_value=httpx.Response(200, json=[{"id": "swsh3"}, {"id": "broken"}])
        )
        respx.get(f"{BASE_URL}/sets/swsh3").mock(
            return_value=httpx.Response(200, json={"id": "swsh3", "cards": [FURRET]})
        )
        respx.get(f"{BASE_URL}/sets/broken").mock(return_value=httpx.Response(500))
        async with TCGdexClient(base_url=BASE_URL) as client:
            first = await sync_all_cards(client, catalog)
            second = await sync_all_cards(client, catalog)

    assert first == second == 1
    assert list(catalog.cards) == ["swsh3-136"]
    assert catalog.writes == ["swsh3-136", "swsh3-136"]

@pytest.mark.asyncio
async def test_sync_skips_bad_cards():
    """A card that fails to build does not stop the rest of the set."""
    catalog = FakeCatalog()
    with respx.mock:
        respx.get(f"{BASE_URL}/sets/swsh3").mock(
            return_value=httpx.Response(200, json={"cards": [{"name": "No id", "category": "Pokemon"}, FURRET]})
        )
        async with TCGdexClient(base_url=BASE_URL) as client:
            count = await sync_all_cards(client, catalog, set_ids=["swsh3"])

    assert count == 1
    assert "swsh3-136" in catalog.cards

@pytest.mark.asyncio
async def test_featured_cards_skip_failures():
    """Showcase cards that TCGdex cannot serve are left out."""
    catalog = CardManager(pool=object())
    with respx.mock:
        respx.get(f"{BASE_URL}/cards/swsh3-136").mock(return_value=httpx.Response(200, json=FURRET))
        respx.get(url__regex=rf"{BASE_URL}/cards/.*").mock(return_value=httpx.Response(404))
        async with TCGdexClient(base_url=BASE_URL) as client:
            cards = await catalog.featured_cards(client)

    assert [card["pokemon_tcg_id"] for card in cards] == ["swsh3-136"]

@pytest.mark.asyncio
async def test_fetch_or_cache_stores_a_miss():
    """A card missing locally is fetched once and upserted."""
    catalog = CardManager(pool=object())
    stored = AsyncMock(side_effect=lambda card_data, conn=None: card_data)
    with patch.object(catalog, "get_card_by_tcg_id", AsyncMock(side_effect=CardNotFoundError("missing"))), \
            patch.object(catalog, "upsert_card", stored):
        with respx.mock:
            respx.get(f"{BASE_URL}/cards/swsh3-136").mock(return_value=httpx.Response(200, json=FURRET))
            async with TCGdexClient(base_url=BASE_URL) as client:
                result = await catalog.fetch_or_cache("swsh3-136", client)

    assert result["source"] == "tcgdex"
    assert result["card"]["name"] == "Furret"
    stored.assert_awaited_once()

@pytest.mark.asyncio
async def test_fetch_or_cache_unknown_card():
    catalog = CardManager(pool=object())
    with patch.object(catalog, "get_card_by_tcg_id", AsyncMock(side_effect=CardNotFoundError("missing"))):
        with respx.mock:
            respx.get(f"{BASE_URL}/cards/nope").mock(return_value=httpx.Response(404))
            async with TCGdexClient(base_url=BASE_URL) as client:
                with pytest.raises(CardNotFoundError):
                    await catalog.fetch_or_cache("nope", client)

@pytest.mark.asyncio
async def test_sync_skips_entries_that_are_not_cards():
    """Malformed entries in a set listing are skipped like any other bad card."""
    catalog = FakeCatalog()
    with respx.mock:
        respx.get(f"{BASE_URL}/sets/swsh3").mock(
            return_value=httpx.Response(200, json={"cards": ["swsh3-001", None, 7, FURRET]})
        )
        async with TCGdexClient(base_url=BASE_URL) as client:
            count = await sync_all_cards(client, catalog, set_ids=["swsh3"])

    assert count == 1
    assert list(catalog.cards) == ["swsh3-136"]
