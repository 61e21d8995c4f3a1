"""Async client for the TCGdex card API.

TCGdex exposes read-only JSON endpoints for sets and cards. Only GET is
used. Non-2xx responses raise TCGApiError.

Usage:
    async with TCGdexClient() as client:
        sets = await client.get_all_sets()
        card = await client.get_card_by_id("swsh3-136")
"""

import logging
from typing import Any, Dict, List, Optional, Union

import httpx

from config import settings_conf

logger = logging.getLogger(__name__)

class TCGApiError(Exception):
    """Raised when the card API answers with an error or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

class TCGdexClient:
    """Thin async wrapper over the TCGdex REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = (base_url or settings_conf['tcgdex_base_url']).rstrip('/')
        self.timeout = timeout or settings_conf['tcgdex_timeout']
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> 'TCGdexClient':
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={'Accept': 'application/json'},
                timeout=self.timeout
            )
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if self._client is None:
            await self.__aenter__()

        logger.debug(f"Fetching {self.base_url}{path}")
        try:
            response = await self._client.get(path, params=params)
        except httpx.RequestError as e:
            logger.error(f"TCGdex request to {path} failed: {e}")
            raise TCGApiError(f"TCGdex request failed: {e}")

        if response.status_code >= 400:
            logger.error(f"TCGdex error {response.status_code} for {path}: {response.text}")
            raise TCGApiError(
                f"TCGdex API Error: {response.reason_phrase} - {response.text}",
                status_code=response.status_code
            )

        return response.json()

    async def get_all_sets(self) -> List[Dict[str, Any]]:
        """List every set as brief set records."""
        return await self._get('/sets')

    async def get_cards_by_set(self, set_id: str) -> Dict[str, Any]:
        """Get a set, including the brief records of its cards under 'cards'."""
        return await self._get(f'/sets/{set_id}')

    async def get_card_by_id(self, card_id: str) -> Dict[str, Any]:
        """Get the full record of one card."""
        return await self._get(f'/cards/{card_id}')

    async def get_cards_by_name(self, name: str) -> List[Dict[str, Any]]:
        """List brief card records whose name matches."""
        return await self._get('/cards', params={'name': name})

    async def search_cards(
        self,
        name: Optional[str] = None,
        types: Optional[str] = None,
        hp: Optional[Union[int, str]] = None,
        rarity: Optional[str] = None,
        set: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Search cards by any combination of filters. Empty filters are omitted."""
        params = {
            key: value
            for key, value in (
                ('name', name),
                ('types', types),
                ('hp', hp),
                ('rarity', rarity),
                ('set', set)
            )
            if value
        }
        return await self._get('/cards', params=params or None)
