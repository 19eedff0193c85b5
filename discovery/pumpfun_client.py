"""
Pump.fun Client
===============
Client for the pump.fun frontend API, our only source of token listings.

Endpoints used:
- /coins/new     most recently created coins
- /coins/hot     coins with the most 24h volume
- /coins/{mint}  one coin

List endpoints answer with an envelope {"success": ..., "data": [...]}.
The single-coin endpoint has been seen both bare and wrapped in "data".

Nothing here raises to the caller: a network error, a non-200 status or an
unexpected body shape is logged and becomes an empty list / None.
"""

import asyncio
from typing import Any

import aiohttp

from utils.errors import UpstreamFetchError
from utils.logger import get_logger

logger = get_logger(__name__)


class PumpFunClient:
    """
    Usage:
        client = PumpFunClient(settings.pumpfun_api_url, session)
        coins = await client.get_new_coins(limit=20)
        coin = await client.get_coin(mint)
    """

    HEADERS = {"Accept": "application/json"}

    # One retry after a 429, then give up
    RATE_LIMIT_BACKOFF = 3

    def __init__(
        self,
        base_url: str,
        session: aiohttp.ClientSession,
        timeout: float = 10,
        coin_timeout: float = 5,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.coin_timeout = aiohttp.ClientTimeout(total=coin_timeout)

    async def _get(
        self, endpoint: str, params: dict | None = None, timeout: aiohttp.ClientTimeout | None = None,
        retry: bool = True,
    ) -> Any:
        """GET an endpoint and return the decoded JSON. Raises UpstreamFetchError."""
        url = f"{self.base_url}{endpoint}"
        try:
            async with self.session.get(
                url, headers=self.HEADERS, params=params, timeout=timeout or self.timeout
            ) as response:
                if response.status == 200:
                    return await response.json(content_type=None)
                if response.status == 429 and retry:
                    logger.warning("pumpfun_rate_limited", endpoint=endpoint)
                    await asyncio.sleep(self.RATE_LIMIT_BACKOFF)
                    return await self._get(endpoint, params, timeout, retry=False)
                error_text = await response.text()
                raise UpstreamFetchError(f"HTTP {response.status}: {error_text[:200]}")
        except UpstreamFetchError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise UpstreamFetchError(f"{type(e).__name__}: {e}") from e

    async def _get_list(self, endpoint: str, params: dict) -> list[dict]:
        try:
            body = await self._get(endpoint, params)
        except UpstreamFetchError as e:
            logger.error("pumpfun_fetch_failed", endpoint=endpoint, error=e.message)
            return []

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, list):
            logger.error("pumpfun_unexpected_shape", endpoint=endpoint, body_type=type(body).__name__)
            return []
        return [coin for coin in data if isinstance(coin, dict) and coin.get("mint")]

    async def get_new_coins(self, limit: int = 50) -> list[dict]:
        """Newest coins first."""
        coins = await self._get_list(
            "/coins/new", {"limit": limit, "sort": "created_timestamp", "order": "desc"}
        )
        logger.debug("pumpfun_new_fetched", count=len(coins))
        return coins

    async def get_hot_coins(self, limit: int = 50) -> list[dict]:
        """Highest 24h volume first."""
        coins = await self._get_list(
            "/coins/hot", {"limit": limit, "sort": "volume_24h", "order": "desc"}
        )
        logger.debug("pumpfun_hot_fetched", count=len(coins))
        return coins

    async def get_coin(self, mint: str) -> dict | None:
        """One coin by mint, or None if it can't be fetched."""
        try:
            body = await self._get(f"/coins/{mint}", timeout=self.coin_timeout)
        except UpstreamFetchError as e:
            logger.warning("pumpfun_coin_fetch_failed", mint=mint, error=e.message)
            return None

        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            body = body["data"]
        if not isinstance(body, dict) or not body.get("mint"):
            return None
        return body
