"""
Token Feed
==========
Keeps the token catalog fresh and answers "which tokens should a bot look at?".

1. Pull listings from pump.fun (new + hot)
2. Normalize each coin into a catalog row
3. Upsert by mint (the first insert fixes the token's catalog age)
4. Filter for quality, score, and rank

While the API runs, a background loop pulls the newest coins every
TOKEN_REFRESH_INTERVAL seconds so the catalog keeps growing even when no
bot is asking for candidates.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

from config.settings import Settings
from database.db import Database
from discovery.pumpfun_client import PumpFunClient
from discovery.token_filter import TokenFilter
from utils.logger import get_logger

logger = get_logger(__name__)


def normalize_coin(raw: dict[str, Any]) -> dict[str, Any]:
    """Map a pump.fun coin object onto the catalog's columns."""
    koth = raw.get("king_of_the_hill_timestamp")
    launched_at = None
    if koth:
        launched_at = datetime.fromtimestamp(koth, tz=timezone.utc).isoformat()

    return {
        "mint": raw["mint"],
        "name": raw.get("name") or "",
        "symbol": raw.get("symbol") or "",
        "description": raw.get("description") or "",
        "image": raw.get("image") or raw.get("image_uri") or "",
        "website": raw.get("website") or "",
        "telegram": raw.get("telegram") or "",
        "twitter": raw.get("twitter") or "",
        "market_cap": raw.get("market_cap") or 0,
        "price": raw.get("price") or 0,
        "liquidity": raw.get("virtual_sol_reserves") or 0,
        # Not provided by the listing endpoints
        "volume_24h": 0,
        "holders": 0,
        "is_launched": bool(raw.get("raydium_pool")),
        "launched_at": launched_at,
        "creator": raw.get("creator") or "",
        "metadata": {
            "total_supply": raw.get("total_supply"),
            "virtual_sol_reserves": raw.get("virtual_sol_reserves"),
            "virtual_token_reserves": raw.get("virtual_token_reserves"),
            "raydium_pool": raw.get("raydium_pool"),
            "last_trade_timestamp": raw.get("last_trade_timestamp"),
        },
    }


class TokenFeed:
    """
    Usage:
        feed = TokenFeed(settings, db, client, token_filter)
        tokens = await feed.get_new_tokens(20)
        candidates = await feed.get_recommended_tokens(5)
        feed.start()         # background refresh
        await feed.stop()
    """

    def __init__(self, settings: Settings, db: Database, client: PumpFunClient, token_filter: TokenFilter):
        self.settings = settings
        self.db = db
        self.client = client
        self.token_filter = token_filter
        self._task: asyncio.Task | None = None

    async def _store(self, coins: list[dict]) -> list[dict]:
        """Upsert raw coins and return the catalog rows. One bad coin doesn't sink the batch."""
        stored = []
        for coin in coins:
            try:
                stored.append(await self.db.upsert_token(normalize_coin(coin)))
            except Exception as e:
                logger.error("token_store_failed", mint=coin.get("mint"), error=str(e))
        return stored

    async def get_new_tokens(self, limit: int = 50) -> list[dict]:
        return await self._store(await self.client.get_new_coins(limit))

    async def get_hot_tokens(self, limit: int = 50) -> list[dict]:
        return await self._store(await self.client.get_hot_coins(limit))

    async def get_token_info(self, mint: str) -> dict | None:
        """Fetch one coin and refresh its catalog row. Falls back to the stored row."""
        coin = await self.client.get_coin(mint)
        if coin is None:
            return await self.db.get_token_by_mint(mint)
        stored = await self._store([coin])
        return stored[0] if stored else None

    async def get_recommended_tokens(self, limit: int = 10) -> list[dict]:
        """
        Top-ranked candidate tokens, each with its "score".

        Merges new and hot listings, de-duplicates by mint, drops low-quality
        tokens, then sorts by score (highest first). If the upstream returned
        nothing, ranks the catalog's recently refreshed tokens instead.
        """
        pool = self.settings.recommended_pool_size
        new_tokens, hot_tokens = await asyncio.gather(
            self.get_new_tokens(pool),
            self.get_hot_tokens(pool),
        )

        unique: dict[str, dict] = {}
        for token in new_tokens + hot_tokens:
            unique.setdefault(token["mint"], token)
        tokens = list(unique.values())

        if not tokens:
            since = datetime.now(timezone.utc) - timedelta(hours=self.settings.quality_max_staleness_hours)
            tokens = await self.db.get_tokens_updated_since(since, limit=pool * 2)
            logger.info("recommended_catalog_fallback", count=len(tokens))

        now = datetime.now(timezone.utc)
        quality = self.token_filter.apply_filters(tokens, now)
        scored = [{**token, "score": self.token_filter.score_token(token, now)} for token in quality]
        scored.sort(key=lambda t: t["score"], reverse=True)

        logger.debug("recommended_tokens_ranked", candidates=len(tokens), quality=len(quality))
        return scored[:limit]

    # =========================================================================
    # Background refresh
    # =========================================================================

    async def refresh_once(self) -> int:
        tokens = await self.get_new_tokens(self.settings.token_refresh_limit)
        if tokens:
            logger.info("token_feed_refreshed", count=len(tokens))
        return len(tokens)

    async def _refresh_loop(self) -> None:
        logger.info("token_feed_started", interval=self.settings.token_refresh_interval)
        while True:
            try:
                await asyncio.sleep(self.settings.token_refresh_interval)
                await self.refresh_once()
            except asyncio.CancelledError:
                logger.info("token_feed_stopped")
                break
            except Exception as e:
                logger.error("token_feed_refresh_error", error=str(e))

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
