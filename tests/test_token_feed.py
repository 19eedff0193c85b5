"""Tests for the pump.fun client and the token feed."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from discovery.pumpfun_client import PumpFunClient
from discovery.token_feed import TokenFeed, normalize_coin
from discovery.token_filter import TokenFilter
from tests.factories import make_raw_coin


def _session_returning(status=200, body=None):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=body)
    response.text = AsyncMock(return_value="upstream says no")
    session = MagicMock()
    session.get.return_value.__aenter__.return_value = response
    return session


@pytest.fixture
def feed(settings, db, feed_client):
    return TokenFeed(settings, db, feed_client, TokenFilter(settings))


class TestPumpFunClient:

    @pytest.mark.asyncio
    async def test_list_envelope(self):
        session = _session_returning(body={"success": True, "data": [make_raw_coin("A"), make_raw_coin("B")]})
        client = PumpFunClient("https://feed.example/", session)

        coins = await client.get_new_coins(limit=2)

        assert [c["mint"] for c in coins] == ["A", "B"]
        _, kwargs = session.get.call_args
        assert session.get.call_args[0][0] == "https://feed.example/coins/new"
        assert kwargs["params"] == {"limit": 2, "sort": "created_timestamp", "order": "desc"}

    @pytest.mark.asyncio
    async def test_network_error_becomes_empty_list(self):
        session = MagicMock()
        session.get.side_effect = aiohttp.ClientConnectionError("connection refused")
        client = PumpFunClient("https://feed.example", session)

        assert await client.get_hot_coins() == []
        assert await client.get_coin("A") is None

    @pytest.mark.asyncio
    async def test_bad_status_and_bad_shape(self):
        assert await PumpFunClient("https://x", _session_returning(status=500)).get_new_coins() == []
        assert await PumpFunClient("https://x", _session_returning(body=["not", "an", "envelope"])).get_new_coins() == []

    @pytest.mark.asyncio
    async def test_single_coin_bare_or_wrapped(self):
        coin = make_raw_coin("A")
        assert (await PumpFunClient("https://x", _session_returning(body=coin)).get_coin("A"))["mint"] == "A"
        wrapped = _session_returning(body={"success": True, "data": coin})
        assert (await PumpFunClient("https://x", wrapped).get_coin("A"))["mint"] == "A"


class TestNormalize:

    def test_field_mapping(self):
        token = normalize_coin(make_raw_coin("A", raydium_pool="Pool111"))

        assert token["liquidity"] == 12_000
        assert token["market_cap"] == 75_000
        assert token["volume_24h"] == 0
        assert token["holders"] == 0
        assert token["is_launched"] is True
        assert token["launched_at"] == datetime.fromtimestamp(1_717_000_000, tz=timezone.utc).isoformat()
        assert token["metadata"]["raydium_pool"] == "Pool111"
        assert token["metadata"]["total_supply"] == 1_000_000_000

    def test_missing_optional_fields(self):
        token = normalize_coin({"mint": "A", "name": "A", "symbol": "A"})
        assert token["description"] == ""
        assert token["liquidity"] == 0
        assert token["launched_at"] is None
        assert token["is_launched"] is False


class TestTokenFeed:

    @pytest.mark.asyncio
    async def test_round_trip_by_mint(self, feed, db, feed_client):
        feed_client.get_new_coins.return_value = [make_raw_coin("M")]

        stored = await feed.get_new_tokens(10)
        fetched = await db.get_token_by_mint("M")

        expected = normalize_coin(make_raw_coin("M"))
        for key, value in expected.items():
            assert fetched[key] == value, key
        assert stored[0]["mint"] == "M"

    @pytest.mark.asyncio
    async def test_upsert_keeps_first_seen(self, feed, db, feed_client):
        feed_client.get_new_coins.return_value = [make_raw_coin("M", market_cap=1)]
        first = (await feed.get_new_tokens())[0]

        feed_client.get_new_coins.return_value = [make_raw_coin("M", market_cap=2)]
        second = (await feed.get_new_tokens())[0]

        assert second["market_cap"] == 2
        assert second["created_at"] == first["created_at"]
        assert await db.count_tokens() == 1

    @pytest.mark.asyncio
    async def test_upstream_failure_yields_empty(self, feed, feed_client):
        feed_client.get_new_coins.return_value = []
        assert await feed.get_new_tokens() == []

    @pytest.mark.asyncio
    async def test_recommended_dedupes_filters_and_ranks(self, feed, feed_client):
        feed_client.get_new_coins.return_value = [
            make_raw_coin("small", virtual_sol_reserves=2_000, market_cap=0),
            make_raw_coin("thin", virtual_sol_reserves=10),
            make_raw_coin("both"),
        ]
        feed_client.get_hot_coins.return_value = [
            make_raw_coin("both"),
            make_raw_coin("big", virtual_sol_reserves=50_000, market_cap=500_000),
        ]

        tokens = await feed.get_recommended_tokens(10)

        assert [t["mint"] for t in tokens] == ["big", "both", "small"]
        assert tokens[0]["score"] >= tokens[1]["score"] >= tokens[2]["score"]

    @pytest.mark.asyncio
    async def test_recommended_falls_back_to_catalog(self, feed, db, feed_client):
        await db.upsert_token(normalize_coin(make_raw_coin("cached")))

        tokens = await feed.get_recommended_tokens(5)

        assert [t["mint"] for t in tokens] == ["cached"]

    @pytest.mark.asyncio
    async def test_token_info_falls_back_to_catalog(self, feed, db, feed_client):
        await db.upsert_token(normalize_coin(make_raw_coin("cached")))
        feed_client.get_coin.return_value = None

        token = await feed.get_token_info("cached")

        assert token["mint"] == "cached"
