"""
Unit tests for the CoinGecko client.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from service_bot.app.adapters.coingecko_client import PRIORITY_COINS, CoinGeckoClient
from service_bot.app.ratelimit.gateway import GatewayOptions, RateLimitedGateway
from shared.errors import RateLimitExceeded, UpstreamError
from shared.test_helpers import FakeClock, test_data_factory


BASE_URL = "https://api.coingecko.com/api/v3"


def response(status_code, body=None):
    return httpx.Response(
        status_code=status_code,
        json=body if body is not None else {},
        request=httpx.Request("GET", f"{BASE_URL}/coins/markets"),
    )


class TestCoinGeckoClient:
    """Test cases for CoinGeckoClient."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def gateway(self, clock):
        return RateLimitedGateway(
            min_interval=0,
            default_options=GatewayOptions(max_retries=2),
            clock=clock,
            sleep=clock.sleep,
        )

    @pytest.fixture
    def cache(self):
        cache = AsyncMock()
        cache.get_symbol_map.return_value = None
        return cache

    @pytest.fixture
    def client(self, gateway, cache):
        return CoinGeckoClient(BASE_URL, gateway, cache=cache)

    @pytest.mark.asyncio
    async def test_priority_symbol_goes_straight_to_markets(self, client):
        row = test_data_factory.coin_row()

        with patch('httpx.AsyncClient') as mock_client:
            mock_get = AsyncMock(return_value=response(200, [row]))
            mock_client.return_value.__aenter__.return_value.get = mock_get

            result = await client.get_coin_by_symbol("ETH")

        assert result == row
        mock_get.assert_awaited_once()
        assert mock_get.call_args.args[0] == f"{BASE_URL}/coins/markets"
        assert mock_get.call_args.kwargs["params"]["ids"] == "ethereum"

    @pytest.mark.asyncio
    async def test_demo_api_key_header(self, gateway):
        client = CoinGeckoClient(BASE_URL, gateway, api_key="demo-key")

        with patch('httpx.AsyncClient') as mock_client:
            mock_get = AsyncMock(return_value=response(200, []))
            mock_client.return_value.__aenter__.return_value.get = mock_get

            await client.get_markets(["bitcoin"])

        assert mock_get.call_args.kwargs["headers"]["x-cg-demo-api-key"] == "demo-key"

    @pytest.mark.asyncio
    async def test_rate_limited_call_is_retried(self, client, clock):
        row = test_data_factory.coin_row(coin_id="bitcoin", symbol="btc", name="Bitcoin", price=65000.0)

        with patch('httpx.AsyncClient') as mock_client:
            mock_get = AsyncMock(side_effect=[response(429), response(200, [row])])
            mock_client.return_value.__aenter__.return_value.get = mock_get

            result = await client.get_coin_by_id("bitcoin")

        assert result == row
        assert mock_get.await_count == 2
        assert clock.sleeps == [2.0]

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, client):
        with patch('httpx.AsyncClient') as mock_client:
            mock_get = AsyncMock(return_value=response(429))
            mock_client.return_value.__aenter__.return_value.get = mock_get

            with pytest.raises(RateLimitExceeded) as exc_info:
                await client.get_coin_by_id("bitcoin")

        assert mock_get.await_count == 3
        assert exc_info.value.attempts == 3

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self, client):
        with patch('httpx.AsyncClient') as mock_client:
            mock_get = AsyncMock(return_value=response(500, {"error": "internal"}))
            mock_client.return_value.__aenter__.return_value.get = mock_get

            with pytest.raises(UpstreamError) as exc_info:
                await client.get_coin_by_id("bitcoin")

        assert mock_get.await_count == 1
        assert exc_info.value.upstream_status == 500
        assert exc_info.value.service == "coingecko"

    @pytest.mark.asyncio
    async def test_connection_error(self, client):
        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(
                side_effect=httpx.ConnectError("connection refused")
            )

            with pytest.raises(UpstreamError):
                await client.get_coin_by_id("bitcoin")

    @pytest.mark.asyncio
    async def test_concurrent_lookups_share_one_request(self, client):
        row = test_data_factory.coin_row(coin_id="bitcoin", symbol="btc")

        with patch('httpx.AsyncClient') as mock_client:
            mock_get = AsyncMock(return_value=response(200, [row]))
            mock_client.return_value.__aenter__.return_value.get = mock_get

            first, second = await asyncio.gather(
                client.get_coin_by_id("bitcoin"),
                client.get_coin_by_id("bitcoin"),
            )

        assert first == second == row
        mock_get.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_top_coins_first_symbol_wins_and_priority_overrides(self, client, cache):
        page_one = [
            test_data_factory.coin_row(coin_id="ethereum-wormhole", symbol="eth"),
            test_data_factory.coin_row(coin_id="pepe", symbol="pepe", name="Pepe"),
            test_data_factory.coin_row(coin_id="pepe-fork", symbol="pepe", name="Pepe Fork"),
        ]

        with patch('httpx.AsyncClient') as mock_client:
            mock_get = AsyncMock(side_effect=[response(200, page_one), response(200, [])])
            mock_client.return_value.__aenter__.return_value.get = mock_get

            symbol_map, rows = await client.get_top_coins()

        assert mock_get.await_count == 2
        assert symbol_map["eth"] == "ethereum"
        assert symbol_map["pepe"] == "pepe"
        assert "pepe-fork" in rows
        cache.set_symbol_map.assert_awaited_once_with(symbol_map)

    @pytest.mark.asyncio
    async def test_top_coins_falls_back_to_priority_map(self, client, cache):
        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(return_value=response(500))

            symbol_map, rows = await client.get_top_coins()

        assert symbol_map == PRIORITY_COINS
        assert rows == {}
        cache.set_symbol_map.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_symbol_falls_back_to_search(self, client):
        search = {"coins": [{"id": "obscure-token", "symbol": "OBS"}, {"id": "other", "symbol": "OBSX"}]}
        row = test_data_factory.coin_row(coin_id="obscure-token", symbol="obs", name="Obscure")

        with patch('httpx.AsyncClient') as mock_client:
            mock_get = AsyncMock(side_effect=[
                response(200, []),
                response(200, []),
                response(200, search),
                response(200, [row]),
            ])
            mock_client.return_value.__aenter__.return_value.get = mock_get

            result = await client.get_coin_by_symbol("obs")

        assert result == row
        assert mock_get.call_args_list[2].args[0] == f"{BASE_URL}/search"
        assert mock_get.call_args_list[3].kwargs["params"]["ids"] == "obscure-token"

    @pytest.mark.asyncio
    async def test_resolve_coin_id_uses_cached_map(self, client, cache):
        cache.get_symbol_map.return_value = {"pepe": "pepe"}

        with patch('httpx.AsyncClient') as mock_client:
            mock_get = AsyncMock()
            mock_client.return_value.__aenter__.return_value.get = mock_get

            assert await client.resolve_coin_id("PEPE") == "pepe"

        mock_get.assert_not_called()

    @pytest.mark.asyncio
    async def test_resolve_coin_id_requires_exact_symbol(self, client):
        search = {"coins": [{"id": "obscure-2", "symbol": "OBS2"}]}

        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(return_value=response(200, search))

            assert await client.resolve_coin_id("obs") is None

    @pytest.mark.asyncio
    async def test_market_chart(self, client):
        prices = [[1700000000000, 3000.0], [1700003600000, 3010.0]]

        with patch('httpx.AsyncClient') as mock_client:
            mock_get = AsyncMock(return_value=response(200, {"prices": prices}))
            mock_client.return_value.__aenter__.return_value.get = mock_get

            assert await client.get_market_chart("ethereum", 7) == prices

        assert mock_get.call_args.args[0] == f"{BASE_URL}/coins/ethereum/market_chart"
        assert mock_get.call_args.kwargs["params"] == {"vs_currency": "usd", "days": 7}
