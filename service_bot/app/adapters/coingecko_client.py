"""
CoinGecko client for the bot.
"""

from typing import Any, Dict, List, Optional, Tuple

import httpx

from shared.errors import RateLimitExceeded, UpstreamError
from shared.logging import get_logger

from service_bot.app.caching.coin_cache import CoinCache
from service_bot.app.ratelimit.gateway import GatewayOptions, RateLimitedGateway


# Strong guarantees for common tickers
PRIORITY_COINS: Dict[str, str] = {
    "btc": "bitcoin",
    "eth": "ethereum",
    "usdt": "tether",
    "usdc": "usd-coin",
    "bnb": "binancecoin",
    "xrp": "ripple",
    "sol": "solana",
    "ton": "the-open-network",
    "ada": "cardano",
    "doge": "dogecoin",
    "trx": "tron",
    "avax": "avalanche-2",
    "shib": "shiba-inu",
    "wbtc": "wrapped-bitcoin",
    "link": "chainlink",
    "dot": "polkadot",
    "bch": "bitcoin-cash",
    "near": "near",
    "dai": "dai",
    "ltc": "litecoin",
    "uni": "uniswap",
    "matic": "matic-network",
    "etc": "ethereum-classic",
    "atom": "cosmos",
    "hbar": "hedera-hashgraph",
    "xlm": "stellar",
    "cro": "crypto-com-chain",
    "fil": "filecoin",
    "vet": "vechain",
}

TOP_PAGES = 2
PAGE_SIZE = 250
SEARCH_CANDIDATES = 5


class CoinGeckoClient:
    """Market data lookups against the CoinGecko public API.

    Every call is submitted through the shared gateway with a dedup key, so
    two chats asking for the same coin at once cost a single upstream call.
    """

    def __init__(
        self,
        base_url: str,
        gateway: RateLimitedGateway,
        api_key: Optional[str] = None,
        cache: Optional[CoinCache] = None,
        timeout: float = 15.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.gateway = gateway
        self.api_key = api_key
        self.cache = cache
        self.timeout = timeout
        self.logger = get_logger("bot.coingecko")

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key
        return headers

    async def _get(
        self,
        path: str,
        params: Dict[str, Any],
        key: str,
        options: Optional[GatewayOptions] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"

        async def _request():
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, params=params, headers=self._headers())
            response.raise_for_status()
            return response.json()

        try:
            return await self.gateway.submit(_request, key=key, options=options)
        except RateLimitExceeded:
            raise
        except httpx.HTTPStatusError as exc:
            self.logger.error(
                "CoinGecko request failed",
                url=url,
                params=params,
                status_code=exc.response.status_code
            )
            raise UpstreamError(
                service="coingecko",
                message=f"Unexpected status {exc.response.status_code}",
                details={"path": path},
                status_code=exc.response.status_code
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.error("CoinGecko request error", url=url, error=str(exc))
            raise UpstreamError(service="coingecko", message=str(exc), details={"path": path}) from exc

    async def get_markets(
        self,
        ids: List[str],
        price_change: str = "24h",
        options: Optional[GatewayOptions] = None,
    ) -> List[Dict[str, Any]]:
        """Market rows for the given coin ids."""
        joined = ",".join(ids)
        params = {
            "vs_currency": "usd",
            "ids": joined,
            "order": "market_cap_desc",
            "price_change_percentage": price_change,
        }
        rows = await self._get(
            "/coins/markets",
            params,
            key=f"coingecko:markets:{joined}:{price_change}",
            options=options,
        )
        return rows or []

    async def get_coin_by_id(self, coin_id: str) -> Optional[Dict[str, Any]]:
        """Single market row for ``coin_id``, or None."""
        rows = await self.get_markets([coin_id])
        return rows[0] if rows else None

    async def get_top_coins(self) -> Tuple[Dict[str, str], Dict[str, Dict[str, Any]]]:
        """Symbol map and rows for the top 500 coins by market cap.

        The first coin seen for a symbol wins, then priority tickers override.
        Falls back to the priority map when CoinGecko cannot be reached.
        """
        rows: List[Dict[str, Any]] = []
        try:
            for page in range(1, TOP_PAGES + 1):
                params = {
                    "vs_currency": "usd",
                    "order": "market_cap_desc",
                    "per_page": PAGE_SIZE,
                    "page": page,
                    "price_change_percentage": "24h",
                }
                rows.extend(await self._get("/coins/markets", params, key=f"coingecko:top:{page}") or [])
        except (UpstreamError, RateLimitExceeded) as exc:
            self.logger.error("Top coins lookup failed", error=str(exc))
            return dict(PRIORITY_COINS), {}

        symbol_map: Dict[str, str] = {}
        rows_by_id: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            symbol = (row.get("symbol") or "").lower()
            if symbol and symbol not in symbol_map:
                symbol_map[symbol] = row["id"]
            rows_by_id[row["id"]] = row

        symbol_map.update(PRIORITY_COINS)

        if self.cache is not None:
            await self.cache.set_symbol_map(symbol_map)
        return symbol_map, rows_by_id

    async def search_by_symbol(self, symbol: str) -> List[Dict[str, Any]]:
        """Market rows for the best search matches of ``symbol``."""
        query = symbol.lower()
        result = await self._get("/search", {"query": query}, key=f"coingecko:search:{query}")
        coins = (result or {}).get("coins", [])

        candidates = [c for c in coins if (c.get("symbol") or "").lower() == query][:SEARCH_CANDIDATES]
        pick = candidates or coins[:SEARCH_CANDIDATES]
        if not pick:
            return []

        return await self.get_markets([c["id"] for c in pick])

    async def resolve_coin_id(self, symbol: str, options: Optional[GatewayOptions] = None) -> Optional[str]:
        """Coin id for ``symbol`` from the priority list, cache or exact search."""
        s = symbol.lower().strip()
        if not s:
            return None
        if s in PRIORITY_COINS:
            return PRIORITY_COINS[s]

        if self.cache is not None:
            cached = await self.cache.get_symbol_map()
            if cached and s in cached:
                return cached[s]

        result = await self._get("/search", {"query": s}, key=f"coingecko:search:{s}", options=options)
        for coin in (result or {}).get("coins", []):
            if (coin.get("symbol") or "").lower() == s:
                return coin["id"]
        return None

    async def get_coin_by_symbol(self, symbol: str) -> Optional[Dict[str, Any]]:
        """Market row for a ticker symbol: priority list, top 500, then search."""
        s = symbol.lower().strip()
        if not s:
            return None

        if s in PRIORITY_COINS:
            return await self.get_coin_by_id(PRIORITY_COINS[s])

        if self.cache is not None:
            cached = await self.cache.get_symbol_map()
            if cached and s in cached:
                return await self.get_coin_by_id(cached[s])

        symbol_map, rows_by_id = await self.get_top_coins()
        coin_id = symbol_map.get(s)
        if coin_id:
            row = rows_by_id.get(coin_id)
            if row:
                return row
            return await self.get_coin_by_id(coin_id)

        matches = await self.search_by_symbol(s)
        return matches[0] if matches else None

    async def get_coin_with_changes(
        self,
        symbol: str,
        options: Optional[GatewayOptions] = None,
    ) -> Optional[Dict[str, Any]]:
        """Market row with 1h/24h/7d/30d changes, used by the alert checker."""
        coin_id = await self.resolve_coin_id(symbol, options=options)
        if not coin_id:
            return None
        rows = await self.get_markets([coin_id], price_change="1h,24h,7d,30d", options=options)
        return rows[0] if rows else None

    async def get_market_chart(self, coin_id: str, days: int = 7) -> List[List[float]]:
        """``[timestamp_ms, price]`` pairs for the last ``days`` days."""
        params = {"vs_currency": "usd", "days": days}
        data = await self._get(
            f"/coins/{coin_id}/market_chart",
            params,
            key=f"coingecko:chart:{coin_id}:{days}",
        )
        return (data or {}).get("prices", [])
