"""
Redis cache for the CoinGecko symbol map.
"""

import json
from typing import Dict, Optional

import redis.asyncio as redis

from shared.logging import get_logger


SYMBOL_MAP_KEY = "coins:symbol_map"


class CoinCache:
    """Caches the top-coins ``symbol -> coin id`` map between webhook calls."""

    def __init__(self, redis_url: str, ttl_seconds: int = 300):
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("bot.coin_cache")
        self._redis = redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
        )

    async def get_symbol_map(self) -> Optional[Dict[str, str]]:
        """Return the cached map, or None on a miss or Redis failure."""
        try:
            raw = await self._redis.get(SYMBOL_MAP_KEY)
        except Exception as exc:
            self.logger.warning("Coin cache read failed", error=str(exc))
            return None

        if not raw:
            return None

        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            self.logger.warning("Discarding malformed coin cache entry")
            return None
        return data if isinstance(data, dict) else None

    async def set_symbol_map(self, symbol_map: Dict[str, str]) -> bool:
        """Store the map with the configured TTL."""
        try:
            await self._redis.setex(SYMBOL_MAP_KEY, self.ttl_seconds, json.dumps(symbol_map))
            return True
        except Exception as exc:
            self.logger.warning("Coin cache write failed", error=str(exc))
            return False

    async def check_redis(self) -> bool:
        """Return True when Redis responds to a ping."""
        try:
            return bool(await self._redis.ping())
        except Exception as exc:
            self.logger.error("Redis health check failed", error=str(exc))
            return False

    async def close(self) -> None:
        """Close Redis connections."""
        try:
            await self._redis.aclose()
        except Exception as exc:  # pragma: no cover - close is best effort
            self.logger.debug("Coin cache close failed", error=str(exc))
