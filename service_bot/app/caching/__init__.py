"""
Bot caching package.

Short-lived Redis caches that spare the upstream price API repeated calls
for slowly changing data.
"""

from .coin_cache import CoinCache

__all__ = ["CoinCache"]
