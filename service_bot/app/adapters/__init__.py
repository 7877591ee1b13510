"""
Adapters package for the bot service.

HTTP clients for upstream APIs (CoinGecko, Telegram Bot API, the
generative-AI API) and the Firestore document store. Price and AI calls go
through the shared request gateway; adapters translate transport failures
into shared errors and let RateLimitExceeded through untouched.
"""

from .ai_client import AIClient
from .coingecko_client import CoinGeckoClient, PRIORITY_COINS
from .firestore_store import FirestoreStore, FirstPost, PriceAlert, TimeReminder, create_store
from .telegram_client import TelegramClient, DELETE_CALLBACK

__all__ = [
    "AIClient",
    "CoinGeckoClient",
    "PRIORITY_COINS",
    "FirestoreStore",
    "FirstPost",
    "PriceAlert",
    "TimeReminder",
    "create_store",
    "TelegramClient",
    "DELETE_CALLBACK",
]
