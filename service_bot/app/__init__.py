"""
Crypto price bot service package.

Answers price queries in Telegram chats, delivers price alerts and timed
reminders, and tracks which member first posted a token address in a group.

Structure:
- app.main: FastAPI app, webhook and alert-checker routes.
- app.adapters: HTTP clients for CoinGecko, Telegram and the AI API, plus
  the Firestore document store.
- app.caching: Redis cache for the CoinGecko symbol map.
- app.ratelimit: Serialized, paced gateway all upstream price calls go through.
- app.domain: Command parsing, reply formatting, webhook dispatch and the
  periodic alert checker.
"""
