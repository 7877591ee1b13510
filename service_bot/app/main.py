"""
Crypto price bot service.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.circuit_breaker import CircuitBreaker
from shared.errors import BotException, ConfigurationError, RateLimitExceeded

from service_bot.app.adapters.ai_client import AIClient
from service_bot.app.adapters.coingecko_client import CoinGeckoClient
from service_bot.app.adapters.firestore_store import FirestoreStore, create_store
from service_bot.app.adapters.telegram_client import TelegramClient
from service_bot.app.caching.coin_cache import CoinCache
from service_bot.app.domain.alert_checker import AlertChecker
from service_bot.app.domain.webhook_handler import WebhookHandler
from service_bot.app.ratelimit.gateway import GatewayOptions, RateLimitedGateway


class BotService(BaseService):
    """Telegram webhook and alert checker service."""

    def __init__(self, store: Optional[FirestoreStore] = None):
        super().__init__("bot", 8000)

        self.gateway = RateLimitedGateway(
            min_interval=self.config.request_min_interval,
            default_options=GatewayOptions(
                max_retries=self.config.request_max_retries,
                base_delay=self.config.request_base_delay,
                max_delay=self.config.request_max_delay,
                timeout=self.config.request_timeout,
            ),
            metrics=self.metrics,
            name="coingecko",
        )
        self.coin_cache = CoinCache(self.config.redis_url, ttl_seconds=self.config.coin_cache_ttl_seconds)
        self.coingecko = CoinGeckoClient(
            self.config.coingecko_api_url,
            self.gateway,
            api_key=self.config.coingecko_api_key,
            cache=self.coin_cache,
        )
        self.ai = AIClient(
            self.config.ai_api_url,
            self.config.ai_api_key,
            self.config.ai_model,
            self.gateway,
        )

        self.telegram: Optional[TelegramClient] = None
        if self.config.telegram_bot_token:
            self.telegram = TelegramClient(self.config.telegram_bot_token, self.config.telegram_api_url)
        else:
            self.logger.warning("Telegram bot token not configured")

        self.store = store if store is not None else self._connect_store()

        # one rate-limited run pauses the checker for the whole cooldown
        self.alert_breaker = CircuitBreaker(
            failure_threshold=1,
            recovery_timeout=self.config.alert_cooldown_seconds,
            expected_exception=RateLimitExceeded,
            name="alert_checker",
        )

        self.webhook_handler: Optional[WebhookHandler] = None
        self.alert_checker: Optional[AlertChecker] = None
        if self.telegram is not None:
            self.webhook_handler = WebhookHandler(
                self.telegram,
                self.coingecko,
                store=self.store,
                ai=self.ai,
                metrics=self.metrics,
            )
            if self.store is not None:
                self.alert_checker = AlertChecker(
                    self.store,
                    self.coingecko,
                    self.telegram,
                    self.alert_breaker,
                    mention_group_id=self.config.mention_group_id,
                    mention_members=self.config.mention_members,
                    metrics=self.metrics,
                )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.gateway.close()
            await self.coin_cache.close()

        self._setup_bot_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.bot_service = self

    def _connect_store(self) -> Optional[FirestoreStore]:
        try:
            return create_store(self.config.firebase_service_account)
        except ConfigurationError as exc:
            self.logger.warning("Firestore disabled", reason=exc.message)
            return None

    def _setup_bot_routes(self):
        """Set up webhook and cron routes."""

        @self.app.get("/api/webhook")
        async def webhook_status():
            """Liveness probe for the webhook URL."""
            return {
                "status": "Webhook is active",
                "token_configured": self.telegram is not None,
                "storage_configured": self.store is not None,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        @self.app.post("/api/webhook")
        async def webhook(request: Request):
            """Handle one Telegram update."""
            if self.webhook_handler is None:
                self.logger.error("Webhook called without a bot token")
                return JSONResponse(status_code=500, content={"error": "Bot token not configured"})

            try:
                update = await request.json()
            except ValueError:
                return JSONResponse(status_code=400, content={"ok": False, "error": "Invalid JSON body"})

            try:
                return await self.webhook_handler.handle_update(update)
            except BotException as exc:
                self.logger.error("Webhook handling failed", code=exc.code, error=exc.message)
                self.metrics.record_error(exc.code)
                return JSONResponse(status_code=500, content={"ok": False, "error": exc.message})

        @self.app.get("/api/check-alerts")
        @self.app.post("/api/check-alerts")
        async def check_alerts():
            """Cron trigger for price alerts and reminders."""
            if self.alert_checker is None:
                return JSONResponse(
                    status_code=500,
                    content={"success": False, "error": "Bot token or storage not configured"}
                )

            try:
                return await self.alert_checker.run()
            except BotException as exc:
                self.logger.error("Alert checker failed", code=exc.code, error=exc.message)
                self.metrics.record_error(exc.code)
                return JSONResponse(status_code=500, content={"success": False, "error": exc.message})

        @self.app.get("/api/gateway/stats")
        async def gateway_stats():
            """Queue state of the upstream request gateway."""
            return {
                "gateway": self.gateway.stats(),
                "alert_breaker": self.alert_breaker.get_state(),
            }

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Check bot dependencies."""
        redis_ok = await self.coin_cache.check_redis()
        return {
            "redis": "ok" if redis_ok else "error",
            "firestore": "ok" if self.store is not None else "disabled",
            "telegram": "ok" if self.telegram is not None else "disabled",
        }


def create_app():
    """Create FastAPI application."""
    service = BotService()
    return service.app


if __name__ == "__main__":
    service = BotService()
    service.run()
