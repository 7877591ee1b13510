"""
Periodic delivery of price alerts and time reminders.

Triggered by an external cron hitting the check-alerts endpoint. Price
lookups use the fail-fast gateway options; a lookup that still ends in
RateLimitExceeded opens the cooldown breaker so the next runs are skipped
instead of hammering CoinGecko.
"""

import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Sequence

from shared.circuit_breaker import CircuitBreaker
from shared.errors import BotException, RateLimitExceeded
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from service_bot.app.adapters.coingecko_client import CoinGeckoClient
from service_bot.app.adapters.firestore_store import FirestoreStore, PriceAlert
from service_bot.app.adapters.telegram_client import TelegramClient
from service_bot.app.domain import formatting
from service_bot.app.ratelimit.gateway import ALERT_CHECKER_OPTIONS, GatewayOptions


def is_triggered(alert: PriceAlert, price: float) -> bool:
    if alert.condition == "above":
        return price >= alert.target_price
    if alert.condition == "below":
        return price <= alert.target_price
    return False


class AlertChecker:
    """Checks active alerts and due reminders and notifies their chats."""

    def __init__(
        self,
        store: FirestoreStore,
        coingecko: CoinGeckoClient,
        telegram: TelegramClient,
        breaker: CircuitBreaker,
        mention_group_id: int,
        mention_members: Sequence[str],
        options: GatewayOptions = ALERT_CHECKER_OPTIONS,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.coingecko = coingecko
        self.telegram = telegram
        self.breaker = breaker
        self.mention_group_id = mention_group_id
        self.mention_members = list(mention_members)
        self.options = options
        self.metrics = metrics
        self._now = clock
        self.logger = get_logger("bot.alert_checker")

    async def run(self) -> Dict[str, Any]:
        """One checker pass; skipped while the rate-limit cooldown is active."""
        started = self._now()
        self.logger.info("Alert checker started")

        if not self.breaker.allow_request():
            remaining_minutes = math.ceil(self.breaker.remaining_cooldown() / 60)
            self.logger.info(
                "Skipping alert check due to recent rate limiting",
                remaining_minutes=remaining_minutes
            )
            return {
                "success": True,
                "skipped": True,
                "reason": "Rate limit cooldown",
                "remaining_minutes": remaining_minutes,
                "timestamp": started.isoformat(),
            }

        price_results = await self.check_price_alerts()
        time_results = await self.check_time_reminders()

        summary = {
            "success": True,
            "timestamp": started.isoformat(),
            "price_alerts": price_results,
            "time_reminders": time_results,
        }
        self.logger.info("Alert check completed", **summary)
        return summary

    async def check_price_alerts(self) -> Dict[str, int]:
        alerts = await self.store.active_alerts()
        triggered = 0
        rate_limited = False

        for alert in alerts:
            if rate_limited:
                break

            try:
                coin = await self.coingecko.get_coin_with_changes(alert.symbol, options=self.options)
            except RateLimitExceeded as exc:
                self.breaker.record_failure()
                rate_limited = True
                self.logger.error(
                    "Rate limit hit in alert checker, pausing checks",
                    symbol=alert.symbol,
                    attempts=exc.attempts
                )
                continue
            except BotException as exc:
                self.logger.error("Price lookup failed", symbol=alert.symbol, error=exc.message)
                continue

            if not coin or coin.get("current_price") is None:
                self.logger.info("Could not get price", symbol=alert.symbol)
                continue

            price = coin["current_price"]
            self.logger.info(
                "Alert evaluated",
                symbol=alert.symbol,
                price=price,
                condition=alert.condition,
                target=alert.target_price
            )
            if not is_triggered(alert, price):
                continue

            message = formatting.build_alert_message(
                alert.symbol, alert.condition, alert.target_price, alert.username, coin
            )
            if await self._notify(alert.chat_id, message, alert.reference):
                triggered += 1
                self._count("bot_alerts_triggered_total")

        if not rate_limited:
            self.breaker.record_success()
        return {"checked": len(alerts), "triggered": triggered}

    async def check_time_reminders(self) -> Dict[str, int]:
        reminders = await self.store.due_reminders(self._now())
        triggered = 0

        for reminder in reminders:
            self.logger.info("Time reminder due", doc_id=reminder.doc_id)
            text, extra = formatting.expand_all_mentions(
                reminder.message, reminder.chat_id, self.mention_group_id, self.mention_members
            )
            message = formatting.build_reminder_message(text, reminder.username, reminder.created_at, extra)
            if await self._notify(reminder.chat_id, message, reminder.reference):
                triggered += 1
                self._count("bot_reminders_sent_total")

        return {"checked": len(reminders), "triggered": triggered}

    async def _notify(self, chat_id: int, message: str, reference: Any) -> bool:
        """Send and deactivate; a failed send or update leaves the document active."""
        try:
            await self.telegram.send_message(chat_id, message, parse_mode="HTML", with_delete_button=False)
        except BotException as exc:
            self.logger.error("Failed to send notification", chat_id=chat_id, error=exc.message)
            return False

        try:
            await self.store.deactivate(reference)
        except BotException as exc:
            self.logger.error("Failed to deactivate after sending", chat_id=chat_id, error=exc.message)
        return True

    def _count(self, metric_name: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter(metric_name)
