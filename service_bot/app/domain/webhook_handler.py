"""
Dispatch of incoming Telegram updates to bot commands.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from shared.errors import BotException, RateLimitExceeded, ServiceError, ValidationError
from shared.logging import get_logger, set_update_context
from shared.metrics import MetricsCollector

from service_bot.app.adapters.ai_client import AIClient
from service_bot.app.adapters.coingecko_client import CoinGeckoClient
from service_bot.app.adapters.firestore_store import FirestoreStore, FirstPost, PriceAlert, TimeReminder
from service_bot.app.adapters.telegram_client import DELETE_CALLBACK, TelegramClient
from service_bot.app.domain import formatting
from service_bot.app.domain.commands import (
    IST,
    is_token_address,
    parse_alert,
    parse_amount_query,
    parse_command,
    parse_reminder,
    parse_time_to_ist,
)


GROUP_CHAT_TYPES = {"group", "supergroup"}
DEFAULT_CHART_DAYS = 7
MAX_CHART_DAYS = 365


@dataclass(frozen=True)
class MessageContext:
    """Fields of an incoming text message the handlers need."""

    chat_id: int
    chat_type: str
    thread_id: Optional[int]
    user_id: Optional[int]
    username: str
    has_username: bool
    text: str


class WebhookHandler:
    """Turns one Telegram update into zero or more replies."""

    def __init__(
        self,
        telegram: TelegramClient,
        coingecko: CoinGeckoClient,
        store: Optional[FirestoreStore] = None,
        ai: Optional[AIClient] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.telegram = telegram
        self.coingecko = coingecko
        self.store = store
        self.ai = ai
        self.metrics = metrics
        self._now = clock
        self.logger = get_logger("bot.webhook")

        self._commands = {
            "start": self._cmd_start,
            "help": self._cmd_help,
            "test": self._cmd_test,
            "alert": self._cmd_alert,
            "alerts": self._cmd_alerts,
            "remind": self._cmd_remind,
            "leaderboard": self._cmd_leaderboard,
            "top": self._cmd_leaderboard,
            "chart": self._cmd_chart,
            "ask": self._cmd_ask,
        }

    async def handle_update(self, update: Dict[str, Any]) -> Dict[str, Any]:
        if not update or (not update.get("message") and not update.get("callback_query")):
            return {"ok": True, "message": "No message or callback in update"}

        set_update_context(update_id=update.get("update_id"))

        if update.get("callback_query"):
            return await self._handle_callback(update["callback_query"])

        msg = update["message"]
        text = (msg.get("text") or "").strip()
        if not text:
            self.logger.info("Ignoring message without text")
            return {"ok": True, "message": "No text in message"}

        chat = msg.get("chat") or {}
        sender = msg.get("from") or {}
        ctx = MessageContext(
            chat_id=chat.get("id"),
            chat_type=chat.get("type", "private"),
            thread_id=msg.get("message_thread_id"),
            user_id=sender.get("id"),
            username=sender.get("username") or sender.get("first_name") or "Unknown",
            has_username=bool(sender.get("username")),
            text=text,
        )
        set_update_context(chat_id=ctx.chat_id, user=ctx.username)

        if is_token_address(text):
            return await self._handle_address(ctx)

        self.logger.info("Message received", chat_type=ctx.chat_type, thread_id=ctx.thread_id)

        try:
            await self._dispatch(ctx)
        except RateLimitExceeded as exc:
            self.logger.warning("Upstream rate limit exhausted", attempts=exc.attempts)
            await self._reply(ctx, formatting.RATE_LIMITED_TEXT)
        except ValidationError as exc:
            await self._reply(ctx, f"`{exc.message}`")
        except BotException as exc:
            self.logger.error("Command failed", code=exc.code, error=exc.message)
            await self._reply(ctx, formatting.FAILURE_TEXT)

        return {"ok": True}

    async def _dispatch(self, ctx: MessageContext) -> None:
        if ctx.text.startswith("/"):
            command, args = parse_command(ctx.text)
            if not command:
                return
            handler = self._commands.get(command)
            if handler is not None:
                self._count(command)
                await handler(ctx, args)
            else:
                self._count("price")
                await self._reply_price(ctx, command, 1)
            return

        query = parse_amount_query(ctx.text)
        if query:
            amount, symbol = query
            self._count("amount")
            await self._reply_price(ctx, symbol, amount)

    async def _handle_callback(self, callback_query: Dict[str, Any]) -> Dict[str, Any]:
        message = callback_query.get("message") or {}
        chat_id = (message.get("chat") or {}).get("id")
        message_id = message.get("message_id")

        if callback_query.get("data") == DELETE_CALLBACK:
            try:
                await self.telegram.delete_message(chat_id, message_id)
                self.logger.info("Message deleted", chat_id=chat_id, message_id=message_id)
                await self.telegram.answer_callback_query(callback_query["id"])
            except BotException as exc:
                self.logger.error("Error deleting message", error=str(exc))
                await self.telegram.answer_callback_query(callback_query["id"], text="Cannot delete this message")

        return {"ok": True}

    async def _handle_address(self, ctx: MessageContext) -> Dict[str, Any]:
        if ctx.chat_type not in GROUP_CHAT_TYPES or self.store is None:
            self.logger.info("Ignoring potential address")
            return {"ok": True, "message": "Ignoring potential address"}

        post = FirstPost(
            chat_id=ctx.chat_id,
            address=ctx.text,
            user_id=ctx.user_id,
            username=ctx.username,
            posted_at=self._now(),
        )
        try:
            first, is_first = await self.store.record_first_post(post)
        except BotException as exc:
            self.logger.error("First post check failed", code=exc.code, error=exc.message)
            return {"ok": True, "message": "First post check failed"}
        if is_first:
            self.logger.info("First post recorded", address=ctx.text)
            return {"ok": True, "message": "First post recorded"}

        if first.user_id is not None and first.user_id == ctx.user_id:
            return {"ok": True, "message": "Repeat post by first caller"}

        await self._reply(ctx, formatting.build_first_post_reply(first.username, first.posted_at))
        return {"ok": True, "message": "Already posted"}

    async def _reply_price(self, ctx: MessageContext, symbol: str, amount: float) -> None:
        coin = await self.coingecko.get_coin_by_symbol(symbol)
        if not coin:
            await self._reply(ctx, formatting.build_not_found(symbol))
            return

        await self._reply(ctx, formatting.build_price_reply(coin, amount))
        if self.store is not None:
            await self.store.log_query(ctx.chat_id, ctx.username, symbol.lower(), amount)

    async def _cmd_start(self, ctx: MessageContext, args) -> None:
        await self._reply(ctx, formatting.WELCOME_TEXT)

    async def _cmd_help(self, ctx: MessageContext, args) -> None:
        await self._reply(ctx, formatting.help_text())

    async def _cmd_test(self, ctx: MessageContext, args) -> None:
        await self._reply(ctx, formatting.status_text(ctx.chat_type, ctx.thread_id, self._now()))

    async def _cmd_alert(self, ctx: MessageContext, args) -> None:
        symbol, condition, target = parse_alert(args)
        store = self._require_store()

        coin_id = await self.coingecko.resolve_coin_id(symbol)
        if not coin_id:
            await self._reply(ctx, formatting.build_not_found(symbol))
            return

        alert = PriceAlert(
            symbol=symbol,
            condition=condition,
            target_price=target,
            chat_id=ctx.chat_id,
            username=ctx.username if ctx.has_username else None,
            created_at=self._now(),
        )
        await store.add_price_alert(alert)
        await self._reply(ctx, formatting.build_alert_confirmation(symbol, condition, target))

    async def _cmd_alerts(self, ctx: MessageContext, args) -> None:
        alerts = await self._require_store().list_alerts(ctx.chat_id)
        await self._reply(ctx, formatting.build_alert_list(alerts))

    async def _cmd_remind(self, ctx: MessageContext, args) -> None:
        parsed = parse_reminder(ctx.text)
        if parsed is None:
            raise ValidationError('Usage: /remind "message" 3pm')
        message, time_str = parsed

        trigger_time = parse_time_to_ist(time_str, now=self._now())
        if trigger_time is None:
            raise ValidationError(f"Invalid time: {time_str}")

        reminder = TimeReminder(
            message=message,
            trigger_time=trigger_time,
            chat_id=ctx.chat_id,
            username=ctx.username if ctx.has_username else None,
            created_at=self._now(),
        )
        await self._require_store().add_reminder(reminder)
        await self._reply(ctx, formatting.build_reminder_confirmation(message, trigger_time, IST))

    async def _cmd_leaderboard(self, ctx: MessageContext, args) -> None:
        rows = await self._require_store().leaderboard(ctx.chat_id)
        await self._reply(ctx, formatting.build_leaderboard(rows))

    async def _cmd_chart(self, ctx: MessageContext, args) -> None:
        if not args:
            raise ValidationError("Usage: /chart <symbol> [days]")

        symbol = args[0].lower()
        days = DEFAULT_CHART_DAYS
        if len(args) > 1:
            try:
                days = int(args[1])
            except ValueError:
                raise ValidationError("Days must be a whole number", {"days": args[1]})
            days = max(1, min(days, MAX_CHART_DAYS))

        coin_id = await self.coingecko.resolve_coin_id(symbol)
        if not coin_id:
            await self._reply(ctx, formatting.build_not_found(symbol))
            return

        prices = await self.coingecko.get_market_chart(coin_id, days)
        if not prices:
            await self._reply(ctx, formatting.build_not_found(symbol))
            return

        url = formatting.build_chart_url(symbol, prices, days)
        await self.telegram.send_photo(ctx.chat_id, url, caption=formatting.chart_caption(symbol, days),
                                       thread_id=ctx.thread_id)

    async def _cmd_ask(self, ctx: MessageContext, args) -> None:
        if not args:
            raise ValidationError("Usage: /ask <question>")
        if self.ai is None or not self.ai.enabled:
            raise ValidationError("AI answers are not enabled")

        answer = await self.ai.ask(" ".join(args))
        await self._reply(ctx, answer, parse_mode=None)

    def _require_store(self) -> FirestoreStore:
        if self.store is None:
            raise ServiceError("Storage is not configured")
        return self.store

    async def _reply(self, ctx: MessageContext, text: str, parse_mode: Optional[str] = "Markdown") -> None:
        await self.telegram.send_message(ctx.chat_id, text, thread_id=ctx.thread_id, parse_mode=parse_mode)

    def _count(self, command: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("bot_commands_total", command=command)

