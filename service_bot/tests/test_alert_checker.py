"""
Unit tests for the periodic alert checker.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from service_bot.app.adapters.firestore_store import PriceAlert, TimeReminder
from service_bot.app.domain.alert_checker import AlertChecker, is_triggered
from service_bot.app.ratelimit.gateway import ALERT_CHECKER_OPTIONS
from shared.circuit_breaker import CircuitBreaker
from shared.errors import RateLimitExceeded, ServiceError, UpstreamError
from shared.metrics import MetricsCollector
from shared.test_helpers import FakeClock, test_data_factory


NOW = datetime(2024, 1, 1, 6, 0, tzinfo=timezone.utc)
GROUP_ID = -1001354282618


def make_alert(symbol="eth", condition="above", target=2900.0, chat_id=-100123):
    return PriceAlert(
        symbol=symbol,
        condition=condition,
        target_price=target,
        chat_id=chat_id,
        username="alice",
        doc_id=f"{symbol}-{condition}",
        reference=MagicMock(name=f"ref-{symbol}"),
    )


class TestIsTriggered:
    """Test cases for alert trigger conditions."""

    def test_above_is_inclusive(self):
        assert is_triggered(make_alert(condition="above", target=3000), 3000) is True
        assert is_triggered(make_alert(condition="above", target=3000), 2999.99) is False

    def test_below_is_inclusive(self):
        assert is_triggered(make_alert(condition="below", target=3000), 3000) is True
        assert is_triggered(make_alert(condition="below", target=3000), 3000.01) is False


class TestAlertChecker:
    """Test cases for AlertChecker."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker(
            failure_threshold=1,
            recovery_timeout=1800,
            expected_exception=RateLimitExceeded,
            name="alert_checker",
            clock=clock,
        )

    @pytest.fixture
    def store(self):
        store = AsyncMock()
        store.active_alerts.return_value = []
        store.due_reminders.return_value = []
        return store

    @pytest.fixture
    def coingecko(self):
        client = AsyncMock()
        client.get_coin_with_changes.return_value = test_data_factory.coin_row(price=3000.0)
        return client

    @pytest.fixture
    def telegram(self):
        return AsyncMock()

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("bot")

    @pytest.fixture
    def checker(self, store, coingecko, telegram, breaker, metrics):
        return AlertChecker(
            store,
            coingecko,
            telegram,
            breaker,
            mention_group_id=GROUP_ID,
            mention_members=["alice", "bob"],
            metrics=metrics,
            clock=lambda: NOW,
        )

    @pytest.mark.asyncio
    async def test_triggered_alert_is_sent_and_deactivated(self, checker, store, coingecko, telegram, metrics):
        alert = make_alert(target=2900.0)
        store.active_alerts.return_value = [alert]

        result = await checker.check_price_alerts()

        assert result == {"checked": 1, "triggered": 1}
        coingecko.get_coin_with_changes.assert_awaited_once_with("eth", options=ALERT_CHECKER_OPTIONS)
        call = telegram.send_message.call_args
        assert call.args[0] == -100123
        assert "PRICE ALERT TRIGGERED" in call.args[1]
        assert call.kwargs == {"parse_mode": "HTML", "with_delete_button": False}
        store.deactivate.assert_awaited_once_with(alert.reference)
        assert metrics.registry.get_sample_value("bot_alerts_triggered_total") == 1

    @pytest.mark.asyncio
    async def test_untriggered_alert_stays_active(self, checker, store, telegram):
        store.active_alerts.return_value = [make_alert(target=5000.0)]

        result = await checker.check_price_alerts()

        assert result == {"checked": 1, "triggered": 0}
        telegram.send_message.assert_not_called()
        store.deactivate.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_send_keeps_alert_active(self, checker, store, telegram):
        store.active_alerts.return_value = [make_alert()]
        telegram.send_message.side_effect = UpstreamError("telegram", "chat not found", status_code=400)

        result = await checker.check_price_alerts()

        assert result == {"checked": 1, "triggered": 0}
        store.deactivate.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_deactivate_does_not_abort_the_pass(self, checker, store, telegram):
        first = make_alert(symbol="eth")
        second = make_alert(symbol="btc")
        store.active_alerts.return_value = [first, second]
        store.deactivate.side_effect = [ServiceError("Could not deactivate document"), None]

        result = await checker.check_price_alerts()

        assert result == {"checked": 2, "triggered": 2}
        assert telegram.send_message.await_count == 2
        assert [call.args[0] for call in store.deactivate.await_args_list] == [first.reference, second.reference]

    @pytest.mark.asyncio
    async def test_upstream_error_skips_only_that_alert(self, checker, store, coingecko):
        store.active_alerts.return_value = [make_alert("abc"), make_alert("eth")]
        coingecko.get_coin_with_changes.side_effect = [
            UpstreamError("coingecko", "Unexpected status 500", status_code=500),
            test_data_factory.coin_row(price=3000.0),
        ]

        result = await checker.check_price_alerts()

        assert result == {"checked": 2, "triggered": 1}

    @pytest.mark.asyncio
    async def test_missing_price_is_skipped(self, checker, store, coingecko, telegram):
        store.active_alerts.return_value = [make_alert()]
        coingecko.get_coin_with_changes.return_value = None

        result = await checker.check_price_alerts()

        assert result == {"checked": 1, "triggered": 0}
        telegram.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_rate_limit_stops_the_pass_and_opens_cooldown(self, checker, store, coingecko, breaker):
        store.active_alerts.return_value = [make_alert("eth"), make_alert("btc")]
        coingecko.get_coin_with_changes.side_effect = RateLimitExceeded(attempts=2)

        result = await checker.check_price_alerts()

        assert result == {"checked": 2, "triggered": 0}
        assert coingecko.get_coin_with_changes.await_count == 1
        assert breaker.is_open() is True

    @pytest.mark.asyncio
    async def test_run_is_skipped_during_cooldown(self, checker, store, breaker, clock):
        breaker.record_failure()
        clock.advance(600)

        result = await checker.run()

        assert result["success"] is True
        assert result["skipped"] is True
        assert result["reason"] == "Rate limit cooldown"
        assert result["remaining_minutes"] == 20
        store.active_alerts.assert_not_called()

    @pytest.mark.asyncio
    async def test_run_resumes_after_cooldown(self, checker, store, breaker, clock):
        breaker.record_failure()
        clock.advance(1800)

        result = await checker.run()

        assert "skipped" not in result
        assert result["price_alerts"] == {"checked": 0, "triggered": 0}
        assert result["time_reminders"] == {"checked": 0, "triggered": 0}
        assert result["timestamp"] == NOW.isoformat()
        assert breaker.is_open() is False

    @pytest.mark.asyncio
    async def test_due_reminder_expands_all_mention(self, checker, store, telegram, metrics):
        reminder = TimeReminder(
            message="Call starts @all",
            trigger_time=NOW,
            chat_id=GROUP_ID,
            username="carol",
            created_at=NOW,
            doc_id="r1",
            reference=MagicMock(name="ref-r1"),
        )
        store.due_reminders.return_value = [reminder]

        result = await checker.check_time_reminders()

        assert result == {"checked": 1, "triggered": 1}
        store.due_reminders.assert_awaited_once_with(NOW)
        text = telegram.send_message.call_args.args[1]
        assert "Call starts\n\n@alice @bob" in text
        assert "@all" not in text
        assert "Set By: @carol" in text
        store.deactivate.assert_awaited_once_with(reminder.reference)
        assert metrics.registry.get_sample_value("bot_reminders_sent_total") == 1

    @pytest.mark.asyncio
    async def test_reminder_outside_group_keeps_all(self, checker, store, telegram):
        store.due_reminders.return_value = [
            TimeReminder(message="Hello @all", trigger_time=NOW, chat_id=-200, reference=MagicMock())
        ]

        await checker.check_time_reminders()

        assert "Hello @all" in telegram.send_message.call_args.args[1]
