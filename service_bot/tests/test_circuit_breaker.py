"""
Unit tests for the circuit breaker used as the alert checker cooldown.
"""

import pytest

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import RateLimitExceeded, UpstreamError
from shared.test_helpers import FakeClock


class TestCircuitBreaker:
    """Test cases for CircuitBreaker."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker(
            failure_threshold=1,
            recovery_timeout=1800,
            expected_exception=RateLimitExceeded,
            name="test",
            clock=clock,
        )

    def test_starts_closed(self, breaker):
        assert breaker.allow_request() is True
        assert breaker.remaining_cooldown() == 0.0
        assert breaker.get_state()["state"] == "closed"

    def test_opens_at_threshold(self, breaker, clock):
        breaker.record_failure()
        clock.advance(60)

        assert breaker.is_open() is True
        assert breaker.allow_request() is False
        assert breaker.remaining_cooldown() == pytest.approx(1740)

    def test_half_open_after_cooldown(self, breaker, clock):
        breaker.record_failure()
        clock.advance(1800)

        assert breaker.allow_request() is True
        assert breaker.get_state()["state"] == "half_open"

        breaker.record_success()
        assert breaker.get_state()["state"] == "closed"

    def test_failed_probe_reopens(self, breaker, clock):
        breaker.record_failure()
        clock.advance(1800)
        breaker.allow_request()

        breaker.record_failure()

        assert breaker.is_open() is True
        assert breaker.remaining_cooldown() == pytest.approx(1800)

    def test_threshold_above_one(self, clock):
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=10, clock=clock)

        breaker.record_failure()
        breaker.record_failure()
        assert breaker.is_open() is False

        breaker.record_failure()
        assert breaker.is_open() is True

    @pytest.mark.asyncio
    async def test_call_counts_only_expected_exceptions(self, breaker):
        async def upstream_down():
            raise UpstreamError("coingecko", "boom")

        with pytest.raises(UpstreamError):
            await breaker.call(upstream_down)
        assert breaker.is_open() is False

        async def rate_limited():
            raise RateLimitExceeded(attempts=2)

        with pytest.raises(RateLimitExceeded):
            await breaker.call(rate_limited)
        assert breaker.is_open() is True

    @pytest.mark.asyncio
    async def test_call_blocked_while_open(self, breaker):
        breaker.record_failure()

        async def work():
            return "ok"

        with pytest.raises(CircuitBreakerOpenException) as exc_info:
            await breaker.call(work)

        assert exc_info.value.remaining_seconds == pytest.approx(1800)
