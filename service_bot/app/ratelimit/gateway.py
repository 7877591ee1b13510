"""
Serialized, paced request gateway for upstream HTTP APIs.

Every queued call goes through one drain loop: calls start in arrival order,
never overlap, and are spaced at least ``min_interval`` seconds apart. Calls
answered with a rate-limit signal are retried with capped exponential
backoff while still holding the queue slot. Concurrent submissions that share
a key attach to the same in-flight call instead of issuing a second one.
"""

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

import httpx

from shared.errors import ConfigurationError, RateLimitExceeded, ServiceError, UpstreamError
from shared.logging import get_logger
from shared.metrics import MetricsCollector


RATE_LIMIT_STATUS = 429

Work = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class GatewayOptions:
    """Retry and routing options for a single submission."""

    max_retries: int = 5
    base_delay: float = 2.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    use_queue: bool = True
    timeout: Optional[float] = None

    def validate(self) -> "GatewayOptions":
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0", {"max_retries": self.max_retries})
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError(
                "delays must be >= 0",
                {"base_delay": self.base_delay, "max_delay": self.max_delay}
            )
        if self.max_delay < self.base_delay:
            raise ConfigurationError(
                "max_delay must be >= base_delay",
                {"base_delay": self.base_delay, "max_delay": self.max_delay}
            )
        if self.backoff_multiplier < 1:
            raise ConfigurationError(
                "backoff_multiplier must be >= 1",
                {"backoff_multiplier": self.backoff_multiplier}
            )
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError("timeout must be > 0", {"timeout": self.timeout})
        return self

    def merged(self, **overrides: Any) -> "GatewayOptions":
        """Copy with the given fields replaced."""
        return replace(self, **overrides)


DEFAULT_OPTIONS = GatewayOptions()

# Periodic alert checking must not sit behind interactive traffic.
ALERT_CHECKER_OPTIONS = GatewayOptions(
    max_retries=1,
    base_delay=2.0,
    max_delay=5.0,
    backoff_multiplier=2.0,
    use_queue=False,
)


@dataclass
class QueuedTask:
    """A unit of work waiting for the drain loop."""

    work: Work
    key: str
    options: GatewayOptions
    future: "asyncio.Future[Any]"


def compute_backoff_delay(attempt: int, options: GatewayOptions) -> float:
    """Delay before retrying after the zero-based ``attempt`` failed."""
    delay = options.base_delay * (options.backoff_multiplier ** attempt)
    return min(delay, options.max_delay)


def is_rate_limit_error(exc: BaseException) -> bool:
    """Return True when ``exc`` carries an HTTP 429 from upstream."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code == RATE_LIMIT_STATUS

    # UpstreamError keeps the upstream status apart from its own HTTP status
    for attr in ("upstream_status", "status_code"):
        if getattr(exc, attr, None) == RATE_LIMIT_STATUS:
            return True

    response = getattr(exc, "response", None)
    return getattr(response, "status_code", None) == RATE_LIMIT_STATUS


class RateLimitedGateway:
    """Single-dispatch request queue with pacing, backoff and deduplication.

    Create one per process and share it between callers. All state is owned
    by the instance and only mutated from the event loop thread.
    """

    def __init__(
        self,
        min_interval: float = 2.0,
        default_options: Optional[GatewayOptions] = None,
        is_retryable: Callable[[BaseException], bool] = is_rate_limit_error,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: str = "default",
    ):
        if min_interval < 0:
            raise ConfigurationError("min_interval must be >= 0", {"min_interval": min_interval})

        self.min_interval = min_interval
        self.default_options = (default_options or DEFAULT_OPTIONS).validate()
        self.is_retryable = is_retryable
        self.metrics = metrics
        self.name = name
        self.logger = get_logger(f"gateway.{name}")
        self._clock = clock
        self._sleep = sleep

        self._pending: Deque[QueuedTask] = deque()
        self._is_draining = False
        self._last_dispatch: Optional[float] = None
        self._in_flight: Dict[str, "asyncio.Future[Any]"] = {}
        self._drain_task: Optional["asyncio.Task[None]"] = None
        self._closed = False

        self._stats = {"dispatched": 0, "retries": 0, "dedup_hits": 0, "exhausted": 0}

    async def submit(
        self,
        work: Work,
        key: Optional[str] = None,
        options: Optional[GatewayOptions] = None,
    ) -> Any:
        """Run ``work`` through the gateway and return its result.

        Raises ``RateLimitExceeded`` when every attempt was rate limited and
        re-raises any other exception from ``work`` unchanged.
        """
        opts = options.validate() if options is not None else self.default_options

        if not opts.use_queue:
            return await self._execute(work, opts, key=key, queued=False)

        if self._closed:
            raise ServiceError("Gateway closed", {"gateway": self.name})

        if key is None:
            key = uuid.uuid4().hex

        existing = self._in_flight.get(key)
        if existing is not None:
            self._stats["dedup_hits"] += 1
            self._count("gateway_dedup_hits_total")
            self.logger.debug("Attaching to in-flight request", key=key)
            return await asyncio.shield(existing)

        future: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        self._pending.append(QueuedTask(work=work, key=key, options=opts, future=future))
        self._update_queue_depth()
        self._ensure_draining()

        return await asyncio.shield(future)

    def _ensure_draining(self) -> None:
        if self._is_draining:
            return
        self._is_draining = True
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        try:
            while self._pending:
                task = self._pending.popleft()
                self._update_queue_depth()
                await self._run_task(task)
        finally:
            # No await between the emptiness check and this reset, so a
            # submission can never observe a stale True here.
            self._is_draining = False

    async def _run_task(self, task: QueuedTask) -> None:
        try:
            await self._wait_for_slot()
            result = await self._execute(task.work, task.options, key=task.key, queued=True)
        except asyncio.CancelledError as exc:
            if self._drain_cancelled():
                self._settle(task, error=ServiceError("Gateway closed", {"gateway": self.name}))
                raise
            # raised by the work itself; the drain loop carries on
            self.logger.warning("Request cancelled by upstream call", key=task.key)
            error = UpstreamError(service=self.name, message="Request was cancelled")
            error.__cause__ = exc
            self._settle(task, error=error)
        except Exception as exc:
            self._settle(task, error=exc)
        else:
            self._settle(task, result=result)

    def _drain_cancelled(self) -> bool:
        if self._closed:
            return True
        current = asyncio.current_task()
        cancelling = getattr(current, "cancelling", None)  # Python 3.11+
        return bool(cancelling is not None and cancelling())

    def _settle(self, task: QueuedTask, result: Any = None, error: Optional[BaseException] = None) -> None:
        if self._in_flight.get(task.key) is task.future:
            del self._in_flight[task.key]

        if task.future.done():
            return
        if error is not None:
            task.future.set_exception(error)
            # mark retrieved; every waiter may already be gone
            task.future.exception()
        else:
            task.future.set_result(result)

    async def _wait_for_slot(self) -> None:
        if self._last_dispatch is None:
            return
        elapsed = self._clock() - self._last_dispatch
        if elapsed < self.min_interval:
            wait = self.min_interval - elapsed
            self.logger.info(
                "Waiting before next request to respect rate limits",
                wait_seconds=round(wait, 3)
            )
            await self._sleep(wait)

    async def _execute(self, work: Work, options: GatewayOptions, key: Optional[str], queued: bool) -> Any:
        attempt = 0
        while True:
            if queued:
                self._last_dispatch = self._clock()
            self._stats["dispatched"] += 1
            self._count("gateway_dispatch_total", mode="queue" if queued else "direct")
            self.logger.debug("Dispatching request", key=key, attempt=attempt + 1, queued=queued)

            try:
                result = await self._call(work, options)
            except Exception as exc:
                if not self.is_retryable(exc):
                    raise

                if attempt >= options.max_retries:
                    self._stats["exhausted"] += 1
                    self._count("gateway_rate_limit_exhausted_total")
                    self.logger.error(
                        "Rate limit exceeded after all attempts",
                        key=key,
                        attempts=attempt + 1
                    )
                    raise RateLimitExceeded(
                        f"Rate limit exceeded after {attempt + 1} attempts",
                        last_error=exc,
                        attempts=attempt + 1
                    ) from exc

                delay = compute_backoff_delay(attempt, options)
                self._stats["retries"] += 1
                self._count("gateway_retries_total")
                self.logger.warning(
                    "Rate limit hit, retrying",
                    key=key,
                    delay_seconds=delay,
                    attempt=attempt + 1,
                    max_attempts=options.max_retries + 1
                )
                # Retries wait the backoff delay only, even when it is shorter
                # than min_interval; the next task is still paced from here.
                await self._sleep(delay)
                attempt += 1
                continue

            if attempt > 0:
                self.logger.info("Retry succeeded", key=key, attempt=attempt + 1)
            return result

    async def _call(self, work: Work, options: GatewayOptions) -> Any:
        if options.timeout is None:
            return await work()
        try:
            return await asyncio.wait_for(work(), timeout=options.timeout)
        except asyncio.TimeoutError as exc:
            raise UpstreamError(
                service=self.name,
                message=f"Request timed out after {options.timeout}s",
                details={"timeout": options.timeout}
            ) from exc

    def _count(self, metric_name: str, **labels: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter(metric_name, gateway=self.name, **labels)

    def _update_queue_depth(self) -> None:
        if self.metrics is not None:
            self.metrics.set_gauge("gateway_queue_depth", len(self._pending), gateway=self.name)

    def stats(self) -> Dict[str, Any]:
        """Snapshot of queue state and counters."""
        return {
            "name": self.name,
            "pending": len(self._pending),
            "is_draining": self._is_draining,
            "in_flight": len(self._in_flight),
            "last_dispatch": self._last_dispatch,
            "min_interval": self.min_interval,
            **self._stats,
        }

    async def close(self) -> None:
        """Stop the drain loop and reject everything still queued."""
        self._closed = True
        drain_task = self._drain_task
        if drain_task is not None and not drain_task.done():
            drain_task.cancel()
            try:
                await drain_task
            except asyncio.CancelledError:
                pass

        while self._pending:
            task = self._pending.popleft()
            self._settle(task, error=ServiceError("Gateway closed", {"gateway": self.name}))
        self._update_queue_depth()
        self.logger.info("Gateway closed", **self._stats)
