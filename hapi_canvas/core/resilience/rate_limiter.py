"""
Canvas Rate Limiter

Token bucket limiter for outbound Canvas calls. Canvas grants a fixed hourly
quota per access token (600/hour by default); this keeps the client under it
while still allowing bursts up to the bucket capacity.

Algorithm:
1. ``enqueue`` places a unit of work in a priority queue (strict priority
   across tiers, FIFO within a tier) and returns a future
2. A single drain task (never more than one per limiter) pulls the head of
   the queue whenever a token is available
3. Tokens refill lazily at ``capacity / window`` per second, computed on each
   check; there is no background refill timer
4. Transient failures (429, 5xx, network) are re-queued at the front of
   their tier after a backoff, up to ``max_retries`` times; a server-sent
   Retry-After wins over the computed backoff
5. Non-retryable failures and exhausted retries count against the circuit
   breaker; while it is open every queued unit is rejected with
   CircuitOpenError

Priority never preempts a unit that is already executing, only queue order.
All bookkeeping happens between awaits on a single event loop, so queue and
bucket mutations are atomic without a lock; no lock is ever held across a
network call.
"""

import asyncio
import itertools
import random
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from hapi_canvas.core.config.constants import (
    HEADER_RATE_LIMIT,
    HEADER_RATE_REMAINING,
    RETRY_BASE_DELAY,
    RETRY_JITTER_RATIO,
    RETRY_MAX_DELAY,
    RequestPriority,
)
from hapi_canvas.core.config.settings import Settings, get_settings
from hapi_canvas.core.exceptions import (
    CanvasClientError,
    CanvasRateLimitError,
    CircuitOpenError,
    QueueClearedError,
    RateLimiterError,
    is_transient,
)
from hapi_canvas.core.logging.logger import get_logger
from hapi_canvas.core.observability import ClientObserver, LifecycleEvent, LoggingObserver, notify
from hapi_canvas.core.resilience.circuit_breaker import CircuitBreaker

logger = get_logger(__name__)

Work = Callable[[], Awaitable[Any]]


def compute_backoff(
    retry_count: int,
    base_delay: float = RETRY_BASE_DELAY,
    max_delay: float = RETRY_MAX_DELAY,
    jitter_ratio: float = RETRY_JITTER_RATIO,
    rng: random.Random | None = None,
) -> float:
    """
    Exponential backoff with symmetric jitter: 1s, 2s, 4s, 8s, 16s (capped), +/-20%.
    """
    delay = min(base_delay * (2**retry_count), max_delay)
    spread = (rng or random).uniform(-jitter_ratio, jitter_ratio)
    return max(0.0, delay * (1 + spread))


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


@dataclass
class RateBudget:
    """
    The token bucket.

    Invariant: 0 <= tokens <= capacity. Refill is lazy.
    """

    capacity: float
    tokens: float
    refill_rate: float  # tokens per second
    last_refill: float

    def refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def available(self, now: float) -> float:
        """Tokens that would be available at ``now`` (non-mutating)."""
        elapsed = max(0.0, now - self.last_refill)
        return min(self.capacity, self.tokens + elapsed * self.refill_rate)

    def has_token(self, now: float) -> bool:
        self.refill(now)
        return self.tokens >= 1

    def consume(self) -> None:
        self.tokens = max(0.0, self.tokens - 1)

    def seconds_until_token(self, now: float) -> float:
        if self.has_token(now):
            return 0.0
        return (1 - self.tokens) / self.refill_rate

    def lower_to(self, remaining: float) -> None:
        if remaining < self.tokens:
            self.tokens = max(0.0, min(self.capacity, remaining))


@dataclass(eq=False)
class QueuedUnit:
    """A pending unit of work and the future its caller awaits."""

    id: str
    execute: Work
    priority: RequestPriority
    enqueued_at: float
    future: asyncio.Future
    retry_count: int = 0


@dataclass
class RateLimitStatus:
    """Rate limit state as last reported by Canvas response headers."""

    limit: int
    remaining: int
    reset_at: datetime


@dataclass
class RateLimiterStatus:
    """Introspection snapshot returned by get_status()."""

    tokens_available: int
    capacity: int
    queue_length: int
    circuit_open: bool
    consecutive_failures: int = 0
    rate_limit_status: RateLimitStatus | None = None
    in_flight: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = {
            "tokens_available": self.tokens_available,
            "capacity": self.capacity,
            "queue_length": self.queue_length,
            "circuit_open": self.circuit_open,
            "consecutive_failures": self.consecutive_failures,
            "in_flight": self.in_flight,
            "rate_limit_status": None,
        }
        if self.rate_limit_status is not None:
            data["rate_limit_status"] = {
                "limit": self.rate_limit_status.limit,
                "remaining": self.rate_limit_status.remaining,
                "reset_at": self.rate_limit_status.reset_at.isoformat(),
            }
        return data


class TokenBucketRateLimiter:
    """
    Priority queue + token bucket + circuit breaker for one outbound API.

    Args:
        capacity: Requests allowed per window (bucket size)
        window_seconds: Time to refill an empty bucket
        max_retries: Re-queues allowed per unit for transient failures
        breaker: Circuit breaker (built from settings when omitted)
        clock: Monotonic clock in seconds, injectable for tests
        sleep: Coroutine used for every wait, injectable for tests
        rng: Random source for backoff jitter
        observer: Lifecycle observer
        settings: Settings used for any omitted argument
    """

    def __init__(
        self,
        capacity: int | None = None,
        window_seconds: float | None = None,
        max_retries: int | None = None,
        breaker: CircuitBreaker | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
        observer: ClientObserver | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        rate_settings = settings.rate_limit
        cb_settings = settings.circuit_breaker

        self._capacity = capacity or rate_settings.RATE_LIMIT_PER_HOUR
        self._window = window_seconds or rate_settings.RATE_LIMIT_WINDOW_SECONDS
        self._max_retries = (
            max_retries if max_retries is not None else rate_settings.RATE_LIMIT_MAX_RETRIES
        )

        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._observer = observer if observer is not None else LoggingObserver(__name__)
        self._breaker = breaker or CircuitBreaker(
            name="canvas",
            failure_threshold=cb_settings.CB_FAILURE_THRESHOLD,
            recovery_timeout=cb_settings.CB_RECOVERY_TIMEOUT,
            clock=clock,
            observer=self._observer,
        )

        self._budget = RateBudget(
            capacity=float(self._capacity),
            tokens=float(self._capacity),
            refill_rate=self._capacity / self._window,
            last_refill=clock(),
        )
        self._queue: list[QueuedUnit] = []
        self._ids = itertools.count(1)
        self._drain_task: asyncio.Task | None = None
        self._in_flight = False
        # Unit taken off the queue and not yet settled or requeued
        self._current: QueuedUnit | None = None
        self._rate_limit_status: RateLimitStatus | None = None

        logger.info(
            "Rate limiter initialized",
            capacity=self._capacity,
            window_seconds=self._window,
            refill_per_second=self._budget.refill_rate,
            max_retries=self._max_retries,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    def enqueue(self, work: Work, priority: RequestPriority = RequestPriority.NORMAL) -> asyncio.Future:
        """
        Queue a unit of work and return a future for its outcome.

        The unit is placed in the queue before this call returns, so units
        enqueued back to back are ordered purely by priority and arrival.
        Failures are delivered only through the returned future.

        Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        try:
            tier = RequestPriority(priority)
        except ValueError as exc:
            future.set_exception(RateLimiterError.from_exception(exc, f"Unknown request priority: {priority!r}"))
            return future

        unit = QueuedUnit(
            id=f"rl-{next(self._ids)}",
            execute=work,
            priority=tier,
            enqueued_at=self._clock(),
            future=future,
        )
        position = self._insert(unit)

        notify(
            self._observer,
            LifecycleEvent.ENQUEUED,
            unit_id=unit.id,
            priority=unit.priority.name,
            position=position,
            queue_length=len(self._queue),
        )

        if self._drain_task is None or self._drain_task.done():
            self._drain_task = loop.create_task(self._drain())
        return unit.future

    def get_status(self) -> RateLimiterStatus:
        """Non-mutating snapshot of the limiter."""
        snapshot = self._breaker.snapshot()
        return RateLimiterStatus(
            tokens_available=int(self._budget.available(self._clock())),
            capacity=self._capacity,
            queue_length=len(self._queue),
            circuit_open=snapshot.is_open,
            consecutive_failures=snapshot.consecutive_failures,
            rate_limit_status=self._rate_limit_status,
            in_flight=self._in_flight,
        )

    def parse_rate_headers(self, headers: Mapping[str, str]) -> RateLimitStatus | None:
        """
        Reconcile the bucket against Canvas's own accounting.

        When Canvas reports fewer remaining calls than the bucket holds, the
        bucket is lowered to match; it is never raised.
        """
        limit = _header(headers, HEADER_RATE_LIMIT)
        remaining = _header(headers, HEADER_RATE_REMAINING)
        if limit is None or remaining is None:
            return None
        try:
            limit_value = int(float(limit))
            remaining_value = int(float(remaining))
        except ValueError:
            logger.warning("Ignoring malformed rate limit headers", limit=limit, remaining=remaining)
            return None

        self._rate_limit_status = RateLimitStatus(
            limit=limit_value,
            remaining=remaining_value,
            reset_at=datetime.now(timezone.utc) + timedelta(seconds=self._window),
        )
        self._budget.refill(self._clock())
        self._budget.lower_to(remaining_value)
        logger.debug(
            "Rate limit status updated",
            limit=limit_value,
            remaining=remaining_value,
            tokens=self._budget.tokens,
        )
        return self._rate_limit_status

    def clear_queue(self) -> int:
        """Reject every waiting unit with QueueClearedError."""
        cleared = self._reject_all(lambda: QueueClearedError())
        notify(self._observer, LifecycleEvent.QUEUE_CLEARED, count=cleared)
        return cleared

    def reset(self) -> None:
        """Refill the bucket, clear the queue and close the breaker."""
        now = self._clock()
        self._budget.tokens = self._budget.capacity
        self._budget.last_refill = now
        self.clear_queue()
        self._breaker.reset()
        self._rate_limit_status = None
        logger.info("Rate limiter reset")

    async def aclose(self) -> None:
        """
        Clear the queue and stop the drain task.

        A unit that is running or waiting out a retry backoff is rejected
        with QueueClearedError along with the queued ones.
        """
        self.clear_queue()
        task, self._drain_task = self._drain_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ------------------------------------------------------------------
    # Queue mechanics
    # ------------------------------------------------------------------

    def _insert(self, unit: QueuedUnit) -> int:
        """Insert behind every unit of equal or higher priority."""
        for index, queued in enumerate(self._queue):
            if queued.priority < unit.priority:
                self._queue.insert(index, unit)
                return index
        self._queue.append(unit)
        return len(self._queue) - 1

    def _requeue(self, unit: QueuedUnit) -> None:
        """Insert at the front of the unit's own priority tier."""
        for index, queued in enumerate(self._queue):
            if queued.priority <= unit.priority:
                self._queue.insert(index, unit)
                return
        self._queue.append(unit)

    def _reject_all(self, make_error: Callable[[], BaseException]) -> int:
        rejected = 0
        while self._queue:
            unit = self._queue.pop(0)
            if not unit.future.done():
                unit.future.set_exception(make_error())
                rejected += 1
        return rejected

    async def _drain(self) -> None:
        try:
            await self._drain_queue()
        except asyncio.CancelledError:
            unit, self._current = self._current, None
            self._in_flight = False
            if unit is not None and not unit.future.done():
                unit.future.set_exception(QueueClearedError(details={"unit_id": unit.id}))
            raise

    async def _drain_queue(self) -> None:
        while self._queue:
            if not self._breaker.should_allow_request():
                snapshot = self._breaker.snapshot()
                count = self._reject_all(
                    lambda: CircuitOpenError(
                        reopen_at=snapshot.reopen_at,
                        details={"breaker": self._breaker.name},
                    )
                )
                notify(self._observer, LifecycleEvent.CIRCUIT_REJECTED, count=count)
                return

            while not self._budget.has_token(self._clock()):
                wait = self._budget.seconds_until_token(self._clock())
                notify(self._observer, LifecycleEvent.WAITING_FOR_TOKEN, wait_seconds=round(wait, 3))
                await self._sleep(wait)

            if not self._queue:
                return
            unit = self._queue.pop(0)
            if unit.future.done():
                # Caller gave up (cancelled) while queued
                continue

            self._budget.consume()
            notify(
                self._observer,
                LifecycleEvent.DEQUEUED,
                unit_id=unit.id,
                priority=unit.priority.name,
                waited_seconds=round(self._clock() - unit.enqueued_at, 3),
                tokens_remaining=int(self._budget.tokens),
                retry_count=unit.retry_count,
            )

            self._current = unit
            self._in_flight = True
            try:
                result = await unit.execute()
            except Exception as exc:
                self._in_flight = False
                await self._handle_failure(unit, exc)
            else:
                self._in_flight = False
                self._breaker.record_success()
                if not unit.future.done():
                    unit.future.set_result(result)
            self._current = None

    async def _handle_failure(self, unit: QueuedUnit, exc: Exception) -> None:
        error = self._classify(exc)

        if is_transient(error) and unit.retry_count < self._max_retries:
            delay = self._retry_delay(error, unit.retry_count)
            unit.retry_count += 1
            notify(
                self._observer,
                LifecycleEvent.RETRY_SCHEDULED,
                unit_id=unit.id,
                retry_count=unit.retry_count,
                delay_seconds=round(delay, 3),
                error_kind=error.kind.value,
            )
            await self._sleep(delay)
            self._requeue(unit)
            return

        self._breaker.record_failure()
        notify(
            self._observer,
            LifecycleEvent.UNIT_FAILED,
            unit_id=unit.id,
            retry_count=unit.retry_count,
            error_kind=error.kind.value,
            error=error.message,
        )
        if not unit.future.done():
            unit.future.set_exception(error)

    def _retry_delay(self, error: CanvasClientError, retry_count: int) -> float:
        if isinstance(error, CanvasRateLimitError) and error.retry_after is not None:
            return float(error.retry_after)
        return compute_backoff(retry_count, rng=self._rng)

    @staticmethod
    def _classify(exc: Exception) -> CanvasClientError:
        if isinstance(exc, CanvasClientError):
            return exc
        error = CanvasClientError.from_exception(exc)
        error.__cause__ = exc
        return error


# Convenience default instance for single-tenant scripts
_rate_limiter: TokenBucketRateLimiter | None = None


def get_rate_limiter() -> TokenBucketRateLimiter:
    """Get a process-wide default limiter (built lazily from settings)."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = TokenBucketRateLimiter()
    return _rate_limiter
