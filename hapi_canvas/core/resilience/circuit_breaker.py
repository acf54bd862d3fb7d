"""
Circuit Breaker for the outbound Canvas request queue.

MECHANISM OF ACTION:
-------------------
1.  **Local State**:
    One breaker per rate limiter instance, owned and mutated only by it. The
    state is a consecutive-failure counter, an open flag and the time the
    breaker may close again.

2.  **State Transitions**:
    - **CLOSED**: Requests are allowed.
      - On Failure (non-retryable, or retries exhausted): counter increments.
      - On Success: counter decays by one (floor zero).
      - Threshold Reached: counter >= threshold -> OPEN for the cooldown.

    - **OPEN**: Canvas is treated as down. The rate limiter rejects every
      queued unit with ``CircuitOpenError`` without calling Canvas.
      - Recovery: the first check at or after ``reopen_at`` closes the
        breaker and resets the counter to zero.

There is no half-open probe: once the cooldown has elapsed, normal
processing resumes and the next failures start counting from zero.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass

from hapi_canvas.core.config.constants import (
    CB_FAILURE_THRESHOLD,
    CB_RECOVERY_TIMEOUT,
    CircuitState,
)
from hapi_canvas.core.exceptions import CircuitOpenError
from hapi_canvas.core.logging.logger import get_logger
from hapi_canvas.core.observability import ClientObserver, LifecycleEvent, notify

logger = get_logger(__name__)


@dataclass
class CircuitSnapshot:
    """Point-in-time view of the breaker."""

    consecutive_failures: int
    is_open: bool
    reopen_at: float | None

    @property
    def state(self) -> CircuitState:
        return CircuitState.OPEN if self.is_open else CircuitState.CLOSED


class CircuitBreaker:
    """
    In-process consecutive-failure circuit breaker.

    Args:
        name: Label used in logs and errors
        failure_threshold: Failures that open the breaker
        recovery_timeout: Seconds the breaker stays open
        clock: Monotonic clock (seconds), injectable for tests
        observer: Lifecycle observer notified on open/close
    """

    def __init__(
        self,
        name: str = "canvas",
        failure_threshold: int = CB_FAILURE_THRESHOLD,
        recovery_timeout: float = CB_RECOVERY_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        observer: ClientObserver | None = None,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.name = name
        self._threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._clock = clock
        self._observer = observer

        self._failures = 0
        self._is_open = False
        self._reopen_at: float | None = None

    @property
    def failure_threshold(self) -> int:
        return self._threshold

    @property
    def recovery_timeout(self) -> float:
        return self._recovery_timeout

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def is_open(self) -> bool:
        """Open flag without applying the cooldown (non-mutating)."""
        return self._is_open

    def get_state(self) -> CircuitState:
        """Current state after applying an elapsed cooldown."""
        self._maybe_close()
        return CircuitState.OPEN if self._is_open else CircuitState.CLOSED

    def should_allow_request(self) -> bool:
        """
        Determines if queued work may run.

        Logic:
        1. If OPEN and the cooldown has elapsed -> close, reset, allow.
        2. If OPEN -> block.
        3. Otherwise allow.
        """
        self._maybe_close()
        return not self._is_open

    def check(self) -> None:
        """Raise CircuitOpenError if work is currently blocked."""
        if not self.should_allow_request():
            raise CircuitOpenError(
                reopen_at=self._reopen_at,
                details={"breaker": self.name, "failures": self._failures},
            )

    def record_success(self) -> None:
        """Decay the failure counter by one (floor zero)."""
        if self._failures > 0:
            self._failures -= 1

    def record_failure(self) -> None:
        """Count a failure; open the breaker once the threshold is reached."""
        self._failures += 1
        logger.warning(
            "Circuit recorded failure",
            breaker=self.name,
            failures=self._failures,
            threshold=self._threshold,
        )
        if self._failures >= self._threshold and not self._is_open:
            self._is_open = True
            self._reopen_at = self._clock() + self._recovery_timeout
            notify(
                self._observer,
                LifecycleEvent.CIRCUIT_OPENED,
                breaker=self.name,
                failures=self._failures,
                cooldown_seconds=self._recovery_timeout,
            )

    def reset(self) -> None:
        """Force the breaker closed (tests, manual recovery)."""
        was_open = self._is_open
        self._failures = 0
        self._is_open = False
        self._reopen_at = None
        if was_open:
            notify(self._observer, LifecycleEvent.CIRCUIT_CLOSED, breaker=self.name, forced=True)

    def snapshot(self) -> CircuitSnapshot:
        return CircuitSnapshot(
            consecutive_failures=self._failures,
            is_open=self._is_open,
            reopen_at=self._reopen_at,
        )

    def _maybe_close(self) -> None:
        if self._is_open and self._reopen_at is not None and self._clock() >= self._reopen_at:
            self._is_open = False
            self._failures = 0
            self._reopen_at = None
            notify(self._observer, LifecycleEvent.CIRCUIT_CLOSED, breaker=self.name)
