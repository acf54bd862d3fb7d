"""
Circuit Breaker Exceptions

All exceptions related to circuit breaker operations
"""

from typing import Any

from hapi_canvas.core.config.constants import ErrorKind
from hapi_canvas.core.exceptions.base import CanvasClientError


class CircuitBreakerError(CanvasClientError):
    """Base exception for circuit breaker errors."""
    pass


class CircuitOpenError(CircuitBreakerError):
    """
    Raised when the circuit breaker is open (fail fast).

    Produced locally, never by Canvas: after repeated failures the rate
    limiter rejects every queued unit with this error until the cooldown
    elapses. It is never retried internally.
    """

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(
        self,
        message: str = "Circuit breaker is open. Too many failures. Please try again later.",
        reopen_at: float | None = None,
        request_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, request_id=request_id, details=details)
        self.reopen_at = reopen_at
        if reopen_at is not None:
            self.details.setdefault("reopen_at", reopen_at)

    @property
    def user_message(self) -> str:
        return "Canvas is temporarily unavailable after repeated failures. Please try again shortly."
