"""
Rate Limiting Exceptions

Local errors raised by the outbound request queue. Canvas's own 429 response
is classified as CanvasRateLimitError in the api module.
"""

from hapi_canvas.core.config.constants import ErrorKind
from hapi_canvas.core.exceptions.base import CanvasClientError


class RateLimiterError(CanvasClientError):
    """Base exception for rate limiter errors."""
    pass


class QueueClearedError(RateLimiterError):
    """
    Raised for units still waiting when the queue is cleared or reset.
    """

    kind = ErrorKind.QUEUE_CLEARED

    def __init__(self, message: str = "Queue cleared", **kwargs):
        super().__init__(message, **kwargs)
