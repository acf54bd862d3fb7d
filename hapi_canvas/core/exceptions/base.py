"""
Base Exception Class

Root of the Canvas client error hierarchy. Themed modules (api, credentials,
cache, rate_limit, circuit_breaker) hold the concrete errors; this module
only defines what every one of them carries.
"""

from typing import Any

from hapi_canvas.core.config.constants import ErrorKind


class CanvasClientError(Exception):
    """
    Base exception for every error the Canvas client surfaces.

    Each error carries:
    - ``kind``: an ErrorKind the caller can switch on without isinstance chains
    - ``user_message``: short text safe to show in a UI
    - ``request_id``: correlation id from the logging context, when known
    - ``details``: free-form context for logs (endpoint, retry count ...)

    Example:
        raise CanvasServerError(
            "Canvas returned 503",
            status=503,
            details={"endpoint": "/courses", "retry_count": 3},
        )
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self, message: str, request_id: str | None = None, details: dict[str, Any] | None = None
    ):
        self.message = message
        self.request_id = request_id
        # Own copy; callers often pass a shared dict
        self.details = dict(details or {})
        super().__init__(self.message)

    @property
    def is_retryable(self) -> bool:
        return False

    @property
    def user_message(self) -> str:
        return self.message or "An error occurred while communicating with Canvas."

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for structured logs and host-application responses."""
        return {
            "error_type": type(self).__name__,
            "kind": self.kind.value,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "details": self.details,
        }

    def with_suggestion(self, suggestion: str) -> "CanvasClientError":
        """Attach a remediation hint (e.g. "Reconnect your Canvas account"); chainable."""
        self.details["suggestion"] = suggestion
        return self

    def with_context(self, **context) -> "CanvasClientError":
        """Merge extra fields into ``details``; chainable."""
        self.details.update(context)
        return self

    def __repr__(self) -> str:
        parts = [f"message={self.message!r}", f"kind={self.kind.value!r}"]
        if self.request_id:
            parts.append(f"request_id={self.request_id!r}")
        if self.details:
            parts.append(f"details={self.details!r}")
        return f"{type(self).__name__}({', '.join(parts)})"

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        message: str | None = None,
        request_id: str | None = None,
        **details,
    ) -> "CanvasClientError":
        """
        Wrap a third-party exception (redis, pydantic ...) in this error class.

        The original class name and text are kept in ``details``; callers
        chain with ``raise ... from exc`` where the traceback matters.

        Example:
            >>> try:
            ...     await redis_client.get(key)
            ... except RedisError as e:
            ...     raise CacheBackendError.from_exception(e, key=key)
        """
        wrapped_details = {
            "original_error": type(exc).__name__,
            "original_message": str(exc),
        }
        wrapped_details.update(details)
        return cls(message or str(exc) or type(exc).__name__, request_id=request_id, details=wrapped_details)


class ConfigurationError(CanvasClientError):
    """A required setting is missing or unusable (e.g. no OAuth client id for refresh)."""
