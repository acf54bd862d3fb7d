"""
Canvas API Exceptions

Errors produced by classifying Canvas HTTP responses (or the absence of
one). Every failed call that crosses the client's public surface is one of
these, a local circuit/queue error, or a credential error; nothing
unclassified is propagated.
"""

from collections.abc import Mapping
from typing import Any

from hapi_canvas.core.config.constants import HEADER_RETRY_AFTER, ErrorKind
from hapi_canvas.core.exceptions.base import CanvasClientError

RETRYABLE_STATUSES = frozenset({0, 429, 500, 502, 503, 504})
SERVER_ERROR_STATUSES = frozenset({500, 502, 503, 504})

_STATUS_MESSAGES = {
    0: "Network error. Please check your internet connection.",
    401: "Canvas authentication failed. Please reconnect your Canvas account.",
    403: "Access denied. You may not have permission to access this Canvas resource.",
    404: "Canvas resource not found.",
    429: "Too many requests to Canvas. Please wait a moment and try again.",
    500: "Canvas service is temporarily unavailable. Please try again later.",
    502: "Canvas service is temporarily unavailable. Please try again later.",
    503: "Canvas service is temporarily unavailable. Please try again later.",
    504: "Canvas service is temporarily unavailable. Please try again later.",
}


class CanvasApiError(CanvasClientError):
    """
    Base error for a failed Canvas API call.

    Attributes:
        status: HTTP status (0 when no response was received)
        code: Short machine code (``rate_limit_exceeded``, ``not_found`` ...)
        response: Parsed response body, if any
    """

    def __init__(
        self,
        message: str,
        status: int = 0,
        code: str | None = None,
        response: Any = None,
        request_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, request_id=request_id, details=details)
        self.status = status
        self.code = code
        self.response = response
        self.details.setdefault("status", status)
        if code:
            self.details.setdefault("code", code)

    @property
    def is_retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES

    @property
    def user_message(self) -> str:
        return _STATUS_MESSAGES.get(
            self.status, self.message or "An error occurred while communicating with Canvas."
        )


class CanvasAuthenticationError(CanvasApiError):
    """
    Credential rejected or revoked (401).

    Not retried automatically; the OAuth authorization flow must run again.
    """

    kind = ErrorKind.AUTHENTICATION

    def __init__(self, message: str, code: str | None = None, response: Any = None, **kwargs):
        super().__init__(message, status=401, code=code, response=response, **kwargs)

    @property
    def is_retryable(self) -> bool:
        return False


class CanvasTokenExpiredError(CanvasAuthenticationError):
    """Access token has expired; the client refreshes once and retries."""

    kind = ErrorKind.TOKEN_EXPIRED

    def __init__(
        self, message: str = "Canvas access token has expired", response: Any = None, **kwargs
    ):
        super().__init__(message, code="token_expired", response=response, **kwargs)

    @property
    def user_message(self) -> str:
        return "Your Canvas connection has expired. Please reconnect your Canvas account."


class CanvasAuthorizationError(CanvasApiError):
    """Credential is valid but lacks permission for the resource (403)."""

    kind = ErrorKind.AUTHORIZATION

    def __init__(self, message: str, response: Any = None, **kwargs):
        super().__init__(message, status=403, code="forbidden", response=response, **kwargs)

    @property
    def is_retryable(self) -> bool:
        return False


class CanvasNotFoundError(CanvasApiError):
    """Requested resource does not exist (404)."""

    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        message: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        response: Any = None,
        **kwargs,
    ):
        super().__init__(message, status=404, code="not_found", response=response, **kwargs)
        self.resource_type = resource_type
        self.resource_id = resource_id

    @property
    def is_retryable(self) -> bool:
        return False

    @property
    def user_message(self) -> str:
        if self.resource_type:
            return f"Canvas {self.resource_type} not found."
        return "Canvas resource not found."


class CanvasRateLimitError(CanvasApiError):
    """
    Canvas rejected the call with 429.

    Retried by the rate limiter itself, honouring ``retry_after`` (seconds)
    when the response carried a Retry-After header.
    """

    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self, message: str, retry_after: float | None = None, response: Any = None, **kwargs
    ):
        super().__init__(
            message, status=429, code="rate_limit_exceeded", response=response, **kwargs
        )
        self.retry_after = retry_after
        if retry_after is not None:
            self.details.setdefault("retry_after", retry_after)

    @property
    def is_retryable(self) -> bool:
        return True

    @property
    def user_message(self) -> str:
        if self.retry_after:
            minutes = max(1, -(-int(self.retry_after) // 60))
            plural = "s" if minutes > 1 else ""
            return f"Rate limit exceeded. Please wait {minutes} minute{plural} before trying again."
        return "Rate limit exceeded. Please wait a moment and try again."


class CanvasServerError(CanvasApiError):
    """5xx response from Canvas; retried with backoff."""

    kind = ErrorKind.SERVER

    def __init__(self, message: str, status: int = 500, response: Any = None, **kwargs):
        super().__init__(message, status=status, code="server_error", response=response, **kwargs)

    @property
    def is_retryable(self) -> bool:
        return True

    @property
    def user_message(self) -> str:
        return "Canvas service is temporarily unavailable. Please try again in a few minutes."


class CanvasNetworkError(CanvasApiError):
    """No response was received (connect error, timeout, protocol error)."""

    kind = ErrorKind.NETWORK

    def __init__(self, message: str, original_error: BaseException | None = None, **kwargs):
        super().__init__(message, status=0, code="network_error", response=None, **kwargs)
        self.original_error = original_error

    @classmethod
    def from_exception(cls, exc: Exception, message: str | None = None, request_id=None, **details):
        error = cls(
            message or f"Network error: {exc.__class__.__name__}: {exc}",
            original_error=exc,
            request_id=request_id,
            details={"original_error": exc.__class__.__name__, **details},
        )
        return error

    @property
    def is_retryable(self) -> bool:
        return True

    @property
    def user_message(self) -> str:
        return "Network error. Please check your internet connection and try again."


class CanvasValidationError(CanvasApiError):
    """Malformed request (400/422); never retried."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        errors: Any = None,
        status: int = 400,
        response: Any = None,
        **kwargs,
    ):
        super().__init__(
            message, status=status, code="validation_error", response=response, **kwargs
        )
        self.errors = errors

    @property
    def is_retryable(self) -> bool:
        return False


def _extract_message(body: Any, fallback: str) -> tuple[str, Any]:
    """Pull a message and field errors out of a Canvas error body."""
    if isinstance(body, str):
        return (body.strip() or fallback), None
    if not isinstance(body, Mapping):
        return fallback, None

    errors = body.get("errors")
    message = body.get("message") or body.get("error")
    if not message and isinstance(errors, list):
        # Canvas: {"errors": [{"message": "Invalid access token."}]}
        for item in errors:
            if isinstance(item, Mapping) and item.get("message"):
                message = item["message"]
                break
    if not isinstance(message, str) or not message:
        message = fallback
    return message, errors


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds; HTTP-date values are ignored."""
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def parse_canvas_error(
    status: int,
    headers: Mapping[str, str] | None = None,
    body: Any = None,
    reason: str = "",
) -> CanvasApiError:
    """
    Classify a failed Canvas response into the error taxonomy.

    Args:
        status: HTTP status code
        headers: Response headers (case-insensitive mapping preferred)
        body: Decoded JSON body, raw text, or None
        reason: HTTP reason phrase used when the body carries no message

    Returns:
        The most specific CanvasApiError subclass for the response
    """
    headers = headers or {}
    message, errors = _extract_message(body, reason or f"Canvas request failed ({status})")

    if status == 401:
        lowered = message.lower()
        if "expired" in lowered or "invalid_token" in lowered:
            return CanvasTokenExpiredError(message, response=body)
        return CanvasAuthenticationError(message, response=body)
    if status == 403:
        return CanvasAuthorizationError(message, response=body)
    if status == 404:
        return CanvasNotFoundError(message, response=body)
    if status == 429:
        retry_after = parse_retry_after(headers.get(HEADER_RETRY_AFTER))
        return CanvasRateLimitError(message, retry_after=retry_after, response=body)
    if status in (400, 422):
        return CanvasValidationError(message, errors=errors, status=status, response=body)
    if status in SERVER_ERROR_STATUSES:
        return CanvasServerError(message, status=status, response=body)
    return CanvasApiError(message, status=status, response=body)


def is_canvas_error(error: BaseException) -> bool:
    """Check if error is a classified Canvas API error."""
    return isinstance(error, CanvasApiError)


def requires_token_refresh(error: BaseException) -> bool:
    """Check if error should trigger exactly one token refresh and retry."""
    return isinstance(error, CanvasTokenExpiredError)


def requires_reauth(error: BaseException) -> bool:
    """Check if the user has to run the authorization flow again."""
    return isinstance(error, CanvasAuthenticationError)


def is_transient(error: BaseException) -> bool:
    """Rate-limit, server and network errors are retried by the rate limiter."""
    return isinstance(error, (CanvasRateLimitError, CanvasServerError, CanvasNetworkError))
