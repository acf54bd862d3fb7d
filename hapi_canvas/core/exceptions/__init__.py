"""
Exception Module

Structured exception hierarchy for the Canvas client layer, organized by
theme.

Module Structure:
-----------------
- **base.py**: CanvasClientError base class + ConfigurationError
- **api.py**: Canvas HTTP error taxonomy + response classifier
- **circuit_breaker.py**: Circuit-open (fail fast) error
- **rate_limit.py**: Local queue errors
- **cache.py**: Cache backend errors (never propagated to callers)
- **credentials.py**: Credential lifecycle errors

Every propagated error carries ``kind`` (an ErrorKind) and ``user_message``.

Usage:
------
```python
from hapi_canvas.core.exceptions import CanvasRateLimitError, CircuitOpenError

try:
    courses = await client.get_courses()
except CircuitOpenError:
    ...
except CanvasClientError as exc:
    show(exc.kind, exc.user_message)
```
"""

from hapi_canvas.core.exceptions.api import (
    CanvasApiError,
    CanvasAuthenticationError,
    CanvasAuthorizationError,
    CanvasNetworkError,
    CanvasNotFoundError,
    CanvasRateLimitError,
    CanvasServerError,
    CanvasTokenExpiredError,
    CanvasValidationError,
    is_canvas_error,
    is_transient,
    parse_canvas_error,
    parse_retry_after,
    requires_reauth,
    requires_token_refresh,
)
from hapi_canvas.core.exceptions.base import CanvasClientError, ConfigurationError
from hapi_canvas.core.exceptions.cache import CacheBackendError, CacheError
from hapi_canvas.core.exceptions.circuit_breaker import CircuitBreakerError, CircuitOpenError
from hapi_canvas.core.exceptions.credentials import (
    CredentialError,
    CredentialStoreError,
    NotConnectedError,
    TokenRefreshError,
)
from hapi_canvas.core.exceptions.rate_limit import QueueClearedError, RateLimiterError

__all__ = [
    # Base
    "CanvasClientError",
    "ConfigurationError",
    # Canvas API
    "CanvasApiError",
    "CanvasAuthenticationError",
    "CanvasTokenExpiredError",
    "CanvasAuthorizationError",
    "CanvasNotFoundError",
    "CanvasRateLimitError",
    "CanvasServerError",
    "CanvasNetworkError",
    "CanvasValidationError",
    "parse_canvas_error",
    "parse_retry_after",
    "is_canvas_error",
    "is_transient",
    "requires_token_refresh",
    "requires_reauth",
    # Circuit Breaker
    "CircuitBreakerError",
    "CircuitOpenError",
    # Rate Limit
    "RateLimiterError",
    "QueueClearedError",
    # Cache
    "CacheError",
    "CacheBackendError",
    # Credentials
    "CredentialError",
    "CredentialStoreError",
    "NotConnectedError",
    "TokenRefreshError",
]
