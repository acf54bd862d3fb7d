"""
Cache-Related Exceptions

Cache failures never break the calling request: the response cache catches
these, logs them and degrades to a miss.
"""

from hapi_canvas.core.exceptions.base import CanvasClientError


class CacheError(CanvasClientError):
    """Base exception for cache-related errors."""
    pass


class CacheBackendError(CacheError):
    """
    Raised when the persistent cache tier (Redis) cannot be reached.

    Common causes:
    - Redis server is down
    - Network connectivity issues
    - Value could not be (de)serialized
    """
    pass
