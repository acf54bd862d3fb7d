"""
Cache Module

Response cache for Canvas GET calls: in-memory tier plus an optional Redis
tier.
"""

from .redis_backend import PersistentCacheBackend, RedisCacheBackend
from .response_cache import (
    CacheEntry,
    MemoryStorage,
    ResponseCache,
    generate_key,
    ttl_for_key,
)

__all__ = [
    "ResponseCache",
    "MemoryStorage",
    "CacheEntry",
    "generate_key",
    "ttl_for_key",
    "PersistentCacheBackend",
    "RedisCacheBackend",
]
