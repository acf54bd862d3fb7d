"""
Canvas Response Cache

Architecture:
    ResponseCache (Public API)
        ├── MemoryStorage (insertion-ordered, TTL per entry)
        ├── PersistentCacheBackend (optional Redis tier)
        └── ClientObserver (hit/miss/evict events)

Lookup order:
    1. Memory: hit if present and younger than its TTL; expired entries are
       removed on access
    2. Persistent tier (when enabled): hit is promoted into memory with its
       remaining lifetime
    3. Miss

A hit never extends an entry's lifetime. Eviction is by insertion order:
once the memory tier exceeds its cap the oldest-inserted key is dropped,
and re-setting an existing key keeps its original slot.

Failure semantics: a persistent-tier failure is logged and reported as a
miss (or a skipped write). Nothing raised by the cache reaches the caller's
request.
"""

import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from hapi_canvas.core.config.constants import CACHE_WILDCARD, RESOURCE_TTLS
from hapi_canvas.core.config.settings import Settings, get_settings
from hapi_canvas.core.logging.logger import get_logger
from hapi_canvas.core.observability import ClientObserver, LifecycleEvent, LoggingObserver, notify
from hapi_canvas.infrastructure.cache.redis_backend import PersistentCacheBackend

logger = get_logger(__name__)

_SINGLE_COURSE = re.compile(r"/courses/[^/]+$")
_SINGLE_ASSIGNMENT = re.compile(r"/assignments/[^/]+$")


def generate_key(endpoint: str, params: Mapping[str, Any] | None = None) -> str:
    """
    Canonical cache key: ``endpoint?k1=v1&k2=v2`` with params sorted by name.

    Equivalent requests produce the same key regardless of param order.
    """
    if not params:
        return endpoint
    query = "&".join(f"{name}={_format_param(params[name])}" for name in sorted(params))
    return f"{endpoint}?{query}"


def _format_param(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(_format_param(v) for v in value)
    return str(value)


def ttl_for_key(key: str, default_ttl: float) -> float:
    """Resource lifetime inferred from the path in a cache key."""
    if "/courses" in key and "/assignments" not in key:
        return RESOURCE_TTLS["course"] if _SINGLE_COURSE.search(key) else RESOURCE_TTLS["courses"]
    if "/assignments" in key:
        return (
            RESOURCE_TTLS["assignment"] if _SINGLE_ASSIGNMENT.search(key) else RESOURCE_TTLS["assignments"]
        )
    if "/submissions" in key:
        return RESOURCE_TTLS["submissions"]
    if "/calendar_events" in key:
        return RESOURCE_TTLS["calendar"]
    if "/modules" in key and "/items" in key:
        return RESOURCE_TTLS["module_items"]
    if "/modules" in key:
        return RESOURCE_TTLS["modules"]
    if "/analytics" in key:
        return RESOURCE_TTLS["analytics"]
    if "/users" in key:
        return RESOURCE_TTLS["user"]
    return default_ttl


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at >= self.ttl


class MemoryStorage:
    """
    In-memory storage with insertion-order eviction.

    Responsibility: hold entries, enforce max_size. No TTL logic here.

    Python dicts keep insertion order and overwriting a key keeps its slot,
    which is exactly the eviction order this cache wants.
    """

    def __init__(self, max_size: int):
        self._max_size = max_size
        self._entries: dict[str, CacheEntry] = {}

    @property
    def max_size(self) -> int:
        return self._max_size

    def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> list[str]:
        """Store an entry; returns the keys evicted to stay within max_size."""
        self._entries[key] = entry
        evicted = []
        while len(self._entries) > self._max_size:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            evicted.append(oldest)
        return evicted

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_containing(self, fragment: str) -> int:
        matches = [key for key in self._entries if fragment in key]
        for key in matches:
            del self._entries[key]
        return len(matches)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries)

    def size(self) -> int:
        return len(self._entries)


class ResponseCache:
    """
    Read-through cache for Canvas GET responses.

    Args:
        max_entries: Memory tier capacity
        default_ttl: Lifetime for keys that match no resource type (seconds)
        backend: Optional persistent tier
        persistent_enabled: Whether the persistent tier is consulted
        clock: Monotonic clock (seconds), injectable for tests
        observer: Lifecycle observer
        settings: Settings used for any omitted argument
    """

    def __init__(
        self,
        max_entries: int | None = None,
        default_ttl: float | None = None,
        backend: PersistentCacheBackend | None = None,
        persistent_enabled: bool | None = None,
        clock: Callable[[], float] = time.monotonic,
        observer: ClientObserver | None = None,
        settings: Settings | None = None,
    ):
        cache_settings = (settings or get_settings()).cache
        self._memory = MemoryStorage(max_entries or cache_settings.CACHE_MAX_ENTRIES)
        self._default_ttl = default_ttl or cache_settings.CACHE_DEFAULT_TTL
        self._backend = backend
        self._persistent = (
            persistent_enabled if persistent_enabled is not None else cache_settings.CACHE_PERSISTENT_ENABLED
        )
        self._clock = clock
        self._observer = observer if observer is not None else LoggingObserver(__name__)

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._persistent_hits = 0
        self._backend_errors = 0

    generate_key = staticmethod(generate_key)

    def ttl_for_key(self, key: str) -> float:
        return ttl_for_key(key, self._default_ttl)

    @property
    def persistent_active(self) -> bool:
        return self._persistent and self._backend is not None

    async def get(self, key: str) -> Any | None:
        """Cached value for ``key``, or None on miss or expiry."""
        entry = self._memory.get(key)
        if entry is not None:
            if not entry.is_expired(self._clock()):
                self._hits += 1
                notify(self._observer, LifecycleEvent.CACHE_HIT, key=key, tier="memory")
                return entry.value
            self._memory.delete(key)

        if self.persistent_active:
            found = await self._backend_call("get", key)
            if found is not None:
                value, remaining = found
                self._store_memory(key, value, remaining)
                self._hits += 1
                self._persistent_hits += 1
                notify(self._observer, LifecycleEvent.CACHE_HIT, key=key, tier="persistent")
                return value

        self._misses += 1
        notify(self._observer, LifecycleEvent.CACHE_MISS, key=key)
        return None

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store ``value``; lifetime is ``ttl`` or inferred from the key."""
        lifetime = ttl if ttl is not None else self.ttl_for_key(key)
        self._store_memory(key, value, lifetime)
        notify(
            self._observer,
            LifecycleEvent.CACHE_STORE,
            key=key,
            ttl_seconds=lifetime,
            size=self._memory.size(),
        )
        if self.persistent_active:
            await self._backend_call("set", key, value, lifetime)

    async def invalidate(self, key_or_pattern: str) -> int:
        """
        Delete one key, or every key matching a wildcard pattern.

        A pattern is any string containing ``*``; all wildcards are stripped
        and every key containing the remainder is deleted, e.g.
        ``/courses/42*`` drops ``/courses/42`` and ``/courses/42/assignments?...``.
        """
        if CACHE_WILDCARD in key_or_pattern:
            fragment = key_or_pattern.replace(CACHE_WILDCARD, "")
            removed = self._memory.delete_containing(fragment)
            if self.persistent_active:
                await self._backend_call("delete_matching", fragment)
        else:
            removed = int(self._memory.delete(key_or_pattern))
            if self.persistent_active:
                await self._backend_call("delete", key_or_pattern)

        notify(self._observer, LifecycleEvent.CACHE_INVALIDATE, pattern=key_or_pattern, count=removed)
        return removed

    async def clear(self) -> None:
        self._memory.clear()
        if self.persistent_active:
            await self._backend_call("clear")
        logger.info("Response cache cleared")

    def get_stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": self._memory.size(),
            "max_size": self._memory.max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 4) if total else 0.0,
            "evictions": self._evictions,
            "persistent_enabled": self.persistent_active,
            "persistent_hits": self._persistent_hits,
            "backend_errors": self._backend_errors,
        }

    def set_persistent(self, enabled: bool) -> None:
        """Turn the persistent tier on or off at runtime."""
        if enabled and self._backend is None:
            logger.warning("Persistent cache requested but no backend is configured")
        self._persistent = enabled
        logger.info("Persistent cache toggled", enabled=self.persistent_active)

    def _store_memory(self, key: str, value: Any, ttl: float) -> None:
        evicted = self._memory.set(key, CacheEntry(value=value, stored_at=self._clock(), ttl=ttl))
        for old_key in evicted:
            self._evictions += 1
            notify(self._observer, LifecycleEvent.CACHE_EVICT, key=old_key)

    async def _backend_call(self, operation: str, *args: Any) -> Any:
        try:
            return await getattr(self._backend, operation)(*args)
        except Exception as e:
            # Degrade to a miss; the request itself must not fail
            self._backend_errors += 1
            notify(
                self._observer,
                LifecycleEvent.CACHE_BACKEND_ERROR,
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
