"""
Redis Persistent Cache Backend

Optional second cache tier shared across processes. Entries are stored as
orjson documents under ``canvas:cache:<key>`` with a native Redis expiry, so
Redis itself drops stale entries.

Document layout:
    {"data": <cached value>, "expires_at": <unix epoch seconds>, "ttl": <seconds>}

``expires_at`` lets the memory tier promote an entry with its remaining
lifetime instead of a fresh one.

Errors are wrapped in CacheBackendError; the ResponseCache logs them and
treats the operation as a miss.
"""

import time
from typing import Any, Protocol, runtime_checkable

import orjson
import redis.asyncio as redis
from redis.exceptions import RedisError

from hapi_canvas.core.config.constants import REDIS_KEY_CACHE_RESPONSE
from hapi_canvas.core.config.settings import Settings, get_settings
from hapi_canvas.core.exceptions import CacheBackendError
from hapi_canvas.core.logging.logger import get_logger

logger = get_logger(__name__)

_GLOB_SPECIALS = "\\*?[]"


def escape_glob(value: str) -> str:
    """Escape Redis MATCH glob metacharacters."""
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIALS else ch for ch in value)


@runtime_checkable
class PersistentCacheBackend(Protocol):
    """Second cache tier. Values returned by get() carry their remaining TTL."""

    async def get(self, key: str) -> tuple[Any, float] | None:
        ...

    async def set(self, key: str, value: Any, ttl: float) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def delete_matching(self, fragment: str) -> int:
        ...

    async def clear(self) -> int:
        ...


class RedisCacheBackend:
    """
    Redis implementation of PersistentCacheBackend.

    Args:
        client: Existing redis.asyncio client (built from settings when omitted)
        key_prefix: Namespace for cache keys
        settings: Settings used to build the client
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        key_prefix: str = REDIS_KEY_CACHE_RESPONSE,
        settings: Settings | None = None,
    ):
        if client is None:
            redis_settings = (settings or get_settings()).redis
            client = redis.Redis(
                host=redis_settings.REDIS_HOST,
                port=redis_settings.REDIS_PORT,
                db=redis_settings.REDIS_DB,
                password=redis_settings.REDIS_PASSWORD,
                socket_timeout=redis_settings.REDIS_SOCKET_TIMEOUT,
                decode_responses=True,
            )
        self._client = client
        self._prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> tuple[Any, float] | None:
        try:
            raw = await self._client.get(self._key(key))
        except RedisError as e:
            raise CacheBackendError.from_exception(e, message="Redis cache read failed", key=key)
        if raw is None:
            return None

        try:
            document = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            logger.warning("Discarding corrupt cache document", key=key, error=str(e))
            await self.delete(key)
            return None

        remaining = float(document.get("expires_at", 0)) - time.time()
        if remaining <= 0:
            return None
        return document.get("data"), remaining

    async def set(self, key: str, value: Any, ttl: float) -> None:
        try:
            payload = orjson.dumps(
                {"data": value, "expires_at": time.time() + ttl, "ttl": ttl}
            ).decode("utf-8")
        except TypeError as e:
            raise CacheBackendError.from_exception(e, message="Value is not JSON serializable", key=key)

        try:
            await self._client.set(self._key(key), payload, ex=max(1, int(ttl)))
        except RedisError as e:
            raise CacheBackendError.from_exception(e, message="Redis cache write failed", key=key)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except RedisError as e:
            raise CacheBackendError.from_exception(e, message="Redis cache delete failed", key=key)

    async def delete_matching(self, fragment: str) -> int:
        """Delete every entry whose key contains ``fragment``."""
        return await self._delete_pattern(f"{escape_glob(self._prefix)}:*{escape_glob(fragment)}*")

    async def clear(self) -> int:
        return await self._delete_pattern(f"{escape_glob(self._prefix)}:*")

    async def _delete_pattern(self, pattern: str) -> int:
        try:
            keys = [key async for key in self._client.scan_iter(match=pattern)]
            if not keys:
                return 0
            return await self._client.delete(*keys)
        except RedisError as e:
            raise CacheBackendError.from_exception(e, message="Redis cache scan failed", pattern=pattern)

    async def close(self) -> None:
        await self._client.aclose()
