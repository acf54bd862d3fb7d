"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.
"""

import asyncio
import fnmatch
import random
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from hapi_canvas.core.config.settings import Settings
from hapi_canvas.core.observability import StatsObserver

INSTANCE_URL = "https://canvas.test"
API_BASE = f"{INSTANCE_URL}/api/v1"


# ============================================================================
# Time Control
# ============================================================================


class FakeClock:
    """
    Deterministic monotonic clock.

    ``sleep`` advances the clock instead of waiting, then yields once to the
    event loop so other tasks can run.
    """

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeWallClock:
    """Aware-datetime clock for token expiry."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def wall_clock():
    return FakeWallClock()


@pytest.fixture
def seeded_rng():
    return random.Random(42)


# ============================================================================
# Mock Configuration Fixtures
# ============================================================================


@pytest.fixture
def test_settings():
    """
    Settings for testing, independent of the process environment defaults.
    """
    return Settings(
        CANVAS_INSTANCE_URL=INSTANCE_URL,
        CANVAS_CLIENT_ID="10000000000001",
        CANVAS_CLIENT_SECRET="test-client-secret",
        RATE_LIMIT_PER_HOUR=600,
        RATE_LIMIT_WINDOW_SECONDS=3600,
        RATE_LIMIT_MAX_RETRIES=3,
        CB_FAILURE_THRESHOLD=5,
        CB_RECOVERY_TIMEOUT=60,
        CACHE_DEFAULT_TTL=900,
        CACHE_MAX_ENTRIES=100,
        CACHE_PERSISTENT_ENABLED=False,
    )


@pytest.fixture
def stats_observer():
    return StatsObserver()


# ============================================================================
# Mock Infrastructure Fixtures
# ============================================================================


class InMemoryRedis:
    """
    In-memory redis.asyncio stub.

    Supports the subset of commands the cache backend and credential store
    use: get, set (with ex), delete, scan_iter.
    """

    def __init__(self):
        self.data: dict[str, str] = {}
        self.expiry: dict[str, int] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            from redis.exceptions import ConnectionError

            raise ConnectionError("redis unavailable")

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.data[key] = value
        if ex is not None:
            self.expiry[key] = ex
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.expiry.pop(key, None)
                removed += 1
        return removed

    async def scan_iter(self, match=None):
        self._check()
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self):
        pass


@pytest.fixture
def in_memory_redis_client():
    return InMemoryRedis()


class CanvasStub:
    """
    Scriptable Canvas server for httpx.MockTransport.

    Register handlers per (method, path); each handler receives the request
    and returns an httpx.Response. Every request is recorded.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], object] = {}
        self.requests: list[httpx.Request] = []

    def route(self, method: str, path: str, handler):
        self.routes[(method.upper(), path)] = handler

    def calls(self, path: str, method: str = "GET") -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"errors": [{"message": "The specified resource does not exist."}]})
        return handler(request)


@pytest.fixture
def canvas_stub():
    return CanvasStub()


@pytest.fixture
async def http_client(canvas_stub):
    client = httpx.AsyncClient(transport=httpx.MockTransport(canvas_stub.handle))
    yield client
    await client.aclose()
