"""
Unit Tests for ResilientApiClient

End-to-end behaviour of the composed client against a scripted Canvas
server: caching, token handling, retries, pagination and the resource
helpers.
"""

import httpx
import pytest

from hapi_canvas.client import ResilientApiClient, build_client
from hapi_canvas.core.config.constants import ConnectionState
from hapi_canvas.core.exceptions import (
    CanvasNotFoundError,
    CanvasTokenExpiredError,
    NotConnectedError,
)
from hapi_canvas.core.observability import LifecycleEvent
from hapi_canvas.core.resilience import TokenBucketRateLimiter
from hapi_canvas.infrastructure.auth import (
    CanvasUser,
    InMemoryCredentialStore,
    TokenExchangeResult,
    TokenLifecycleManager,
)
from hapi_canvas.infrastructure.cache import ResponseCache

API = "https://canvas.test/api/v1"
TOKEN_PATH = "/login/oauth2/token"
EXPIRED_BODY = {"errors": [{"message": "Access token expired"}]}


def grant(access_token="7~first"):
    return TokenExchangeResult(
        access_token=access_token,
        refresh_token="7~refresh",
        expires_in=3600,
        user=CanvasUser(id=42),
    )


def json_route(body, status=200, headers=None):
    return lambda request: httpx.Response(status, json=body, headers=headers)


@pytest.fixture
async def client(http_client, fake_clock, wall_clock, seeded_rng, stats_observer, test_settings):
    tokens = TokenLifecycleManager(
        InMemoryCredentialStore(),
        user_id="u1",
        http_client=http_client,
        now=wall_clock,
        sleep=fake_clock.sleep,
        settings=test_settings,
    )
    limiter = TokenBucketRateLimiter(
        clock=fake_clock,
        sleep=fake_clock.sleep,
        rng=seeded_rng,
        observer=stats_observer,
        settings=test_settings,
    )
    cache = ResponseCache(clock=fake_clock, observer=stats_observer, settings=test_settings)
    api_client = ResilientApiClient(
        tokens,
        limiter,
        cache,
        http_client=http_client,
        observer=stats_observer,
        settings=test_settings,
    )
    yield api_client
    await api_client.aclose()


@pytest.fixture
async def connected(client):
    await client.token_manager.store_token(grant())
    return client


@pytest.mark.unit
class TestRequest:
    @pytest.mark.asyncio
    async def test_cached_get_hits_network_once(self, connected, canvas_stub):
        canvas_stub.route("GET", "/api/v1/courses/1", json_route({"id": 1, "name": "Biology"}))

        first = await connected.request("/courses/1")
        second = await connected.request("/courses/1")

        assert first.data == second.data == {"id": 1, "name": "Biology"}
        assert first.from_cache is False
        assert second.from_cache is True
        assert len(canvas_stub.calls("/api/v1/courses/1")) == 1

    @pytest.mark.asyncio
    async def test_bearer_and_params_are_sent(self, connected, canvas_stub):
        canvas_stub.route("GET", "/api/v1/courses", json_route([]))

        await connected.request("/courses", params={"enrollment_state": "active"})

        sent = canvas_stub.calls("/api/v1/courses")[0]
        assert sent.headers["Authorization"] == "Bearer 7~first"
        assert sent.url.params["enrollment_state"] == "active"

    @pytest.mark.asyncio
    async def test_non_get_is_not_cached(self, connected, canvas_stub):
        canvas_stub.route("POST", "/api/v1/courses/1/assignments", json_route({"id": 9}, status=201))

        for _ in range(2):
            response = await connected.request("/courses/1/assignments", method="post", json={"name": "Essay"})
            assert response.status == 201

        assert len(canvas_stub.calls("/api/v1/courses/1/assignments", "POST")) == 2
        assert connected.get_cache_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_no_credential_raises_not_connected(self, client, canvas_stub, stats_observer):
        with pytest.raises(NotConnectedError) as exc_info:
            await client.request("/courses")

        assert exc_info.value.details["suggestion"] == "Reconnect your Canvas account"
        assert canvas_stub.requests == []
        assert client.rate_limiter.breaker.snapshot().consecutive_failures == 0
        assert stats_observer.count(LifecycleEvent.REQUEST_FAILED) == 1

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, connected, canvas_stub):
        with pytest.raises(CanvasNotFoundError):
            await connected.request("/courses/404")

        assert len(canvas_stub.calls("/api/v1/courses/404")) == 1

    @pytest.mark.asyncio
    async def test_rate_limited_request_waits_for_retry_after(self, connected, canvas_stub, fake_clock):
        responses = [
            httpx.Response(429, headers={"Retry-After": "2"}, json={"errors": [{"message": "Throttled"}]}),
            httpx.Response(200, json=[{"id": 1}]),
        ]
        canvas_stub.route("GET", "/api/v1/courses", lambda request: responses.pop(0))

        response = await connected.request("/courses")

        assert response.data == [{"id": 1}]
        assert fake_clock.sleeps == [2.0]
        assert len(canvas_stub.calls("/api/v1/courses")) == 2

    @pytest.mark.asyncio
    async def test_rate_headers_lower_the_bucket(self, connected, canvas_stub):
        headers = {"X-Rate-Limit-Limit": "700", "X-Rate-Limit-Remaining": "3"}
        canvas_stub.route("GET", "/api/v1/courses", json_route([], headers=headers))

        await connected.request("/courses")

        status = connected.rate_limiter.get_status()
        assert status.tokens_available <= 3
        assert status.rate_limit_status.remaining == 3


@pytest.mark.unit
class TestTokenExpiry:
    @pytest.mark.asyncio
    async def test_expired_rejection_refreshes_and_retries_once(self, connected, canvas_stub):
        canvas_stub.route(
            "POST", TOKEN_PATH, json_route({"access_token": "7~second", "expires_in": 3600})
        )

        def courses(request):
            if request.headers["Authorization"] == "Bearer 7~first":
                return httpx.Response(401, json=EXPIRED_BODY)
            return httpx.Response(200, json=[{"id": 1}])

        canvas_stub.route("GET", "/api/v1/courses", courses)

        response = await connected.request("/courses")

        assert response.data == [{"id": 1}]
        assert len(canvas_stub.calls(TOKEN_PATH, "POST")) == 1
        attempts = canvas_stub.calls("/api/v1/courses")
        assert [r.headers["Authorization"] for r in attempts] == ["Bearer 7~first", "Bearer 7~second"]

    @pytest.mark.asyncio
    async def test_second_expired_rejection_is_raised(self, connected, canvas_stub):
        canvas_stub.route(
            "POST", TOKEN_PATH, json_route({"access_token": "7~second", "expires_in": 3600})
        )
        canvas_stub.route("GET", "/api/v1/courses", json_route(EXPIRED_BODY, status=401))

        with pytest.raises(CanvasTokenExpiredError):
            await connected.request("/courses")

        assert len(canvas_stub.calls("/api/v1/courses")) == 2

    @pytest.mark.asyncio
    async def test_failed_refresh_raises_not_connected(self, connected, canvas_stub):
        canvas_stub.route("POST", TOKEN_PATH, json_route({"error": "invalid_grant"}, status=400))
        canvas_stub.route("GET", "/api/v1/courses", json_route(EXPIRED_BODY, status=401))

        with pytest.raises(NotConnectedError):
            await connected.request("/courses")

        assert connected.token_manager.state == ConnectionState.INVALID


@pytest.mark.unit
class TestPagination:
    @pytest.mark.asyncio
    async def test_follows_next_links(self, connected, canvas_stub):
        def courses(request):
            page = int(request.url.params.get("page", "1"))
            headers = {}
            if page < 3:
                headers["Link"] = f'<{API}/courses?page={page + 1}&per_page=2>; rel="next"'
            return httpx.Response(200, json=[{"page": page}], headers=headers)

        canvas_stub.route("GET", "/api/v1/courses", courses)

        results = await connected.fetch_all_pages("/courses", page_size=2)

        assert results == [{"page": 1}, {"page": 2}, {"page": 3}]
        assert canvas_stub.calls("/api/v1/courses")[0].url.params["per_page"] == "2"

        # Aggregate is cached under the first-page key
        assert await connected.fetch_all_pages("/courses", page_size=2) == results
        assert len(canvas_stub.calls("/api/v1/courses")) == 3

    @pytest.mark.asyncio
    async def test_cyclic_next_link_stops_at_page_ceiling(self, connected, canvas_stub):
        headers = {"Link": f'<{API}/courses?page=2&per_page=100>; rel="next"'}
        canvas_stub.route("GET", "/api/v1/courses", json_route([{"id": 1}], headers=headers))

        results = await connected.fetch_all_pages("/courses")

        assert len(results) == 10
        assert len(canvas_stub.calls("/api/v1/courses")) == 10

    @pytest.mark.asyncio
    async def test_page_size_is_capped(self, connected, canvas_stub):
        canvas_stub.route("GET", "/api/v1/courses", json_route([]))

        await connected.fetch_all_pages("/courses", page_size=500)

        assert canvas_stub.calls("/api/v1/courses")[0].url.params["per_page"] == "100"


@pytest.mark.unit
class TestResourceHelpers:
    @pytest.mark.asyncio
    async def test_courses_include_term_and_students(self, connected, canvas_stub):
        canvas_stub.route("GET", "/api/v1/courses", json_route([{"id": 1}]))

        assert await connected.get_courses(enrollment_state="active") == [{"id": 1}]

        params = canvas_stub.calls("/api/v1/courses")[0].url.params
        assert params.get_list("include[]") == ["total_students", "term"]
        assert params["enrollment_state"] == "active"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "call,path",
        [
            (lambda c: c.get_course("7"), "/api/v1/courses/7"),
            (lambda c: c.get_assignment("7", "3"), "/api/v1/courses/7/assignments/3"),
            (lambda c: c.get_course_analytics("7"), "/api/v1/courses/7/analytics/student_summaries"),
            (lambda c: c.get_user_profile(), "/api/v1/users/self"),
        ],
    )
    async def test_single_resource_paths(self, connected, canvas_stub, call, path):
        canvas_stub.route("GET", path, json_route({"ok": True}))

        assert await call(connected) == {"ok": True}
        assert len(canvas_stub.calls(path)) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "call,path",
        [
            (lambda c: c.get_assignments("7"), "/api/v1/courses/7/assignments"),
            (lambda c: c.get_submissions("7", "3"), "/api/v1/courses/7/assignments/3/submissions"),
            (lambda c: c.get_calendar_events("2026-01-01"), "/api/v1/calendar_events"),
            (lambda c: c.get_modules("7"), "/api/v1/courses/7/modules"),
            (lambda c: c.get_module_items("7", "5"), "/api/v1/courses/7/modules/5/items"),
        ],
    )
    async def test_collection_paths(self, connected, canvas_stub, call, path):
        canvas_stub.route("GET", path, json_route([{"id": 1}, {"id": 2}]))

        assert await call(connected) == [{"id": 1}, {"id": 2}]
        assert len(canvas_stub.calls(path)) == 1


@pytest.mark.unit
class TestCacheAndStatus:
    @pytest.mark.asyncio
    async def test_invalidate_resource(self, connected, canvas_stub):
        canvas_stub.route("GET", "/api/v1/courses/1", json_route({"id": 1}))
        canvas_stub.route("GET", "/api/v1/users/self", json_route({"id": 42}))
        await connected.get_course("1")
        await connected.get_user_profile()

        assert await connected.invalidate_cache("courses", "1") == 1
        await connected.get_course("1")
        await connected.get_user_profile()

        assert len(canvas_stub.calls("/api/v1/courses/1")) == 2
        assert len(canvas_stub.calls("/api/v1/users/self")) == 1

    @pytest.mark.asyncio
    async def test_invalidate_all(self, connected, canvas_stub):
        canvas_stub.route("GET", "/api/v1/users/self", json_route({"id": 42}))
        await connected.get_user_profile()

        await connected.invalidate_cache("all")

        assert connected.get_cache_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_get_status(self, connected):
        await connected.token_manager.get_token()
        status = connected.get_status()

        assert status["connection"] == "connected"
        assert status["rate_limiter"]["capacity"] == 600
        assert status["rate_limiter"]["circuit_open"] is False
        assert status["cache"]["max_size"] == 100


@pytest.mark.unit
class TestBuildClient:
    @pytest.mark.asyncio
    async def test_wires_collaborators_from_settings(self, http_client, canvas_stub, fake_clock, test_settings):
        canvas_stub.route("GET", "/api/v1/users/self", json_route({"id": 42}))

        async with build_client(
            test_settings, user_id="u1", http_client=http_client, clock=fake_clock, sleep=fake_clock.sleep
        ) as client:
            assert client.api_base_url == API
            assert client.cache.persistent_active is False

            await client.token_manager.store_token(grant())
            assert await client.get_user_profile() == {"id": 42}

    @pytest.mark.asyncio
    async def test_persistent_tier_attached_when_enabled(self, http_client, in_memory_redis_client, test_settings):
        settings = test_settings.model_copy(update={"CACHE_PERSISTENT_ENABLED": True})

        client = build_client(settings, http_client=http_client, redis_client=in_memory_redis_client)
        try:
            assert client.cache.persistent_active is True
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_clients_do_not_share_state(self, http_client, test_settings):
        first = build_client(test_settings, user_id="a", http_client=http_client)
        second = build_client(test_settings, user_id="b", http_client=http_client)
        try:
            assert first.rate_limiter is not second.rate_limiter
            assert first.cache is not second.cache
        finally:
            await first.aclose()
            await second.aclose()
