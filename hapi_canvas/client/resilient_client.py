"""
Resilient Canvas API Client

Single call surface composing the response cache, the rate limiter and the
token manager.

Request flow (GET, cacheable):
    1. Cache lookup on ``endpoint?sorted-params``; a hit returns immediately
    2. Token from the TokenLifecycleManager (refreshed if expired);
       NotConnectedError if none is usable
    3. Network call submitted to the rate limiter at the caller's priority
       (retries/backoff/circuit breaking happen there)
    4. Canvas rate-limit headers reconcile the token bucket
    5. Non-2xx responses are classified; a token-expired classification
       forces one refresh and exactly one more attempt
    6. JSON body + Link header returned; the body is cached with its
       resource TTL

Pagination follows ``rel="next"`` links up to a hard page ceiling so a
cyclic or malformed chain always terminates.
"""

import functools
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from hapi_canvas.core.config.constants import (
    HEADER_LINK,
    CanvasEndpoints,
    RequestPriority,
)
from hapi_canvas.core.config.settings import Settings, get_settings
from hapi_canvas.core.exceptions import (
    CanvasClientError,
    CanvasTokenExpiredError,
    NotConnectedError,
)
from hapi_canvas.core.logging.logger import get_logger, get_request_id
from hapi_canvas.core.observability import ClientObserver, LifecycleEvent, LoggingObserver, notify
from hapi_canvas.core.resilience.rate_limiter import TokenBucketRateLimiter
from hapi_canvas.infrastructure.auth import (
    CredentialStore,
    InMemoryCredentialStore,
    TokenLifecycleManager,
)
from hapi_canvas.infrastructure.cache import RedisCacheBackend, ResponseCache
from hapi_canvas.infrastructure.http import (
    bearer,
    decode_body,
    parse_link_header,
    raise_for_canvas_status,
    relative_to_base,
    send,
)

logger = get_logger(__name__)


@dataclass
class CanvasResponse:
    """Result of request()."""

    data: Any
    headers: dict[str, str] = field(default_factory=dict)
    links: dict[str, str] = field(default_factory=dict)
    status: int = 200
    from_cache: bool = False


class ResilientApiClient:
    """
    Canvas REST client with caching, rate limiting and token refresh.

    All collaborators are explicit instances so several clients (one per
    user or tenant) can coexist without shared state.
    """

    def __init__(
        self,
        token_manager: TokenLifecycleManager,
        rate_limiter: TokenBucketRateLimiter,
        cache: ResponseCache,
        http_client: httpx.AsyncClient | None = None,
        api_base_url: str | None = None,
        observer: ClientObserver | None = None,
        settings: Settings | None = None,
    ):
        canvas = (settings or get_settings()).canvas
        self._tokens = token_manager
        self._limiter = rate_limiter
        self._cache = cache
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=canvas.CANVAS_REQUEST_TIMEOUT)
        self._api_base_url = (api_base_url or canvas.api_base_url).rstrip("/")
        self._max_pages = canvas.CANVAS_MAX_PAGES
        self._page_size = canvas.CANVAS_MAX_PAGE_SIZE
        self._default_page_size = canvas.CANVAS_DEFAULT_PAGE_SIZE
        self._observer = observer if observer is not None else LoggingObserver(__name__)

    @property
    def api_base_url(self) -> str:
        return self._api_base_url

    @property
    def rate_limiter(self) -> TokenBucketRateLimiter:
        return self._limiter

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def token_manager(self) -> TokenLifecycleManager:
        return self._tokens

    # ------------------------------------------------------------------
    # Core request path
    # ------------------------------------------------------------------

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        priority: RequestPriority = RequestPriority.NORMAL,
        cacheable: bool = True,
    ) -> CanvasResponse:
        """
        Perform one Canvas API call.

        Raises:
            NotConnectedError: No usable credential
            CircuitOpenError: Canvas is being shed after repeated failures
            CanvasApiError subclasses: classified Canvas failures
        """
        method = method.upper()
        use_cache = cacheable and method == "GET"
        cache_key = self._cache.generate_key(endpoint, params) if use_cache else None

        if use_cache:
            cached = await self._cache.get(cache_key)
            if cached is not None:
                return CanvasResponse(data=cached, from_cache=True)

        try:
            response = await self._authorized_call(method, endpoint, params, json, priority)
        except CanvasClientError as e:
            if e.request_id is None:
                e.request_id = get_request_id()
            notify(
                self._observer,
                LifecycleEvent.REQUEST_FAILED,
                method=method,
                endpoint=endpoint,
                error_kind=e.kind.value,
                error=e.message,
            )
            raise

        if use_cache and response.data is not None:
            await self._cache.set(cache_key, response.data)
        return response

    async def _authorized_call(
        self,
        method: str,
        endpoint: str,
        params: Mapping[str, Any] | None,
        json: Any,
        priority: RequestPriority,
    ) -> CanvasResponse:
        token = await self._require_token()
        try:
            return await self._limiter.enqueue(
                functools.partial(self._send, method, endpoint, params, json, token),
                priority,
            )
        except CanvasTokenExpiredError:
            logger.info("Canvas rejected token as expired, refreshing once", endpoint=endpoint)

        refreshed = await self._tokens.force_refresh(stale_token=token)
        if refreshed is None:
            raise NotConnectedError(details={"state": self._tokens.state.value, "endpoint": endpoint})
        return await self._limiter.enqueue(
            functools.partial(self._send, method, endpoint, params, json, refreshed.token),
            priority,
        )

    async def _require_token(self) -> str:
        access = await self._tokens.get_token()
        if access is None:
            raise NotConnectedError(details={"state": self._tokens.state.value}).with_suggestion(
                "Reconnect your Canvas account"
            )
        return access.token

    async def _send(
        self,
        method: str,
        endpoint: str,
        params: Mapping[str, Any] | None,
        json: Any,
        token: str,
    ) -> CanvasResponse:
        kwargs: dict[str, Any] = {"headers": bearer(token)}
        if params:
            kwargs["params"] = dict(params)
        if json is not None:
            kwargs["json"] = json

        response = await send(self._http, method, self._url(endpoint), **kwargs)
        self._limiter.parse_rate_headers(response.headers)
        raise_for_canvas_status(response)

        return CanvasResponse(
            data=decode_body(response),
            headers=dict(response.headers),
            links=parse_link_header(response.headers.get(HEADER_LINK)),
            status=response.status_code,
        )

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        if not endpoint.startswith("/"):
            endpoint = f"/{endpoint}"
        return f"{self._api_base_url}{endpoint}"

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    async def fetch_all_pages(
        self,
        endpoint: str,
        page_size: int | None = None,
        params: Mapping[str, Any] | None = None,
        priority: RequestPriority = RequestPriority.NORMAL,
    ) -> list[Any]:
        """
        Follow ``rel="next"`` links and concatenate every page.

        ``page_size`` defaults to ``CANVAS_DEFAULT_PAGE_SIZE`` and is capped
        at ``CANVAS_MAX_PAGE_SIZE``. Stops after ``CANVAS_MAX_PAGES`` pages
        even if Canvas keeps advertising a next page. The aggregated list is cached under the
        first page's key; individual pages are not.
        """
        query = dict(params or {})
        query["per_page"] = min(page_size or self._default_page_size, self._page_size)

        cache_key = self._cache.generate_key(endpoint, query)
        cached = await self._cache.get(cache_key)
        if cached is not None:
            return cached

        results: list[Any] = []
        current: str = endpoint
        current_params: Mapping[str, Any] | None = query or None
        for page in range(1, self._max_pages + 1):
            response = await self.request(current, params=current_params, priority=priority, cacheable=False)
            if isinstance(response.data, list):
                results.extend(response.data)
            elif response.data is not None:
                results.append(response.data)

            notify(
                self._observer,
                LifecycleEvent.PAGE_FETCHED,
                endpoint=endpoint,
                page=page,
                total=len(results),
            )

            next_url = response.links.get("next")
            if not next_url:
                break
            current = relative_to_base(next_url, self._api_base_url)
            current_params = None
        else:
            logger.warning("Pagination ceiling reached", endpoint=endpoint, max_pages=self._max_pages)

        await self._cache.set(cache_key, results)
        return results

    # ------------------------------------------------------------------
    # Canvas resources
    # ------------------------------------------------------------------

    async def get_courses(
        self, enrollment_state: str | None = None, include: list[str] | None = None
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"include[]": include or ["total_students", "term"]}
        if enrollment_state:
            params["enrollment_state"] = enrollment_state
        return await self.fetch_all_pages(
            CanvasEndpoints.COURSES, self._page_size, params, RequestPriority.USER_INITIATED
        )

    async def get_course(self, course_id: str) -> dict[str, Any]:
        response = await self.request(
            CanvasEndpoints.course_detail(course_id),
            params={"include[]": ["term", "total_students"]},
            priority=RequestPriority.USER_INITIATED,
        )
        return response.data

    async def get_assignments(
        self, course_id: str, include: list[str] | None = None, search_term: str | None = None
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {}
        if include:
            params["include[]"] = include
        if search_term:
            params["search_term"] = search_term
        return await self.fetch_all_pages(CanvasEndpoints.assignments(course_id), self._page_size, params)

    async def get_assignment(self, course_id: str, assignment_id: str) -> dict[str, Any]:
        response = await self.request(CanvasEndpoints.assignment_detail(course_id, assignment_id))
        return response.data

    async def get_submissions(
        self, course_id: str, assignment_id: str, include: list[str] | None = None
    ) -> list[dict[str, Any]]:
        return await self.fetch_all_pages(
            CanvasEndpoints.assignment_submissions(course_id, assignment_id),
            self._page_size,
            {"include[]": include or ["user"]},
        )

    async def get_calendar_events(
        self, start_date: str | None = None, end_date: str | None = None
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"type": "event", "all_events": "true"}
        if start_date:
            params["start_date"] = start_date
        if end_date:
            params["end_date"] = end_date
        return await self.fetch_all_pages(CanvasEndpoints.CALENDAR_EVENTS, self._page_size, params)

    async def get_modules(self, course_id: str) -> list[dict[str, Any]]:
        return await self.fetch_all_pages(
            CanvasEndpoints.course_modules(course_id),
            self._page_size,
            {"include[]": ["items"]},
            RequestPriority.BACKGROUND,
        )

    async def get_module_items(self, course_id: str, module_id: str) -> list[dict[str, Any]]:
        return await self.fetch_all_pages(
            CanvasEndpoints.module_items(course_id, module_id),
            self._page_size,
            priority=RequestPriority.BACKGROUND,
        )

    async def get_course_analytics(self, course_id: str) -> list[dict[str, Any]]:
        response = await self.request(
            CanvasEndpoints.course_analytics(course_id), priority=RequestPriority.BACKGROUND
        )
        return response.data

    async def get_user_profile(self) -> dict[str, Any]:
        response = await self.request(CanvasEndpoints.CURRENT_USER, priority=RequestPriority.CRITICAL)
        return response.data

    # ------------------------------------------------------------------
    # Cache and status
    # ------------------------------------------------------------------

    async def invalidate_cache(self, resource: str, resource_id: str | None = None) -> int:
        """
        Drop cached responses for a resource type.

        ``resource="all"`` clears everything; otherwise every key containing
        ``/<resource>`` (or ``/<resource>/<id>``) is dropped.
        """
        if resource == "all":
            await self._cache.clear()
            return 0
        if resource_id:
            return await self._cache.invalidate(f"*/{resource}/{resource_id}*")
        return await self._cache.invalidate(f"*/{resource}*")

    def get_cache_stats(self) -> dict[str, Any]:
        return self._cache.get_stats()

    def get_status(self) -> dict[str, Any]:
        return {
            "connection": self._tokens.state.value,
            "rate_limiter": self._limiter.get_status().to_dict(),
            "cache": self._cache.get_stats(),
        }

    async def aclose(self) -> None:
        await self._limiter.aclose()
        await self._tokens.aclose()
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "ResilientApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def build_client(
    settings: Settings | None = None,
    *,
    user_id: str = "default",
    store: CredentialStore | None = None,
    http_client: httpx.AsyncClient | None = None,
    observer: ClientObserver | None = None,
    clock: Callable[[], float] | None = None,
    sleep: Callable[[float], Awaitable[Any]] | None = None,
    redis_client: Any = None,
) -> ResilientApiClient:
    """
    Wire a client from settings.

    Every collaborator is a fresh instance; pass ``http_client`` to share a
    connection pool (or a mock transport in tests). The Redis cache tier is
    attached when ``CACHE_PERSISTENT_ENABLED`` is set.
    """
    settings = settings or get_settings()
    clock_kwargs: dict[str, Any] = {"clock": clock} if clock is not None else {}
    sleep_kwargs: dict[str, Any] = {"sleep": sleep} if sleep is not None else {}

    limiter = TokenBucketRateLimiter(observer=observer, settings=settings, **clock_kwargs, **sleep_kwargs)

    backend = None
    if settings.cache.CACHE_PERSISTENT_ENABLED:
        backend = RedisCacheBackend(client=redis_client, settings=settings)
    cache = ResponseCache(backend=backend, observer=observer, settings=settings, **clock_kwargs)

    token_manager = TokenLifecycleManager(
        store or InMemoryCredentialStore(),
        user_id=user_id,
        http_client=http_client,
        observer=observer,
        settings=settings,
        **sleep_kwargs,
    )

    logger.info(
        "Canvas client built",
        api_base_url=settings.canvas.api_base_url,
        user_id=user_id,
        persistent_cache=backend is not None,
    )
    return ResilientApiClient(
        token_manager=token_manager,
        rate_limiter=limiter,
        cache=cache,
        http_client=http_client,
        observer=observer,
        settings=settings,
    )
