"""
Unit Tests for the HTTP Transport Helpers
"""

import httpx
import pytest

from hapi_canvas.core.exceptions import CanvasNetworkError, CanvasNotFoundError, CanvasRateLimitError
from hapi_canvas.infrastructure.http import (
    bearer,
    decode_body,
    parse_link_header,
    raise_for_canvas_status,
    relative_to_base,
    send,
)

API_BASE = "https://canvas.test/api/v1"


@pytest.mark.unit
class TestLinkHeader:
    def test_canvas_pagination_links(self):
        header = (
            '<https://canvas.test/api/v1/courses?page=2&per_page=100>; rel="next",'
            '<https://canvas.test/api/v1/courses?page=1&per_page=100>; rel="first",'
            '<https://canvas.test/api/v1/courses?page=5&per_page=100>; rel="last"'
        )
        links = parse_link_header(header)
        assert links["next"] == "https://canvas.test/api/v1/courses?page=2&per_page=100"
        assert set(links) == {"next", "first", "last"}

    def test_empty_and_malformed(self):
        assert parse_link_header(None) == {}
        assert parse_link_header("") == {}
        assert parse_link_header('no-angle-brackets; rel="next"') == {}

    def test_multiple_rels_on_one_link(self):
        links = parse_link_header('<https://x/a>; rel="current first"')
        assert links == {"current": "https://x/a", "first": "https://x/a"}


@pytest.mark.unit
class TestRelativeToBase:
    def test_strips_api_base(self):
        url = "https://canvas.test/api/v1/courses?page=2&per_page=100"
        assert relative_to_base(url, API_BASE) == "/courses?page=2&per_page=100"

    def test_relative_path_unchanged(self):
        assert relative_to_base("/courses", API_BASE) == "/courses"

    def test_foreign_host_unchanged(self):
        url = "https://elsewhere.test/files/1"
        assert relative_to_base(url, API_BASE) == url

    def test_sibling_version_prefix_not_stripped(self):
        url = "https://canvas.test/api/v10/courses?page=2"
        assert relative_to_base(url, API_BASE) == url

    def test_base_path_itself(self):
        assert relative_to_base("https://canvas.test/api/v1", API_BASE) == "/"


@pytest.mark.unit
class TestResponses:
    def test_bearer_header(self):
        assert bearer("7~abc") == {"Authorization": "Bearer 7~abc"}

    def test_decode_body(self):
        assert decode_body(httpx.Response(200, json=[1, 2])) == [1, 2]
        assert decode_body(httpx.Response(200, text="plain")) == "plain"
        assert decode_body(httpx.Response(204)) is None

    def test_success_does_not_raise(self):
        raise_for_canvas_status(httpx.Response(200, json={}))

    def test_status_is_classified(self):
        with pytest.raises(CanvasNotFoundError):
            raise_for_canvas_status(httpx.Response(404, json={"errors": [{"message": "not found"}]}))

        with pytest.raises(CanvasRateLimitError) as exc_info:
            raise_for_canvas_status(httpx.Response(429, headers={"Retry-After": "3"}))
        assert exc_info.value.retry_after == 3.0

    @pytest.mark.asyncio
    async def test_transport_failure_becomes_network_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as http:
            with pytest.raises(CanvasNetworkError) as exc_info:
                await send(http, "GET", f"{API_BASE}/courses")

        assert exc_info.value.details["method"] == "GET"
        assert exc_info.value.is_retryable
