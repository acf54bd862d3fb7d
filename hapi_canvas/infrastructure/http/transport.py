"""
Canvas HTTP transport helpers.

Thin layer over ``httpx`` shared by the token manager and the API client:
- send(): one request, transport failures become CanvasNetworkError
- raise_for_canvas_status(): non-2xx responses become the Canvas error taxonomy
- decode_body(): JSON body or None
- parse_link_header(): ``Link`` header to {rel: url}
- relative_to_base(): absolute pagination URL back to an API-relative path
"""

from typing import Any
from urllib.parse import urlsplit

import httpx

from hapi_canvas.core.config.constants import HEADER_AUTHORIZATION
from hapi_canvas.core.exceptions import CanvasNetworkError, parse_canvas_error


def bearer(token: str) -> dict[str, str]:
    return {HEADER_AUTHORIZATION: f"Bearer {token}"}


def parse_link_header(value: str | None) -> dict[str, str]:
    """
    Parse an RFC 8288 ``Link`` header.

    >>> parse_link_header('<https://x/api/v1/courses?page=2>; rel="next"')
    {'next': 'https://x/api/v1/courses?page=2'}
    """
    links: dict[str, str] = {}
    if not value:
        return links
    for part in value.split(","):
        segment = part.strip()
        if "<" not in segment or ">" not in segment:
            continue
        url = segment[segment.find("<") + 1 : segment.find(">")]
        for param in segment[segment.find(">") + 1 :].split(";"):
            name, _, raw = param.strip().partition("=")
            if name.strip().lower() != "rel":
                continue
            for rel in raw.strip().strip('"').split():
                links.setdefault(rel, url)
    return links


def relative_to_base(url: str, api_base_url: str) -> str:
    """
    Reduce an absolute Canvas URL to a path+query relative to the API base.

    URLs outside the API base are returned unchanged (httpx will use them
    as-is).
    """
    if not url.startswith(("http://", "https://")):
        return url
    base = urlsplit(api_base_url)
    base_path = base.path.rstrip("/")
    parts = urlsplit(url)
    path = parts.path
    # Segment-wise match: /api/v10 is not under /api/v1
    under_base = path == base_path or path.startswith(base_path + "/")
    if base.netloc != parts.netloc or not under_base:
        return url
    path = path[len(base_path) :] or "/"
    return f"{path}?{parts.query}" if parts.query else path


def decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


async def send(http: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
    """Issue one request; transport failures become CanvasNetworkError."""
    try:
        return await http.request(method, url, **kwargs)
    except httpx.TransportError as e:
        raise CanvasNetworkError.from_exception(e, method=method, url=url)


def raise_for_canvas_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    raise parse_canvas_error(
        response.status_code,
        headers=response.headers,
        body=decode_body(response),
        reason=response.reason_phrase,
    )
