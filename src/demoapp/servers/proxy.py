"""Reverse proxy middleware.

When --proxy is configured every request is forwarded to the upstream URL
instead of being served locally, so several demoapp instances can be chained
together. Chains are cut after a few hops: a request whose X-Forwarded-For
header already lists more than MAX_FORWARDED_HOPS addresses is served by the
local handlers.
"""

from __future__ import annotations

import logging
import urllib.parse
from typing import List, Optional, Tuple

import httpx
from starlette.background import BackgroundTask
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response, StreamingResponse
from starlette.types import ASGIApp

from .middleware import REQUEST_ID_HEADER, error_response

logger = logging.getLogger("demoapp.proxy")

MAX_FORWARDED_HOPS = 4
PROXY_TIMEOUT_SECONDS = 10.0

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


def should_proxy(forwarded_for: Optional[str]) -> bool:
    """Brief: Decide whether a request may still be forwarded.

    Inputs:
      - forwarded_for: Raw X-Forwarded-For header value or None.

    Outputs:
      - bool: False once the header lists more than MAX_FORWARDED_HOPS entries.

    Example:
      >>> should_proxy(None), should_proxy("a, b, c, d, e")
      (True, False)
    """

    return len((forwarded_for or "").split(",")) <= MAX_FORWARDED_HOPS


def join_upstream_url(target: str, path: str, query: str = "") -> str:
    """Brief: Append the inbound path and query to the upstream base URL.

    Inputs:
      - target: Upstream base URL, e.g. 'http://backend:8080/base'.
      - path: Inbound request path (always starts with '/').
      - query: Inbound raw query string without '?'.

    Outputs:
      - str: Joined URL with exactly one '/' between base path and request
        path; upstream and inbound query strings are combined with '&'.

    Example:
      >>> join_upstream_url("http://b/base/", "/x", "a=1")
      'http://b/base/x?a=1'
    """

    parts = urllib.parse.urlsplit(target)
    base = parts.path
    if base.endswith("/") and path.startswith("/"):
        joined = base + path[1:]
    elif not base.endswith("/") and not path.startswith("/"):
        joined = f"{base}/{path}"
    else:
        joined = base + path
    queries = [q for q in (parts.query, query) if q]
    return urllib.parse.urlunsplit(
        (parts.scheme, parts.netloc, joined or "/", "&".join(queries), "")
    )


def _forward_headers(request: Request, request_id: str, peer: str) -> List[Tuple[str, str]]:
    headers = [
        (name, value)
        for name, value in request.headers.items()
        if name not in HOP_BY_HOP_HEADERS and name not in ("host", "x-forwarded-for")
    ]
    if request_id and "x-request-id" not in request.headers:
        headers.append((REQUEST_ID_HEADER, request_id))

    prior = request.headers.get("x-forwarded-for")
    if peer:
        forwarded = f"{prior}, {peer}" if prior else peer
    else:
        forwarded = prior or ""
    if forwarded:
        headers.append(("X-Forwarded-For", forwarded))
    if peer and "x-real-ip" not in request.headers:
        headers.append(("X-Real-IP", peer))
    if "x-forwarded-proto" not in request.headers:
        headers.append(("X-Forwarded-Proto", request.url.scheme))
    return headers


class ReverseProxyMiddleware(BaseHTTPMiddleware):
    """Forward requests to an upstream HTTP server.

    Inputs (constructor):
        app: Downstream ASGI application used once the hop limit is reached.
        target: Upstream base URL.
        client: Shared httpx.AsyncClient; owned and closed by the caller.

    Outputs:
        ReverseProxyMiddleware instance.

    Upstream connection failures are answered with 502 and logged; upstream
    status codes (including errors) are passed through unchanged.
    """

    def __init__(self, app: ASGIApp, target: str, client: httpx.AsyncClient) -> None:
        super().__init__(app)
        self.target = target
        self.client = client

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not should_proxy(request.headers.get("x-forwarded-for")):
            return await call_next(request)

        request_id = getattr(request.state, "request_id", "")
        peer = request.client.host if request.client else ""
        url = join_upstream_url(self.target, request.url.path, request.url.query)
        upstream_request = self.client.build_request(
            request.method,
            url,
            headers=_forward_headers(request, request_id, peer),
            content=await request.body(),
        )

        try:
            upstream = await self.client.send(upstream_request, stream=True)
        except httpx.HTTPError as exc:
            logger.error("proxy: upstream %s failed: %s", self.target, exc)
            return error_response(502, "Bad Gateway")

        response = StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        response.raw_headers = [
            (name.encode("latin-1"), value.encode("latin-1"))
            for name, value in upstream.headers.multi_items()
            if name.lower() not in HOP_BY_HOP_HEADERS
        ]
        return response
