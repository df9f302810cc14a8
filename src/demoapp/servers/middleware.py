"""HTTP middleware used by the demoapp webserver.

The classes here wrap the FastAPI application in the order assembled by
demoapp.servers.webserver.build_middleware(): timeout, access log, panic
recovery, request id, request counting, body limit, (proxy), CORS, security
headers, rate limiting and compression. Error responses produced by the
middleware use a small JSON body of the form {"message": "..."}.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from typing import Callable, Optional

from cachetools import TTLCache
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..stats import RequestCounter

logger = logging.getLogger("demoapp.webserver")

REQUEST_ID_HEADER = "X-Request-ID"
REQUEST_TIMEOUT_SECONDS = 10.0
MAX_BODY_BYTES = 1024 * 1024

SECURITY_HEADERS = {
    "X-XSS-Protection": "1; mode=block",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
}


def error_response(status_code: int, message: str) -> JSONResponse:
    """Return the JSON error body used by middleware-generated failures."""
    return JSONResponse({"message": message}, status_code=status_code)


def _with_request_id(response: Response, scope: Scope) -> Response:
    # Responses built outside RequestIDMiddleware miss its outbound header.
    request_id = scope.get("state", {}).get("request_id")
    if request_id:
        response.headers[REQUEST_ID_HEADER] = request_id
    return response


def client_ip(request: Request) -> str:
    """Brief: Best-effort client address for rate limiting and proxy headers.

    Inputs:
      - request: Starlette Request.

    Outputs:
      - str: first X-Forwarded-For entry, else X-Real-IP, else the socket
        peer address, else ''.
    """

    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    return request.client.host if request.client else ""


class RequestTimeoutMiddleware:
    """Answer 503 when the wrapped application exceeds the request timeout.

    The whole downstream application is cancelled at the deadline. When the
    response has already started there is nothing left to replace, so the
    timeout is only logged and the truncated response ends.
    """

    def __init__(self, app: ASGIApp, timeout: float = REQUEST_TIMEOUT_SECONDS) -> None:
        self.app = app
        self.timeout = timeout

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await asyncio.wait_for(self.app(scope, receive, tracking_send), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Request %s %s exceeded %gs timeout",
                scope.get("method"),
                scope.get("path"),
                self.timeout,
            )
            if not response_started:
                await _with_request_id(error_response(503, "Service Unavailable"), scope)(
                    scope, receive, send
                )


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Log one 'Handled' line per request with status, timing and request id."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.info(
            "Handled method=%s url=%s status=%d elapsed=%.3fms resp_size=%s req_id=%s",
            request.method,
            request.url,
            response.status_code,
            elapsed_ms,
            response.headers.get("content-length", "-"),
            response.headers.get(REQUEST_ID_HEADER, ""),
        )
        return response


class RecoverMiddleware:
    """Turn unhandled handler exceptions into a 500 response instead of a crash."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, tracking_send)
        except Exception:
            logger.exception(
                "Unhandled exception while serving %s %s",
                scope.get("method"),
                scope.get("path"),
            )
            if response_started:
                raise
            response = error_response(500, "Internal Server Error")
            await _with_request_id(response, scope)(scope, receive, send)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Echo or assign X-Request-ID and expose it as request.state.request_id."""

    def __init__(
        self, app: ASGIApp, generator: Callable[[], str] = lambda: uuid.uuid4().hex
    ) -> None:
        super().__init__(app)
        self.generator = generator

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or self.generator()
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestCounterMiddleware(BaseHTTPMiddleware):
    """Increment the shared RequestCounter once per request."""

    def __init__(self, app: ASGIApp, counter: RequestCounter) -> None:
        super().__init__(app)
        self.counter = counter

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        self.counter.increment()
        return await call_next(request)


class _BodyTooLarge(Exception):
    pass


class BodyLimitMiddleware:
    """Reject request bodies larger than max_bytes with HTTP 413.

    Declared Content-Length values are checked up front; chunked bodies are
    counted while the application reads them.
    """

    def __init__(self, app: ASGIApp, max_bytes: int = MAX_BODY_BYTES) -> None:
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        declared = request.headers.get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > self.max_bytes:
            await self._reject(scope, receive, send)
            return

        received = 0
        response_started = False

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    raise _BodyTooLarge()
            return message

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, tracking_send)
        except _BodyTooLarge:
            if response_started:
                raise
            await self._reject(scope, receive, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send) -> None:
        response = error_response(413, "Request Entity Too Large")
        await response(scope, receive, send)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach the default browser security headers to every response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            if name not in response.headers:
                response.headers[name] = value
        return response


class TokenBucketStore:
    """
    In-memory token buckets keyed by client identifier.

    Inputs (constructor):
        rate: Tokens added per second; also the bucket capacity (burst).
        expires_in: Seconds after which an idle bucket is forgotten.
        maxsize: Maximum number of tracked clients.
        clock: Monotonic clock callable (time.monotonic by default).

    Outputs:
        TokenBucketStore whose allow(identifier) consumes one token.

    Example:
        >>> store = TokenBucketStore(rate=1, clock=lambda: 0.0)
        >>> store.allow("a"), store.allow("a")
        (True, False)
    """

    def __init__(
        self,
        rate: float,
        expires_in: float = 180.0,
        maxsize: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.rate = float(rate)
        self.burst = max(1.0, float(rate))
        self._clock = clock
        self._buckets: TTLCache = TTLCache(maxsize=maxsize, ttl=expires_in, timer=clock)
        self._lock = threading.Lock()

    def allow(self, identifier: str) -> bool:
        now = self._clock()
        with self._lock:
            tokens, updated = self._buckets.get(identifier, (self.burst, now))
            tokens = min(self.burst, tokens + (now - updated) * self.rate)
            allowed = tokens >= 1.0
            if allowed:
                tokens -= 1.0
            self._buckets[identifier] = (tokens, now)
        return allowed


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Answer 429 once a client exceeds its per-second request budget."""

    def __init__(
        self,
        app: ASGIApp,
        rate: float = 100,
        store: Optional[TokenBucketStore] = None,
    ) -> None:
        super().__init__(app)
        self.store = store or TokenBucketStore(rate=rate)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        identifier = client_ip(request)
        if not identifier:
            return error_response(403, "error while extracting identifier")
        if not self.store.allow(identifier):
            return error_response(429, "rate limit exceeded")
        return await call_next(request)
