"""HTTP server for demoapp (diagnostic page, liveness and readiness).

This module builds the FastAPI application, binds the listening socket and
runs it under uvicorn in the foreground.

Routes:
  - GET /        diagnostic page, JSON or HTML by Accept negotiation
  - GET /livez   always {} while the process is serving
  - GET /readyz  {} or per-backend "ok" map; 502 when a backend fails
"""

from __future__ import annotations

import dataclasses
import logging
import socket
from contextlib import asynccontextmanager
from typing import List, Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from starlette.middleware import Middleware
from starlette.middleware.gzip import GZipMiddleware

from .._errors import ConfigError
from ..config.config_parser import Configuration
from ..facts import ProcessFacts
from ..negotiation import APPLICATION_JSON, TEXT_HTML, negotiate
from ..probes import ProbeSet, check_readiness, run_probe
from ..render import (
    RequestView,
    dump_request,
    parse_detail,
    parse_refresh,
    render_html,
    render_json,
    utc_now_rfc3339,
)
from ..stats import RequestCounter
from .middleware import (
    MAX_BODY_BYTES,
    REQUEST_TIMEOUT_SECONDS,
    AccessLogMiddleware,
    BodyLimitMiddleware,
    RateLimitMiddleware,
    RecoverMiddleware,
    RequestCounterMiddleware,
    RequestIDMiddleware,
    RequestTimeoutMiddleware,
    SecurityHeadersMiddleware,
)
from .proxy import PROXY_TIMEOUT_SECONDS, ReverseProxyMiddleware

logger = logging.getLogger("demoapp.webserver")

SHUTDOWN_GRACE_SECONDS = 10


@dataclasses.dataclass
class AppState:
    """Brief: Shared objects injected into request handlers.

    Inputs (fields):
      - config: Effective Configuration.
      - facts: ProcessFacts collected at startup.
      - probes: ProbeSet selected at startup.
      - counter: Process-wide RequestCounter.
    """

    config: Configuration
    facts: ProcessFacts
    probes: ProbeSet
    counter: RequestCounter


def get_app_state(request: Request) -> AppState:
    """FastAPI dependency returning the AppState attached by create_app()."""
    return request.app.state.demo


def build_middleware(
    config: Configuration,
    counter: RequestCounter,
    proxy_client: Optional[httpx.AsyncClient] = None,
) -> List[Middleware]:
    """Brief: Assemble the middleware chain, outermost first.

    Inputs:
      - config: Effective Configuration (proxy target and rate limit).
      - counter: RequestCounter incremented once per request.
      - proxy_client: httpx client used when config.proxy is set.

    Outputs:
      - list[Middleware]: timeout, access log, recover, request id, counter,
        body limit, optional proxy, CORS, security headers, rate limit, gzip.
    """

    chain = [
        Middleware(RequestTimeoutMiddleware, timeout=REQUEST_TIMEOUT_SECONDS),
        Middleware(AccessLogMiddleware),
        Middleware(RecoverMiddleware),
        Middleware(RequestIDMiddleware),
        Middleware(RequestCounterMiddleware, counter=counter),
        Middleware(BodyLimitMiddleware, max_bytes=MAX_BODY_BYTES),
    ]
    if config.proxy and proxy_client is not None:
        chain.append(
            Middleware(ReverseProxyMiddleware, target=config.proxy, client=proxy_client)
        )
    chain.extend(
        [
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_credentials=False,
                allow_methods=["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"],
                allow_headers=["*"],
            ),
            Middleware(SecurityHeadersMiddleware),
            Middleware(RateLimitMiddleware, rate=config.rate_limit),
            Middleware(GZipMiddleware, minimum_size=1024),
        ]
    )
    return chain


def create_app(
    config: Configuration,
    facts: ProcessFacts,
    probes: Optional[ProbeSet] = None,
    counter: Optional[RequestCounter] = None,
    proxy_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Create and configure the FastAPI app serving the diagnostic page.

    Inputs:
      - config: Effective Configuration.
      - facts: ProcessFacts collected once at startup.
      - probes: Optional ProbeSet; an empty set when None.
      - counter: Optional RequestCounter; a fresh counter when None.
      - proxy_client: Optional httpx.AsyncClient for --proxy; created here
        when config.proxy is set and none is given.

    Outputs:
      - FastAPI application. Probes and the proxy client are closed when the
        application shuts down.

    Example:
      >>> from demoapp.config.config_parser import Configuration
      >>> from demoapp.facts import collect_process_facts
      >>> cfg = Configuration()
      >>> app = create_app(cfg, collect_process_facts(cfg))
    """

    probes = probes if probes is not None else ProbeSet()
    counter = counter if counter is not None else RequestCounter()
    if config.proxy and proxy_client is None:
        proxy_client = httpx.AsyncClient(timeout=PROXY_TIMEOUT_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Release backend clients when the server stops."""
        yield
        await probes.close()
        if proxy_client is not None:
            await proxy_client.aclose()

    app = FastAPI(
        title="demoapp",
        lifespan=lifespan,
        middleware=build_middleware(config, counter, proxy_client),
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.demo = AppState(config=config, facts=facts, probes=probes, counter=counter)

    @app.get("/")
    async def main_page(request: Request, state: AppState = Depends(get_app_state)) -> Response:
        """Brief: Diagnostic page negotiated between JSON and HTML.

        Inputs:
          - Accept header; ?detail and ?refresh query parameters (HTML only).

        Outputs:
          - 200 JSON or HTML document; 406 with an empty body when neither
            representation is acceptable.
        """

        media_type = negotiate(request.headers.get("accept"))
        if media_type is None:
            return Response(status_code=status.HTTP_406_NOT_ACCEPTABLE)

        view = RequestView(
            request_id=getattr(request.state, "request_id", ""),
            raw_request=await dump_request(request),
            rendered_at=utc_now_rfc3339(),
            detail=parse_detail(request.query_params),
            refresh_seconds=parse_refresh(request.query_params.get("refresh")),
            redis_result=await run_probe(state.probes.cache),
            database_result=await run_probe(state.probes.database),
        )
        if media_type == TEXT_HTML:
            return HTMLResponse(render_html(state.facts, state.counter.value, view))
        return Response(render_json(state.facts, view), media_type=APPLICATION_JSON)

    @app.get("/livez")
    async def livez() -> JSONResponse:
        """Liveness probe; succeeds whenever the process can serve HTTP."""
        return JSONResponse({})

    @app.get("/readyz")
    async def readyz(state: AppState = Depends(get_app_state)) -> JSONResponse:
        """Brief: Readiness probe for the configured backends.

        Outputs:
          - 200 {} when nothing is configured, 200 with "ok" per configured
            backend, or 502 {"error": ...} naming the first failure.
        """

        status_code, body = await check_readiness(state.probes)
        if status_code != 200:
            logger.warning("Readiness check failed: %s", body.get("error"))
        return JSONResponse(body, status_code=status_code)

    return app


def bind_listener(host: str, port: int) -> socket.socket:
    """Brief: Create the listening TCP socket before the server starts.

    Inputs:
      - host: Host or address; '' listens on all interfaces (IPv6 dual-stack
        where available).
      - port: TCP port; 0 picks a free port.

    Outputs:
      - socket.socket bound and listening.

    Raises:
      - ConfigError: When the address cannot be bound.
    """

    try:
        if not host:
            if socket.has_dualstack_ipv6():
                return socket.create_server(
                    ("", port), family=socket.AF_INET6, dualstack_ipv6=True
                )
            return socket.create_server(("0.0.0.0", port))
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        return socket.create_server((host, port), family=family)
    except OSError as exc:
        raise ConfigError(f"failed to listen on {host}:{port}: {exc}") from exc


def format_listen_address(sock: socket.socket) -> str:
    """Return 'tcp://host:port' for a bound socket, bracketing IPv6 hosts."""
    host, port = sock.getsockname()[:2]
    if ":" in host:
        host = f"[{host}]"
    return f"tcp://{host}:{port}"


def run_server(app: FastAPI, sock: socket.socket) -> bool:
    """Brief: Serve app on sock in the foreground until SIGINT/SIGTERM.

    Inputs:
      - app: FastAPI application from create_app().
      - sock: Listening socket from bind_listener().

    Outputs:
      - bool: True when the server started and shut down cleanly, False when
        startup failed.

    uvicorn installs the signal handlers; in-flight requests get
    SHUTDOWN_GRACE_SECONDS to finish before the server exits.
    """

    config_uvicorn = uvicorn.Config(
        app,
        log_config=None,
        access_log=False,
        lifespan="on",
        timeout_graceful_shutdown=SHUTDOWN_GRACE_SECONDS,
    )
    server = uvicorn.Server(config_uvicorn)
    server.run(sockets=[sock])
    return bool(server.started)
