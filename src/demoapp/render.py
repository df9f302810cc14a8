"""Rendering of the diagnostic page as HTML or JSON.

Both renderers are pure functions of ProcessFacts and a RequestView; the
HTML variant additionally shows the current request counter value.
"""

from __future__ import annotations

import dataclasses
import json
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from jinja2 import Environment, PackageLoader, StrictUndefined, select_autoescape
from starlette.requests import Request

from .facts import ProcessFacts

DEFAULT_REFRESH_SECONDS = 5

_TEMPLATE_NAME = "index.html"

_env = Environment(
    loader=PackageLoader("demoapp", "templates"),
    autoescape=select_autoescape(["html"]),
    undefined=StrictUndefined,
)


@dataclasses.dataclass(frozen=True)
class RequestView:
    """Per-request values shown on the page."""

    request_id: str
    raw_request: str
    rendered_at: str
    detail: bool = False
    refresh_seconds: int = DEFAULT_REFRESH_SECONDS
    redis_result: str = ""
    database_result: str = ""


def utc_now_rfc3339() -> str:
    """Return the current UTC time as an RFC 3339 string with a Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_refresh(value: Optional[str]) -> int:
    """Brief: Interpret the ?refresh query value.

    Inputs:
      - value: Raw query value or None.

    Outputs:
      - int: The value when it is a positive integer, else 5.

    Example:
      >>> parse_refresh("30"), parse_refresh("-5"), parse_refresh("x")
      (30, 5, 5)
    """

    try:
        seconds = int(value) if value is not None else 0
    except ValueError:
        return DEFAULT_REFRESH_SECONDS
    return seconds if seconds > 0 else DEFAULT_REFRESH_SECONDS


def parse_detail(query: Mapping[str, str]) -> bool:
    """Any non-empty ?detail value enables the details section."""
    return bool(query.get("detail"))


def _canonical_header(name: str) -> str:
    return "-".join(part.capitalize() for part in name.split("-"))


async def dump_request(request: Request) -> str:
    """Brief: Serialize the inbound request in HTTP/1.1 wire form.

    Inputs:
      - request: Starlette Request.

    Outputs:
      - str: request line, Host header, remaining headers sorted by
        canonical name, a blank line, and the body decoded as UTF-8 (invalid
        bytes replaced).
    """

    target = request.url.path
    if request.url.query:
        target += "?" + request.url.query
    lines = [f"{request.method} {target} HTTP/1.1"]
    host = request.headers.get("host")
    if host:
        lines.append(f"Host: {host}")
    others = sorted(
        (_canonical_header(k), v) for k, v in request.headers.items() if k != "host"
    )
    lines.extend(f"{k}: {v}" for k, v in others)
    body = await request.body()
    return "\r\n".join(lines) + "\r\n\r\n" + body.decode("utf-8", errors="replace")


def render_html(facts: ProcessFacts, request_count: int, view: RequestView) -> str:
    """Brief: Render the HTML page.

    Inputs:
      - facts: ProcessFacts collected at startup.
      - request_count: Current RequestCounter value.
      - view: RequestView for this request.

    Outputs:
      - str HTML document. Template errors propagate to the caller.
    """

    template = _env.get_template(_TEMPLATE_NAME)
    return template.render(facts=facts, request_count=request_count, view=view)


def render_json(facts: ProcessFacts, view: RequestView) -> str:
    """Brief: Render the JSON document (two-space indent, trailing newline).

    Inputs:
      - facts: ProcessFacts collected at startup.
      - view: RequestView for this request.

    Outputs:
      - str JSON object with RequestId, Globals, RawRequest, RedisResult and
        DatabaseResult. The refresh interval and detail flag are HTML-only.
    """

    payload: Dict[str, Any] = {
        "RequestId": view.request_id,
        "Globals": facts.to_json(),
        "RawRequest": view.raw_request,
        "RedisResult": view.redis_result,
        "DatabaseResult": view.database_result,
    }
    return json.dumps(payload, indent=2) + "\n"
