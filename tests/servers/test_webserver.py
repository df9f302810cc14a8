"""Brief: Tests for demoapp.servers.webserver routes and app wiring.

Inputs:
  - None

Outputs:
  - None (pytest assertions)
"""

from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient

from demoapp._errors import ConfigError, ProbeError
from demoapp.config.config_parser import Configuration
from demoapp.probes import HealthProbe, ProbeSet
from demoapp.servers.webserver import (
    bind_listener,
    create_app,
    format_listen_address,
)
from demoapp.stats import RequestCounter


class _StaticProbe(HealthProbe):
    """Brief: Probe returning a fixed result or raising ProbeError."""

    def __init__(self, name: str, result: str = "ok", error: str | None = None) -> None:
        self.name = name
        self.result = result
        self.error = error
        self.closed = False

    async def check(self) -> str:
        if self.error:
            raise ProbeError(self.error)
        return self.result

    async def ready(self) -> None:
        await self.check()

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def client(make_facts):
    app = create_app(Configuration(), make_facts())
    return TestClient(app)


def test_json_page_by_default(client) -> None:
    """Brief: GET / without Accept returns the JSON document.

    Inputs:
      - client: TestClient fixture.

    Outputs:
      - None; asserts keys, content type and request id propagation.
    """

    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/json")
    data = resp.json()
    assert set(data) == {"RequestId", "Globals", "RawRequest", "RedisResult", "DatabaseResult"}
    assert data["RequestId"] == resp.headers["x-request-id"]
    assert data["RawRequest"].startswith("GET / HTTP/1.1\r\nHost: testserver\r\n")
    assert data["RedisResult"] == "no backend configured"
    assert data["DatabaseResult"] == "no backend configured"
    assert data["Globals"]["Hostname"] == "demo-host"


def test_html_page_with_refresh_and_details(client) -> None:
    resp = client.get("/?detail=true&refresh=30", headers={"Accept": "text/html"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")
    body = resp.text
    assert 'content="30"' in body
    assert "pid:4242" in body
    assert body.index("A=1") < body.index("B=2")
    assert "Hide details" in body


@pytest.mark.parametrize("refresh", ["-5", "0", "soon"])
def test_html_refresh_falls_back_to_five(client, refresh) -> None:
    resp = client.get(f"/?refresh={refresh}", headers={"Accept": "text/html"})
    assert 'content="5"' in resp.text
    assert "./?detail=true" in resp.text
    assert 'id="details"' not in resp.text


def test_browser_accept_header_prefers_html(client) -> None:
    accept = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
    resp = client.get("/", headers={"Accept": accept})
    assert resp.headers["content-type"].startswith("text/html")


def test_unacceptable_type_is_406_with_empty_body(client) -> None:
    resp = client.get("/", headers={"Accept": "application/xml"})
    assert resp.status_code == 406
    assert resp.content == b""


def test_request_id_is_echoed(client) -> None:
    resp = client.get("/", headers={"X-Request-ID": "fixed-id"})
    assert resp.headers["x-request-id"] == "fixed-id"
    assert resp.json()["RequestId"] == "fixed-id"


def test_request_ids_are_unique(client) -> None:
    ids = {client.get("/livez").headers["x-request-id"] for _ in range(5)}
    assert len(ids) == 5


def test_livez(client) -> None:
    resp = client.get("/livez")
    assert resp.status_code == 200
    assert resp.json() == {}


def test_readyz_without_backends(client) -> None:
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json() == {}


def test_readyz_and_page_with_backends(make_facts) -> None:
    probes = ProbeSet(cache=_StaticProbe("redis", "41"), database=_StaticProbe("postgres", "3"))
    client = TestClient(create_app(Configuration(), make_facts(), probes=probes))

    ready = client.get("/readyz")
    assert ready.status_code == 200
    assert ready.json() == {"redis": "ok", "database": "ok"}

    page = client.get("/").json()
    assert page["RedisResult"] == "41"
    assert page["DatabaseResult"] == "3"


def test_readyz_failure_is_502(make_facts) -> None:
    probes = ProbeSet(database=_StaticProbe("mysql", error="connection refused"))
    client = TestClient(create_app(Configuration(), make_facts(), probes=probes))
    resp = client.get("/readyz")
    assert resp.status_code == 502
    assert resp.json() == {"error": "failed to check database: connection refused"}
    # The page itself still renders and shows the failure text.
    assert client.get("/").json()["DatabaseResult"] == "connection refused"


def test_counter_counts_every_request(make_facts) -> None:
    counter = RequestCounter()
    client = TestClient(create_app(Configuration(), make_facts(), counter=counter))
    client.get("/livez")
    client.get("/readyz")
    resp = client.get("/?detail=1", headers={"Accept": "text/html"})
    assert counter.value == 3
    assert "<td>3</td>" in resp.text


def test_counter_is_exact_under_concurrent_requests(make_facts) -> None:
    counter = RequestCounter()
    app = create_app(Configuration(rate_limit=1000), make_facts(), counter=counter)
    client = TestClient(app)
    with ThreadPoolExecutor(max_workers=8) as pool:
        codes = list(pool.map(lambda _: client.get("/livez").status_code, range(40)))
    assert codes == [200] * 40
    assert counter.value == 40


def test_lifespan_closes_probes(make_facts) -> None:
    cache = _StaticProbe("redis")
    app = create_app(Configuration(), make_facts(), probes=ProbeSet(cache=cache))
    with TestClient(app) as client:
        assert client.get("/livez").status_code == 200
        assert cache.closed is False
    assert cache.closed is True


def test_unknown_route_is_404(client) -> None:
    assert client.get("/nope").status_code == 404


def test_bind_listener_ephemeral_port() -> None:
    sock = bind_listener("127.0.0.1", 0)
    try:
        address = format_listen_address(sock)
        assert address.startswith("tcp://127.0.0.1:")
        assert int(address.rsplit(":", 1)[1]) > 0
    finally:
        sock.close()


def test_bind_listener_conflict_is_config_error() -> None:
    first = bind_listener("127.0.0.1", 0)
    try:
        port = first.getsockname()[1]
        with pytest.raises(ConfigError, match="failed to listen"):
            bind_listener("127.0.0.1", port)
    finally:
        first.close()


def test_format_listen_address_brackets_ipv6() -> None:
    class _Sock:
        def getsockname(self):
            return ("::", 8080, 0, 0)

    assert format_listen_address(_Sock()) == "tcp://[::]:8080"


def test_json_body_is_indented(client) -> None:
    text = client.get("/").text
    assert text.endswith("\n")
    assert json.loads(text)["Globals"]["Pid"] == 4242
    assert '\n  "Globals": {' in text
