"""
Brief: Tests for demoapp.probes.postgresql using a fake psycopg module.

Inputs:
  - None

Outputs:
  - None (pytest assertions)
"""

from __future__ import annotations

import asyncio
import sys
import types

import pytest

from demoapp._errors import ConfigError, ProbeError
from demoapp.probes.postgresql import TABLE_COUNT_QUERY, PostgresProbe


class _FakeCursor:
    def __init__(self, conn):
        self._conn = conn

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, query):
        self._conn.queries.append(query)

    async def fetchone(self):
        return (self._conn.tables,)


class _FakeConnection:
    def __init__(self, tables):
        self.tables = tables
        self.queries = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True
        return False

    def cursor(self):
        return _FakeCursor(self)


def _fake_psycopg(tables=3, error=None):
    """Brief: Build fake 'psycopg' and 'psycopg.conninfo' modules.

    Inputs:
      - tables: value returned by the count query.
      - error: exception raised by AsyncConnection.connect when set.

    Outputs:
      - (psycopg module, conninfo module, calls list)
    """

    calls = []
    psycopg = types.ModuleType("psycopg")
    conninfo = types.ModuleType("psycopg.conninfo")

    class AsyncConnection:
        @classmethod
        async def connect(cls, dsn, **kwargs):
            if error is not None:
                raise error
            conn = _FakeConnection(tables)
            calls.append((dsn, kwargs, conn))
            return conn

    def conninfo_to_dict(value):
        if "=" not in value and "://" not in value:
            raise ValueError("missing \"=\" after \"%s\" in connection info string" % value)
        return {}

    psycopg.AsyncConnection = AsyncConnection
    conninfo.conninfo_to_dict = conninfo_to_dict
    psycopg.conninfo = conninfo
    return psycopg, conninfo, calls


@pytest.fixture
def install(monkeypatch):
    def _install(**kwargs):
        psycopg, conninfo, calls = _fake_psycopg(**kwargs)
        monkeypatch.setitem(sys.modules, "psycopg", psycopg)
        monkeypatch.setitem(sys.modules, "psycopg.conninfo", conninfo)
        return calls

    return _install


def test_check_reports_table_count(install) -> None:
    calls = install(tables=7)
    probe = PostgresProbe.from_conninfo("postgres://u:p@db:5432/app")
    assert asyncio.run(probe.check()) == "7"
    dsn, kwargs, conn = calls[0]
    assert dsn == "postgres://u:p@db:5432/app"
    assert kwargs["connect_timeout"] >= 2
    assert conn.queries == [TABLE_COUNT_QUERY]
    assert conn.closed is True


def test_ready_uses_same_query(install) -> None:
    calls = install(tables=0)
    probe = PostgresProbe.from_conninfo("host=db dbname=app")
    asyncio.run(probe.ready())
    assert len(calls) == 1


def test_connection_failure_is_probe_error(install) -> None:
    install(error=OSError("connection refused"))
    probe = PostgresProbe.from_conninfo("postgres://db/app")
    with pytest.raises(ProbeError, match="connection refused"):
        asyncio.run(probe.check())


def test_invalid_conninfo_is_config_error(install) -> None:
    install()
    with pytest.raises(ConfigError, match="failed to start postgres pool"):
        PostgresProbe.from_conninfo("garbage")
