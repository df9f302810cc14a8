"""PostgreSQL-backed health probe.

Inputs:
  - A libpq connection string or postgres:// URL.

Outputs:
  - PostgresProbe reporting the number of user tables.

Notes:
  - The driver (psycopg 3) is imported lazily so that demoapp does not
    require it unless --postgres is configured.
  - Each check opens a short-lived async connection bounded by the probe
    timeout; nothing is kept open between requests.
"""

from __future__ import annotations

import importlib
from typing import Any

from .._errors import ConfigError, ProbeError
from .base import PROBE_TIMEOUT_SECONDS, HealthProbe

TABLE_COUNT_QUERY = """
SELECT COUNT(*) FROM information_schema.tables
WHERE table_type = 'BASE TABLE' AND table_schema NOT IN ('pg_catalog', 'information_schema')
"""


def _import_postgres_driver() -> Any:
    """Import and return the psycopg module.

    Raises:
        ConfigError: When psycopg is not installed.
    """

    try:
        return importlib.import_module("psycopg")
    except ImportError as exc:
        raise ConfigError(
            "the postgres backend requires the optional 'psycopg' dependency. "
            "Install it with: pip install 'demoapp[postgres]'"
        ) from exc


class PostgresProbe(HealthProbe):
    """PostgreSQL table-count probe.

    Inputs (constructor):
        conninfo: Validated connection string.
        driver: psycopg-compatible module exposing AsyncConnection.

    Outputs:
        PostgresProbe instance.
    """

    name = "postgres"

    def __init__(self, conninfo: str, driver: Any) -> None:
        self._conninfo = conninfo
        self._driver = driver

    @classmethod
    def from_conninfo(cls, conninfo: str) -> "PostgresProbe":
        """Brief: Validate a connection string and build a probe.

        Raises:
            ConfigError: When the string cannot be parsed.
        """

        driver = _import_postgres_driver()
        conninfo_mod = importlib.import_module("psycopg.conninfo")
        try:
            conninfo_mod.conninfo_to_dict(conninfo)
        except Exception as exc:
            raise ConfigError(f"failed to start postgres pool: {exc}") from exc
        return cls(conninfo, driver)

    async def count_tables(self) -> int:
        conn = await self._driver.AsyncConnection.connect(
            self._conninfo, connect_timeout=max(2, int(PROBE_TIMEOUT_SECONDS))
        )
        async with conn:
            async with conn.cursor() as cur:
                await cur.execute(TABLE_COUNT_QUERY)
                row = await cur.fetchone()
        return int(row[0])

    async def check(self) -> str:
        try:
            return str(await self.count_tables())
        except Exception as exc:
            raise ProbeError(str(exc) or type(exc).__name__) from exc

    async def ready(self) -> None:
        await self.check()
