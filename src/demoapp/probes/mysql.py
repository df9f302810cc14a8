"""MySQL/MariaDB-backed health probe.

Inputs:
  - A Go-driver style DSN: ``[user[:password]@][net[(addr)]]/dbname[?params]``,
    for example ``app:secret@tcp(db:3306)/shop?charset=utf8mb4``.

Outputs:
  - MySqlProbe reporting the number of tables in the selected database.

Notes:
  - mysql-connector-python is imported lazily and, being a blocking driver,
    runs in a worker thread. Only connection_timeout is passed (8.x
    connectors reject read_timeout); the awaiting wait_for bounds the check.
"""

from __future__ import annotations

import asyncio
import importlib
import urllib.parse
from typing import Any, Dict

from .._errors import ConfigError, ProbeError
from .base import PROBE_TIMEOUT_SECONDS, HealthProbe

DEFAULT_MYSQL_PORT = 3306

TABLE_COUNT_QUERY = """
SELECT COUNT(*) FROM information_schema.tables
WHERE table_schema = DATABASE()
"""

# DSN query parameters passed through to mysql.connector.connect().
_PASSTHROUGH_PARAMS = ("charset", "collation")


def _import_mysql_driver() -> Any:
    """Import and return the mysql.connector module.

    Raises:
        ConfigError: When mysql-connector-python is not installed.
    """

    try:
        return importlib.import_module("mysql.connector")
    except ImportError as exc:
        raise ConfigError(
            "the mysql backend requires the optional 'mysql-connector-python' "
            "dependency. Install it with: pip install 'demoapp[mysql]'"
        ) from exc


def parse_mysql_dsn(dsn: str) -> Dict[str, Any]:
    """Brief: Parse a Go-driver style MySQL DSN into connect() keyword arguments.

    Inputs:
      - dsn: e.g. 'user:pass@tcp(localhost:3306)/db?charset=utf8mb4'.

    Outputs:
      - dict with user/password/host/port or unix_socket, database and any
        supported parameters.

    Raises:
      - ValueError: For a missing '/' database separator, an unterminated
        address, an unsupported network, or a bad port.

    Example:
      >>> parse_mysql_dsn("root:pw@tcp(db:3307)/app")["port"]
      3307
    """

    slash = dsn.rfind("/")
    if slash < 0:
        raise ValueError("invalid DSN: missing the slash separating the database name")
    head, tail = dsn[:slash], dsn[slash + 1 :]
    database, _, query = tail.partition("?")

    params: Dict[str, Any] = {}
    if database:
        params["database"] = database

    userinfo, at, netaddr = head.rpartition("@")
    if not at:
        userinfo, netaddr = "", head
    if userinfo:
        user, colon, password = userinfo.partition(":")
        params["user"] = user
        if colon:
            params["password"] = password

    net, paren, addr = netaddr.partition("(")
    if paren:
        if not addr.endswith(")"):
            raise ValueError("invalid DSN: network address not terminated (missing closing brace)")
        addr = addr[:-1]
    net = net or "tcp"

    if net == "unix":
        params["unix_socket"] = addr or "/tmp/mysql.sock"
    elif net == "tcp":
        host, port = "127.0.0.1", DEFAULT_MYSQL_PORT
        if addr:
            host_part, sep, port_text = addr.rpartition(":")
            if sep:
                host = host_part.strip("[]") or host
                try:
                    port = int(port_text)
                except ValueError:
                    raise ValueError(f"invalid DSN: bad port {port_text!r}") from None
            else:
                host = addr
        params["host"] = host
        params["port"] = port
    else:
        raise ValueError(f"invalid DSN: unsupported network {net!r}")

    for key, value in urllib.parse.parse_qsl(query):
        if key in _PASSTHROUGH_PARAMS:
            params[key] = value
    return params


class MySqlProbe(HealthProbe):
    """MySQL table-count probe.

    Inputs (constructor):
        params: Keyword arguments for mysql.connector.connect().
        driver: mysql.connector-compatible module exposing connect().

    Outputs:
        MySqlProbe instance.
    """

    name = "mysql"

    def __init__(self, params: Dict[str, Any], driver: Any) -> None:
        self._params = dict(params)
        self._params.setdefault("connection_timeout", int(PROBE_TIMEOUT_SECONDS))
        self._driver = driver

    @classmethod
    def from_dsn(cls, dsn: str) -> "MySqlProbe":
        """Brief: Parse a DSN and build a probe.

        Raises:
            ConfigError: When the DSN is malformed or the driver is missing.
        """

        try:
            params = parse_mysql_dsn(dsn)
        except ValueError as exc:
            raise ConfigError(f"failed to connect via mysql: {exc}") from exc
        return cls(params, _import_mysql_driver())

    def count_tables(self) -> int:
        conn = self._driver.connect(**self._params)
        try:
            cur = conn.cursor()
            try:
                cur.execute(TABLE_COUNT_QUERY)
                row = cur.fetchone()
            finally:
                cur.close()
        finally:
            conn.close()
        return int(row[0])

    async def check(self) -> str:
        try:
            return str(await asyncio.to_thread(self.count_tables))
        except Exception as exc:
            raise ProbeError(str(exc) or type(exc).__name__) from exc

    async def ready(self) -> None:
        await self.check()
