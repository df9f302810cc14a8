"""Redis-backed health probe.

Inputs:
  - A redis:// or rediss:// URL, for example ``redis://cache:6379/0``.

Outputs:
  - RedisProbe whose check increments the shared counter key.

Notes:
  - redis.asyncio is imported lazily so the driver stays an optional extra.
"""

from __future__ import annotations

import importlib
from typing import Any

from .._errors import ConfigError, ProbeError
from .base import PROBE_TIMEOUT_SECONDS, HealthProbe

COUNTER_KEY = "counter"


def _import_redis_asyncio() -> Any:
    """Brief: Import the optional `redis` dependency's asyncio client.

    Inputs:
      - None.

    Outputs:
      - redis.asyncio module.

    Notes:
      - This is intentionally lazy so that demoapp runs without `redis`
        installed when no --redis URL is configured.
    """

    try:
        return importlib.import_module("redis.asyncio")
    except ImportError as exc:
        raise ConfigError(
            "the redis backend requires the optional 'redis' dependency. "
            "Install it with: pip install 'demoapp[redis]'"
        ) from exc


class RedisProbe(HealthProbe):
    """Redis/Valkey-backed health probe.

    Brief:
      The page check increments the key 'counter' and reports the new value,
      so every page view is visible in the cache. Readiness only reads the
      key; a missing key is fine.

    Inputs:
      - client: redis.asyncio.Redis-compatible client.

    Outputs:
      - RedisProbe instance.

    Example:
      probe = RedisProbe.from_url("redis://localhost:6379/0")
    """

    name = "redis"

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisProbe":
        """Brief: Build a probe from a redis:// URL.

        Inputs:
          - url: redis://, rediss:// or unix:// URL.

        Outputs:
          - RedisProbe. No connection is made until the first check.

        Raises:
          - ConfigError: When the URL cannot be parsed or redis is missing.
        """

        redis_asyncio = _import_redis_asyncio()
        try:
            client = redis_asyncio.from_url(
                url,
                socket_timeout=PROBE_TIMEOUT_SECONDS,
                socket_connect_timeout=PROBE_TIMEOUT_SECONDS,
            )
        except ValueError as exc:
            raise ConfigError(f"failed to parse redis string: {exc}") from exc
        return cls(client)

    async def check(self) -> str:
        try:
            value = await self._client.incr(COUNTER_KEY)
        except Exception as exc:
            raise ProbeError(str(exc) or type(exc).__name__) from exc
        return str(int(value))

    async def ready(self) -> None:
        try:
            await self._client.get(COUNTER_KEY)
        except Exception as exc:
            raise ProbeError(str(exc) or type(exc).__name__) from exc

    async def close(self) -> None:
        closer = getattr(self._client, "aclose", None) or getattr(
            self._client, "close", None
        )
        if closer is not None:
            await closer()
