"""Select health probes from the resolved configuration.

Inputs:
  - Configuration with optional redis, postgres and mysql connection strings.

Outputs:
  - ProbeSet holding at most one cache probe and one database probe.
"""

from __future__ import annotations

import logging

from ..config.config_parser import Configuration
from .base import ProbeSet, redact_url
from .mysql import MySqlProbe
from .postgresql import PostgresProbe
from .redis_probe import RedisProbe

logger = logging.getLogger("demoapp.probes")


def build_probes(config: Configuration) -> ProbeSet:
    """Brief: Select and construct health probes from the configuration.

    Inputs:
      - config: Resolved Configuration.

    Outputs:
      - ProbeSet with an optional Redis cache probe and at most one database
        probe; postgres takes priority over mysql when both are set.

    Raises:
      - ConfigError: When a configured connection string is invalid or its
        driver is not installed.
    """

    probes = ProbeSet()
    if config.redis:
        logger.info("Parsing redis string url=%s", redact_url(config.redis))
        probes.cache = RedisProbe.from_url(config.redis)

    if config.postgres:
        logger.info("Parsing postgres string url=%s", redact_url(config.postgres))
        probes.database = PostgresProbe.from_conninfo(config.postgres)
        if config.mysql:
            logger.warning("Both postgres and mysql are configured; using postgres")
    elif config.mysql:
        logger.info("Parsing mysql string")
        probes.database = MySqlProbe.from_dsn(config.mysql)
    return probes
