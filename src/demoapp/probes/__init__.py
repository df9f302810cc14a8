"""Health probes.

Brief: Defines the HealthProbe interface, the Redis, PostgreSQL and MySQL
backends, and helpers to run them under a bounded timeout.

Inputs:
  - None

Outputs:
  - None
"""

from __future__ import annotations

from .base import (
    NO_BACKEND,
    PROBE_TIMEOUT_SECONDS,
    HealthProbe,
    ProbeSet,
    check_readiness,
    run_probe,
)
from .registry import build_probes

__all__ = [
    "HealthProbe",
    "NO_BACKEND",
    "PROBE_TIMEOUT_SECONDS",
    "ProbeSet",
    "build_probes",
    "check_readiness",
    "run_probe",
]
