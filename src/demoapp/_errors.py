"""Exception hierarchy for demoapp.

Inputs:
  - None

Outputs:
  - DemoAppError and its subclasses, raised by startup and probe code.
"""

from __future__ import annotations


class DemoAppError(Exception):
    """Base class for all demoapp errors."""


class ConfigError(DemoAppError):
    """Brief: Fatal startup configuration problem.

    Raised for malformed environment overrides, unexpected positional
    arguments, invalid proxy or listen addresses, bad backend connection
    strings, and listener bind failures. main() logs the message and exits 1.
    """


class ProbeError(DemoAppError):
    """Brief: A health probe backend failed to answer.

    The message is shown verbatim on the diagnostic page and embedded in the
    /readyz error body.
    """
