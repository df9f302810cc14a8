"""Process-wide request accounting for demoapp.

Inputs:
  - None

Outputs:
  - RequestCounter, a thread-safe monotonically increasing counter.
"""

from __future__ import annotations

import threading

_UINT64_MASK = (1 << 64) - 1


class RequestCounter:
    """
    Thread-safe counter of inbound requests.

    Inputs (constructor):
        None

    Outputs:
        RequestCounter instance starting at zero.

    Increments are serialized by a single lock so that concurrent callers
    (event loop tasks or threadpool workers) never lose an update. Reads take
    the same lock and therefore never observe a value lower than a previously
    returned one. The value wraps like an unsigned 64-bit integer.

    Example:
        >>> counter = RequestCounter()
        >>> counter.increment()
        1
        >>> counter.value
        1
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    def increment(self) -> int:
        """Add one to the counter and return the new value."""
        with self._lock:
            self._value = (self._value + 1) & _UINT64_MASK
            return self._value

    @property
    def value(self) -> int:
        """Current counter value."""
        with self._lock:
            return self._value
