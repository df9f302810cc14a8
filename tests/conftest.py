"""
Brief: Global pytest configuration enforcing per-test 10s timeout.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import os
import signal
import sys

import pytest

# Ensure 'src' is on sys.path so 'demoapp' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


# Install handler if supported on this platform
if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def restore_root_logging():
    """
    Brief: Restore root logger handlers and level after tests that call init_logging.

    Inputs:
      - None

    Outputs:
      - None
    """
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        # Fallback: no-op on platforms without SIGALRM
        yield


@pytest.fixture
def make_facts():
    """
    Brief: Factory fixture building deterministic ProcessFacts.

    Inputs:
      - None

    Outputs:
      - Callable accepting ProcessFacts field overrides.
    """
    from demoapp.facts import ProcessFacts

    def _make(**overrides):
        fields = {
            "background_color": "#abcdef",
            "motd": "Hello World",
            "hostname": "demo-host",
            "pid": 4242,
            "started_at": "2024-01-01T00:00:00+00:00",
            "proxy_to": "",
            "args": "demoapp --color #abcdef",
            "uid": 1000,
            "gid": 1000,
            "environment": ["A=1", "B=2"],
            "runtime_extras": {"Platform": "linux", "NumCPU": 4},
            "interfaces": {"lo": "127.0.0.1/8 mac:"},
        }
        fields.update(overrides)
        return ProcessFacts(**fields)

    return _make
