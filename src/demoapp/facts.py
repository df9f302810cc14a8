"""Process and host facts shown on the diagnostic page.

This module gathers, once at startup, everything the page reports about the
running process: identity, command line, environment, platform, network
interfaces and filesystem sizes. Collection is best-effort; a failed lookup
degrades to a placeholder and never aborts startup.
"""

from __future__ import annotations

import dataclasses
import ipaddress
import logging
import os
import platform
import socket
import sys
import tempfile
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import psutil

from .config.config_parser import Configuration

logger = logging.getLogger("demoapp.facts")

HOSTNAME_PLACEHOLDER = "failed to get hostname"

_IP_FAMILIES = (socket.AF_INET, socket.AF_INET6)


@dataclasses.dataclass(frozen=True)
class ProcessFacts:
    """Immutable snapshot of process facts, built once by collect_process_facts()."""

    background_color: str
    motd: str
    hostname: str
    pid: int
    started_at: str
    proxy_to: str
    args: str
    uid: int
    gid: int
    environment: List[str] = dataclasses.field(default_factory=list)
    runtime_extras: Dict[str, Any] = dataclasses.field(default_factory=dict)
    interfaces: Dict[str, str] = dataclasses.field(default_factory=dict)

    def to_json(self) -> Dict[str, Any]:
        """Return the JSON 'Globals' representation used by the page."""
        return {
            "BackgroundColor": self.background_color,
            "Motd": self.motd,
            "Hostname": self.hostname,
            "Pid": self.pid,
            "StartedAt": self.started_at,
            "ProxyTo": self.proxy_to,
            "Environment": list(self.environment),
            "RuntimeExtras": dict(self.runtime_extras),
            "Interfaces": dict(self.interfaces),
            "Args": self.args,
            "Uid": self.uid,
            "Gid": self.gid,
        }


def _get_hostname() -> str:
    try:
        return socket.gethostname() or HOSTNAME_PLACEHOLDER
    except OSError as exc:
        logger.warning("failed to get hostname: %s", exc)
        return HOSTNAME_PLACEHOLDER


def _get_id(name: str) -> int:
    fn = getattr(os, name, None)
    if fn is None:
        return -1
    return int(fn())


def sorted_environment(environ: Optional[Mapping[str, str]] = None) -> List[str]:
    """Brief: Return environment variables as sorted 'KEY=VALUE' strings.

    Inputs:
      - environ: Optional mapping (os.environ when None).

    Outputs:
      - list[str] sorted lexicographically.

    Example:
      >>> sorted_environment({"B": "2", "A": "1"})
      ['A=1', 'B=2']
    """

    env = os.environ if environ is None else environ
    return sorted(f"{k}={v}" for k, v in env.items())


def _format_address(address: str, netmask: Optional[str]) -> str:
    """Brief: Render an interface address in CIDR form when a netmask is known."""

    # Link-local IPv6 addresses carry a zone suffix psutil reports inline.
    bare = address.split("%", 1)[0]
    if not netmask:
        return bare
    try:
        prefix = bin(int(ipaddress.ip_address(netmask))).count("1")
    except ValueError:
        return bare
    return f"{bare}/{prefix}"


def describe_interfaces(if_addrs: Mapping[str, List[Any]]) -> Dict[str, str]:
    """Brief: Build 'addr/prefix, ... mac:xx:xx' descriptions per interface.

    Inputs:
      - if_addrs: Mapping shaped like psutil.net_if_addrs(): interface name
        to a list of snic tuples (family, address, netmask, ...).

    Outputs:
      - dict of interface name to description. Interfaces without any IPv4
        or IPv6 address are omitted.

    Example:
      >>> from collections import namedtuple
      >>> Snic = namedtuple("Snic", "family address netmask")
      >>> describe_interfaces({"lo": [Snic(socket.AF_INET, "127.0.0.1", "255.0.0.0")]})
      {'lo': '127.0.0.1/8 mac:'}
    """

    result: Dict[str, str] = {}
    for name, entries in if_addrs.items():
        addresses: List[str] = []
        hardware = ""
        for entry in entries:
            if entry.family in _IP_FAMILIES:
                addresses.append(_format_address(entry.address, entry.netmask))
            elif entry.family == psutil.AF_LINK:
                hardware = entry.address
        if addresses:
            result[name] = f"{', '.join(addresses)} mac:{hardware}"
    return result


def _collect_interfaces() -> Dict[str, str]:
    try:
        return describe_interfaces(psutil.net_if_addrs())
    except (OSError, RuntimeError) as exc:
        logger.warning("failed to enumerate network interfaces: %s", exc)
        return {}


def _collect_runtime_extras() -> Dict[str, Any]:
    extras: Dict[str, Any] = {
        "Platform": sys.platform,
        "Machine": platform.machine(),
        "PythonVersion": platform.python_version(),
        "Implementation": platform.python_implementation(),
        "NumCPU": psutil.cpu_count() or os.cpu_count() or 0,
    }
    filesystems = (
        ("RootFsSize", os.path.abspath(os.sep)),
        ("TempFsSize", tempfile.gettempdir()),
    )
    for key, path in filesystems:
        try:
            extras[key] = int(psutil.disk_usage(path).total)
        except OSError as exc:
            logger.debug("skipping %s for %s: %s", key, path, exc)
    return extras


def collect_process_facts(
    config: Configuration,
    *,
    argv: Optional[List[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ProcessFacts:
    """Brief: Collect the ProcessFacts for this process.

    Inputs:
      - config: Resolved Configuration (color, motd and proxy are copied).
      - argv: Optional argument vector (sys.argv when None).
      - environ: Optional environment mapping (os.environ when None).

    Outputs:
      - ProcessFacts; lookup failures degrade to placeholders.
    """

    args = sys.argv if argv is None else argv
    return ProcessFacts(
        background_color=config.color,
        motd=config.motd,
        hostname=_get_hostname(),
        pid=os.getpid(),
        started_at=datetime.now().astimezone().isoformat(timespec="seconds"),
        proxy_to=config.proxy,
        args=" ".join(args),
        uid=_get_id("geteuid"),
        gid=_get_id("getgid"),
        environment=sorted_environment(environ),
        runtime_extras=_collect_runtime_extras(),
        interfaces=_collect_interfaces(),
    )
