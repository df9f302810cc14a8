"""Command-line and environment configuration for demoapp.

Brief:
  This module resolves the effective Configuration used by the CLI
  entrypoint. It centralizes:
    - the ordered list of supported options (name, default, parser, help)
    - argparse wiring that raises ConfigError instead of exiting
    - OVERRIDE_<NAME> environment overrides (environment beats flags)
    - the "random" color and "@path" motd special cases
    - validation of the proxy target and listen address

Inputs:
  - argv list and environment mapping

Outputs:
  - Frozen Configuration model
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import random
import urllib.parse
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .._errors import ConfigError
from .logging_config import parse_level

logger = logging.getLogger("demoapp.config")

ENV_PREFIX = "OVERRIDE_"
DEFAULT_LISTEN_ADDR = ":8080"
DEFAULT_COLOR = "random"
DEFAULT_MOTD = "Hello World"
DEFAULT_RATE_LIMIT = 100
RANDOM_COLOR = "random"


def _parse_log_level(value: str) -> str:
    """Brief: Validate a log level name and return it lowercased."""

    parse_level(value)
    return str(value).strip().lower()


def _parse_positive_int(value: str) -> int:
    """Brief: Parse a strictly positive integer.

    Inputs:
      - value: Decimal string.

    Outputs:
      - int > 0.

    Raises:
      - ValueError: When value is not an integer or is <= 0.
    """

    number = int(str(value).strip())
    if number <= 0:
        raise ValueError(f"expected a positive integer, got {number}")
    return number


@dataclasses.dataclass(frozen=True)
class OptionSpec:
    """Brief: Describe one configurable option.

    Inputs (fields):
      - name: Flag name without leading dashes (e.g. 'log-level').
      - default: Value used when neither flag nor environment sets it.
      - parser: Callable turning a raw string into the typed value; raises
        ValueError/TypeError on malformed input.
      - help: Help text for --help.

    Outputs:
      - OptionSpec instance.

    Example:
      >>> OptionSpec("motd", "Hello World", str, "message").env_name
      'OVERRIDE_MOTD'
    """

    name: str
    default: Any
    parser: Callable[[str], Any]
    help: str

    @property
    def dest(self) -> str:
        return self.name.replace("-", "_")

    @property
    def env_name(self) -> str:
        return ENV_PREFIX + self.name.upper().replace("-", "_")


# Resolved top to bottom.
OPTIONS: Tuple[OptionSpec, ...] = (
    OptionSpec("listen", DEFAULT_LISTEN_ADDR, str, "the address to listen on"),
    OptionSpec("color", DEFAULT_COLOR, str, "the background color to display"),
    OptionSpec(
        "proxy", "", str, "forward the request to the given http or https endpoint"
    ),
    OptionSpec(
        "motd",
        DEFAULT_MOTD,
        str,
        "specify a message of the day, prefix with '@' to read from a file",
    ),
    OptionSpec(
        "redis", "", str, "optional redis url 'redis://<user>:<pass>@<host>:<port>'"
    ),
    OptionSpec(
        "postgres",
        "",
        str,
        "optional postgres url 'postgres://<user>:<pass>@<host>:<port>/<database>'",
    ),
    OptionSpec(
        "mysql", "", str, "optional mysql dsn 'username:password@tcp(host:port)/dbname'"
    ),
    OptionSpec(
        "log-level", "info", _parse_log_level, "log level: debug, info, warn, error, crit"
    ),
    OptionSpec("log-file", "", str, "optional path of an additional log file"),
    OptionSpec(
        "rate-limit",
        DEFAULT_RATE_LIMIT,
        _parse_positive_int,
        "maximum requests per second accepted from a single client",
    ),
)


def parse_listen_address(address: str) -> Tuple[str, int]:
    """Brief: Split a '[host]:port' listen address.

    Inputs:
      - address: e.g. ':8080', '127.0.0.1:8080', '[::1]:8080'.

    Outputs:
      - (host, port): host is '' for all interfaces; brackets are removed.

    Raises:
      - ValueError: For a missing colon or a port outside 0..65535.

    Example:
      >>> parse_listen_address("[::1]:9000")
      ('::1', 9000)
    """

    if ":" not in address:
        raise ValueError(f"missing port in address {address!r}")
    host, _, port_text = address.rpartition(":")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"invalid port {port_text!r} in address {address!r}") from None
    if not 0 <= port <= 65535:
        raise ValueError(f"port {port} out of range in address {address!r}")
    return host, port


class Configuration(BaseModel):
    """Brief: Effective, immutable process configuration.

    Inputs (fields):
      - listen: '[host]:port' listen address.
      - color: Resolved CSS background color (never 'random').
      - proxy: Optional http/https URL of the next instance.
      - motd: Message of the day (file contents when loaded via '@path').
      - redis, postgres, mysql: Optional backend connection strings.
      - log_level, log_file: Logging options.
      - rate_limit: Requests per second per client.

    Outputs:
      - Frozen pydantic model.
    """

    model_config = ConfigDict(frozen=True)

    listen: str = DEFAULT_LISTEN_ADDR
    color: str = "#ffffff"
    proxy: str = ""
    motd: str = DEFAULT_MOTD
    redis: str = ""
    postgres: str = ""
    mysql: str = ""
    log_level: str = "info"
    log_file: str = ""
    rate_limit: int = DEFAULT_RATE_LIMIT

    @field_validator("listen")
    @classmethod
    def _check_listen(cls, value: str) -> str:
        parse_listen_address(value)
        return value

    @field_validator("proxy")
    @classmethod
    def _check_proxy(cls, value: str) -> str:
        if not value:
            return value
        parsed = urllib.parse.urlsplit(value)
        if parsed.scheme not in ("http", "https"):
            raise ValueError(f"invalid scheme {parsed.scheme!r}, expected http or https")
        if not parsed.netloc:
            raise ValueError("proxy url has no host")
        return value

    @field_validator("rate_limit")
    @classmethod
    def _check_rate_limit(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @property
    def listen_host_port(self) -> Tuple[str, int]:
        return parse_listen_address(self.listen)


class _ConfigArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises ConfigError instead of exiting with status 2."""

    def error(self, message: str):  # type: ignore[override]
        raise ConfigError(message)


def build_arg_parser() -> argparse.ArgumentParser:
    """Brief: Build the CLI parser from OPTIONS.

    Inputs:
      - None.

    Outputs:
      - argparse.ArgumentParser with one --<name> flag per OptionSpec.
    """

    parser = _ConfigArgumentParser(
        prog="demoapp",
        allow_abbrev=False,
        description=(
            "Diagnostic web page for deployment demos. Every flag can be "
            f"overridden by an {ENV_PREFIX}<FLAG> environment variable."
        ),
    )
    for spec in OPTIONS:
        parser.add_argument(
            f"--{spec.name}",
            dest=spec.dest,
            default=spec.default,
            type=spec.parser,
            help=f"{spec.help} (env {spec.env_name}, default {spec.default!r})",
        )
    return parser


def apply_env_overrides(
    values: Dict[str, Any], environ: Mapping[str, str]
) -> Dict[str, Any]:
    """Brief: Replace option values with non-empty OVERRIDE_<NAME> variables.

    Inputs:
      - values: Mapping of option dest -> current value (mutated in place).
      - environ: Environment mapping.

    Outputs:
      - dict: The same mapping, for chaining.

    Raises:
      - ConfigError: When an override cannot be parsed for its option.
    """

    for spec in OPTIONS:
        raw = environ.get(spec.env_name)
        if not raw:
            continue
        try:
            values[spec.dest] = spec.parser(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"failed to set '{spec.name}': {exc}") from exc
    return values


def random_color(rng: Optional[random.Random] = None) -> str:
    """Brief: Generate a light '#rrggbb' color.

    Inputs:
      - rng: Optional random.Random instance (module RNG when None).

    Outputs:
      - str color whose channels are each (randrange(256) + 255) // 2,
        i.e. always within [127, 255].

    Example:
      >>> random_color(random.Random(1)).startswith("#")
      True
    """

    source = rng or random
    channels = [(source.randrange(256) + 255) // 2 for _ in range(3)]
    return "#" + "".join(f"{c:02x}" for c in channels)


def load_motd(motd: str) -> str:
    """Brief: Resolve '@path' motd values to the file's contents.

    Inputs:
      - motd: Configured message of the day.

    Outputs:
      - str: File contents when motd starts with '@' and the file is
        readable; otherwise motd unchanged. Read errors are logged, not raised.
    """

    if not motd.startswith("@"):
        return motd
    path = motd[1:]
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except OSError as exc:
        logger.error("failed to read motd file %s: %s", path, exc)
        return motd


def resolve_config(
    argv: Optional[List[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
    *,
    rng: Optional[random.Random] = None,
) -> Configuration:
    """Brief: Resolve the effective Configuration from defaults, flags and env.

    Inputs:
      - argv: Command-line arguments without the program name (sys.argv[1:]
        when None).
      - environ: Environment mapping (os.environ when None).
      - rng: Optional random.Random used for the 'random' color.

    Outputs:
      - Configuration: frozen model.

    Raises:
      - ConfigError: For unknown/positional arguments, malformed flags or
        overrides, an invalid proxy URL or listen address.

    Precedence:
      - default < --flag < OVERRIDE_<FLAG> environment variable.

    Example:
      >>> cfg = resolve_config(["--color", "red"], {"OVERRIDE_COLOR": "blue"})
      >>> cfg.color
      'blue'
    """

    env = os.environ if environ is None else environ
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    values = apply_env_overrides(vars(args), env)

    if values["color"] == RANDOM_COLOR:
        values["color"] = random_color(rng)
    values["motd"] = load_motd(values["motd"])

    try:
        return Configuration(**values)
    except ValidationError as exc:
        problems = "; ".join(
            f"invalid {'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigError(problems) from exc
