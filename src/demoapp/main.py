from __future__ import annotations

import logging
from typing import List

from ._errors import ConfigError
from .config.config_parser import resolve_config
from .config.logging_config import init_logging
from .facts import collect_process_facts
from .probes import build_probes
from .servers.webserver import bind_listener, create_app, format_listen_address, run_server

logger = logging.getLogger("demoapp.main")


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for the demo web server.
    Resolves configuration, collects process facts, selects health probes,
    binds the listener and serves until SIGINT/SIGTERM.

    Args:
        argv: Command-line arguments (sys.argv[1:] when None).

    Returns:
        An exit code: 0 after a clean shutdown, 1 on a startup failure.

    Example use:
        CLI:
            PYTHONPATH=src python -m demoapp.main --listen :9090 --color red
            OVERRIDE_MOTD=@/etc/motd demoapp
    """
    # Messages emitted while resolving configuration (e.g. an unreadable
    # motd file) go to stderr with the default level.
    init_logging(None)
    try:
        config = resolve_config(argv)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    init_logging({"level": config.log_level, "file": config.log_file or None})
    facts = collect_process_facts(config)

    try:
        probes = build_probes(config)
        host, port = config.listen_host_port
        sock = bind_listener(host, port)
    except ConfigError as exc:
        logger.error("%s", exc)
        return 1

    if config.proxy:
        logger.info("Proxying requests to url=%s", config.proxy)
    logger.info("Listening address=%s", format_listen_address(sock))

    app = create_app(config, facts, probes)
    try:
        started = run_server(app, sock)
    except Exception:
        logger.exception("Server stopped unexpectedly")
        return 1
    finally:
        sock.close()

    if not started:
        logger.error("Server failed to start")
        return 1
    logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
