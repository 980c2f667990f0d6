from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Any, Dict, List, Mapping, Optional

from .client import lookup
from .config.logging_config import init_logging
from .config.settings import load_settings
from .errors import LookupFailure
from .transports.udp import UDPTransport


def _debug_from_env(environ: Mapping[str, str]) -> bool:
    """DEBUG enables debug output when set to any non-empty value."""
    return bool(environ.get("DEBUG", ""))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="iplookup",
        description="Query a STUN server for this host's public IP address",
        epilog="Env: DEBUG: enabled with any non-empty value",
    )
    parser.add_argument(
        "server",
        nargs="?",
        help="STUN server as host:port (default port 3478); "
        "falls back to 'server' from the config file",
    )
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log request/response bytes and backoff intervals to stderr",
    )
    parser.add_argument(
        "--timeout",
        dest="budget",
        type=float,
        default=None,
        help="Total seconds to wait across all attempts (default 31)",
    )
    parser.add_argument(
        "--initial-interval",
        type=float,
        default=None,
        help="Seconds to wait for the first response (default 1)",
    )
    parser.add_argument(
        "--source-ip", default=None, help="Local address to send from"
    )
    return parser


def main(
    argv: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None
) -> int:
    """
    Main entry point: resolve the server, run one lookup, print the address.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:]).
        environ: Environment mapping (defaults to os.environ).

    Returns:
        0 on success, 1 on any lookup or configuration failure.

    Example use:
        CLI:
            iplookup stun.l.google.com:19302
            DEBUG=1 python -m iplookup stun.l.google.com:19302
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    env = os.environ if environ is None else environ
    debug = bool(args.debug) or _debug_from_env(env)

    overrides: Dict[str, Any] = {
        "budget": args.budget,
        "initial_interval": args.initial_interval,
        "source_ip": args.source_ip,
    }
    try:
        settings = load_settings(args.config, overrides)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    try:
        init_logging(settings.logging, debug=debug)
    except OSError as exc:
        print(f"Failed to set up logging: {exc}", file=sys.stderr)
        return 1
    logger = logging.getLogger("iplookup.main")

    server = args.server or settings.server
    if not server:
        parser.print_usage(sys.stderr)
        logger.error("Missing required argument: server")
        return 1

    try:
        with UDPTransport(
            source_ip=settings.source_ip, recv_buffer=settings.recv_buffer
        ) as transport:
            result = lookup(server, transport, settings=settings, debug=debug)
    except LookupFailure as exc:
        logger.error("%s", exc)
        return 1

    print(result.address)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
