"""CLI argument parsing and main entry point.

Provides two sub-commands:

* ``mcp-lookup-bridge serve``        run the bridge (stdio or streamable HTTP).
* ``mcp-lookup-bridge check-config`` validate the configuration and print a summary.

``serve`` is the default when no sub-command is given, so MCP clients can
launch the bridge with a bare ``mcp-lookup-bridge``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from mcp_lookup_bridge.config.loader import load_bridge_config
from mcp_lookup_bridge.constants import DEFAULT_LOG_LEVEL, SERVER_NAME, SERVER_VERSION
from mcp_lookup_bridge.display.logging_config import setup_logging
from mcp_lookup_bridge.errors import ConfigurationError

module_logger = logging.getLogger(__name__)

_SUBCOMMANDS = ("serve", "check-config")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-lookup-bridge",
        description=f"{SERVER_NAME}: discover, install and proxy MCP servers.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {SERVER_VERSION}")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the bridge (default).")
    serve.add_argument(
        "--transport",
        choices=["stdio", "streamable-http", "http"],
        default=None,
        help="Transport to expose; overrides server.transport from the config.",
    )
    serve.add_argument("--host", default=None, help="Bind host for streamable HTTP.")
    serve.add_argument("--port", type=int, default=None, help="Bind port for streamable HTTP.")
    serve.add_argument("--config", default=None, help="Path to config.yaml.")
    serve.add_argument(
        "--log-level",
        default=DEFAULT_LOG_LEVEL,
        help="File log level (debug, info, warning, error, critical).",
    )

    check = subparsers.add_parser("check-config", help="Validate the configuration file.")
    check.add_argument("--config", default=None, help="Path to config.yaml.")
    return parser


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or (args[0] not in _SUBCOMMANDS and args[0] not in ("-h", "--help", "--version")):
        args = ["serve", *args]
    return _build_parser().parse_args(args)


# ── ``mcp-lookup-bridge serve`` ─────────────────────────────────────────


async def _run_server(args: argparse.Namespace) -> int:
    """Async main for the serve sub-command."""
    log_fpath, cfg_log_lvl = setup_logging(args.log_level)
    module_logger.info(
        "---- %s v%s starting (file log level: %s) ----",
        SERVER_NAME,
        SERVER_VERSION,
        cfg_log_lvl,
    )

    try:
        config = load_bridge_config(args.config)
    except ConfigurationError as exc:
        module_logger.error("Configuration error: %s", exc)
        print(f"❌ Configuration error:\n{exc}", file=sys.stderr)
        return 2

    transport = args.transport or config.server.transport
    if transport == "http":
        transport = "streamable-http"
    host = args.host or config.server.host
    port = args.port or config.server.port

    from mcp_lookup_bridge.server.app import create_bridge, serve_http, serve_stdio

    orchestrator = create_bridge(config)
    if transport == "stdio":
        await serve_stdio(orchestrator)
    else:
        print(f"Serving MCP at http://{host}:{port}/mcp (log: {log_fpath})", file=sys.stderr)
        await serve_http(
            orchestrator,
            host,
            port,
            log_level=cfg_log_lvl.lower() if cfg_log_lvl == "DEBUG" else "warning",
        )
    module_logger.info("%s stopped.", SERVER_NAME)
    return 0


def _check_config(args: argparse.Namespace) -> int:
    try:
        config = load_bridge_config(args.config)
    except ConfigurationError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        return 2
    print(f"✅ Configuration valid (v{config.version})")
    print(f"   transport:   {config.server.transport}")
    print(f"   directory:   {config.directory.base_url}")
    print(f"   runtime:     {config.containers.runtime}")
    print(f"   maintenance: {config.maintenance.interval or 'disabled'}")
    print(f"   servers:     {', '.join(config.servers) or 'none'}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    if args.command == "check-config":
        return _check_config(args)
    try:
        return asyncio.run(_run_server(args))
    except KeyboardInterrupt:
        module_logger.info("Interrupted, shutting down.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
