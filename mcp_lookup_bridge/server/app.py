"""Serving the bridge over stdio or streamable HTTP.

:func:`create_bridge` builds the orchestrator and registers the built-in
tools. :func:`serve_stdio` runs one MCP session over stdin/stdout;
:func:`create_http_app` mounts a :class:`StreamableHTTPSessionManager`
in a Starlette app served by uvicorn.
"""

import contextlib
import logging
from typing import Any, AsyncIterator, Optional

import uvicorn
from mcp.server.stdio import stdio_server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route

from mcp_lookup_bridge.config.schema import BridgeConfig
from mcp_lookup_bridge.constants import HTTP_ENDPOINT, SERVER_NAME, SERVER_VERSION
from mcp_lookup_bridge.runtime.maintenance import MaintenanceScheduler
from mcp_lookup_bridge.runtime.orchestrator import BridgeOrchestrator
from mcp_lookup_bridge.server.tools import register_bridge_tools

logger = logging.getLogger(__name__)


def create_bridge(config: Optional[BridgeConfig] = None) -> BridgeOrchestrator:
    """Build an orchestrator with every built-in tool registered."""
    orchestrator = BridgeOrchestrator(config)
    register_bridge_tools(orchestrator.surface, orchestrator)
    return orchestrator


@contextlib.asynccontextmanager
async def bridge_lifespan(orchestrator: BridgeOrchestrator) -> AsyncIterator[BridgeOrchestrator]:
    """Startup (preinstalled servers, maintenance) and orderly shutdown."""
    scheduler: Optional[MaintenanceScheduler] = None
    try:
        if orchestrator.config.servers:
            await orchestrator.install_preconfigured()
        interval = orchestrator.config.maintenance.interval
        if interval > 0:
            scheduler = MaintenanceScheduler(orchestrator.perform_maintenance, interval)
            scheduler.start()
        logger.info("---- %s v%s ready ----", SERVER_NAME, SERVER_VERSION)
        yield orchestrator
    finally:
        if scheduler is not None:
            await scheduler.stop()
        await orchestrator.close()


async def serve_stdio(orchestrator: BridgeOrchestrator) -> None:
    """Serve a single MCP session over stdin/stdout until EOF."""
    surface = orchestrator.surface
    async with bridge_lifespan(orchestrator):
        async with stdio_server() as (read_stream, write_stream):
            logger.info("Serving MCP over stdio.")
            await surface.server.run(
                read_stream,
                write_stream,
                surface.create_initialization_options(),
            )


def create_http_app(orchestrator: BridgeOrchestrator) -> Starlette:
    """Starlette app exposing MCP at ``/mcp`` and a JSON ``/health`` route."""
    session_manager = StreamableHTTPSessionManager(orchestrator.surface.server)

    @contextlib.asynccontextmanager
    async def lifespan(_: Starlette) -> AsyncIterator[None]:
        async with bridge_lifespan(orchestrator):
            async with session_manager.run():
                yield

    async def streamable_http_app(scope: Any, receive: Any, send: Any) -> None:
        await session_manager.handle_request(scope, receive, send)

    async def health(_: Request) -> JSONResponse:
        report = await orchestrator.health_check()
        status_code = 200 if report["status"] == "healthy" else 503
        return JSONResponse(report, status_code=status_code)

    return Starlette(
        routes=[
            Route("/health", endpoint=health, methods=["GET"]),
            Mount(HTTP_ENDPOINT, app=streamable_http_app),
        ],
        lifespan=lifespan,
    )


async def serve_http(orchestrator: BridgeOrchestrator, host: str, port: int, log_level: str = "warning") -> None:
    """Serve the streamable-HTTP app with uvicorn."""
    app = create_http_app(orchestrator)
    config = uvicorn.Config(app, host=host, port=port, log_config=None, log_level=log_level)
    server = uvicorn.Server(config)
    logger.info("Serving MCP over streamable HTTP at http://%s:%s%s", host, port, HTTP_ENDPOINT)
    await server.serve()
