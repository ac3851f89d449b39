"""Built-in bridge tools: directory, invocation and management.

Each tool's input schema is generated from the pydantic request model
that validates its arguments, so the advertised schema and the
validation cannot drift apart.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from mcp import types as mcp_types
from pydantic import BaseModel, Field, ValidationError

from mcp_lookup_bridge.bridge.results import error_result, json_result
from mcp_lookup_bridge.bridge.tool_invoker import InvokeRequest
from mcp_lookup_bridge.registry.models import RegistrationRequest
from mcp_lookup_bridge.runtime.models import (
    ControlRequest,
    DirectoryHealthRequest,
    DiscoverRequest,
    InstallRequest,
    SmartDiscoverRequest,
)
from mcp_lookup_bridge.runtime.orchestrator import BridgeOrchestrator
from mcp_lookup_bridge.server.surface import ToolSurface

logger = logging.getLogger(__name__)


class HealthRequest(BaseModel):
    """Arguments of ``check_managed_servers``."""

    name: Optional[str] = Field(default=None, description="Check one server; all when omitted")


class EmptyRequest(BaseModel):
    pass


def _schema(model: Type[BaseModel]) -> Dict[str, Any]:
    schema = model.model_json_schema()
    schema.pop("title", None)
    schema.setdefault("properties", {})
    return schema


def _validation_text(tool_name: str, exc: ValidationError) -> str:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}" for err in exc.errors()
    )
    return f"Invalid arguments for {tool_name}: {problems}"


def _tool(
    surface: ToolSurface,
    name: str,
    description: str,
    model: Type[BaseModel],
    run: Callable[[Any], Awaitable[mcp_types.CallToolResult]],
) -> None:
    async def _handler(arguments: Dict[str, Any]) -> mcp_types.CallToolResult:
        try:
            request = model.model_validate(arguments or {})
        except ValidationError as exc:
            return error_result(_validation_text(name, exc))
        return await run(request)

    surface.add_tool(
        mcp_types.Tool(name=name, description=description, inputSchema=_schema(model)),
        _handler,
        owner="bridge",
    )


def register_bridge_tools(surface: ToolSurface, orchestrator: BridgeOrchestrator) -> List[str]:
    """Register every built-in tool on *surface*; returns their names."""
    orch = orchestrator

    # ── Directory ───────────────────────────────────────────────────────
    _tool(
        surface,
        "discover_mcp_servers",
        "Search the MCP Lookup directory for MCP servers by keyword, intent, "
        "domain, capability or category.",
        DiscoverRequest,
        orch.discover_servers,
    )
    _tool(
        surface,
        "discover_smart",
        "Describe what you need in natural language and get ranked MCP server matches.",
        SmartDiscoverRequest,
        orch.smart_discover,
    )
    _tool(
        surface,
        "register_server",
        "Register an MCP server endpoint with the MCP Lookup directory.",
        RegistrationRequest,
        orch.register_server,
    )
    _tool(
        surface,
        "get_server_health",
        "Get the health metrics the MCP Lookup directory records for a registered server domain.",
        DirectoryHealthRequest,
        orch.directory_health,
    )

    # ── Invocation ──────────────────────────────────────────────────────
    _tool(
        surface,
        "invoke_tool",
        "Call a tool on any remote MCP server endpoint (streamable HTTP, falling back to SSE).",
        InvokeRequest,
        orch.invoke_tool,
    )

    # ── Management ──────────────────────────────────────────────────────
    _tool(
        surface,
        "install_mcp_server",
        "Install an MCP server from a package name, container image or description "
        "and expose its tools through the bridge as '<name>_<tool>'.",
        InstallRequest,
        orch.install_server,
    )

    async def _list(_: EmptyRequest) -> mcp_types.CallToolResult:
        return await orch.list_servers()

    _tool(surface, "list_managed_servers", "List servers managed by the bridge.", EmptyRequest, _list)
    _tool(
        surface,
        "control_mcp_server",
        "Start, stop, restart or remove a managed MCP server.",
        ControlRequest,
        orch.control_server,
    )

    async def _health(request: HealthRequest) -> mcp_types.CallToolResult:
        return await orch.server_health(request.name)

    _tool(
        surface,
        "check_managed_servers",
        "Health-check one managed server, or all of them, including container drift.",
        HealthRequest,
        _health,
    )

    async def _maintenance(_: EmptyRequest) -> mcp_types.CallToolResult:
        report = await orch.perform_maintenance()
        return json_result(report.model_dump(mode="json"))

    _tool(
        surface,
        "run_maintenance",
        "Restart managed servers in error state and clean up stopped containers.",
        EmptyRequest,
        _maintenance,
    )

    names = surface.tool_names()
    logger.info("Registered %d built-in tool(s).", len(names))
    return names
