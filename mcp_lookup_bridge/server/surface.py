"""The bridge's own tool-serving surface.

:class:`ToolSurface` owns the handler table (tool name → definition and
coroutine) and installs the ``tools/list`` and ``tools/call`` handlers on
an MCP low-level :class:`~mcp.server.lowlevel.Server`. Tools can be added
and removed at any time; each change sends a best-effort
``notifications/tools/list_changed`` to the session of the request that
caused it. Handler results are returned to the client as they are,
including error results and ``structuredContent``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from mcp import types as mcp_types
from mcp.server.lowlevel import NotificationOptions, Server as McpServer

from mcp_lookup_bridge.bridge.results import error_result
from mcp_lookup_bridge.constants import SERVER_NAME, SERVER_VERSION
from mcp_lookup_bridge.errors import ToolRegistrationError

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Awaitable[mcp_types.CallToolResult]]

SERVER_INSTRUCTIONS = (
    "Discover MCP servers in the MCP Lookup directory, install them locally "
    "and call their tools through this bridge. Installed servers expose their "
    "tools as '<server>_<tool>'."
)


@dataclass(frozen=True)
class _Entry:
    tool: mcp_types.Tool
    handler: ToolHandler
    owner: Optional[str] = None


class ToolSurface:
    """Dynamic tool table served over MCP.

    Parameters
    ----------
    server:
        Low-level MCP server to install handlers on; a new one named
        ``mcp-lookup-bridge`` is created when omitted.
    """

    def __init__(self, server: Optional[McpServer] = None) -> None:
        self._server = server or McpServer(
            SERVER_NAME, version=SERVER_VERSION, instructions=SERVER_INSTRUCTIONS
        )
        self._entries: Dict[str, _Entry] = {}
        self._notify_tasks: Set[asyncio.Task] = set()
        self._install_handlers()

    @property
    def server(self) -> McpServer:
        return self._server

    def create_initialization_options(self) -> Any:
        return self._server.create_initialization_options(
            notification_options=NotificationOptions(tools_changed=True)
        )

    # ── Handler table ───────────────────────────────────────────────────

    def add_tool(self, tool: mcp_types.Tool, handler: ToolHandler, *, owner: Optional[str] = None) -> None:
        """Register *tool*; raises :class:`ToolRegistrationError` if the name is taken."""
        existing = self._entries.get(tool.name)
        if existing is not None:
            raise ToolRegistrationError(tool.name, existing.owner)
        self._entries[tool.name] = _Entry(tool=tool, handler=handler, owner=owner)
        logger.debug("Tool registered: %s", tool.name)
        self._notify_tools_changed()

    def remove_tool(self, name: str) -> bool:
        if self._entries.pop(name, None) is None:
            return False
        logger.debug("Tool unregistered: %s", name)
        self._notify_tools_changed()
        return True

    def has_tool(self, name: str) -> bool:
        return name in self._entries

    def tool_names(self) -> List[str]:
        return list(self._entries)

    def list_tools(self) -> List[mcp_types.Tool]:
        return [entry.tool for entry in self._entries.values()]

    async def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> mcp_types.CallToolResult:
        entry = self._entries.get(name)
        if entry is None:
            return error_result(f"Unknown tool: {name}")
        return await entry.handler(arguments or {})

    def close(self) -> None:
        """Drop every registration and cancel pending notifications."""
        self._entries.clear()
        for task in list(self._notify_tasks):
            task.cancel()
        self._notify_tasks.clear()

    # ── MCP wiring ──────────────────────────────────────────────────────

    def _install_handlers(self) -> None:
        @self._server.list_tools()
        async def handle_list_tools() -> List[mcp_types.Tool]:
            tools = self.list_tools()
            logger.debug("Returning %d tool(s).", len(tools))
            return tools

        @self._server.call_tool()
        async def handle_call_tool(name: str, arguments: Optional[Dict[str, Any]]) -> mcp_types.CallToolResult:
            logger.info("Tool call: %s", name)
            return await self.call(name, arguments)

    def _notify_tools_changed(self) -> None:
        try:
            session = self._server.request_context.session
        except LookupError:
            return
        task = asyncio.create_task(self._send_tools_changed(session))
        self._notify_tasks.add(task)
        task.add_done_callback(self._notify_tasks.discard)

    @staticmethod
    async def _send_tools_changed(session: Any) -> None:
        try:
            await session.send_tool_list_changed()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug("tools/list_changed notification not delivered: %s", exc)
