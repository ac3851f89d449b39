"""Mirror of managed servers' tools on the bridge's own surface.

Each tool ``t`` of a running managed server ``s`` is exposed as
``s_t``. The proxy handler looks the live session up at call time and
forwards through :class:`ToolInvoker`, so a stopped server answers with an
error result instead of a stale connection.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

from mcp import ClientSession
from mcp import types as mcp_types

from mcp_lookup_bridge.bridge.results import error_result
from mcp_lookup_bridge.bridge.tool_invoker import ToolInvoker
from mcp_lookup_bridge.constants import TOOL_NAME_SEPARATOR
from mcp_lookup_bridge.errors import ToolRegistrationError
from mcp_lookup_bridge.runtime.models import ManagedServer

logger = logging.getLogger(__name__)

SessionLookup = Callable[[str], Optional[ClientSession]]


class ToolHost(Protocol):
    """What :class:`DynamicToolRegistry` needs from the tool-serving surface."""

    def add_tool(self, tool: mcp_types.Tool, handler: Any, *, owner: Optional[str] = None) -> None: ...

    def remove_tool(self, name: str) -> bool: ...

    def has_tool(self, name: str) -> bool: ...


def namespaced_tool_name(server_name: str, tool_name: str) -> str:
    return f"{server_name}{TOOL_NAME_SEPARATOR}{tool_name}"


class DynamicToolRegistry:
    """Registers and unregisters proxy tools per managed server.

    Args:
        surface: Host surface that serves the proxy tools.
        invoker: Invoker used to call the downstream tool.
        session_lookup: Returns the live session of a server name, or
            ``None`` when it is not running.
    """

    def __init__(
        self,
        surface: ToolHost,
        invoker: ToolInvoker,
        session_lookup: SessionLookup,
    ) -> None:
        self._surface = surface
        self._invoker = invoker
        self._session_lookup = session_lookup
        self._registered: Dict[str, List[str]] = {}

    def add_server_tools(self, server_name: str, server: ManagedServer) -> List[str]:
        """Register a proxy for each tool in ``server.tools``.

        A rejected registration rolls back this server's proxies and
        raises :class:`ToolRegistrationError`.
        """
        if server_name in self._registered:
            self.remove_server_tools(server_name)
        added: List[str] = []
        try:
            for tool in server.tools:
                proxy = self._proxy_tool(server_name, tool)
                self._surface.add_tool(
                    proxy, self._make_handler(server_name, tool.name), owner=server_name
                )
                added.append(proxy.name)
        except ToolRegistrationError:
            logger.error("[%s] Tool registration rejected; rolling back %d tool(s).", server_name, len(added))
            for name in added:
                self._surface.remove_tool(name)
            raise
        self._registered[server_name] = added
        logger.info("[%s] Registered %d proxy tool(s).", server_name, len(added))
        return list(added)

    def remove_server_tools(self, server_name: str) -> int:
        names = self._registered.pop(server_name, [])
        for name in names:
            self._surface.remove_tool(name)
        if names:
            logger.info("[%s] Unregistered %d proxy tool(s).", server_name, len(names))
        return len(names)

    def refresh_server_tools(self, server_name: str, server: ManagedServer) -> List[str]:
        self.remove_server_tools(server_name)
        return self.add_server_tools(server_name, server)

    def get_server_tools(self, server_name: str) -> List[str]:
        return list(self._registered.get(server_name, []))

    def has_server(self, server_name: str) -> bool:
        return server_name in self._registered

    def is_tool_registered(self, tool_name: str) -> bool:
        return any(tool_name in names for names in self._registered.values())

    def get_stats(self) -> Dict[str, Any]:
        counts = {name: len(tools) for name, tools in self._registered.items()}
        return {
            "total_servers": len(counts),
            "total_tools": sum(counts.values()),
            "server_tool_counts": counts,
        }

    def export_state(self) -> Dict[str, List[str]]:
        return {name: list(tools) for name, tools in self._registered.items()}

    def clear_all(self) -> None:
        for server_name in list(self._registered):
            self.remove_server_tools(server_name)

    # ── proxies ─────────────────────────────────────────────────────────

    @staticmethod
    def _proxy_tool(server_name: str, tool: mcp_types.Tool) -> mcp_types.Tool:
        description = tool.description or f"{tool.name} tool"
        return mcp_types.Tool(
            name=namespaced_tool_name(server_name, tool.name),
            description=f"[{server_name}] {description}",
            inputSchema=tool.inputSchema or {"type": "object", "properties": {}},
            outputSchema=tool.outputSchema,
            annotations=tool.annotations,
        )

    def _make_handler(self, server_name: str, tool_name: str):
        async def _handler(arguments: Dict[str, Any]) -> mcp_types.CallToolResult:
            session = self._session_lookup(server_name)
            if session is None:
                return error_result(
                    f"Failed to invoke {tool_name}: Server '{server_name}' is not running"
                )
            return await self._invoker.call_session(session, tool_name, arguments, label=server_name)

        return _handler
