"""Bridge subpackage - downstream connections, managed servers and proxy tools."""

from mcp_lookup_bridge.bridge.connection_cache import ConnectionCache
from mcp_lookup_bridge.bridge.container import ContainerLauncher, ContainerSettings, LaunchOptions
from mcp_lookup_bridge.bridge.dynamic_tools import DynamicToolRegistry
from mcp_lookup_bridge.bridge.server_registry import ManagedServerRegistry
from mcp_lookup_bridge.bridge.tool_invoker import InvokeRequest, ToolInvoker

__all__ = [
    "ConnectionCache",
    "ContainerLauncher",
    "ContainerSettings",
    "DynamicToolRegistry",
    "InvokeRequest",
    "LaunchOptions",
    "ManagedServerRegistry",
    "ToolInvoker",
]
