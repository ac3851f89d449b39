"""Runtime state for MCP Lookup Bridge.

Re-exports the state models so callers can write::

    from mcp_lookup_bridge.runtime import ManagedServer, ServerStatus

The orchestrator lives in :mod:`mcp_lookup_bridge.runtime.orchestrator`.
"""

from mcp_lookup_bridge.runtime.models import (
    ContainerStatus,
    ManagedServer,
    ManagedServerInfo,
    MaintenanceReport,
    ServerKind,
    ServerMode,
    ServerStatus,
)

__all__ = [
    "ContainerStatus",
    "MaintenanceReport",
    "ManagedServer",
    "ManagedServerInfo",
    "ServerKind",
    "ServerMode",
    "ServerStatus",
]
