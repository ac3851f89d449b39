"""
MCP Lookup Bridge - a local bridge to MCP servers found in the MCP Lookup directory.

The bridge installs downstream MCP servers as hardened containers, keeps
their lifecycle (start, stop, restart, health, cleanup), exposes their
tools as namespaced ``<server>_<tool>`` tools of its own, and proxies
ad-hoc calls to remote MCP endpoints.
"""

from mcp_lookup_bridge.constants import SERVER_NAME, SERVER_VERSION

__version__ = SERVER_VERSION
__app_name__ = SERVER_NAME

__all__ = [
    "SERVER_NAME",
    "SERVER_VERSION",
    "__version__",
    "__app_name__",
]
