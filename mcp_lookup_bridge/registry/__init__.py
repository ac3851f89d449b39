"""MCP Lookup directory client, models and package resolution."""

from mcp_lookup_bridge.registry.client import DirectoryClient
from mcp_lookup_bridge.registry.models import (
    InstallInstructions,
    PackageResolution,
    PackageType,
    RegistrationRequest,
    RegistrationResult,
    ServerSummary,
)
from mcp_lookup_bridge.registry.resolver import PackageResolver, generate_server_name

__all__ = [
    "DirectoryClient",
    "InstallInstructions",
    "PackageResolution",
    "PackageResolver",
    "PackageType",
    "RegistrationRequest",
    "RegistrationResult",
    "ServerSummary",
    "generate_server_name",
]
