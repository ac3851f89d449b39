"""Configuration loading and validation for MCP Lookup Bridge."""

from mcp_lookup_bridge.config.env import expand_env_vars
from mcp_lookup_bridge.config.loader import (
    find_config_file,
    load_bridge_config,
    parse_bridge_config,
)
from mcp_lookup_bridge.config.schema import (
    BridgeConfig,
    ContainerSettingsConfig,
    DirectorySettings,
    InvokerSettings,
    MaintenanceSettings,
    PreinstalledServer,
    RegistrySettings,
    ServerSettings,
)

__all__ = [
    "BridgeConfig",
    "ContainerSettingsConfig",
    "DirectorySettings",
    "InvokerSettings",
    "MaintenanceSettings",
    "PreinstalledServer",
    "RegistrySettings",
    "ServerSettings",
    "expand_env_vars",
    "find_config_file",
    "load_bridge_config",
    "parse_bridge_config",
]
