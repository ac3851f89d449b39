"""Pydantic configuration models for MCP Lookup Bridge.

Defines the validated config structure using the versioned v1 format.
Every section is optional; an empty file yields the defaults.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from mcp_lookup_bridge.constants import (
    CALL_TIMEOUT,
    CONNECT_TIMEOUT,
    CONTAINER_CPUS,
    CONTAINER_MEMORY,
    CONTAINER_PIDS_LIMIT,
    CONTAINER_RUNTIME,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DIRECTORY_BASE_URL,
    DIRECTORY_TIMEOUT,
    KNOWN_RUNTIMES,
    MANAGED_START_TIMEOUT,
    NODE_IMAGE,
    PYTHON_IMAGE,
    RUNTIME_COMMAND_TIMEOUT,
    TOOL_LIST_TIMEOUT,
)

_SERVER_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")


class ServerSettings(BaseModel):
    """How the bridge itself is served (transport, host, port)."""

    transport: Literal["stdio", "streamable-http"] = "stdio"
    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)

    @field_validator("transport", mode="before")
    @classmethod
    def _normalise_transport(cls, v: str) -> str:
        """Accept 'http' as a shorthand for 'streamable-http'."""
        if isinstance(v, str) and v.strip().lower() == "http":
            return "streamable-http"
        return v


class DirectorySettings(BaseModel):
    """MCP Lookup directory API client settings."""

    base_url: str = DIRECTORY_BASE_URL
    api_key: Optional[str] = Field(
        default=None,
        description="Bearer token for the directory. Also MCPLOOKUP_API_KEY env var.",
    )
    timeout: float = Field(default=DIRECTORY_TIMEOUT, gt=0)

    @field_validator("base_url")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v

    @field_validator("api_key", mode="before")
    @classmethod
    def _drop_unexpanded(cls, v: Any) -> Any:
        """Treat an unexpanded ``${VAR}`` placeholder as unset."""
        if isinstance(v, str) and (not v.strip() or v.startswith("${")):
            return None
        return v


class InvokerSettings(BaseModel):
    """Timeouts for ad-hoc and proxied tool calls."""

    connect_timeout: float = Field(
        default=CONNECT_TIMEOUT, gt=0, description="Seconds per transport attempt."
    )
    call_timeout: float = Field(default=CALL_TIMEOUT, gt=0, description="Seconds per tool call.")


class ContainerSettingsConfig(BaseModel):
    """Container runtime, base images and resource ceilings."""

    runtime: str = CONTAINER_RUNTIME
    node_image: str = NODE_IMAGE
    python_image: str = PYTHON_IMAGE
    memory: Optional[str] = CONTAINER_MEMORY
    cpus: Optional[str] = CONTAINER_CPUS
    pids_limit: int = Field(default=CONTAINER_PIDS_LIMIT, ge=1)
    command_timeout: float = Field(default=RUNTIME_COMMAND_TIMEOUT, gt=0)

    @field_validator("runtime")
    @classmethod
    def _known_runtime(cls, v: str) -> str:
        if v not in KNOWN_RUNTIMES:
            raise ValueError(f"runtime must be one of: {', '.join(sorted(KNOWN_RUNTIMES))}")
        return v

    @field_validator("cpus", mode="before")
    @classmethod
    def _cpus_as_str(cls, v: Any) -> Any:
        if isinstance(v, (int, float)):
            return str(v)
        return v


class RegistrySettings(BaseModel):
    """Managed-server start timeouts."""

    start_timeout: float = Field(
        default=MANAGED_START_TIMEOUT,
        gt=0,
        description="Seconds for a managed server to install and initialize.",
    )
    list_timeout: float = Field(default=TOOL_LIST_TIMEOUT, gt=0)


class MaintenanceSettings(BaseModel):
    """Periodic auto-restart / cleanup sweep."""

    interval: float = Field(
        default=0, ge=0, description="Seconds between sweeps; 0 disables the scheduler."
    )


class PreinstalledServer(BaseModel):
    """A package installed when the bridge starts."""

    package: str = Field(min_length=1)
    env: Dict[str, str] = Field(default_factory=dict)
    auto_start: bool = True


class BridgeConfig(BaseModel):
    """Top-level validated configuration for MCP Lookup Bridge.

    Supports version ``"1"`` format::

        {
            "version": "1",
            "server": {"transport": "stdio"},
            "directory": {"api_key": "${MCPLOOKUP_API_KEY}"},
            "servers": {
                "filesystem": {"package": "@modelcontextprotocol/server-filesystem"}
            }
        }
    """

    version: str = "1"
    server: ServerSettings = Field(default_factory=ServerSettings)
    directory: DirectorySettings = Field(default_factory=DirectorySettings)
    invoker: InvokerSettings = Field(default_factory=InvokerSettings)
    containers: ContainerSettingsConfig = Field(default_factory=ContainerSettingsConfig)
    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    maintenance: MaintenanceSettings = Field(default_factory=MaintenanceSettings)
    servers: Dict[str, PreinstalledServer] = Field(default_factory=dict)

    @field_validator("version", mode="before")
    @classmethod
    def _version_str(cls, v: Any) -> Any:
        if isinstance(v, (int, float)):
            v = str(int(v))
        if v != "1":
            raise ValueError(f"Unsupported config version '{v}' (expected \"1\")")
        return v

    @field_validator("servers")
    @classmethod
    def _validate_server_names(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        for name in v:
            if not _SERVER_NAME_RE.match(name):
                raise ValueError(
                    f"Server name '{name}' must be lowercase letters, digits and hyphens"
                )
        return v
