"""Runtime state models for MCP Lookup Bridge.

These models serve dual purpose:
1. Internal state of the managed-server table (:class:`ManagedServer`)
2. Snapshot / report shapes returned by the management tools
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from mcp import types as mcp_types
from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServerKind(str, Enum):
    """How a managed server was launched."""

    PROCESS_PACKAGE = "process-package"
    CONTAINER_PACKAGE = "container-package"


class ServerMode(str, Enum):
    """How a managed server's tools reach the caller.

    Only ``BRIDGE`` (tools proxied by the bridge) is handled here.
    """

    BRIDGE = "bridge"
    DIRECT = "direct"


class ServerStatus(str, Enum):
    """Lifecycle states for a managed server.

    Transitions::

        INSTALLING → RUNNING | ERROR | STOPPED
        RUNNING    → STOPPED | ERROR
        STOPPED    → RUNNING | ERROR | STOPPED
        ERROR      → RUNNING | STOPPED | ERROR
    """

    INSTALLING = "installing"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


# Valid status transitions: current status → set of allowed next statuses
_STATUS_TRANSITIONS: Dict[ServerStatus, frozenset[ServerStatus]] = {
    ServerStatus.INSTALLING: frozenset(
        {ServerStatus.RUNNING, ServerStatus.ERROR, ServerStatus.STOPPED}
    ),
    ServerStatus.RUNNING: frozenset({ServerStatus.STOPPED, ServerStatus.ERROR}),
    ServerStatus.STOPPED: frozenset(
        {ServerStatus.RUNNING, ServerStatus.ERROR, ServerStatus.STOPPED}
    ),
    ServerStatus.ERROR: frozenset({ServerStatus.RUNNING, ServerStatus.STOPPED, ServerStatus.ERROR}),
}


def is_valid_status_transition(current: ServerStatus, target: ServerStatus) -> bool:
    """Check whether a server status transition is allowed."""
    return target in _STATUS_TRANSITIONS.get(current, frozenset())


class ContainerStatus(str, Enum):
    """Container state as reported by the container runtime."""

    RUNNING = "running"
    STOPPED = "stopped"
    NOT_FOUND = "not_found"


# ── Managed server record ───────────────────────────────────────────────


class ManagedServerInfo(BaseModel):
    """Read-only snapshot of a :class:`ManagedServer`."""

    name: str
    kind: ServerKind
    mode: ServerMode = ServerMode.BRIDGE
    status: ServerStatus
    package: str = ""
    command: List[str] = Field(default_factory=list)
    container_name: Optional[str] = None
    tools: List[str] = Field(default_factory=list)
    tool_count: int = 0
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


@dataclass
class ManagedServer:
    """One locally-installed MCP server.

    ``connection`` is set only while ``status`` is ``RUNNING`` and is
    owned by the registry entry.
    """

    name: str
    kind: ServerKind
    command: List[str]
    mode: ServerMode = ServerMode.BRIDGE
    env: Dict[str, str] = field(default_factory=dict)
    package: str = ""
    container_name: Optional[str] = None
    status: ServerStatus = ServerStatus.INSTALLING
    tools: List[mcp_types.Tool] = field(default_factory=list)
    connection: Optional[Any] = field(default=None, repr=False)
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_container(self) -> bool:
        return self.kind is ServerKind.CONTAINER_PACKAGE

    @property
    def tool_names(self) -> List[str]:
        return [t.name for t in self.tools]

    def transition(self, target: ServerStatus, message: str = "") -> None:
        """Move to *target*, recording *message* as the last error for ``ERROR``.

        Raises :class:`ValueError` if the transition is invalid.
        """
        if not is_valid_status_transition(self.status, target):
            raise ValueError(
                f"Invalid server transition for '{self.name}': "
                f"{self.status.value} → {target.value}"
            )
        self.status = target
        self.updated_at = _utcnow()
        if target is ServerStatus.ERROR:
            self.last_error = message or self.last_error
        elif target is ServerStatus.RUNNING:
            self.last_error = None

    def to_info(self) -> ManagedServerInfo:
        return ManagedServerInfo(
            name=self.name,
            kind=self.kind,
            mode=self.mode,
            status=self.status,
            package=self.package,
            command=list(self.command),
            container_name=self.container_name,
            tools=self.tool_names,
            tool_count=len(self.tools),
            last_error=self.last_error,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


# ── Health / stats / maintenance reports ────────────────────────────────


class ServerHealth(BaseModel):
    """Result of a single-server health check."""

    name: str
    status: ServerStatus
    tool_count: int = 0
    container_status: Optional[ContainerStatus] = None
    last_error: Optional[str] = None
    checked_at: datetime = Field(default_factory=_utcnow)


class HealthReport(BaseModel):
    """Healthy/unhealthy classification produced by a health sweep."""

    status: Optional[ServerStatus] = None
    healthy: bool
    issues: List[str] = Field(default_factory=list)
    tool_count: int = 0


class ServerStats(BaseModel):
    """Counts of managed servers by status."""

    total: int = 0
    running: int = 0
    stopped: int = 0
    error: int = 0
    installing: int = 0
    total_tools: int = 0


class MaintenanceReport(BaseModel):
    """Aggregate output of one maintenance sweep."""

    restarted: List[str] = Field(default_factory=list)
    cleaned: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_utcnow)
    duration_ms: Optional[float] = None


# ── Management tool requests ────────────────────────────────────────────


class InstallRequest(BaseModel):
    """Arguments of ``install_mcp_server``."""

    package_query: str = Field(
        min_length=1,
        description="Package name (npm, PyPI, container image) or natural-language query",
    )
    name: Optional[str] = Field(
        default=None,
        pattern=r"^[a-z0-9][a-z0-9-]*$",
        description="Local server name; derived from the package when omitted",
    )
    mode: ServerMode = ServerMode.BRIDGE
    auto_start: bool = True
    env: Dict[str, str] = Field(default_factory=dict)


class ControlRequest(BaseModel):
    """Arguments of ``control_mcp_server``."""

    name: str = Field(min_length=1)
    action: Literal["start", "stop", "restart", "remove"]


class DiscoverRequest(BaseModel):
    """Arguments of ``discover_mcp_servers``."""

    query: Optional[str] = None
    intent: Optional[str] = None
    domain: Optional[str] = None
    capability: Optional[str] = None
    category: Optional[str] = None
    transport: Optional[Literal["sse", "stdio", "http"]] = None
    verified_only: Optional[bool] = None
    limit: int = Field(default=10, ge=1, le=100)
    offset: int = Field(default=0, ge=0)

    def search_query(self) -> Optional[str]:
        """Free-text query with ``domain:`` / ``capability:`` qualifiers appended."""
        parts = [p for p in (self.query,) if p]
        if self.domain:
            parts.append(f"domain:{self.domain}")
        if self.capability:
            parts.append(f"capability:{self.capability}")
        return " ".join(parts) or None


class SmartDiscoverRequest(BaseModel):
    """Arguments of ``discover_smart``."""

    query: str = Field(min_length=1)
    context: Optional[str] = None
    limit: int = Field(default=5, ge=1, le=50)


class DirectoryHealthRequest(BaseModel):
    """Arguments of ``get_server_health``."""

    domain: str = Field(min_length=1, description="Domain of a server registered with the directory")
    realtime: bool = Field(default=False, description="Ask the directory for a fresh measurement")
