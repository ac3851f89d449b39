"""Authoritative table of locally-managed MCP servers.

:class:`ManagedServerRegistry` owns every :class:`ManagedServer` record
and its status machine. Structural operations on one server name are
serialized by a per-name :class:`asyncio.Lock`; operations on different
names run independently. A server holds a live connection exactly while
its status is ``running``.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import get_default_environment

from mcp_lookup_bridge.bridge.connection import open_stdio_connection
from mcp_lookup_bridge.bridge.connection_cache import close_quietly
from mcp_lookup_bridge.bridge.container import ContainerLauncher
from mcp_lookup_bridge.constants import MANAGED_START_TIMEOUT, TOOL_LIST_TIMEOUT
from mcp_lookup_bridge.errors import (
    BackendServerError,
    ServerConflictError,
    ServerNotFoundError,
    ServerStateError,
    describe_exception,
)
from mcp_lookup_bridge.runtime.models import (
    ContainerStatus,
    HealthReport,
    ManagedServer,
    ManagedServerInfo,
    ServerHealth,
    ServerStats,
    ServerStatus,
)

logger = logging.getLogger(__name__)

# Opens a live connection for a managed server (connection exposes
# ``.session``, ``is_open`` and ``aclose()``).
ServerConnector = Callable[[ManagedServer], Awaitable[Any]]

CONTAINER_NOT_RUNNING = "Container not running"
CONNECTION_LOST = "Connection lost"
_DRIFT_LOG_LINES = 20


def stdio_connector(timeout: float = MANAGED_START_TIMEOUT) -> ServerConnector:
    """Connector launching the server's command and speaking MCP over its stdio."""

    async def _connect(server: ManagedServer) -> Any:
        env = None
        if server.env:
            env = {**get_default_environment(), **server.env}
        params = StdioServerParameters(command=server.command[0], args=server.command[1:], env=env)
        logger.info("[%s] Launching: %s", server.name, " ".join(server.command))
        return await open_stdio_connection(server.name, params, timeout=timeout)

    return _connect


class ManagedServerRegistry:
    """In-memory registry of managed servers.

    Parameters
    ----------
    launcher:
        Container launcher used for container status, stop and removal.
    connector:
        Coroutine opening a live connection for a server; defaults to
        :func:`stdio_connector`.
    list_timeout:
        Seconds allowed for the ``tools/list`` call after a start.
    """

    def __init__(
        self,
        launcher: ContainerLauncher,
        *,
        connector: Optional[ServerConnector] = None,
        list_timeout: float = TOOL_LIST_TIMEOUT,
    ) -> None:
        self._launcher = launcher
        self._connector: ServerConnector = connector or stdio_connector()
        self._list_timeout = list_timeout
        self._servers: Dict[str, ManagedServer] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def launcher(self) -> ContainerLauncher:
        return self._launcher

    def _lock(self, name: str) -> asyncio.Lock:
        # Kept after removal: waiters may still hold a reference.
        return self._locks.setdefault(name, asyncio.Lock())

    def _require(self, name: str) -> ManagedServer:
        server = self._servers.get(name)
        if server is None:
            raise ServerNotFoundError(name)
        return server

    # ── Queries ─────────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._servers)

    def has_server(self, name: str) -> bool:
        return name in self._servers

    def get_server(self, name: str) -> Optional[ManagedServer]:
        return self._servers.get(name)

    def list_servers(self) -> List[ManagedServerInfo]:
        return [server.to_info() for server in self._servers.values()]

    def get_servers_by_status(self, status: ServerStatus) -> List[str]:
        return [name for name, server in self._servers.items() if server.status is status]

    def get_session(self, name: str) -> Optional[ClientSession]:
        """Live session of *name*, or ``None`` unless it is running and connected."""
        server = self._servers.get(name)
        if server is None or server.status is not ServerStatus.RUNNING or server.connection is None:
            return None
        if not server.connection.is_open:
            return None
        return server.connection.session

    def get_stats(self) -> ServerStats:
        stats = ServerStats(total=len(self._servers))
        for server in self._servers.values():
            setattr(stats, server.status.value, getattr(stats, server.status.value) + 1)
            stats.total_tools += len(server.tools)
        return stats

    # ── Structural operations ───────────────────────────────────────────

    def add_server(self, server: ManagedServer) -> ManagedServer:
        """Insert *server* with status ``installing``.

        Raises :class:`ServerConflictError` if the name is taken.
        """
        if server.name in self._servers:
            raise ServerConflictError(server.name)
        server.status = ServerStatus.INSTALLING
        server.connection = None
        server.tools = []
        self._servers[server.name] = server
        logger.info("[%s] Added managed server (%s).", server.name, server.kind.value)
        return server

    async def start_server(self, name: str) -> ManagedServer:
        """Connect to *name*, list its tools and mark it ``running``.

        Raises :class:`ServerNotFoundError`, :class:`ServerStateError` if
        already running, or :class:`BackendServerError` after setting the
        status to ``error``.
        """
        async with self._lock(name):
            server = self._require(name)
            if server.status is ServerStatus.RUNNING:
                raise ServerStateError(f"Server '{name}' is already running")
            await self._start_locked(server)
            return server

    async def stop_server(self, name: str) -> ManagedServer:
        """Close the connection, stop the container and mark ``stopped``.

        Stopping an already-stopped server is allowed and leaves it stopped.
        """
        async with self._lock(name):
            server = self._require(name)
            await self._stop_locked(server)
            return server

    async def restart_server(self, name: str) -> ManagedServer:
        """Stop then start *name*; the start failure propagates."""
        async with self._lock(name):
            server = self._require(name)
            await self._stop_locked(server)
            await self._start_locked(server)
            return server

    async def remove_server_completely(self, name: str) -> None:
        """Stop if running, remove the container if any, delete the record."""
        async with self._lock(name):
            server = self._require(name)
            if server.connection is not None or server.status is ServerStatus.RUNNING:
                await self._stop_locked(server)
            if server.is_container:
                await self._launcher.remove_container(self._launcher.get_container_name(server))
            del self._servers[name]
            logger.info("[%s] Managed server removed.", name)

    async def _start_locked(self, server: ManagedServer) -> None:
        name = server.name
        logger.info("[%s] Starting managed server...", name)
        try:
            if server.is_container:
                await self._remove_stale_container(server)
            connection = await self._connector(server)
            try:
                listed = await asyncio.wait_for(
                    connection.session.list_tools(), timeout=self._list_timeout
                )
            except BaseException:
                await close_quietly(connection, name)
                raise
        except asyncio.CancelledError:
            server.transition(ServerStatus.ERROR, "Start cancelled")
            raise
        except Exception as exc:
            reason = describe_exception(exc)
            if isinstance(exc, asyncio.TimeoutError):
                reason = "timed out"
            server.connection = None
            server.tools = []
            server.transition(ServerStatus.ERROR, f"Start failed: {reason}")
            logger.error("[%s] Failed to start: %s", name, reason)
            raise BackendServerError(f"Failed to start: {reason}", svr_name=name, orig_exc=exc) from exc

        server.connection = connection
        server.tools = list(listed.tools)
        server.transition(ServerStatus.RUNNING)
        logger.info("[%s] Running with %d tool(s).", name, len(server.tools))

    async def _remove_stale_container(self, server: ManagedServer) -> None:
        container_name = self._launcher.get_container_name(server)
        if await self._launcher.get_container_status(container_name) is ContainerStatus.STOPPED:
            logger.info("[%s] Removing exited container '%s' before launch.", server.name, container_name)
            await self._launcher.remove_container(container_name)

    async def _detach_locked(self, server: ManagedServer) -> None:
        connection = server.connection
        server.connection = None
        server.tools = []
        if connection is not None:
            await close_quietly(connection, server.name)

    async def _stop_locked(self, server: ManagedServer) -> None:
        await self._detach_locked(server)
        if server.is_container:
            await self._launcher.stop_container(self._launcher.get_container_name(server))
        server.transition(ServerStatus.STOPPED)
        logger.info("[%s] Stopped.", server.name)

    # ── Health and sweeps ───────────────────────────────────────────────

    async def get_server_health(self, name: str) -> ServerHealth:
        """Status and tool count of *name*.

        A running container-kind server whose container is not running is
        demoted to ``error`` with ``"Container not running"``. A running
        server whose session has dropped is demoted with ``"Connection lost"``.
        """
        async with self._lock(name):
            server = self._require(name)
            container_status: Optional[ContainerStatus] = None
            if server.is_container and server.status is ServerStatus.RUNNING:
                container_name = self._launcher.get_container_name(server)
                container_status = await self._launcher.get_container_status(container_name)
                if container_status is not ContainerStatus.RUNNING:
                    await self._demote_locked(server, container_name, container_status)
            connection = server.connection
            if server.status is ServerStatus.RUNNING and connection is not None and not connection.is_open:
                logger.warning("[%s] Session dropped while the server is running; marking as error.", name)
                await self._detach_locked(server)
                server.transition(ServerStatus.ERROR, CONNECTION_LOST)
            return ServerHealth(
                name=name,
                status=server.status,
                tool_count=len(server.tools),
                container_status=container_status,
                last_error=server.last_error,
            )

    async def _demote_locked(
        self,
        server: ManagedServer,
        container_name: str,
        container_status: ContainerStatus,
    ) -> None:
        logger.warning(
            "[%s] Container '%s' is %s while the server is running; marking as error.",
            server.name,
            container_name,
            container_status.value,
        )
        if container_status is ContainerStatus.STOPPED:
            tail = await self._launcher.get_container_logs(container_name, lines=_DRIFT_LOG_LINES)
            logger.warning("[%s] Last container output:\n%s", server.name, tail)
        await self._detach_locked(server)
        server.transition(ServerStatus.ERROR, CONTAINER_NOT_RUNNING)

    async def health_check_all(self) -> Dict[str, HealthReport]:
        reports: Dict[str, HealthReport] = {}
        for name in list(self._servers):
            try:
                health = await self.get_server_health(name)
            except ServerNotFoundError:
                continue
            except Exception as exc:
                logger.error("[%s] Health check failed: %s", name, exc)
                reports[name] = HealthReport(
                    healthy=False, issues=[f"Health check failed: {describe_exception(exc)}"]
                )
                continue
            issues: List[str] = []
            if health.status is ServerStatus.ERROR:
                issues.append("Server in error state")
                if health.last_error:
                    issues.append(health.last_error)
            if health.status is ServerStatus.RUNNING and health.tool_count == 0:
                issues.append("No tools available")
            reports[name] = HealthReport(
                status=health.status,
                healthy=not issues,
                issues=issues,
                tool_count=health.tool_count,
            )
        return reports

    async def auto_restart(self) -> List[str]:
        """Restart every server in ``error``; return the names that came back."""
        restarted: List[str] = []
        for name in self.get_servers_by_status(ServerStatus.ERROR):
            try:
                await self.restart_server(name)
            except ServerNotFoundError:
                continue
            except Exception as exc:
                logger.error("[%s] Auto-restart failed: %s", name, exc)
                continue
            restarted.append(name)
            logger.info("[%s] Auto-restarted.", name)
        return restarted

    async def cleanup(self) -> List[str]:
        """Remove containers of stopped container-kind servers; records are kept."""
        cleaned: List[str] = []
        for name in self.get_servers_by_status(ServerStatus.STOPPED):
            async with self._lock(name):
                server = self._servers.get(name)
                if server is None or not server.is_container or server.status is not ServerStatus.STOPPED:
                    continue
                container_name = self._launcher.get_container_name(server)
                if await self._launcher.get_container_status(container_name) is not ContainerStatus.STOPPED:
                    continue
                if await self._launcher.remove_container(container_name):
                    cleaned.append(name)
        if cleaned:
            logger.info("Cleaned up containers for: %s", ", ".join(cleaned))
        return cleaned

    async def close(self) -> None:
        """Stop every server holding a connection, sweep containers, clear the table."""
        for name in list(self._servers):
            async with self._lock(name):
                server = self._servers.get(name)
                if server is None:
                    continue
                if server.connection is not None or server.status is ServerStatus.RUNNING:
                    try:
                        await self._stop_locked(server)
                    except Exception as exc:
                        logger.error("[%s] Error stopping during shutdown: %s", name, exc)
        try:
            await self.cleanup()
        except Exception as exc:
            logger.error("Container cleanup during shutdown failed: %s", exc)
        self._servers.clear()
        self._locks.clear()
        logger.info("Managed server registry closed.")
