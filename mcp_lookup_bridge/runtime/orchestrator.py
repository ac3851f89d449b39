"""Composition root of the bridge.

:class:`BridgeOrchestrator` owns the directory client, package resolver,
container launcher, managed-server registry, tool invoker and dynamic
tool registry, and keeps the registry and the proxy tools in step:

* tools are removed before a server is stopped, restarted or removed,
* tools are added after a successful start and re-added after a restart,
* tools of a server found outside ``running`` (failed restart, drift)
  are removed when the orchestrator reconciles.

Management operations return ``CallToolResult`` values (text plus
``isError``) instead of raising, so they can back MCP tools directly.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from mcp import types as mcp_types

from mcp_lookup_bridge.bridge.connection_cache import ConnectionCache
from mcp_lookup_bridge.bridge.container import ContainerLauncher, ContainerSettings, LaunchOptions
from mcp_lookup_bridge.bridge.dynamic_tools import DynamicToolRegistry, namespaced_tool_name
from mcp_lookup_bridge.bridge.results import error_result, json_result, text_result
from mcp_lookup_bridge.bridge.server_registry import ManagedServerRegistry, stdio_connector
from mcp_lookup_bridge.bridge.tool_invoker import InvokeRequest, ToolInvoker
from mcp_lookup_bridge.config.schema import BridgeConfig
from mcp_lookup_bridge.display.logging_config import secret_redaction_filter
from mcp_lookup_bridge.errors import (
    BackendServerError,
    DirectoryError,
    PackageResolutionError,
    ServerConflictError,
    ServerNotFoundError,
    ServerStateError,
    ToolRegistrationError,
    describe_exception,
)
from mcp_lookup_bridge.registry.client import DirectoryClient
from mcp_lookup_bridge.registry.models import PackageType, RegistrationRequest
from mcp_lookup_bridge.registry.resolver import PackageResolver, generate_server_name
from mcp_lookup_bridge.runtime.models import (
    ControlRequest,
    DirectoryHealthRequest,
    DiscoverRequest,
    InstallRequest,
    MaintenanceReport,
    ManagedServer,
    ServerKind,
    ServerMode,
    ServerStatus,
    SmartDiscoverRequest,
)
from mcp_lookup_bridge.server.surface import ToolSurface

logger = logging.getLogger(__name__)

_PAST_TENSE = {"start": "started", "stop": "stopped", "restart": "restarted", "remove": "removed"}


def not_found_text(name: str) -> str:
    return f"❌ Server '{name}' not found. Use list_managed_servers to see available servers."


class BridgeOrchestrator:
    """Wires every bridge component together.

    Parameters
    ----------
    config:
        Validated bridge configuration; defaults apply when omitted.
    surface, directory, resolver, launcher, registry, invoker:
        Pre-built components; each is created from *config* when omitted.
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        *,
        surface: Optional[ToolSurface] = None,
        directory: Optional[DirectoryClient] = None,
        resolver: Optional[PackageResolver] = None,
        launcher: Optional[ContainerLauncher] = None,
        registry: Optional[ManagedServerRegistry] = None,
        invoker: Optional[ToolInvoker] = None,
    ) -> None:
        self._config = config or BridgeConfig()
        cfg = self._config
        if cfg.directory.api_key:
            secret_redaction_filter.register(cfg.directory.api_key)

        self._surface = surface or ToolSurface()
        self._directory = directory or DirectoryClient(
            cfg.directory.base_url,
            api_key=cfg.directory.api_key,
            timeout=cfg.directory.timeout,
        )
        self._resolver = resolver or PackageResolver(self._directory)
        self._launcher = launcher or ContainerLauncher(
            ContainerSettings(**cfg.containers.model_dump())
        )
        if registry is None:
            registry = ManagedServerRegistry(
                self._launcher,
                connector=stdio_connector(cfg.registry.start_timeout),
                list_timeout=cfg.registry.list_timeout,
            )
        self._registry = registry
        self._invoker = invoker or ToolInvoker(
            ConnectionCache(connect_timeout=cfg.invoker.connect_timeout),
            call_timeout=cfg.invoker.call_timeout,
        )
        self._tools = DynamicToolRegistry(self._surface, self._invoker, self._registry.get_session)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._closed = False

    # ── Properties ──────────────────────────────────────────────────────

    @property
    def config(self) -> BridgeConfig:
        return self._config

    @property
    def surface(self) -> ToolSurface:
        return self._surface

    @property
    def directory(self) -> DirectoryClient:
        return self._directory

    @property
    def launcher(self) -> ContainerLauncher:
        return self._launcher

    @property
    def registry(self) -> ManagedServerRegistry:
        return self._registry

    @property
    def invoker(self) -> ToolInvoker:
        return self._invoker

    @property
    def tools(self) -> DynamicToolRegistry:
        return self._tools

    def _lock_for(self, name: str) -> asyncio.Lock:
        # Never dropped on removal; a queued caller must see the same lock.
        return self._locks.setdefault(name, asyncio.Lock())

    # ── Tool pairing ────────────────────────────────────────────────────

    async def _register_tools(self, name: str, server: ManagedServer) -> None:
        try:
            self._tools.add_server_tools(name, server)
        except ToolRegistrationError:
            logger.error("[%s] Proxy tools rejected; stopping the server.", name)
            await self._registry.stop_server(name)
            raise

    def _expected_tools(self, name: str) -> List[str]:
        server = self._registry.get_server(name)
        if server is None or server.status is not ServerStatus.RUNNING:
            return []
        return [namespaced_tool_name(name, t) for t in server.tool_names]

    async def _reconcile(self, name: str, *, force: bool = False) -> None:
        """Bring the proxy tools of *name* in line with its registry status."""
        async with self._lock_for(name):
            server = self._registry.get_server(name)
            expected = self._expected_tools(name)
            if not force and self._tools.get_server_tools(name) == expected:
                return
            if server is not None and server.status is ServerStatus.RUNNING:
                try:
                    self._tools.refresh_server_tools(name, server)
                except ToolRegistrationError as exc:
                    logger.error("[%s] Could not re-register tools: %s", name, exc)
                    await self._registry.stop_server(name)
            else:
                self._tools.remove_server_tools(name)

    async def _reconcile_all(self) -> None:
        names = set(self._tools.export_state()) | {info.name for info in self._registry.list_servers()}
        for name in sorted(names):
            await self._reconcile(name)

    # ── Management ──────────────────────────────────────────────────────

    async def install_server(self, request: InstallRequest) -> mcp_types.CallToolResult:
        """Resolve, register and optionally start a managed server."""
        query = request.package_query
        if request.mode is ServerMode.DIRECT:
            return error_result(
                "❌ Direct mode is handled by the client's own configuration. "
                "Use mode 'bridge' to run the server through the bridge."
            )
        try:
            resolution = await self._resolver.resolve(query)
            instructions = await self._resolver.get_instructions(resolution, request.mode)
        except PackageResolutionError as exc:
            return error_result(f"❌ Failed to install '{query}': {exc}")

        name = request.name or generate_server_name(resolution.package_name)
        if not name:
            return error_result(f"❌ Could not derive a server name from '{resolution.package_name}'.")

        env = {**instructions.env_vars, **request.env}
        for value in env.values():
            secret_redaction_filter.register(value)
        kind = (
            ServerKind.CONTAINER_PACKAGE
            if resolution.package_type is PackageType.DOCKER
            else ServerKind.PROCESS_PACKAGE
        )
        container_name = self._launcher.container_name_for(name, request.mode)
        try:
            command = self._launcher.build_launch_command(
                resolution,
                LaunchOptions(server_name=name, mode=request.mode, env=env, container_name=container_name),
            )
        except PackageResolutionError as exc:
            return error_result(f"❌ Failed to install '{query}': {exc}")
        if not self._launcher.validate_command(command):
            return error_result(f"❌ Refusing to launch '{name}': invalid launch command.")

        async with self._lock_for(name):
            try:
                self._registry.add_server(
                    ManagedServer(
                        name=name,
                        kind=kind,
                        command=command,
                        mode=request.mode,
                        env=env,
                        package=resolution.package_name,
                        container_name=container_name,
                    )
                )
            except ServerConflictError:
                return error_result(
                    f"❌ Server '{name}' already exists. Choose another name or remove it first."
                )

            lines = [
                f"✅ Installed '{name}' in {request.mode.value} mode",
                f"📦 Package: {resolution.package_name} ({resolution.package_type.value})",
            ]
            if resolution.verified:
                lines.append("🔒 Verified by the directory")
            if instructions.steps:
                lines.append("Steps:")
                lines.extend(f"  {i}. {step}" for i, step in enumerate(instructions.steps, 1))

            if not request.auto_start:
                lines.append(f"Start it with control_mcp_server(name='{name}', action='start').")
                return text_result("\n".join(lines))

            try:
                server = await self._registry.start_server(name)
                await self._register_tools(name, server)
            except (BackendServerError, ToolRegistrationError) as exc:
                reason = exc.reason if isinstance(exc, BackendServerError) else str(exc)
                return error_result(f"❌ Installed '{name}' but failed to start: {reason}")

        proxied = self._tools.get_server_tools(name)
        lines.append(f"🔧 Tools ({len(proxied)}): {', '.join(proxied) if proxied else 'none'}")
        logger.info("[%s] Installed and started (%d tool(s)).", name, len(proxied))
        return text_result("\n".join(lines))

    async def list_servers(self) -> mcp_types.CallToolResult:
        payload = {
            "servers": [
                info.model_dump(mode="json", exclude={"command"})
                for info in self._registry.list_servers()
            ],
            "stats": self._registry.get_stats().model_dump(),
            "proxied_tools": self._tools.get_stats(),
        }
        return json_result(payload)

    async def control_server(self, request: ControlRequest) -> mcp_types.CallToolResult:
        """Start, stop, restart or remove a managed server and sync its tools."""
        name, action = request.name, request.action
        async with self._lock_for(name):
            if not self._registry.has_server(name):
                return error_result(not_found_text(name))
            try:
                if action == "start":
                    server = await self._registry.start_server(name)
                    await self._register_tools(name, server)
                elif action == "stop":
                    self._tools.remove_server_tools(name)
                    await self._registry.stop_server(name)
                elif action == "restart":
                    self._tools.remove_server_tools(name)
                    server = await self._registry.restart_server(name)
                    await self._register_tools(name, server)
                else:
                    self._tools.remove_server_tools(name)
                    await self._registry.remove_server_completely(name)
            except ServerNotFoundError:
                return error_result(not_found_text(name))
            except BackendServerError as exc:
                return error_result(f"❌ Failed to {action} server '{name}': {exc.reason}")
            except (ServerStateError, ToolRegistrationError) as exc:
                return error_result(f"❌ Failed to {action} server '{name}': {exc}")
        text = f"✅ Server '{name}' {_PAST_TENSE[action]}"
        if action in ("start", "restart"):
            text += f" ({len(self._tools.get_server_tools(name))} tool(s) available)"
        return text_result(text)

    async def server_health(self, name: Optional[str] = None) -> mcp_types.CallToolResult:
        """Health of one server (with drift detection) or of all servers."""
        if name:
            try:
                health = await self._registry.get_server_health(name)
            except ServerNotFoundError:
                return error_result(not_found_text(name))
            await self._reconcile(name)
            return json_result(health.model_dump(mode="json", exclude_none=True))

        reports = await self._registry.health_check_all()
        await self._reconcile_all()
        return json_result({n: r.model_dump(mode="json", exclude_none=True) for n, r in reports.items()})

    # ── Directory and invocation ────────────────────────────────────────

    async def discover_servers(self, request: DiscoverRequest) -> mcp_types.CallToolResult:
        try:
            page = await self._directory.search(
                request.search_query(),
                limit=request.limit,
                offset=request.offset,
                intent=request.intent,
                category=request.category,
                transport=request.transport,
                verified_only=request.verified_only,
            )
        except DirectoryError as exc:
            return error_result(f"Error discovering servers: {exc}")
        return json_result(
            {
                "servers": [s.to_dict() for s in page.servers],
                "total": page.total if page.total is not None else len(page.servers),
                "has_more": page.has_more,
            }
        )

    async def smart_discover(self, request: SmartDiscoverRequest) -> mcp_types.CallToolResult:
        try:
            matches = await self._directory.smart_search(
                request.query, context=request.context, max_results=request.limit
            )
        except DirectoryError as exc:
            return error_result(f"Error in smart discovery: {exc}")
        return json_result(
            {
                "matches": [
                    {
                        "server": m.server.to_dict(),
                        "relevance_score": m.relevance_score,
                        "match_reasons": m.match_reasons,
                    }
                    for m in matches
                ]
            }
        )

    async def register_server(self, request: RegistrationRequest) -> mcp_types.CallToolResult:
        try:
            result = await self._directory.register(request)
        except DirectoryError as exc:
            return error_result(f"Error registering server: {exc}")
        payload: Dict[str, Any] = {"domain": result.domain, "status": result.status}
        if result.verification_token:
            payload["verification_token"] = result.verification_token
        if result.message:
            payload["message"] = result.message
        return json_result(payload)

    async def directory_health(self, request: DirectoryHealthRequest) -> mcp_types.CallToolResult:
        try:
            payload = await self._directory.server_health(request.domain, realtime=request.realtime)
        except DirectoryError as exc:
            return error_result(f"Error getting server health: {exc}")
        return json_result(payload)

    async def invoke_tool(self, request: InvokeRequest) -> mcp_types.CallToolResult:
        return await self._invoker.invoke(request)

    # ── Maintenance and lifecycle ───────────────────────────────────────

    async def perform_maintenance(self) -> MaintenanceReport:
        """Auto-restart errored servers, sweep stopped containers, sync tools."""
        started = time.monotonic()
        report = MaintenanceReport()
        try:
            report.restarted = await self._registry.auto_restart()
        except Exception as exc:
            logger.error("Auto-restart sweep failed: %s", exc)
            report.errors.append(f"auto-restart: {describe_exception(exc)}")
        for name in report.restarted:
            await self._reconcile(name, force=True)
        try:
            report.cleaned = await self._registry.cleanup()
        except Exception as exc:
            logger.error("Cleanup sweep failed: %s", exc)
            report.errors.append(f"cleanup: {describe_exception(exc)}")
        await self._reconcile_all()

        for name in self._registry.get_servers_by_status(ServerStatus.ERROR):
            server = self._registry.get_server(name)
            reason = server.last_error if server is not None and server.last_error else "error"
            report.errors.append(f"{name}: {reason}")

        report.duration_ms = round((time.monotonic() - started) * 1000, 1)
        logger.info(
            "Maintenance: %d restarted, %d cleaned, %d error(s) (%.1f ms).",
            len(report.restarted),
            len(report.cleaned),
            len(report.errors),
            report.duration_ms,
        )
        return report

    async def install_preconfigured(self) -> Dict[str, mcp_types.CallToolResult]:
        """Install every server listed under ``servers:`` in the config."""
        results: Dict[str, mcp_types.CallToolResult] = {}
        for name, entry in self._config.servers.items():
            result = await self.install_server(
                InstallRequest(
                    package_query=entry.package,
                    name=name,
                    env=entry.env,
                    auto_start=entry.auto_start,
                )
            )
            results[name] = result
            if result.isError:
                logger.warning("[%s] Preconfigured install failed.", name)
        return results

    def get_stats(self) -> Dict[str, Any]:
        return {
            "servers": self._registry.get_stats().model_dump(),
            "proxied_tools": self._tools.get_stats(),
            "cached_connections": len(self._invoker.cache),
        }

    async def health_check(self) -> Dict[str, Any]:
        """Overall bridge health: runtime availability plus per-server reports."""
        runtime_available = await self._launcher.is_runtime_available()
        reports = await self._registry.health_check_all()
        await self._reconcile_all()
        healthy = all(r.healthy for r in reports.values())
        status = "healthy" if healthy and runtime_available else "degraded"
        return {
            "status": status,
            "runtime_available": runtime_available,
            "servers": {n: r.model_dump(mode="json", exclude_none=True) for n, r in reports.items()},
            "stats": self.get_stats(),
        }

    def export_state(self) -> Dict[str, Any]:
        return {
            "servers": [info.model_dump(mode="json") for info in self._registry.list_servers()],
            "proxied_tools": self._tools.export_state(),
            "surface_tools": self._surface.tool_names(),
            "cached_connections": len(self._invoker.cache),
        }

    async def close(self) -> None:
        """Shut down: connections, proxy tools, managed servers, directory, surface."""
        if self._closed:
            return
        self._closed = True
        logger.info("Shutting down bridge orchestrator...")
        await self._invoker.close()
        self._tools.clear_all()
        await self._registry.close()
        try:
            await self._directory.close()
        except Exception as exc:
            logger.warning("Error closing directory client: %s", exc)
        self._surface.close()
        self._locks.clear()
        logger.info("Bridge orchestrator shut down.")
