"""End-to-end tests of BridgeOrchestrator with fake runtime and connectors."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

from mcp_lookup_bridge.bridge.results import result_text
from mcp_lookup_bridge.bridge.server_registry import ManagedServerRegistry
from mcp_lookup_bridge.config.schema import BridgeConfig
from mcp_lookup_bridge.registry.client import DirectoryClient
from mcp_lookup_bridge.registry.models import PackageRef, SearchPage, ServerSummary, SmartMatch
from mcp_lookup_bridge.runtime.models import (
    ControlRequest,
    DiscoverRequest,
    InstallRequest,
    ServerKind,
    ServerMode,
    ServerStatus,
)
from mcp_lookup_bridge.runtime.orchestrator import BridgeOrchestrator, not_found_text
from mcp_lookup_bridge.server.tools import register_bridge_tools

from conftest import make_tool


def _orchestrator(launcher, connector, *, config=None, directory=None, builtins=False):
    registry = ManagedServerRegistry(launcher, connector=connector, list_timeout=1.0)
    orch = BridgeOrchestrator(
        config or BridgeConfig(),
        directory=directory or AsyncMock(spec=DirectoryClient),
        launcher=launcher,
        registry=registry,
    )
    if builtins:
        register_bridge_tools(orch.surface, orch)
    return orch


def _install(name="weather", query="@acme/weather-mcp", **kwargs):
    return InstallRequest(package_query=query, name=name, **kwargs)


class TestInstall:
    def test_install_weather_exposes_tools(self, launcher, connector):
        orch = _orchestrator(launcher, connector)

        async def scenario():
            result = await orch.install_server(_install())
            call = await orch.surface.call("weather_get_forecast", {"city": "Oslo"})
            return result, call

        result, call = asyncio.run(scenario())
        assert result.isError is False
        text = result_text(result)
        assert text.startswith("✅ Installed 'weather' in bridge mode")
        assert "weather_get_forecast, weather_get_alerts" in text

        stats = orch.get_stats()
        assert stats["servers"]["total"] == 1
        assert stats["proxied_tools"]["total_servers"] == 1
        assert stats["proxied_tools"]["total_tools"] == 2

        assert result_text(call) == 'get_forecast:{"city": "Oslo"}'
        server = orch.registry.get_server("weather")
        assert server.kind is ServerKind.PROCESS_PACKAGE
        assert server.command[:2] == ["docker", "run"]
        assert server.container_name == "mcp-weather"

    def test_install_generates_name(self, launcher, connector):
        connector.tools["acme-weather-mcp"] = [make_tool("get_forecast")]
        orch = _orchestrator(launcher, connector)
        result = asyncio.run(orch.install_server(InstallRequest(package_query="@acme/weather-mcp")))
        assert result.isError is False
        assert orch.tools.get_server_tools("acme-weather-mcp") == ["acme-weather-mcp_get_forecast"]

    def test_install_without_auto_start(self, launcher, connector):
        orch = _orchestrator(launcher, connector)

        async def scenario():
            first = await orch.install_server(_install(auto_start=False))
            started = await orch.control_server(ControlRequest(name="weather", action="start"))
            return first, started

        first, started = asyncio.run(scenario())
        assert "control_mcp_server(name='weather', action='start')" in result_text(first)
        assert result_text(started) == "✅ Server 'weather' started (2 tool(s) available)"
        assert orch.surface.has_tool("weather_get_alerts")

    def test_install_duplicate(self, launcher, connector):
        orch = _orchestrator(launcher, connector)

        async def scenario():
            await orch.install_server(_install())
            return await orch.install_server(_install())

        result = asyncio.run(scenario())
        assert result.isError is True
        assert "❌ Server 'weather' already exists" in result_text(result)

    def test_install_start_failure(self, launcher, connector):
        connector.failing.add("weather")
        orch = _orchestrator(launcher, connector)
        result = asyncio.run(orch.install_server(_install()))
        assert result.isError is True
        assert result_text(result).startswith("❌ Installed 'weather' but failed to start:")
        assert "spawn failed" in result_text(result)
        assert orch.registry.get_server("weather").status is ServerStatus.ERROR
        assert orch.tools.get_server_tools("weather") == []

    def test_install_direct_mode_rejected(self, launcher, connector):
        orch = _orchestrator(launcher, connector)
        result = asyncio.run(orch.install_server(_install(mode=ServerMode.DIRECT)))
        assert result.isError is True
        assert not orch.registry.has_server("weather")

    def test_install_empty_query_rejected(self, launcher, connector):
        orch = _orchestrator(launcher, connector)
        result = asyncio.run(orch.install_server(InstallRequest.model_construct(package_query="  ")))
        assert result.isError is True
        assert "must not be empty" in result_text(result)

    def test_install_docker_image_is_container_kind(self, launcher, connector):
        orch = _orchestrator(launcher, connector)
        asyncio.run(orch.install_server(_install(query="ghcr.io/acme/weather:1.0")))
        server = orch.registry.get_server("weather")
        assert server.kind is ServerKind.CONTAINER_PACKAGE
        assert server.command[-1] == "ghcr.io/acme/weather:1.0"

    def test_install_from_search(self, launcher, connector):
        directory = AsyncMock(spec=DirectoryClient)
        directory.smart_search.return_value = [
            SmartMatch(
                server=ServerSummary(
                    id="acme-weather",
                    name="Weather",
                    verification_status="verified",
                    packages=[PackageRef(registry_name="npm", name="@acme/weather-mcp")],
                ),
                relevance_score=0.9,
            )
        ]
        directory.install_instructions.return_value = {
            "installation_steps": [{"description": "Get an API key"}],
            "claude_config": {"env_vars": {"WEATHER_API_KEY": "demo-key"}},
        }
        connector.tools["acme-weather-mcp"] = [make_tool("get_forecast")]
        orch = _orchestrator(launcher, connector, directory=directory)

        result = asyncio.run(orch.install_server(InstallRequest(package_query="weather forecasts for my trip")))
        text = result_text(result)
        assert result.isError is False
        assert "🔒 Verified by the directory" in text
        assert "1. Get an API key" in text
        server = orch.registry.get_server("acme-weather-mcp")
        assert "WEATHER_API_KEY=demo-key" in server.command
        directory.install_instructions.assert_awaited_once_with("acme-weather", method="npm")

    def test_install_search_without_match(self, launcher, connector):
        directory = AsyncMock(spec=DirectoryClient)
        directory.smart_search.return_value = []
        orch = _orchestrator(launcher, connector, directory=directory)
        result = asyncio.run(orch.install_server(InstallRequest(package_query="something obscure")))
        assert result.isError is True
        assert "No installable package found" in result_text(result)
        assert len(orch.registry) == 0

    def test_tool_collision_stops_server(self, launcher, connector):
        connector.tools["discover"] = [make_tool("mcp_servers")]
        orch = _orchestrator(launcher, connector, builtins=True)
        result = asyncio.run(orch.install_server(_install(name="discover")))
        assert result.isError is True
        assert "discover_mcp_servers" in result_text(result)
        assert orch.registry.get_server("discover").status is ServerStatus.STOPPED
        assert orch.tools.get_server_tools("discover") == []


class TestControl:
    def test_stop_removes_tools(self, launcher, connector):
        orch = _orchestrator(launcher, connector)

        async def scenario():
            await orch.install_server(_install())
            stopped = await orch.control_server(ControlRequest(name="weather", action="stop"))
            call = await orch.surface.call("weather_get_forecast", {})
            return stopped, call

        stopped, call = asyncio.run(scenario())
        assert result_text(stopped) == "✅ Server 'weather' stopped"
        assert not orch.surface.has_tool("weather_get_forecast")
        assert result_text(call) == "Unknown tool: weather_get_forecast"
        assert orch.get_stats()["proxied_tools"]["total_tools"] == 0

    def test_restart_reregisters(self, launcher, connector):
        orch = _orchestrator(launcher, connector)

        async def scenario():
            await orch.install_server(_install())
            return await orch.control_server(ControlRequest(name="weather", action="restart"))

        result = asyncio.run(scenario())
        assert result_text(result) == "✅ Server 'weather' restarted (2 tool(s) available)"
        assert orch.tools.get_server_tools("weather") == ["weather_get_forecast", "weather_get_alerts"]
        assert connector.connections[0].closed

    def test_remove(self, launcher, connector):
        orch = _orchestrator(launcher, connector)

        async def scenario():
            await orch.install_server(_install())
            return await orch.control_server(ControlRequest(name="weather", action="remove"))

        result = asyncio.run(scenario())
        assert result_text(result) == "✅ Server 'weather' removed"
        assert not orch.registry.has_server("weather")
        assert orch.surface.tool_names() == []

    def test_remove_keeps_lock_for_queued_callers(self, launcher, connector):
        orch = _orchestrator(launcher, connector)

        async def scenario():
            await orch.install_server(_install())
            lock = orch._lock_for("weather")
            await lock.acquire()
            remove = asyncio.create_task(orch.control_server(ControlRequest(name="weather", action="remove")))
            start = asyncio.create_task(orch.control_server(ControlRequest(name="weather", action="start")))
            await asyncio.sleep(0)
            lock.release()
            removed, started = await asyncio.gather(remove, start)
            return lock, removed, started

        lock, removed, started = asyncio.run(scenario())
        assert result_text(removed) == "✅ Server 'weather' removed"
        assert result_text(started) == not_found_text("weather")
        assert orch._lock_for("weather") is lock

    def test_ghost(self, launcher, connector):
        orch = _orchestrator(launcher, connector)
        result = asyncio.run(orch.control_server(ControlRequest(name="ghost", action="start")))
        assert result.isError is True
        assert result_text(result) == not_found_text("ghost")
        assert "list_managed_servers" in result_text(result)

    def test_start_running_fails(self, launcher, connector):
        orch = _orchestrator(launcher, connector)

        async def scenario():
            await orch.install_server(_install())
            return await orch.control_server(ControlRequest(name="weather", action="start"))

        result = asyncio.run(scenario())
        assert result.isError is True
        assert "already running" in result_text(result)
        assert orch.tools.get_server_tools("weather") == ["weather_get_forecast", "weather_get_alerts"]

    def test_list_servers(self, launcher, connector):
        orch = _orchestrator(launcher, connector)

        async def scenario():
            await orch.install_server(_install())
            return await orch.list_servers()

        payload = json.loads(result_text(asyncio.run(scenario())))
        (entry,) = payload["servers"]
        assert entry["name"] == "weather"
        assert entry["status"] == "running"
        assert entry["tool_count"] == 2
        assert "command" not in entry
        assert payload["stats"]["running"] == 1
        assert payload["proxied_tools"]["total_tools"] == 2


class TestHealthAndMaintenance:
    def test_drift_removes_tools_then_maintenance_restores(self, launcher, connector, fake_runtime):
        orch = _orchestrator(launcher, connector)

        async def scenario():
            await orch.install_server(_install(query="ghcr.io/acme/weather:1.0"))
            health = await orch.server_health("weather")
            drifted_tools = orch.tools.get_server_tools("weather")
            report = await orch.perform_maintenance()
            return health, drifted_tools, report

        health, drifted_tools, report = asyncio.run(scenario())
        payload = json.loads(result_text(health))
        assert payload["status"] == "error"
        assert payload["last_error"] == "Container not running"
        assert drifted_tools == []
        assert report.restarted == ["weather"]
        assert report.errors == []
        assert report.duration_ms is not None
        assert orch.tools.get_server_tools("weather") == ["weather_get_forecast", "weather_get_alerts"]

    def test_dropped_session_reported_then_reconciled(self, launcher, connector):
        orch = _orchestrator(launcher, connector)

        async def scenario():
            await orch.install_server(_install())
            connector.last("weather").drop()
            call = await orch.surface.call("weather_get_forecast", {"city": "Oslo"})
            health = await orch.server_health("weather")
            return call, health

        call, health = asyncio.run(scenario())
        assert call.isError is True
        assert result_text(call) == "Failed to invoke get_forecast: Server 'weather' is not running"
        payload = json.loads(result_text(health))
        assert payload["status"] == "error"
        assert payload["last_error"] == "Connection lost"
        assert orch.tools.get_server_tools("weather") == []

    def test_health_all(self, launcher, connector, fake_runtime):
        fake_runtime.containers["mcp-weather"] = "running"
        orch = _orchestrator(launcher, connector)

        async def scenario():
            await orch.install_server(_install(query="ghcr.io/acme/weather:1.0"))
            return await orch.server_health()

        payload = json.loads(result_text(asyncio.run(scenario())))
        assert payload["weather"]["healthy"] is True
        assert payload["weather"]["tool_count"] == 2

    def test_health_ghost(self, launcher, connector):
        orch = _orchestrator(launcher, connector)
        result = asyncio.run(orch.server_health("ghost"))
        assert result.isError is True
        assert result_text(result) == not_found_text("ghost")

    def test_maintenance_reports_persistent_errors(self, launcher, connector):
        connector.failing.add("weather")
        orch = _orchestrator(launcher, connector)

        async def scenario():
            await orch.install_server(_install())
            return await orch.perform_maintenance()

        report = asyncio.run(scenario())
        assert report.restarted == []
        assert len(report.errors) == 1
        assert report.errors[0].startswith("weather: Start failed")

    def test_bridge_health_check(self, launcher, connector, fake_runtime):
        orch = _orchestrator(launcher, connector)
        report = asyncio.run(orch.health_check())
        assert report["status"] == "healthy"
        assert report["runtime_available"] is True

        fake_runtime.available = False
        assert asyncio.run(orch.health_check())["status"] == "degraded"


class TestDirectoryTools:
    def test_discover(self, launcher, connector):
        directory = AsyncMock(spec=DirectoryClient)
        directory.search.return_value = SearchPage(
            servers=[ServerSummary(id="gmail.com", name="Gmail", domain="gmail.com")],
            total=1,
        )
        orch = _orchestrator(launcher, connector, directory=directory)
        result = asyncio.run(orch.discover_servers(DiscoverRequest(query="email", domain="gmail.com")))
        payload = json.loads(result_text(result))
        assert payload["total"] == 1
        assert payload["servers"][0]["domain"] == "gmail.com"
        args, kwargs = directory.search.call_args
        assert args[0] == "email domain:gmail.com"
        assert kwargs["limit"] == 10

    def test_discover_error(self, launcher, connector):
        from mcp_lookup_bridge.errors import DirectoryError

        directory = AsyncMock(spec=DirectoryClient)
        directory.search.side_effect = DirectoryError("Discovery failed: boom", status_code=500)
        orch = _orchestrator(launcher, connector, directory=directory)
        result = asyncio.run(orch.discover_servers(DiscoverRequest(query="email")))
        assert result.isError is True
        assert result_text(result).startswith("Error discovering servers:")


class TestLifecycle:
    def test_close_is_idempotent(self, launcher, connector):
        orch = _orchestrator(launcher, connector, builtins=True)

        async def scenario():
            await orch.install_server(_install())
            await orch.close()
            await orch.close()

        asyncio.run(scenario())
        assert len(orch.registry) == 0
        assert orch.surface.tool_names() == []
        assert connector.connections[0].closed
        orch.directory.close.assert_awaited_once()

    def test_install_preconfigured(self, launcher, connector):
        config = BridgeConfig.model_validate(
            {"servers": {"weather": {"package": "@acme/weather-mcp"}, "files": {"package": "@acme/files", "auto_start": False}}}
        )
        orch = _orchestrator(launcher, connector, config=config)
        results = asyncio.run(orch.install_preconfigured())
        assert set(results) == {"weather", "files"}
        assert orch.registry.get_server("weather").status is ServerStatus.RUNNING
        assert orch.registry.get_server("files").status is ServerStatus.INSTALLING

    def test_export_state(self, launcher, connector):
        orch = _orchestrator(launcher, connector, builtins=True)
        asyncio.run(orch.install_server(_install()))
        state = orch.export_state()
        assert state["proxied_tools"] == {"weather": ["weather_get_forecast", "weather_get_alerts"]}
        assert "install_mcp_server" in state["surface_tools"]
        assert "weather_get_alerts" in state["surface_tools"]
