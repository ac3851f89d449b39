"""ClientConnection against the bridge's own MCP server over memory streams."""

from __future__ import annotations

import asyncio
import contextlib
import json
from unittest.mock import AsyncMock

import anyio
import pytest

from mcp_lookup_bridge.bridge.connection import ClientConnection
from mcp_lookup_bridge.bridge.connection_cache import ConnectionCache
from mcp_lookup_bridge.bridge.server_registry import ManagedServerRegistry
from mcp_lookup_bridge.bridge.tool_invoker import InvokeRequest, ToolInvoker
from mcp_lookup_bridge.registry.client import DirectoryClient
from mcp_lookup_bridge.runtime.orchestrator import BridgeOrchestrator
from mcp_lookup_bridge.server.tools import register_bridge_tools


@contextlib.asynccontextmanager
async def memory_transport(surface):
    client_to_server_send, client_to_server_recv = anyio.create_memory_object_stream(32)
    server_to_client_send, server_to_client_recv = anyio.create_memory_object_stream(32)
    task = asyncio.create_task(
        surface.server.run(
            client_to_server_recv,
            server_to_client_send,
            surface.create_initialization_options(),
        )
    )
    try:
        yield server_to_client_recv, client_to_server_send
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


@contextlib.asynccontextmanager
async def resettable_transport(surface, reset: asyncio.Event):
    async def reset_peer():
        await reset.wait()
        raise ConnectionError("peer reset")

    async with memory_transport(surface) as streams:
        async with anyio.create_task_group() as tg:
            tg.start_soon(reset_peer)
            try:
                yield streams
            finally:
                tg.cancel_scope.cancel()


@contextlib.asynccontextmanager
async def refusing_transport():
    raise ConnectionError("connection refused")
    yield  # pragma: no cover


def _surface(launcher, connector):
    registry = ManagedServerRegistry(launcher, connector=connector, list_timeout=1.0)
    orch = BridgeOrchestrator(
        directory=AsyncMock(spec=DirectoryClient),
        launcher=launcher,
        registry=registry,
    )
    register_bridge_tools(orch.surface, orch)
    return orch.surface


class TestClientConnection:
    def test_session_round_trip(self, launcher, connector):
        surface = _surface(launcher, connector)

        async def scenario():
            conn = ClientConnection("bridge", "memory", lambda: memory_transport(surface), init_timeout=5)
            await conn.open(timeout=5)
            assert conn.is_open
            listed = await conn.session.list_tools()
            ok = await conn.session.call_tool("list_managed_servers", {})
            bad = await conn.session.call_tool("control_mcp_server", {"name": "ghost", "action": "stop"})
            await conn.aclose()
            return conn, listed, ok, bad

        conn, listed, ok, bad = asyncio.run(scenario())
        assert "install_mcp_server" in {t.name for t in listed.tools}
        assert ok.isError is False
        assert json.loads(ok.content[0].text)["servers"] == []
        assert bad.isError is True
        assert "Server 'ghost' not found" in bad.content[0].text
        assert not conn.is_open

    def test_open_failure_propagates(self):
        async def scenario():
            conn = ClientConnection("broken", "memory", refusing_transport, init_timeout=1)
            with pytest.raises(ConnectionError, match="refused"):
                await conn.open(timeout=1)
            return conn

        conn = asyncio.run(scenario())
        assert not conn.is_open
        with pytest.raises(RuntimeError, match="not open"):
            conn.session

    def test_close_unopened(self):
        conn = ClientConnection("idle", "memory", refusing_transport)
        asyncio.run(conn.aclose())
        assert not conn.is_open


class TestDroppedTransport:
    def test_invoke_survives_peer_reset(self, launcher, connector):
        surface = _surface(launcher, connector)
        resets = []
        opened = []

        async def opener(endpoint, transport, headers, timeout):
            reset = asyncio.Event()
            conn = ClientConnection(
                endpoint, transport, lambda: resettable_transport(surface, reset), init_timeout=5
            )
            await conn.open(timeout=5)
            resets.append(reset)
            opened.append(conn)
            return conn

        async def wait_closed(conn):
            while conn.is_open:
                await asyncio.sleep(0.01)

        async def scenario():
            invoker = ToolInvoker(ConnectionCache(opener))
            request = InvokeRequest(endpoint="http://x/mcp", tool_name="list_managed_servers")
            first = await invoker.invoke(request)
            resets[0].set()
            await asyncio.wait_for(wait_closed(opened[0]), timeout=5)
            second = await invoker.invoke(request)
            await invoker.close()
            return invoker, first, second

        invoker, first, second = asyncio.run(scenario())
        assert first.isError is False
        assert second.isError is False
        assert json.loads(second.content[0].text)["servers"] == []
        assert invoker.cache.created_count == 2
