"""Shared fakes: container runtime CLI, MCP sessions and connectors."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest
from mcp import types as mcp_types

from mcp_lookup_bridge.bridge.container import CommandOutcome, ContainerLauncher, ContainerSettings
from mcp_lookup_bridge.bridge.server_registry import ManagedServerRegistry


def make_tool(name: str, description: str = "") -> mcp_types.Tool:
    return mcp_types.Tool(
        name=name,
        description=description or f"{name} tool",
        inputSchema={"type": "object", "properties": {"city": {"type": "string"}}},
    )


class FakeSession:
    """Stands in for ``ClientSession``: lists tools and echoes calls."""

    def __init__(
        self,
        tools: Optional[List[mcp_types.Tool]] = None,
        *,
        failing: Sequence[str] = (),
        delay: float = 0.0,
        empty: Sequence[str] = (),
    ) -> None:
        self.tools = list(tools or [])
        self.failing = set(failing)
        self.empty = set(empty)
        self.delay = delay
        self.calls: List[tuple] = []

    async def list_tools(self) -> mcp_types.ListToolsResult:
        return mcp_types.ListToolsResult(tools=self.tools)

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> mcp_types.CallToolResult:
        self.calls.append((name, arguments))
        if self.delay:
            await asyncio.sleep(self.delay)
        if name in self.failing:
            raise RuntimeError(f"{name} exploded")
        if name in self.empty:
            return mcp_types.CallToolResult(content=[], structuredContent={"value": 42})
        text = f"{name}:{json.dumps(arguments or {}, sort_keys=True)}"
        return mcp_types.CallToolResult(content=[mcp_types.TextContent(type="text", text=text)])


class FakeConnection:
    """Stands in for ``ClientConnection``.

    :meth:`drop` simulates the transport dying under a live session.
    """

    def __init__(self, session: FakeSession, label: str = "", on_close: Optional[Callable[[], None]] = None) -> None:
        self._session = session
        self.label = label
        self.closed = False
        self.dropped = False
        self._on_close = on_close

    @property
    def session(self) -> FakeSession:
        if not self.is_open:
            raise RuntimeError(f"Connection '{self.label}' is not open")
        return self._session

    @property
    def is_open(self) -> bool:
        return not (self.closed or self.dropped)

    def drop(self) -> None:
        self.dropped = True

    async def aclose(self) -> None:
        self.closed = True
        if self._on_close is not None:
            self._on_close()


class FakeConnector:
    """Managed-server connector returning :class:`FakeConnection` objects.

    ``tools`` maps a server name to the tools its session advertises.
    Names in ``failing`` raise on connect. With a ``runtime``, each connect
    runs the server's command there and closing the session ends it.
    """

    def __init__(
        self,
        tools: Optional[Dict[str, List[mcp_types.Tool]]] = None,
        runtime: Optional["FakeRuntime"] = None,
    ) -> None:
        self.tools = tools or {}
        self.runtime = runtime
        self.failing: set = set()
        self.connections: List[FakeConnection] = []
        self.calls: List[str] = []

    async def __call__(self, server: Any) -> FakeConnection:
        self.calls.append(server.name)
        if server.name in self.failing:
            raise RuntimeError("spawn failed")
        on_close = None
        if self.runtime is not None:
            container = self.runtime.launch(server.command)
            on_close = lambda: self.runtime.exit(container)  # noqa: E731
        conn = FakeConnection(FakeSession(self.tools.get(server.name, [])), label=server.name, on_close=on_close)
        self.connections.append(conn)
        return conn

    def last(self, name: str) -> FakeConnection:
        return [c for c in self.connections if c.label == name][-1]


class FakeRuntime:
    """In-memory container runtime answering ``docker`` CLI calls.

    ``containers`` maps container name → ``"running"`` or ``"exited"``.
    Containers launched with ``--rm`` disappear as soon as they exit.
    """

    def __init__(self, *, available: bool = True) -> None:
        self.available = available
        self.containers: Dict[str, str] = {}
        self.auto_remove: set = set()
        self.calls: List[List[str]] = []

    def launch(self, command: Sequence[str]) -> str:
        command = list(command)
        name = command[command.index("--name") + 1]
        if name in self.containers:
            raise RuntimeError(f'Conflict. The container name "/{name}" is already in use')
        self.containers[name] = "running"
        if "--rm" in command:
            self.auto_remove.add(name)
        return name

    def exit(self, name: str) -> None:
        if name not in self.containers:
            return
        if name in self.auto_remove:
            self.auto_remove.discard(name)
            del self.containers[name]
        else:
            self.containers[name] = "exited"

    async def __call__(self, args: Sequence[str], timeout: float) -> CommandOutcome:
        args = list(args)
        self.calls.append(args)
        if not self.available:
            raise FileNotFoundError(args[0])
        verb = args[1]
        if verb == "--version":
            return CommandOutcome(0, "Docker version 27.0.1")
        if verb == "ps":
            name = args[4][len("name=^/?"):-1]
            state = self.containers.get(name)
            if state is None:
                return CommandOutcome(0, "")
            return CommandOutcome(0, "Up 3 minutes\n" if state == "running" else "Exited (1) 5 seconds ago\n")
        if verb == "stop":
            self.exit(args[2])
            return CommandOutcome(0, args[2])
        if verb == "rm":
            self.auto_remove.discard(args[3])
            self.containers.pop(args[3], None)
            return CommandOutcome(0, args[3])
        if verb == "logs":
            return CommandOutcome(0, "npm ERR! missing API key\n")
        return CommandOutcome(1, stderr=f"unknown command {verb}")

    def verbs(self) -> List[str]:
        return [call[1] for call in self.calls]


@pytest.fixture()
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture()
def launcher(fake_runtime: FakeRuntime) -> ContainerLauncher:
    return ContainerLauncher(ContainerSettings(), runner=fake_runtime)


@pytest.fixture()
def connector() -> FakeConnector:
    return FakeConnector(
        {
            "weather": [make_tool("get_forecast"), make_tool("get_alerts")],
            "files": [make_tool("read_file")],
            "empty": [],
        }
    )


@pytest.fixture()
def registry(launcher: ContainerLauncher, connector: FakeConnector) -> ManagedServerRegistry:
    return ManagedServerRegistry(launcher, connector=connector, list_timeout=1.0)
