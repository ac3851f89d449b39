"""A single MCP client session owned by a dedicated task.

The MCP transports are anyio context managers that must be entered and
exited from the same task. Managed servers are started and stopped by
different inbound tool calls, so each :class:`ClientConnection` keeps
its transport and :class:`ClientSession` alive inside one background task
and hands the session to other tasks. Closing signals that task and
waits for it to unwind.
"""

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, AsyncContextManager, Callable, Dict, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client

from mcp_lookup_bridge.constants import (
    CONNECT_TIMEOUT,
    MCP_INIT_TIMEOUT,
    TRANSPORT_SSE,
    TRANSPORT_STREAMABLE_HTTP,
)
from mcp_lookup_bridge.errors import describe_exception

logger = logging.getLogger(__name__)

TransportFactory = Callable[[], AsyncContextManager[Any]]


class ClientConnection:
    """A live MCP client session plus the task that owns its transport.

    Parameters
    ----------
    label:
        Name used in log lines (server name or endpoint).
    transport:
        Label of the transport in use (``stdio``, ``streamable-http``, ``sse``).
    transport_factory:
        Zero-argument callable returning the transport context manager,
        which yields ``(read_stream, write_stream, ...)``.
    init_timeout:
        Seconds allowed for ``session.initialize()``.
    """

    def __init__(
        self,
        label: str,
        transport: str,
        transport_factory: TransportFactory,
        *,
        init_timeout: float = MCP_INIT_TIMEOUT,
    ) -> None:
        self.label = label
        self.transport = transport
        self._transport_factory = transport_factory
        self._init_timeout = init_timeout
        self._session: Optional[ClientSession] = None
        self._task: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Future] = None
        self._closing = asyncio.Event()

    @property
    def session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError(f"Connection '{self.label}' is not open")
        return self._session

    @property
    def is_open(self) -> bool:
        return self._session is not None and self._task is not None and not self._task.done()

    async def open(self, timeout: Optional[float] = None) -> None:
        """Start the owner task and wait until the session is initialized.

        Raises whatever the transport or handshake raised, or
        :class:`asyncio.TimeoutError` after *timeout* seconds.
        """
        if self._task is not None:
            raise RuntimeError(f"Connection '{self.label}' was already opened")
        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self._task = asyncio.create_task(self._run(), name=f"mcp-conn-{self.label}")
        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout=timeout)
        except BaseException:
            await self._abort()
            raise

    async def _run(self) -> None:
        assert self._ready is not None
        try:
            async with AsyncExitStack() as stack:
                streams = await stack.enter_async_context(self._transport_factory())
                session = await stack.enter_async_context(ClientSession(streams[0], streams[1]))
                await asyncio.wait_for(session.initialize(), timeout=self._init_timeout)
                self._session = session
                if not self._ready.done():
                    self._ready.set_result(None)
                logger.info("[%s] Session initialized via %s.", self.label, self.transport)
                await self._closing.wait()
        except asyncio.CancelledError:
            if not self._ready.done():
                self._ready.cancel()
            raise
        except Exception as exc:
            if not self._ready.done():
                self._ready.set_exception(exc)
            elif not self._closing.is_set():
                logger.warning(
                    "[%s] Connection dropped: %s", self.label, describe_exception(exc)
                )
            else:
                logger.debug(
                    "[%s] Error while closing connection: %s", self.label, describe_exception(exc)
                )
        finally:
            self._session = None

    async def _abort(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.debug("[%s] Error while aborting connection: %s", self.label, exc)

    async def aclose(self, timeout: float = 5.0) -> None:
        """Close the session and transport; cancels the owner task after *timeout*."""
        task = self._task
        if task is None or task.done():
            self._session = None
            return
        self._closing.set()
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("[%s] Close timed out, cancelling transport task.", self.label)
            await self._abort()
        logger.debug("[%s] Connection closed.", self.label)


# ── Factories ───────────────────────────────────────────────────────────


async def open_remote_connection(
    endpoint: str,
    transport: str,
    headers: Optional[Dict[str, str]] = None,
    *,
    timeout: float = CONNECT_TIMEOUT,
) -> ClientConnection:
    """Open a client connection to *endpoint* over *transport*."""
    if transport == TRANSPORT_STREAMABLE_HTTP:
        factory: TransportFactory = lambda: streamablehttp_client(endpoint, headers=headers)  # noqa: E731
    elif transport == TRANSPORT_SSE:
        factory = lambda: sse_client(endpoint, headers=headers)  # noqa: E731
    else:
        raise ValueError(f"Unsupported remote transport: {transport}")
    conn = ClientConnection(endpoint, transport, factory, init_timeout=timeout)
    await conn.open(timeout=timeout)
    return conn


async def open_stdio_connection(
    label: str,
    params: StdioServerParameters,
    *,
    timeout: float = MCP_INIT_TIMEOUT,
) -> ClientConnection:
    """Spawn *params* and open a client connection over its stdio."""
    conn = ClientConnection(label, "stdio", lambda: stdio_client(params), init_timeout=timeout)
    await conn.open(timeout=timeout)
    return conn
