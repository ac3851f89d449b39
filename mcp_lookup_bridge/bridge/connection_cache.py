"""Cache of live client connections to remote MCP endpoints.

One connection is kept per distinct ``(endpoint, headers)`` pair. It is
created on first use (streamable HTTP first, SSE as the single fallback)
and shared by every caller asking for the same key. Live connections are
only closed by :meth:`ConnectionCache.clear` or :meth:`ConnectionCache.close`;
an entry whose transport has dropped is replaced on its next use.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from mcp_lookup_bridge.bridge.connection import open_remote_connection
from mcp_lookup_bridge.constants import CONNECT_TIMEOUT, REMOTE_TRANSPORT_ORDER
from mcp_lookup_bridge.errors import TransportError, describe_exception

logger = logging.getLogger(__name__)

# (endpoint, transport, headers, timeout) -> open connection with
# ``is_open``, ``session`` and ``aclose()``
ConnectionOpener = Callable[[str, str, Optional[Dict[str, str]], float], Awaitable[Any]]


async def _default_opener(
    endpoint: str,
    transport: str,
    headers: Optional[Dict[str, str]],
    timeout: float,
) -> Any:
    return await open_remote_connection(endpoint, transport, headers, timeout=timeout)


def cache_key(endpoint: str, headers: Optional[Dict[str, str]] = None) -> str:
    """Key for *endpoint* plus its serialized auth headers."""
    return f"{endpoint}:{json.dumps(headers or {}, sort_keys=True)}"


async def close_quietly(conn: Any, label: str) -> None:
    """Close *conn*, logging instead of raising on failure."""
    try:
        await conn.aclose()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.warning("[%s] Error closing connection: %s", label, describe_exception(exc))


class ConnectionCache:
    """Creates, shares and closes remote client connections.

    Args:
        opener: Coroutine opening one connection over one transport.
        transports: Transport order; the first is primary, the rest fallbacks.
        connect_timeout: Seconds allowed per transport attempt.
    """

    def __init__(
        self,
        opener: Optional[ConnectionOpener] = None,
        *,
        transports: Sequence[str] = REMOTE_TRANSPORT_ORDER,
        connect_timeout: float = CONNECT_TIMEOUT,
    ) -> None:
        self._opener: ConnectionOpener = opener or _default_opener
        self._transports = tuple(transports)
        self._connect_timeout = connect_timeout
        self._connections: Dict[str, Any] = {}
        self._key_locks: Dict[str, asyncio.Lock] = {}
        self._closing_tasks: Set[asyncio.Task] = set()
        self.created_count = 0

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, key: str) -> bool:
        return key in self._connections

    def keys(self) -> List[str]:
        return list(self._connections)

    async def get_or_create(self, endpoint: str, headers: Optional[Dict[str, str]] = None) -> Any:
        """Return the cached connection for the key, creating it if needed.

        Concurrent callers for the same key wait for a single creation.
        A cached connection that is no longer open is replaced. Raises
        :class:`TransportError` when every transport fails.
        """
        key = cache_key(endpoint, headers)
        conn = self._connections.get(key)
        if conn is not None and conn.is_open:
            return conn
        lock = self._key_locks.setdefault(key, asyncio.Lock())
        async with lock:
            conn = self._connections.get(key)
            if conn is not None and not conn.is_open:
                logger.info("Connection to %s was lost; reconnecting.", endpoint)
                del self._connections[key]
                self._close_in_background(conn, key)
                conn = None
            if conn is None:
                conn = await self._create(endpoint, headers)
                self._connections[key] = conn
            return conn

    async def _create(self, endpoint: str, headers: Optional[Dict[str, str]]) -> Any:
        details: List[str] = []
        for transport in self._transports:
            try:
                conn = await self._opener(endpoint, transport, headers, self._connect_timeout)
            except asyncio.CancelledError:
                raise
            except asyncio.TimeoutError:
                details.append(f"{transport}: timed out after {self._connect_timeout:g}s")
            except Exception as exc:
                details.append(f"{transport}: {describe_exception(exc)}")
            else:
                self.created_count += 1
                logger.info("Connected to %s via %s.", endpoint, transport)
                return conn
            logger.info("Connecting to %s via %s failed: %s", endpoint, transport, details[-1])
        raise TransportError(endpoint, self._transports, details)

    def clear(self) -> None:
        """Detach every cached connection and close them in the background.

        Close failures are logged, never raised.
        """
        entries = list(self._connections.items())
        self._connections.clear()
        self._key_locks.clear()
        for key, conn in entries:
            self._close_in_background(conn, key)
        if entries:
            logger.info("Connection cache cleared (%d connection(s) closing).", len(entries))

    def _close_in_background(self, conn: Any, key: str) -> None:
        task = asyncio.create_task(close_quietly(conn, key), name=f"close-{key}")
        self._closing_tasks.add(task)
        task.add_done_callback(self._closing_tasks.discard)

    async def close(self) -> None:
        """Close every cached connection and wait for all closures."""
        entries = list(self._connections.items())
        self._connections.clear()
        self._key_locks.clear()
        pending = list(self._closing_tasks)
        await asyncio.gather(
            *(close_quietly(conn, key) for key, conn in entries),
            *pending,
            return_exceptions=True,
        )
        logger.debug("Connection cache closed (%d connection(s)).", len(entries))
