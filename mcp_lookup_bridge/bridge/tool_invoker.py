"""Calls tools on MCP servers and normalizes the outcome.

:class:`ToolInvoker` never raises for a failed call: connection errors,
timeouts and downstream exceptions all come back as an error
``CallToolResult`` naming the tool, so one failing proxy call cannot take
the bridge down or abort unrelated calls.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from mcp import ClientSession
from mcp import types as mcp_types
from pydantic import BaseModel, Field

from mcp_lookup_bridge.bridge.connection_cache import ConnectionCache
from mcp_lookup_bridge.bridge.results import error_result, normalize_call_result
from mcp_lookup_bridge.constants import CALL_TIMEOUT
from mcp_lookup_bridge.errors import describe_exception

logger = logging.getLogger(__name__)


class InvokeRequest(BaseModel):
    """Ad-hoc call of a tool on a remote MCP endpoint."""

    endpoint: str = Field(min_length=1, description="MCP server endpoint URL")
    tool_name: str = Field(min_length=1, description="Name of the tool to invoke")
    arguments: Dict[str, Any] = Field(default_factory=dict)
    headers: Optional[Dict[str, str]] = Field(
        default=None, description="Optional HTTP headers for authentication"
    )


class ToolInvoker:
    """Invoke tools through cached remote connections or live sessions.

    Args:
        cache: Shared connection cache for remote endpoints.
        call_timeout: Seconds allowed for one tool call. Calls are never
            retried, a timeout is reported as a failure.
    """

    def __init__(
        self,
        cache: Optional[ConnectionCache] = None,
        *,
        call_timeout: float = CALL_TIMEOUT,
    ) -> None:
        self._cache = cache if cache is not None else ConnectionCache()
        self._call_timeout = call_timeout

    @property
    def cache(self) -> ConnectionCache:
        return self._cache

    async def invoke(self, request: InvokeRequest) -> mcp_types.CallToolResult:
        """Call ``request.tool_name`` on ``request.endpoint``."""
        try:
            conn = await self._cache.get_or_create(request.endpoint, request.headers)
            session = conn.session
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Invoke %s on %s: connection failed: %s", request.tool_name, request.endpoint, exc)
            return self._failure(request.tool_name, exc)
        return await self.call_session(session, request.tool_name, request.arguments, label=request.endpoint)

    async def call_session(
        self,
        session: ClientSession,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
        *,
        label: str = "",
    ) -> mcp_types.CallToolResult:
        """Call *tool_name* on an already-open *session*."""
        logger.debug("[%s] Calling tool '%s'.", label, tool_name)
        try:
            result = await asyncio.wait_for(
                session.call_tool(tool_name, arguments or {}),
                timeout=self._call_timeout,
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.warning("[%s] Tool '%s' timed out after %ss.", label, tool_name, self._call_timeout)
            return error_result(
                f"Failed to invoke {tool_name}: timed out after {self._call_timeout:g}s"
            )
        except Exception as exc:
            logger.warning("[%s] Tool '%s' failed: %s", label, tool_name, exc)
            return self._failure(tool_name, exc)
        return normalize_call_result(result)

    @staticmethod
    def _failure(tool_name: str, exc: BaseException) -> mcp_types.CallToolResult:
        return error_result(f"Failed to invoke {tool_name}: {describe_exception(exc)}")

    def clear_cache(self) -> None:
        """Drop every cached connection (closed in the background)."""
        self._cache.clear()

    async def close(self) -> None:
        """Close every cached connection and wait for completion."""
        await self._cache.close()
