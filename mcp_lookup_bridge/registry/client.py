"""Async client for the MCP Lookup directory API v1.

Communicates with ``https://mcplookup.org/api/v1`` (or a compatible
endpoint) to discover registered MCP servers and to register new ones.
The bridge only consumes this API; failures are raised as
:class:`DirectoryError` and surfaced to the caller without retries.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from mcp_lookup_bridge.constants import DIRECTORY_BASE_URL, DIRECTORY_TIMEOUT
from mcp_lookup_bridge.errors import DirectoryError
from mcp_lookup_bridge.registry.models import (
    RegistrationRequest,
    RegistrationResult,
    SearchPage,
    SmartMatch,
)

logger = logging.getLogger(__name__)


class DirectoryClient:
    """Async HTTP client for the MCP Lookup directory.

    Parameters
    ----------
    base_url:
        Root URL of the directory API (e.g. ``https://mcplookup.org/api/v1``).
    api_key:
        Optional API key, sent as a bearer token.
    timeout:
        HTTP request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str = DIRECTORY_BASE_URL,
        *,
        api_key: Optional[str] = None,
        timeout: float = DIRECTORY_TIMEOUT,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers: Dict[str, str] = {"Accept": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def base_url(self) -> str:
        return self._base_url

    # ── lifecycle ───────────────────────────────────────────────────

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers,
                timeout=self._timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, action: str, **kwargs: Any) -> Dict[str, Any]:
        client = await self._ensure_client()
        try:
            resp = await client.request(method, path, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("Directory %s failed (%s): HTTP %s", action, path, exc.response.status_code)
            raise DirectoryError(
                f"{action.capitalize()} failed: {exc.response.text[:200]}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Directory %s failed (%s): %s", action, path, exc)
            raise DirectoryError(f"{action.capitalize()} failed: {exc}") from exc

        try:
            data = resp.json()
        except ValueError as exc:
            raise DirectoryError(f"{action.capitalize()} failed: invalid JSON response") from exc
        if not isinstance(data, dict):
            raise DirectoryError(f"{action.capitalize()} failed: unexpected response shape")
        return data

    # ── public API ──────────────────────────────────────────────────

    async def search(
        self,
        query: Optional[str] = None,
        *,
        limit: int = 10,
        offset: int = 0,
        **filters: Any,
    ) -> SearchPage:
        """Search servers via ``GET /discover``.

        Extra keyword filters (``intent``, ``category``, ``transport``,
        ``verified_only`` ...) are forwarded as query parameters when set.
        """
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if query:
            params["q"] = query
        for key, value in filters.items():
            if value is None:
                continue
            params[key] = str(value).lower() if isinstance(value, bool) else value
        logger.debug("Directory search: %s", params)
        data = await self._request("GET", "/discover", "discovery", params=params)
        return SearchPage.from_dict(data)

    async def smart_search(
        self,
        query: str,
        *,
        context: Optional[str] = None,
        max_results: int = 5,
    ) -> List[SmartMatch]:
        """Natural-language discovery via ``POST /discover/smart``."""
        body: Dict[str, Any] = {"query": query, "max_results": max_results}
        if context:
            body["context"] = context
        data = await self._request("POST", "/discover/smart", "smart discovery", json=body)
        return [SmartMatch.from_dict(m) for m in data.get("matches") or [] if isinstance(m, dict)]

    async def register(self, request: RegistrationRequest) -> RegistrationResult:
        """Register a server via ``POST /register``."""
        data = await self._request(
            "POST",
            "/register",
            "registration",
            json=request.model_dump(exclude_none=True),
        )
        logger.info("Registered '%s' with the directory.", request.domain)
        return RegistrationResult.from_dict(data, domain=request.domain)

    async def install_instructions(
        self,
        server_id: str,
        *,
        method: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Fetch ``GET /servers/{id}/install`` for *server_id*."""
        params = {"method": method} if method else None
        return await self._request(
            "GET", f"/servers/{quote(server_id, safe='')}/install", "install lookup", params=params
        )

    async def server_health(self, domain: str, *, realtime: bool = False) -> Dict[str, Any]:
        """Health metrics the directory keeps for *domain* (``GET /health/{domain}``)."""
        params = {"realtime": "true"} if realtime else None
        return await self._request(
            "GET", f"/health/{quote(domain, safe='')}", "health check", params=params
        )
