"""Package resolution for ``install_mcp_server``.

Turns a free-form package query into a :class:`PackageResolution`:

* npm package names (``@scope/pkg``, ``pkg``) resolve directly,
* Python packages (``mcp-server-*`` or names mentioning ``python``) resolve directly,
* container image references (``org/image:tag``) resolve directly,
* anything else is sent to the directory's smart discovery and the best
  match is used.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from mcp_lookup_bridge.errors import DirectoryError, PackageResolutionError
from mcp_lookup_bridge.registry.client import DirectoryClient
from mcp_lookup_bridge.registry.models import (
    InstallInstructions,
    PackageResolution,
    PackageType,
    ResolutionSource,
    ServerSummary,
)
from mcp_lookup_bridge.runtime.models import ServerMode

logger = logging.getLogger(__name__)

_NPM_NAME_RE = re.compile(r"^(@[a-z0-9-~][a-z0-9-._~]*/)?[a-z0-9-~][a-z0-9-._~]*$")
_PYTHON_NAME_RE = re.compile(r"^[a-z][a-z0-9_-]*$")
_SERVER_NAME_STRIP_RE = re.compile(r"[^a-zA-Z0-9-]")

_REGISTRY_TYPES = {
    "npm": PackageType.NPM,
    "pypi": PackageType.PYTHON,
    "docker": PackageType.DOCKER,
}


def is_npm_package(value: str) -> bool:
    return (
        bool(_NPM_NAME_RE.match(value))
        and ":" not in value
        and " " not in value
        and not value.startswith("mcp-server-")
    )


def is_python_package(value: str) -> bool:
    if " " in value or ":" in value:
        return False
    return value.startswith("mcp-server-") or "python" in value or bool(_PYTHON_NAME_RE.match(value))


def is_container_image(value: str) -> bool:
    return ":" in value and " " not in value and not value.startswith("@")


def generate_server_name(package_name: str) -> str:
    """Derive a local server name from *package_name*.

    ``@modelcontextprotocol/server-filesystem`` → ``modelcontextprotocol-server-filesystem``
    """
    name = package_name.replace("@", "-").replace("/", "-")
    name = _SERVER_NAME_STRIP_RE.sub("", name).lower().strip("-")
    return re.sub(r"-{2,}", "-", name)


class PackageResolver:
    """Resolve package queries, consulting the directory for free-form ones.

    Args:
        directory: Client used for smart discovery and install lookups.
        max_results: Number of smart-discovery candidates requested.
    """

    def __init__(self, directory: DirectoryClient, *, max_results: int = 5) -> None:
        self._directory = directory
        self._max_results = max_results

    async def resolve(self, query: str) -> PackageResolution:
        query = (query or "").strip()
        if not query:
            raise PackageResolutionError("Package query must not be empty")

        if is_npm_package(query):
            return PackageResolution(package_name=query, package_type=PackageType.NPM, display_name=query)
        if is_python_package(query):
            return PackageResolution(
                package_name=query, package_type=PackageType.PYTHON, display_name=query
            )
        if is_container_image(query):
            return PackageResolution(
                package_name=query, package_type=PackageType.DOCKER, display_name=query
            )
        return await self._search(query)

    async def _search(self, query: str) -> PackageResolution:
        logger.info("Resolving '%s' through directory smart discovery.", query)
        try:
            matches = await self._directory.smart_search(query, max_results=self._max_results)
        except DirectoryError as exc:
            raise PackageResolutionError(f"Search failed for '{query}': {exc}") from exc
        if not matches:
            raise PackageResolutionError(f"No installable package found for: '{query}'")

        server = matches[0].server
        package_name = _extract_package_name(server) or query
        return PackageResolution(
            package_name=package_name,
            package_type=_determine_package_type(server),
            display_name=server.name or package_name,
            description=server.description,
            source=ResolutionSource.SEARCH,
            verified=server.verified,
            server_id=server.id or None,
        )

    async def get_instructions(
        self,
        resolution: PackageResolution,
        mode: ServerMode = ServerMode.BRIDGE,
    ) -> InstallInstructions:
        """Return setup steps for *resolution*.

        Directory-provided instructions are used for search results when
        available; local defaults otherwise.
        """
        if resolution.source is ResolutionSource.SEARCH and resolution.server_id:
            try:
                data = await self._directory.install_instructions(
                    resolution.server_id, method=resolution.package_type.value
                )
                return _instructions_from_api(data, resolution, mode)
            except DirectoryError as exc:
                logger.debug(
                    "Install lookup for '%s' failed, using local instructions: %s",
                    resolution.server_id,
                    exc,
                )
        return local_instructions(resolution, mode)


# ── helpers ─────────────────────────────────────────────────────────────


def _extract_package_name(server: ServerSummary) -> Optional[str]:
    for wanted in ("npm", "pypi", "docker"):
        for pkg in server.packages:
            if pkg.registry_name == wanted and pkg.name:
                return pkg.name
    if "github.com" in server.source_url:
        return "/".join(server.source_url.rstrip("/").split("/")[-2:])
    return server.id or None


def _determine_package_type(server: ServerSummary) -> PackageType:
    for pkg in server.packages:
        if pkg.registry_name in _REGISTRY_TYPES:
            return _REGISTRY_TYPES[pkg.registry_name]
    if server.language == "Python":
        return PackageType.PYTHON
    if server.language in ("TypeScript", "JavaScript"):
        return PackageType.NPM
    return PackageType.GIT


def default_command(resolution: PackageResolution) -> List[str]:
    """Canonical host command for *resolution* (shown to the user)."""
    pkg = resolution.package_name
    if resolution.package_type is PackageType.PYTHON:
        return ["uvx", pkg]
    if resolution.package_type is PackageType.DOCKER:
        return ["docker", "run", "--rm", "-i", pkg]
    return ["npx", pkg]


def local_instructions(
    resolution: PackageResolution,
    mode: ServerMode = ServerMode.BRIDGE,
) -> InstallInstructions:
    pkg = resolution.package_name
    steps: List[str] = []
    if resolution.package_type is PackageType.NPM:
        steps.append(f"Install and run with npx: npx {pkg}")
    elif resolution.package_type is PackageType.PYTHON:
        steps.append(f"Install using uvx: uvx {pkg}")
    elif resolution.package_type is PackageType.DOCKER:
        steps.append(f"Pull container image: docker pull {pkg}")
    else:
        steps.append(f"Clone and build from source: {pkg}")
    if mode is ServerMode.BRIDGE:
        steps.append("Run inside a hardened container managed by the bridge")

    command = default_command(resolution)
    notes = ["Restart the client to pick up the server"] if mode is ServerMode.DIRECT else []
    return InstallInstructions(steps=steps, command=command[0], args=command[1:], notes=notes)


def _instructions_from_api(
    data: Dict[str, Any],
    resolution: PackageResolution,
    mode: ServerMode,
) -> InstallInstructions:
    fallback = local_instructions(resolution, mode)
    raw_steps = data.get("installation_steps") or []
    steps = [
        str(s.get("description") or s.get("step") or "")
        for s in raw_steps
        if isinstance(s, dict) and (s.get("description") or s.get("step"))
    ]
    client_cfg = data.get("claude_config") or {}
    env_vars: Dict[str, str] = {}
    raw_env = client_cfg.get("env_vars") or client_cfg.get("env") or {}
    if isinstance(raw_env, dict):
        env_vars = {str(k): str(v) for k, v in raw_env.items()}
    return InstallInstructions(
        steps=steps or fallback.steps,
        command=client_cfg.get("command") or fallback.command,
        args=list(client_cfg.get("args") or fallback.args),
        env_vars=env_vars,
        notes=fallback.notes,
    )
