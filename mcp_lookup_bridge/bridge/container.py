"""Container launch commands and container-runtime queries.

:class:`ContainerLauncher` turns a resolved package into the argument
list that runs it inside a hardened container, and wraps the handful of
runtime CLI calls the registry needs (status, stop, remove, logs).
Runtime queries are best-effort: they report absence or failure through
their return value and never raise.
"""

import asyncio
import hashlib
import logging
import shlex
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from mcp_lookup_bridge.constants import (
    CONTAINER_CPUS,
    CONTAINER_MEMORY,
    CONTAINER_NAME_PREFIX,
    CONTAINER_PIDS_LIMIT,
    CONTAINER_PORT,
    CONTAINER_RUNTIME,
    DIRECT_CONTAINER_NAME_PREFIX,
    KNOWN_RUNTIMES,
    NODE_IMAGE,
    PYTHON_IMAGE,
    RUNTIME_COMMAND_TIMEOUT,
)
from mcp_lookup_bridge.errors import PackageResolutionError
from mcp_lookup_bridge.registry.models import PackageResolution, PackageType
from mcp_lookup_bridge.runtime.models import ContainerStatus, ManagedServer, ServerMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandOutcome:
    """Exit status and decoded output of a runtime CLI call."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


CommandRunner = Callable[[Sequence[str], float], Awaitable[CommandOutcome]]


async def run_command(args: Sequence[str], timeout: float) -> CommandOutcome:
    """Run *args* as a subprocess and collect its output.

    The child is killed when *timeout* elapses. Raises
    :class:`FileNotFoundError` when the executable is missing and
    :class:`asyncio.TimeoutError` on timeout.
    """
    process = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise
    return CommandOutcome(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )


@dataclass(frozen=True)
class ContainerSettings:
    """Runtime, images and resource ceilings applied to every launch."""

    runtime: str = CONTAINER_RUNTIME
    node_image: str = NODE_IMAGE
    python_image: str = PYTHON_IMAGE
    memory: Optional[str] = CONTAINER_MEMORY
    cpus: Optional[str] = CONTAINER_CPUS
    pids_limit: int = CONTAINER_PIDS_LIMIT
    command_timeout: float = RUNTIME_COMMAND_TIMEOUT


@dataclass(frozen=True)
class LaunchOptions:
    """Per-launch choices for :meth:`ContainerLauncher.build_launch_command`."""

    server_name: str
    mode: ServerMode = ServerMode.BRIDGE
    env: Dict[str, str] = field(default_factory=dict)
    include_port_mapping: bool = False
    container_name: Optional[str] = None


class ContainerLauncher:
    """Builds hardened launch commands and queries the container runtime.

    Parameters
    ----------
    settings:
        Runtime executable, base images and resource ceilings.
    runner:
        Coroutine executing a CLI call; defaults to :func:`run_command`.
    """

    def __init__(
        self,
        settings: Optional[ContainerSettings] = None,
        *,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self._settings = settings or ContainerSettings()
        self._runner: CommandRunner = runner or run_command

    @property
    def settings(self) -> ContainerSettings:
        return self._settings

    # ── Command construction ────────────────────────────────────────────

    def container_name_for(self, server_name: str, mode: ServerMode = ServerMode.BRIDGE) -> str:
        prefix = DIRECT_CONTAINER_NAME_PREFIX if mode is ServerMode.DIRECT else CONTAINER_NAME_PREFIX
        return f"{prefix}{server_name}"

    def hardening_flags(self) -> List[str]:
        """Security and resource flags added to every ``run`` command."""
        flags = [
            "--security-opt",
            "no-new-privileges:true",
            "--pids-limit",
            str(self._settings.pids_limit),
        ]
        if self._settings.memory:
            flags += ["--memory", self._settings.memory]
        if self._settings.cpus:
            flags += ["--cpus", str(self._settings.cpus)]
        return flags

    def build_launch_command(
        self,
        resolution: PackageResolution,
        options: LaunchOptions,
    ) -> List[str]:
        """Return the argument list that runs *resolution* in a container.

        The result depends only on its inputs. Package containers (npm,
        python) are run with ``--rm``; image containers are kept after they
        exit so they can be inspected and swept by the cleanup pass. Raises
        :class:`PackageResolutionError` for package types that cannot be
        launched (git checkouts).
        """
        name = options.container_name or self.container_name_for(options.server_name, options.mode)
        command = [self._settings.runtime, "run"]
        if resolution.package_type is not PackageType.DOCKER:
            command.append("--rm")
        command += ["-i", "--name", name]
        if options.include_port_mapping:
            command += ["-p", f"0:{CONTAINER_PORT}"]
        command += self.hardening_flags()
        for key in sorted(options.env):
            command += ["-e", f"{key}={options.env[key]}"]
        command += self._entrypoint(resolution)
        return command

    def _entrypoint(self, resolution: PackageResolution) -> List[str]:
        pkg = resolution.package_name
        if resolution.package_type is PackageType.NPM:
            quoted = shlex.quote(pkg)
            return [
                self._settings.node_image,
                "sh",
                "-c",
                f"npm install -g {quoted} && npx {quoted}",
            ]
        if resolution.package_type is PackageType.PYTHON:
            return [
                self._settings.python_image,
                "sh",
                "-c",
                f"pip install --no-cache-dir uv && uvx {shlex.quote(pkg)}",
            ]
        if resolution.package_type is PackageType.DOCKER:
            return [pkg]
        raise PackageResolutionError(
            f"Package type '{resolution.package_type.value}' cannot be launched by the bridge: {pkg}"
        )

    def validate_command(self, command: object) -> bool:
        """Structural check of a launch command; unrecognised shapes are rejected."""
        if not isinstance(command, (list, tuple)) or len(command) < 2:
            return False
        if not all(isinstance(part, str) and part for part in command):
            return False
        if command[0] not in KNOWN_RUNTIMES:
            return False
        return "run" in command[1:]

    def get_container_name(self, server: ManagedServer) -> str:
        """Container identifier for *server*, stable for the same record."""
        if server.container_name:
            return server.container_name
        command = list(server.command)
        if "--name" in command:
            idx = command.index("--name")
            if idx + 1 < len(command):
                return command[idx + 1]
        digest = hashlib.sha1("\0".join(command).encode("utf-8")).hexdigest()[:8]
        return f"{CONTAINER_NAME_PREFIX}{server.name}-{digest}"

    # ── Runtime queries ─────────────────────────────────────────────────

    async def _run(self, *args: str) -> Optional[CommandOutcome]:
        cmd = [self._settings.runtime, *args]
        try:
            return await self._runner(cmd, self._settings.command_timeout)
        except asyncio.TimeoutError:
            logger.warning("Container runtime call timed out: %s", " ".join(cmd))
        except OSError as exc:
            logger.debug("Container runtime call failed (%s): %s", " ".join(cmd), exc)
        return None

    async def is_runtime_available(self) -> bool:
        outcome = await self._run("--version")
        available = outcome is not None and outcome.ok
        if not available:
            logger.info("Container runtime '%s' is not available.", self._settings.runtime)
        return available

    async def get_container_status(self, name: str) -> ContainerStatus:
        outcome = await self._run(
            "ps", "-a", "--filter", f"name=^/?{name}$", "--format", "{{.Status}}"
        )
        if outcome is None or not outcome.ok:
            return ContainerStatus.NOT_FOUND
        status = outcome.stdout.strip()
        if not status:
            return ContainerStatus.NOT_FOUND
        if status.lower().startswith("up"):
            return ContainerStatus.RUNNING
        return ContainerStatus.STOPPED

    async def stop_container(self, name: str) -> bool:
        """Stop container *name*; False when it was not running or the call failed."""
        if await self.get_container_status(name) is not ContainerStatus.RUNNING:
            return False
        outcome = await self._run("stop", name)
        if outcome is None or not outcome.ok:
            logger.warning("[%s] Failed to stop container: %s", name, outcome.stderr.strip() if outcome else "")
            return False
        logger.info("[%s] Container stopped.", name)
        return True

    async def remove_container(self, name: str) -> bool:
        """Force-remove container *name*; False when it does not exist or the call failed."""
        if await self.get_container_status(name) is ContainerStatus.NOT_FOUND:
            return False
        outcome = await self._run("rm", "-f", name)
        if outcome is None or not outcome.ok:
            logger.warning("[%s] Failed to remove container: %s", name, outcome.stderr.strip() if outcome else "")
            return False
        logger.info("[%s] Container removed.", name)
        return True

    async def get_container_logs(self, name: str, lines: int = 50) -> str:
        outcome = await self._run("logs", "--tail", str(lines), name)
        if outcome is None or not outcome.ok:
            return "Error retrieving logs"
        return (outcome.stdout + outcome.stderr).strip()
