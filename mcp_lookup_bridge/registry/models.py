"""Data models for the MCP Lookup directory API and package resolution.

Defines the client-side types for the directory contract
(``ServerSummary``, ``SearchPage``, ``RegistrationRequest``,
``RegistrationResult``) and the resolved package descriptor consumed by
the installer (``PackageResolution``, ``InstallInstructions``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class PackageRef:
    """One installable package advertised for a server (npm, pypi, docker)."""

    registry_name: str
    name: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PackageRef:
        return cls(
            registry_name=str(data.get("registry_name") or data.get("registryName") or ""),
            name=str(data.get("name") or ""),
        )


@dataclass(frozen=True)
class ServerSummary:
    """A single server entry returned by a directory search.

    Only what discovery and installation need is kept; the remaining
    keys from the API response are captured in *extra*.
    """

    id: str
    name: str = ""
    description: str = ""
    domain: str = ""
    endpoint: str = ""
    category: str = ""
    verification_status: str = ""
    language: str = ""
    source_url: str = ""
    packages: List[PackageRef] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def verified(self) -> bool:
        return self.verification_status == "verified"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ServerSummary:
        """Construct from an API JSON payload (tolerant of missing keys)."""
        repository = data.get("repository") or data.get("source") or {}
        if not isinstance(repository, dict):
            repository = {}
        verification = data.get("verification_status") or ""
        if not verification and isinstance(data.get("verification"), dict):
            verification = data["verification"].get("status", "")

        known_keys = {
            "id",
            "name",
            "description",
            "domain",
            "endpoint",
            "category",
            "verification_status",
            "verification",
            "repository",
            "source",
            "packages",
            "tags",
        }
        extra = {k: v for k, v in data.items() if k not in known_keys}

        return cls(
            id=str(data.get("id") or data.get("domain") or data.get("name") or ""),
            name=data.get("name", "") or "",
            description=data.get("description", "") or "",
            domain=data.get("domain", "") or "",
            endpoint=data.get("endpoint", "") or "",
            category=data.get("category", "") or "",
            verification_status=str(verification),
            language=repository.get("language", "") or "",
            source_url=repository.get("url", "") or "",
            packages=[
                PackageRef.from_dict(p) for p in data.get("packages") or [] if isinstance(p, dict)
            ],
            tags=list(data.get("tags") or []),
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"id": self.id, "name": self.name}
        for key in ("description", "domain", "endpoint", "category", "verification_status"):
            value = getattr(self, key)
            if value:
                out[key] = value
        if self.packages:
            out["packages"] = [{"registry_name": p.registry_name, "name": p.name} for p in self.packages]
        if self.tags:
            out["tags"] = list(self.tags)
        return out


@dataclass(frozen=True)
class SearchPage:
    """Response of ``GET /discover``."""

    servers: List[ServerSummary]
    total: Optional[int] = None
    has_more: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SearchPage:
        raw_servers = data.get("servers") or data.get("items") or []
        pagination = data.get("pagination") or {}
        return cls(
            servers=[ServerSummary.from_dict(s) for s in raw_servers if isinstance(s, dict)],
            total=data.get("total"),
            has_more=bool(pagination.get("has_more", False)),
        )


@dataclass(frozen=True)
class SmartMatch:
    """One ranked match of ``POST /discover/smart``."""

    server: ServerSummary
    relevance_score: float = 0.0
    match_reasons: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SmartMatch:
        return cls(
            server=ServerSummary.from_dict(data.get("server") or {}),
            relevance_score=float(data.get("relevance_score") or 0.0),
            match_reasons=list(data.get("match_reasons") or []),
        )


class RegistrationRequest(BaseModel):
    """Body of ``POST /register``."""

    domain: str = Field(min_length=1)
    endpoint: str = Field(min_length=1)
    contact_email: str = Field(min_length=3)
    description: Optional[str] = None


@dataclass(frozen=True)
class RegistrationResult:
    """Response of ``POST /register`` (verification instructions)."""

    domain: str
    status: str = "pending"
    verification_token: str = ""
    message: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], domain: str = "") -> RegistrationResult:
        known_keys = {"domain", "status", "verification_token", "message"}
        return cls(
            domain=data.get("domain") or domain,
            status=data.get("status") or "pending",
            verification_token=data.get("verification_token") or "",
            message=data.get("message") or "",
            extra={k: v for k, v in data.items() if k not in known_keys},
        )


# ── Package resolution ──────────────────────────────────────────────────


class PackageType(str, Enum):
    NPM = "npm"
    PYTHON = "python"
    DOCKER = "docker"
    GIT = "git"


class ResolutionSource(str, Enum):
    DIRECT = "direct"
    SEARCH = "search"


@dataclass(frozen=True)
class InstallInstructions:
    """Human-readable setup steps plus the canonical run command."""

    steps: List[str] = field(default_factory=list)
    command: str = ""
    args: List[str] = field(default_factory=list)
    env_vars: Dict[str, str] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PackageResolution:
    """A resolved package descriptor produced by :class:`PackageResolver`."""

    package_name: str
    package_type: PackageType
    display_name: str = ""
    description: str = ""
    source: ResolutionSource = ResolutionSource.DIRECT
    verified: bool = False
    server_id: Optional[str] = None
