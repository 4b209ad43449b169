"""
Pydantic models for the git mirror registry.

This module defines the data models used throughout the application:
- Mirror settings (persisted in mirror.json)
- The static repository table (loaded from repositories.yaml)
- Per-request resolution state kept by the mirror service

All models use Pydantic for validation, serialization, and type safety.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Mirror Configuration Models
# ---------------------------------------------------------------------------


class MirrorSettings(BaseModel):
    """
    Top-level configuration for the mirror.

    Persisted at: <DATA_DIR>/mirror.json
    """

    cache_root: Optional[str] = Field(
        default=None,
        description="Directory holding working copies and archives. Defaults to <DATA_DIR>/cache.",
    )
    registry_url: str = Field(
        default="http://localhost:8000",
        description="Public base URL used to build dist.tarball download locations.",
    )
    moving_revision: str = Field(
        default="HEAD",
        description="Revision token meaning 'whatever the remote currently points at'.",
    )
    ref_separator_placeholder: str = Field(
        default="---",
        description="Stand-in for '/' inside branch names so revisions stay usable as cache keys.",
    )
    archive_extension: str = Field(
        default="tgz",
        description="File extension of produced archives.",
    )
    archive_prefix: str = Field(
        default="package/",
        description="Top-level directory inside every archive.",
    )
    manifest_name: str = Field(
        default="package.json",
        description="Name of the package manifest at the repository root.",
    )
    internal_remote_patterns: List[str] = Field(
        default_factory=list,
        description="Regular expressions identifying dependency constraints that point at internal git hosts.",
    )
    git_timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Upper bound for any single git invocation.",
    )
    use_request_base_url: bool = Field(
        default=True,
        description="Re-root dist.tarball at the base URL of the incoming HTTP request.",
    )
    prefetch_interval_seconds: int = Field(
        default=0,
        ge=0,
        description="If non-zero, refresh every mirrored package on this interval in the background.",
    )

    @field_validator("archive_prefix")
    @classmethod
    def normalize_archive_prefix(cls, value: str) -> str:
        value = value.strip("/")
        if not value:
            raise ValueError("archive_prefix must name a directory")
        return value + "/"


# ---------------------------------------------------------------------------
# Repository Table Models
# ---------------------------------------------------------------------------


class RepositorySource(BaseModel):
    """
    One mirrored repository: the registry package name, its git remote and
    the requested revision. Immutable for the lifetime of the process.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    remote: str = Field(min_length=1)
    revision: str = Field(default="HEAD", min_length=1)

    @field_validator("name")
    @classmethod
    def check_name_is_path_safe(cls, value: str) -> str:
        if "/" in value or "\\" in value or value in (".", ".."):
            raise ValueError(f"package name is not usable as a cache key: {value!r}")
        return value

    @field_validator("revision")
    @classmethod
    def check_revision_is_path_safe(cls, value: str) -> str:
        if "/" in value or "\\" in value or value.startswith("."):
            raise ValueError(f"revision must use the placeholder instead of '/': {value!r}")
        return value


class RepositoryGroup(BaseModel):
    """
    Several packages sharing a remote URL template and a revision.

    The template receives the package name via ``{name}``.
    """

    remote_template: str
    revision: str = "HEAD"
    packages: List[str] = Field(default_factory=list)


class PackageEntry(BaseModel):
    """A single package declared explicitly in repositories.yaml."""

    remote: str
    revision: str = "HEAD"


class RepositoryTableFile(BaseModel):
    """On-disk shape of repositories.yaml."""

    groups: List[RepositoryGroup] = Field(default_factory=list)
    packages: Dict[str, PackageEntry] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Resolution State
# ---------------------------------------------------------------------------


class Resolution(BaseModel):
    """
    Derived state for one top-level request against a RepositorySource.

    Kept in the mirror service's resolution cache keyed by (name, revision);
    never written back onto the source.
    """

    name: str
    revision: str
    resolved_revision: str
    working_copy_path: Path
    archive_path: Path
    descriptor: Optional[Dict[str, Any]] = None
