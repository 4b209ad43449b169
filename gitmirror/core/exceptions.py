"""
Exceptions raised by the mirroring pipeline.

Each pipeline stage raises its own exception type so callers (the HTTP layer
in particular) can tell which stage failed without parsing messages.
"""
from __future__ import annotations

from typing import Optional


class MirrorError(Exception):
    """Base exception for all mirroring failures."""

    stage: str = "pipeline"

    def __init__(self, message: str, package: Optional[str] = None):
        super().__init__(message)
        self.package = package

    def __str__(self) -> str:
        message = super().__str__()
        if self.package:
            return f"[{self.stage}][{self.package}] {message}"
        return f"[{self.stage}] {message}"


class RepositoryConfigError(MirrorError):
    """Raised when the repository table or mirror settings are malformed."""

    stage = "config"


class UnknownPackageError(MirrorError):
    """Raised when a package name is not present in the repository table."""

    stage = "lookup"


class SyncError(MirrorError):
    """Raised when cloning, probing or fetching the remote fails."""

    stage = "sync"


class CheckoutError(MirrorError):
    """Raised when the requested revision cannot be checked out."""

    stage = "checkout"


class ResolutionError(MirrorError):
    """Raised when the checked-out commit identifier cannot be determined."""

    stage = "resolve"


class ManifestError(MirrorError):
    """Raised when package.json is missing, unreadable or malformed."""

    stage = "manifest"


class ArchiveError(MirrorError):
    """Raised when the snapshot archive cannot be produced."""

    stage = "archive"


class CacheIntegrityError(MirrorError):
    """Raised when an expected cache artifact is missing after a successful run."""

    stage = "cache"


__all__ = [
    "MirrorError",
    "RepositoryConfigError",
    "UnknownPackageError",
    "SyncError",
    "CheckoutError",
    "ResolutionError",
    "ManifestError",
    "ArchiveError",
    "CacheIntegrityError",
]
