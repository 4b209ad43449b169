"""
Unified service for mirroring git repositories into an npm-style registry.

This service handles:
- Looking up packages in the static repository table
- Running the resolve -> archive -> metadata pipeline for a package
- Serving index documents, version descriptors and archive bytes
- Periodic background refresh of every mirrored package
"""
from __future__ import annotations

import asyncio
import copy
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Tuple

import aiofiles

from gitmirror.core.exceptions import CacheIntegrityError, MirrorError, RepositoryConfigError, UnknownPackageError
from gitmirror.domain.entities import CHUNK_SIZE, assemble_index_document
from gitmirror.domain.models import MirrorSettings, RepositorySource, Resolution
from gitmirror.domain.registry_utils import is_commit_id
from gitmirror.services.archiver import SnapshotArchiver
from gitmirror.services.git import GitClient
from gitmirror.services.metadata import LocationRewriter, MetadataBuilder
from gitmirror.services.resolver import RevisionResolver
from gitmirror.storage.cache_store import CacheStore

logger = logging.getLogger(__name__)


class MirrorService:
    """
    Entry point for index and tarball requests.

    The repository table is read-only. Everything derived from a request
    (resolved commit, cache paths, descriptor) lives in a separate resolution
    cache keyed by (name, revision), and the whole pipeline for one working
    copy runs under that working copy's lock.
    """

    def __init__(
        self,
        sources: Mapping[str, RepositorySource],
        settings: Optional[MirrorSettings] = None,
        *,
        cache_root: Optional[Path] = None,
        git: Optional[GitClient] = None,
        logger: Optional[logging.Logger] = None,
        location_rewriter: Optional[LocationRewriter] = None,
    ):
        self.sources: Mapping[str, RepositorySource] = MappingProxyType(dict(sources))
        self.settings = settings or MirrorSettings()
        self.logger = logging.getLogger(__name__)
        self._git_override = git
        self._location_rewriter = location_rewriter
        self._resolutions: Dict[Tuple[str, str], Resolution] = {}
        self.configure(logger=logger, cache_root=cache_root)

    # ========================================================================
    # Configuration
    # ========================================================================

    def configure(
        self,
        settings: Optional[MirrorSettings] = None,
        *,
        logger: Optional[logging.Logger] = None,
        cache_root: Optional[Path] = None,
    ) -> None:
        """
        Set the logging sink and cache root, rebuilding the pipeline stages.

        May be called again to reconfigure; doing so forgets every in-memory
        resolution. Call it while no request is in flight.
        """
        if settings is not None:
            self.settings = settings
        if logger is not None:
            self.logger = logger

        root = cache_root or self.settings.cache_root
        if root is None:
            raise RepositoryConfigError("No cache root configured")

        self.store = CacheStore(Path(root), self.settings.archive_extension)
        self.git = self._git_override or GitClient(timeout=self.settings.git_timeout_seconds)

        remotes = {name: source.remote for name, source in self.sources.items()}
        self.resolver = RevisionResolver(self.store, self.git, self.settings, self.logger)
        self.archiver = SnapshotArchiver(self.store, self.git, self.settings, remotes, self.logger)
        self.metadata = MetadataBuilder(self.settings, remotes, self._location_rewriter, self.logger)
        self._resolutions.clear()

    @property
    def cache_root(self) -> Path:
        return self.store.cache_root

    def get_source(self, name: str) -> RepositorySource:
        source = self.sources.get(name)
        if source is None:
            raise UnknownPackageError(f"Unknown package {name!r}", package=name)
        return source

    def get_resolution(self, name: str) -> Optional[Resolution]:
        """Most recent resolution for a package in this process, if any."""
        source = self.get_source(name)
        return self._resolutions.get((source.name, source.revision))

    # ========================================================================
    # Pipeline
    # ========================================================================

    async def _ensure(self, source: RepositorySource) -> Resolution:
        key = (source.name, source.revision)
        working_copy = self.store.working_copy_path(source.name, source.revision)

        async with self.store.lock_for(working_copy):
            previous = self._resolutions.get(key)
            if (
                previous is not None
                and previous.descriptor is not None
                and not self.resolver.is_moving(source)
                and previous.archive_path.is_file()
                and self.store.working_copy_exists(source.name, source.revision)
            ):
                self.logger.debug(f"[git][{source.name}] Cache hit for {source.revision}")
                return previous

            resolution = await self.resolver.resolve(source)
            await self.archiver.ensure_archive(resolution)
            descriptor = await self.metadata.build(resolution, previous)

            resolution = resolution.model_copy(update={"descriptor": descriptor})
            self._resolutions[key] = resolution
            return resolution

    async def get_index(self, name: str) -> Dict[str, Any]:
        """
        Run the pipeline for ``name`` and return its version descriptor.

        Raises:
            UnknownPackageError: name is not in the repository table
            MirrorError: any pipeline stage failed
        """
        resolution = await self._ensure(self.get_source(name))
        return copy.deepcopy(resolution.descriptor)

    async def get_full_index(self, name: str) -> Dict[str, Any]:
        return assemble_index_document(await self.get_index(name))

    async def get_tarball(self, name: str, resolved_revision: Optional[str] = None) -> AsyncIterator[bytes]:
        """
        Byte stream over the archive for ``name``.

        An explicitly requested revision (a commit id or the configured
        revision) is served straight from the cache when its archive exists.
        Otherwise the most recent archive is used, running the pipeline once
        if there is none yet.

        Raises:
            UnknownPackageError: name is not in the repository table
            CacheIntegrityError: the pipeline succeeded but left no archive
        """
        source = self.get_source(name)
        path = self._cached_archive(source, resolved_revision)

        if path is None:
            resolution = await self._ensure(source)
            path = resolution.archive_path
            if not path.is_file():
                raise CacheIntegrityError(f"Archive {path.name} missing after a successful run", package=name)

        return self._iter_file(path)

    def _cached_archive(self, source: RepositorySource, resolved_revision: Optional[str]) -> Optional[Path]:
        candidates = []
        # Anything else could be another package's archive sharing the name prefix.
        if resolved_revision is not None and (
            is_commit_id(resolved_revision) or resolved_revision == source.revision
        ):
            candidates.append(self.store.archive_path(source.name, resolved_revision))

        previous = self._resolutions.get((source.name, source.revision))
        if previous is not None:
            candidates.append(previous.archive_path)
        elif not self.resolver.is_moving(source):
            candidates.append(self.store.archive_path(source.name, source.revision))

        for path in candidates:
            if path.is_file():
                return path
        return None

    async def _iter_file(self, path: Path) -> AsyncIterator[bytes]:
        async with aiofiles.open(path, "rb") as f:
            while True:
                chunk = await f.read(CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    # ========================================================================
    # Background refresh
    # ========================================================================

    async def refresh_all(self) -> Dict[str, Optional[str]]:
        """
        Run the pipeline for every package, one at a time.

        Returns a mapping of package name to error message (None on success).
        Failures are logged and do not stop the remaining packages.
        """
        results: Dict[str, Optional[str]] = {}
        for name in sorted(self.sources):
            try:
                await self.get_index(name)
                results[name] = None
            except MirrorError as e:
                self.logger.error(f"Failed to refresh {name}: {e}")
                results[name] = str(e)
        return results


async def prefetch_loop(service: MirrorService, interval_seconds: int) -> None:
    """
    Refresh every mirrored package every ``interval_seconds``.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await service.refresh_all()
        except Exception as e:
            logger.error(f"Error in prefetch loop: {e}")
