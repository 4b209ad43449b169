"""
Filesystem cache for working copies and snapshot archives.

Layout under the cache root:

    <name>-<revision>/                 working copy (revision as configured)
    <name>-<resolved>.<extension>      immutable snapshot archive

Paths are pure functions of (name, revision, cache root). Archives are only
ever published by atomic rename, so a file at an archive path is complete.
"""
from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

from gitmirror.domain.registry_utils import is_commit_id, parse_tarball_filename

logger = logging.getLogger(__name__)


class CacheStore:
    def __init__(self, cache_root: Path, archive_extension: str = "tgz"):
        self.cache_root = Path(cache_root)
        self.archive_extension = archive_extension
        self._locks: Dict[Path, asyncio.Lock] = {}

    # ========================================================================
    # Paths
    # ========================================================================

    def working_copy_path(self, name: str, revision: str) -> Path:
        return self.cache_root / f"{name}-{revision}"

    def archive_path(self, name: str, resolved_revision: str) -> Path:
        return self.cache_root / f"{name}-{resolved_revision}.{self.archive_extension}"

    def working_copy_exists(self, name: str, revision: str) -> bool:
        """A working copy counts as present only if git metadata is there too."""
        path = self.working_copy_path(name, revision)
        return (path / ".git").exists()

    def archive_exists(self, name: str, resolved_revision: str) -> bool:
        return self.archive_path(name, resolved_revision).is_file()

    def list_archives(self, name: str, revision: Optional[str] = None) -> List[Path]:
        """
        All archives currently cached for a package, oldest first.

        A file counts when its revision part is a commit id or ``revision``;
        this keeps ``web`` from claiming ``web-config-<sha>.tgz``.
        """
        if not self.cache_root.exists():
            return []
        archives = []
        for p in self.cache_root.glob(f"{name}-*.{self.archive_extension}"):
            if not p.is_file():
                continue
            found = parse_tarball_filename(name, p.name, self.archive_extension)
            if found is not None and (is_commit_id(found) or found == revision):
                archives.append(p)
        return sorted(archives, key=lambda p: p.stat().st_mtime)

    def ensure_cache_root(self) -> None:
        self.cache_root.mkdir(parents=True, exist_ok=True)

    # ========================================================================
    # Writes
    # ========================================================================

    def scratch_dir(self) -> tempfile.TemporaryDirectory:
        """
        Temporary directory inside the cache root.

        Living on the same filesystem as the archives keeps publish() an
        atomic rename.
        """
        self.ensure_cache_root()
        return tempfile.TemporaryDirectory(prefix=".scratch-", dir=self.cache_root)

    def publish(self, built_file: Path, name: str, resolved_revision: str) -> Path:
        """
        Move a fully written archive into its final location.

        An archive that already exists is kept and the new file discarded.
        """
        target = self.archive_path(name, resolved_revision)
        if target.exists():
            logger.warning(f"Archive {target.name} already exists; keeping the published copy")
            built_file.unlink(missing_ok=True)
            return target
        os.replace(built_file, target)
        return target

    # ========================================================================
    # Locking
    # ========================================================================

    def lock_for(self, path: Path) -> asyncio.Lock:
        """
        Lock serializing every pipeline step that touches ``path``.

        Locks are created lazily and shared by all callers within this process.
        """
        key = Path(path)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock
