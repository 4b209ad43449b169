"""
Snapshot archiving.

Produces ``<name>-<resolved>.tgz`` for a checked-out working copy. The
archive carries a package.json whose internal dependencies have been
rewritten to the wildcard. The rewrite is applied to the tar stream as it is
copied from ``git archive`` output, so the tracked working copy is never
modified and a failed build leaves nothing behind but a discarded scratch
directory.
"""
from __future__ import annotations

import asyncio
import copy
import io
import json
import logging
import tarfile
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

from gitmirror.core.exceptions import ArchiveError
from gitmirror.domain.entities import read_manifest
from gitmirror.domain.models import MirrorSettings, Resolution
from gitmirror.domain.registry_utils import rewrite_internal_dependencies
from gitmirror.services.git import GitClient, GitCommandError
from gitmirror.storage.cache_store import CacheStore


def _copy_with_manifest(source_tar: Path, output: Path, manifest_member: str, manifest_bytes: bytes) -> None:
    """
    Re-pack an uncompressed tar as gzip, swapping in new manifest contents.

    Raises:
        ArchiveError: the manifest is not part of the tar
    """
    replaced = False
    with tarfile.open(source_tar, "r") as src, tarfile.open(output, "w:gz") as dst:
        for member in src:
            if member.isfile() and member.name == manifest_member:
                info = copy.copy(member)
                info.size = len(manifest_bytes)
                dst.addfile(info, io.BytesIO(manifest_bytes))
                replaced = True
            elif member.isfile():
                dst.addfile(member, src.extractfile(member))
            else:
                dst.addfile(member)

    if not replaced:
        raise ArchiveError(f"{manifest_member} is not tracked in the repository")


class SnapshotArchiver:
    def __init__(
        self,
        store: CacheStore,
        git: GitClient,
        settings: MirrorSettings,
        remotes: Mapping[str, str],
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.git = git
        self.settings = settings
        self.remotes = dict(remotes)
        self.logger = logger or logging.getLogger(__name__)

    @property
    def internal_patterns(self) -> Iterable[str]:
        return self.settings.internal_remote_patterns

    async def ensure_archive(self, resolution: Resolution) -> bool:
        """
        Create the archive for ``resolution`` unless it already exists.

        The caller must hold the cache store lock for the working copy.

        Returns:
            True if a new archive was written, False on a cache hit

        Raises:
            ManifestError: package.json could not be loaded (nothing written)
            ArchiveError: the archive could not be produced (nothing published)
        """
        name = resolution.name
        if self.store.archive_exists(name, resolution.resolved_revision):
            return False

        manifest = await read_manifest(resolution.working_copy_path / self.settings.manifest_name, name)
        rewritten = rewrite_internal_dependencies(manifest, self.remotes, self.internal_patterns)
        if rewritten:
            self.logger.info(f"[git][{name}] Rewrote internal dependencies: {', '.join(sorted(rewritten))}")

        self.logger.info(f"[git][{name}] Creating tgz archive")
        try:
            await self._build(resolution, manifest)
        except ArchiveError as e:
            e.package = name
            raise
        except GitCommandError as e:
            raise ArchiveError(str(e), package=name) from e
        except (OSError, tarfile.TarError) as e:
            raise ArchiveError(f"Cannot write {resolution.archive_path.name}: {e}", package=name) from e
        self.logger.info(f"[git][{name}] DONE Creating tgz archive")

        retained = len(self.store.list_archives(name, resolution.revision))
        if retained > 1:
            self.logger.info(f"[git][{name}] {retained} archived revisions are now cached")
        return True

    async def _build(self, resolution: Resolution, manifest: Dict[str, Any]) -> None:
        prefix = self.settings.archive_prefix
        manifest_bytes = (json.dumps(manifest, indent=2) + "\n").encode("utf-8")

        with self.store.scratch_dir() as scratch:
            raw_tar = Path(scratch) / "snapshot.tar"
            built = Path(scratch) / resolution.archive_path.name

            await self.git.archive(resolution.working_copy_path, raw_tar, prefix)
            await asyncio.to_thread(
                _copy_with_manifest,
                raw_tar,
                built,
                prefix + self.settings.manifest_name,
                manifest_bytes,
            )
            self.store.publish(built, resolution.name, resolution.resolved_revision)
