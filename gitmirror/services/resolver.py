"""
Revision resolution: make sure a working copy exists, is current and is
checked out at the requested revision, and turn a moving reference into a
concrete commit id.
"""
from __future__ import annotations

import logging
import shutil
from typing import Optional

from gitmirror.core.exceptions import CheckoutError, ResolutionError, SyncError
from gitmirror.domain.models import MirrorSettings, RepositorySource, Resolution
from gitmirror.domain.registry_utils import decode_revision
from gitmirror.services.git import GitClient, GitCommandError, is_commit_id
from gitmirror.storage.cache_store import CacheStore

# Remote-tracking ref that follows the remote's default branch.
REMOTE_DEFAULT_REF = "origin/HEAD"


class RevisionResolver:
    def __init__(
        self,
        store: CacheStore,
        git: GitClient,
        settings: MirrorSettings,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.git = git
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)

    def is_moving(self, source: RepositorySource) -> bool:
        return source.revision == self.settings.moving_revision

    async def resolve(self, source: RepositorySource) -> Resolution:
        """
        Sync, check out and resolve ``source``.

        The caller must hold the cache store lock for the working copy.

        Raises:
            SyncError: clone, remote HEAD lookup or fetch failed, or the cache is unwritable
            CheckoutError: the revision could not be checked out
            ResolutionError: the checked-out commit could not be determined
        """
        await self._sync(source)
        await self._checkout(source)

        resolved = source.revision
        if self.is_moving(source):
            resolved = await self._resolve_head(source)

        return Resolution(
            name=source.name,
            revision=source.revision,
            resolved_revision=resolved,
            working_copy_path=self.store.working_copy_path(source.name, source.revision),
            archive_path=self.store.archive_path(source.name, resolved),
        )

    async def _sync(self, source: RepositorySource) -> None:
        name = source.name
        working_copy = self.store.working_copy_path(name, source.revision)

        if not self.store.working_copy_exists(name, source.revision):
            self.logger.info(f"[git][{name}] Downloading repo")
            try:
                if working_copy.exists():
                    # A directory without git metadata is what a failed clone leaves behind.
                    self.logger.warning(f"[git][{name}] Removing incomplete working copy at {working_copy}")
                    shutil.rmtree(working_copy)
                working_copy.parent.mkdir(parents=True, exist_ok=True)
                await self.git.clone(source.remote, working_copy)
            except GitCommandError as e:
                raise SyncError(str(e), package=name) from e
            except OSError as e:
                raise SyncError(f"Cannot prepare working copy {working_copy}: {e}", package=name) from e
            self.logger.info(f"[git][{name}] DONE Downloading repo")
            return

        if not self.is_moving(source):
            # Fixed revisions are expected to be reachable from the existing clone.
            return

        try:
            remote_head = await self.git.remote_head(working_copy)
            tracked_head = await self.git.tracked_head(working_copy)
            if remote_head == tracked_head:
                self.logger.debug(f"[git][{name}] Remote unchanged at {remote_head[:12]}")
                return

            self.logger.info(f"[git][{name}] Fetching latest updates from repo")
            await self.git.fetch_all(working_copy)
        except GitCommandError as e:
            raise SyncError(str(e), package=name) from e
        self.logger.info(f"[git][{name}] DONE Fetching repo")

    async def _checkout(self, source: RepositorySource) -> None:
        working_copy = self.store.working_copy_path(source.name, source.revision)

        if self.is_moving(source):
            ref = REMOTE_DEFAULT_REF
        else:
            ref = decode_revision(source.revision, self.settings.ref_separator_placeholder)

        self.logger.info(f"[git][{source.name}] Checking out to {ref}")
        try:
            await self.git.checkout(working_copy, ref, detach=self.is_moving(source))
        except GitCommandError as e:
            raise CheckoutError(str(e), package=source.name) from e

    async def _resolve_head(self, source: RepositorySource) -> str:
        working_copy = self.store.working_copy_path(source.name, source.revision)
        try:
            commit = await self.git.head_commit(working_copy)
        except GitCommandError as e:
            raise ResolutionError(str(e), package=source.name) from e

        if not is_commit_id(commit):
            raise ResolutionError(f"Unexpected commit id {commit!r}", package=source.name)

        self.logger.info(f"[git][{source.name}] Actual Hash that will be used {commit}")
        return commit
