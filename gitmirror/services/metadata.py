"""
Build the version descriptor returned to registry clients.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from gitmirror.domain.entities import compute_archive_shasum, read_manifest, stamp_descriptor
from gitmirror.domain.models import MirrorSettings, Resolution
from gitmirror.domain.registry_utils import rewrite_internal_dependencies, rewrite_location, tarball_url

LocationRewriter = Callable[[Dict[str, Any]], Dict[str, Any]]


class MetadataBuilder:
    def __init__(
        self,
        settings: MirrorSettings,
        remotes: Mapping[str, str],
        location_rewriter: Optional[LocationRewriter] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings
        self.remotes = dict(remotes)
        self.location_rewriter = location_rewriter or self._default_location_rewriter
        self.logger = logger or logging.getLogger(__name__)

    def _default_location_rewriter(self, descriptor: Dict[str, Any]) -> Dict[str, Any]:
        return rewrite_location(descriptor, self.settings.registry_url)

    async def build(self, resolution: Resolution, previous: Optional[Resolution] = None) -> Dict[str, Any]:
        """
        Descriptor for ``resolution``, reusing ``previous.descriptor`` when it
        was built for the same resolved revision and its archive is still there.

        Raises:
            ManifestError: package.json could not be loaded
            CacheIntegrityError: the archive to checksum is missing
        """
        name = resolution.name
        if (
            previous is not None
            and previous.descriptor is not None
            and previous.resolved_revision == resolution.resolved_revision
            and resolution.archive_path.is_file()
        ):
            self.logger.debug(f"[git][{name}] Reusing package.json for {resolution.resolved_revision}")
            return previous.descriptor

        self.logger.info(f"[git][{name}] Loading package.json")
        manifest = await read_manifest(resolution.working_copy_path / self.settings.manifest_name, name)
        shasum = await compute_archive_shasum(resolution.archive_path, name)

        descriptor = stamp_descriptor(
            manifest,
            name,
            resolution.resolved_revision,
            tarball=tarball_url(
                self.settings.registry_url,
                name,
                resolution.resolved_revision,
                self.settings.archive_extension,
            ),
            shasum=shasum,
        )
        # The working copy is pristine, so the rewrite has to be applied here too.
        rewrite_internal_dependencies(descriptor, self.remotes, self.settings.internal_remote_patterns)
        descriptor = self.location_rewriter(descriptor)

        self.logger.info(f"[git][{name}] DONE Loading package.json")
        return descriptor
