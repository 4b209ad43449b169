from __future__ import annotations

import copy
import hashlib
import json
from pathlib import Path
from typing import Any, Dict

import aiofiles

from gitmirror.core.exceptions import CacheIntegrityError, ManifestError

CHUNK_SIZE = 64 * 1024


async def read_manifest(path: Path, package: str) -> Dict[str, Any]:
    """
    Load and parse a package.json.

    Raises:
        ManifestError: the file is missing, unreadable, not JSON or not an object
    """
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            raw = await f.read()
    except OSError as e:
        raise ManifestError(f"Cannot read {path.name}: {e}", package=package) from e

    try:
        manifest = json.loads(raw)
    except ValueError as e:
        raise ManifestError(f"Malformed {path.name}: {e}", package=package) from e

    if not isinstance(manifest, dict):
        raise ManifestError(f"{path.name} must contain a JSON object", package=package)
    if not isinstance(manifest.get("version", ""), str):
        raise ManifestError(f"{path.name} has a non-string version", package=package)
    return manifest


async def compute_archive_shasum(path: Path, package: str) -> str:
    """
    SHA-1 hex digest of an archive, as npm expects in dist.shasum.

    Raises:
        CacheIntegrityError: the archive is missing or unreadable
    """
    h = hashlib.sha1()
    try:
        async with aiofiles.open(path, "rb") as f:
            while True:
                chunk = await f.read(CHUNK_SIZE)
                if not chunk:
                    break
                h.update(chunk)
    except FileNotFoundError as e:
        raise CacheIntegrityError(f"Archive {path.name} is missing", package=package) from e
    except OSError as e:
        raise CacheIntegrityError(f"Cannot read archive {path.name}: {e}", package=package) from e
    return h.hexdigest()


def stamp_descriptor(
    manifest: Dict[str, Any],
    name: str,
    resolved_revision: str,
    tarball: str,
    shasum: str,
) -> Dict[str, Any]:
    """
    Turn a package.json into the version descriptor served to clients.

    The version gets the resolved revision appended so every snapshot is a
    distinct registry version.
    """
    descriptor = copy.deepcopy(manifest)
    descriptor["name"] = name
    descriptor["version"] = f"{descriptor.get('version', '0.0.0')}-{resolved_revision}"
    descriptor["dist"] = {
        "tarball": tarball,
        "shasum": shasum,
    }
    descriptor["_id"] = f"{name}-{descriptor['version']}"
    return descriptor


def assemble_index_document(descriptor: Dict[str, Any]) -> Dict[str, Any]:
    """
    Wrap one descriptor into a registry index document.

    The document lists exactly one version, which is also ``latest``.
    """
    version = descriptor["version"]
    return {
        "_id": descriptor["name"],
        "name": descriptor["name"],
        "dist-tags": {
            "latest": version,
        },
        "versions": {
            version: descriptor,
        },
    }
