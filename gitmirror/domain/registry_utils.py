import copy
import re
from typing import Any, Dict, Iterable, Mapping, Optional
from urllib.parse import urlsplit

WILDCARD_CONSTRAINT = "*"

_COMMIT_ID_RE = re.compile(r"^[0-9a-f]{40}([0-9a-f]{24})?$")


def is_commit_id(value: str) -> bool:
    """Full SHA-1 or SHA-256 object name, as printed by git."""
    return bool(_COMMIT_ID_RE.match(value))


def decode_revision(revision: str, placeholder: str = "---") -> str:
    """
    Translate the cache-key form of a revision back into a git ref.

    Branch names such as ``release/2.x`` are written as ``release---2.x`` in
    the repository table so they can be used in file names.
    """
    return revision.replace(placeholder, "/")


def _normalize_remote(remote: str) -> str:
    remote = remote.strip()
    if remote.startswith("git+"):
        remote = remote[4:]
    remote = remote.split("#", 1)[0]
    if remote.endswith(".git"):
        remote = remote[:-4]
    return remote.rstrip("/")


def is_internal_constraint(
    dependency: str,
    constraint: Any,
    remotes: Mapping[str, str],
    patterns: Iterable[str] = (),
) -> bool:
    """
    Decide whether a dependency constraint points at a mirrored repository.

    The dependency must be a package in the repository table, and the
    constraint must either match one of the configured internal host patterns
    or reference that package's own registered remote.
    """
    if dependency not in remotes or not isinstance(constraint, str):
        return False

    if any(re.search(pattern, constraint) for pattern in patterns):
        return True

    own_remote = _normalize_remote(remotes[dependency])
    return bool(own_remote) and own_remote == _normalize_remote(constraint)


def rewrite_internal_dependencies(
    manifest: Dict[str, Any],
    remotes: Mapping[str, str],
    patterns: Iterable[str] = (),
) -> list[str]:
    """
    Replace internal dependency constraints with the wildcard, in place.

    Returns the names of the rewritten dependencies.
    """
    dependencies = manifest.get("dependencies")
    if not isinstance(dependencies, dict):
        return []

    patterns = list(patterns)
    rewritten = []
    for name, constraint in dependencies.items():
        if constraint == WILDCARD_CONSTRAINT:
            continue
        if is_internal_constraint(name, constraint, remotes, patterns):
            dependencies[name] = WILDCARD_CONSTRAINT
            rewritten.append(name)
    return rewritten


def tarball_filename(name: str, resolved_revision: str, extension: str = "tgz") -> str:
    return f"{name}-{resolved_revision}.{extension}"


def tarball_url(base_url: str, name: str, resolved_revision: str, extension: str = "tgz") -> str:
    base = base_url.rstrip("/")
    return f"{base}/{name}/-/{tarball_filename(name, resolved_revision, extension)}"


def parse_tarball_filename(name: str, filename: str, extension: str = "tgz") -> Optional[str]:
    """
    Extract the resolved revision from an archive file name.

    Returns None when the file name does not belong to ``name``.
    """
    prefix = f"{name}-"
    suffix = f".{extension}"
    if not filename.startswith(prefix) or not filename.endswith(suffix):
        return None
    revision = filename[len(prefix):-len(suffix)]
    if not revision or "/" in revision:
        return None
    return revision


def rewrite_location(descriptor: Dict[str, Any], base_url: str) -> Dict[str, Any]:
    """
    Return a copy of the descriptor whose dist.tarball lives under base_url.

    Only the scheme/host/prefix part is replaced; the registry path
    (``/<name>/-/<file>``) is kept.
    """
    result = copy.deepcopy(descriptor)
    dist = result.get("dist")
    if not isinstance(dist, dict) or not dist.get("tarball"):
        return result

    path = urlsplit(dist["tarball"]).path
    name = result.get("name")
    marker = f"/{name}/-/" if name else "/-/"
    index = path.rfind(marker)
    if index < 0:
        return result
    dist["tarball"] = base_url.rstrip("/") + path[index:]
    return result

