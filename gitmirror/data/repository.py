from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import ValidationError

from gitmirror.core.exceptions import RepositoryConfigError
from gitmirror.domain.models import MirrorSettings, RepositorySource, RepositoryTableFile

logger = logging.getLogger(__name__)

DATA_ROOT_ENV_VAR = "GITMIRROR_DATA_DIR"
REPOSITORIES_ENV_VAR = "GITMIRROR_REPOSITORIES"

# Resolve repository root (project root, not the Python package root)
_REPO_ROOT = Path(__file__).resolve().parents[2]
_DEFAULT_DATA_DIR = _REPO_ROOT / "data"


def get_data_dir() -> Path:
    """
    Determine the data directory path.

    Priority:
    1. Environment variable GITMIRROR_DATA_DIR
    2. '<project root>/data'
    """
    env_path = os.environ.get(DATA_ROOT_ENV_VAR)
    if env_path:
        data_dir = Path(env_path).expanduser()
    else:
        data_dir = _DEFAULT_DATA_DIR
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def settings_path(data_dir: Path) -> Path:
    return data_dir / "mirror.json"


def repositories_path(data_dir: Path) -> Path:
    env_path = os.environ.get(REPOSITORIES_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return data_dir / "repositories.yaml"


def load_mirror_settings(data_dir: Path) -> MirrorSettings:
    """
    Load mirror.json, merging with defaults for any missing fields,
    and write it back so any new fields are persisted.
    """
    path = settings_path(data_dir)
    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            settings = MirrorSettings(**raw)
        except (ValueError, TypeError, ValidationError) as e:
            # Keep the broken file for inspection; run on defaults.
            logger.warning(f"Ignoring invalid {path.name}: {e}")
            return MirrorSettings(cache_root=str(data_dir / "cache"))
    else:
        settings = MirrorSettings()

    if settings.cache_root is None:
        settings.cache_root = str(data_dir / "cache")

    # Persist with all fields populated (including any new defaults).
    path.write_text(settings.model_dump_json(indent=2), encoding="utf-8")
    return settings


def parse_repository_table(raw: Optional[dict]) -> Dict[str, RepositorySource]:
    """
    Expand the repositories.yaml structure into one source per package.

    Raises:
        RepositoryConfigError: invalid structure or a package declared twice
    """
    try:
        table = RepositoryTableFile(**(raw or {}))
    except (TypeError, ValidationError) as e:
        raise RepositoryConfigError(f"Invalid repository table: {e}") from e

    sources: Dict[str, RepositorySource] = {}

    def add(source: RepositorySource) -> None:
        if source.name in sources:
            raise RepositoryConfigError(f"Package {source.name!r} is declared more than once")
        sources[source.name] = source

    try:
        for group in table.groups:
            for name in group.packages:
                add(RepositorySource(
                    name=name,
                    remote=group.remote_template.format(name=name),
                    revision=group.revision,
                ))

        for name, entry in table.packages.items():
            add(RepositorySource(name=name, remote=entry.remote, revision=entry.revision))
    except (KeyError, IndexError, ValidationError) as e:
        raise RepositoryConfigError(f"Invalid repository entry: {e}") from e

    return sources


def load_repository_table(path: Path) -> Dict[str, RepositorySource]:
    """
    Read the repository table. A missing file means no packages are mirrored.
    """
    if not path.exists():
        logger.warning(f"Repository table {path} not found; no packages will be served")
        return {}

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise RepositoryConfigError(f"Cannot parse {path.name}: {e}") from e

    sources = parse_repository_table(raw)
    logger.info(f"Loaded {len(sources)} mirrored packages from {path}")
    return sources
