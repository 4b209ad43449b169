import logging
from pathlib import Path
from typing import Optional

from gitmirror.data.repository import get_data_dir, load_mirror_settings, load_repository_table, repositories_path
from gitmirror.domain.models import MirrorSettings
from gitmirror.services.mirroring import MirrorService

_mirror_service: Optional[MirrorService] = None


def get_mirror_service() -> MirrorService:
    global _mirror_service
    if _mirror_service is None:
        data_dir = get_data_dir()
        settings = load_mirror_settings(data_dir)
        sources = load_repository_table(repositories_path(data_dir))
        _mirror_service = MirrorService(sources, settings)
    return _mirror_service


def set_mirror_service(service: Optional[MirrorService]) -> None:
    """Replace the process-wide service (None resets it to lazy loading)."""
    global _mirror_service
    _mirror_service = service


def configure(
    settings: Optional[MirrorSettings] = None,
    *,
    logger: Optional[logging.Logger] = None,
    cache_root: Optional[Path] = None,
) -> MirrorService:
    """Reconfigure the process-wide service's logging sink and cache root."""
    service = get_mirror_service()
    service.configure(settings, logger=logger, cache_root=cache_root)
    return service
