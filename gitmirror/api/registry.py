from __future__ import annotations

from typing import Any, Dict
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from gitmirror.core.dependencies import get_mirror_service
from gitmirror.core.exceptions import (
    CheckoutError,
    MirrorError,
    ResolutionError,
    SyncError,
    UnknownPackageError,
)
from gitmirror.domain.registry_utils import parse_tarball_filename, rewrite_location
from gitmirror.services.mirroring import MirrorService

logger = logging.getLogger(__name__)
router = APIRouter()


def _raise_http(error: MirrorError) -> None:
    """
    Translate a pipeline failure into an HTTP error that names the stage.
    """
    if isinstance(error, UnknownPackageError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Package not found")

    if isinstance(error, (SyncError, CheckoutError, ResolutionError)):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR

    logger.error(f"Request for {error.package} failed: {error}")
    raise HTTPException(status_code=code, detail={"stage": error.stage, "error": str(error)})


def _localize(descriptor: Dict[str, Any], request: Request, service: MirrorService) -> Dict[str, Any]:
    if not service.settings.use_request_base_url:
        return descriptor
    return rewrite_location(descriptor, str(request.base_url))


# ---------------------------------------------------------------------------
# 1. GET /{name}/-/{filename}  (archive download)
# ---------------------------------------------------------------------------

@router.get("/{name}/-/{filename}")
async def download_tarball(
    name: str,
    filename: str,
    service: MirrorService = Depends(get_mirror_service),
) -> StreamingResponse:
    """
    Stream a snapshot archive.

    filename is <name>-<resolved revision>.tgz; a revision whose archive is
    still cached is served as is, anything else gets the current snapshot.
    """
    revision = parse_tarball_filename(name, filename, service.settings.archive_extension)
    if revision is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tarball not found")

    try:
        stream = await service.get_tarball(name, revision)
    except MirrorError as e:
        _raise_http(e)

    return StreamingResponse(
        stream,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---------------------------------------------------------------------------
# 2. GET /{name}/latest  (version descriptor)
# ---------------------------------------------------------------------------

@router.get("/{name}/latest")
async def get_latest_version(
    name: str,
    request: Request,
    service: MirrorService = Depends(get_mirror_service),
) -> dict:
    try:
        descriptor = await service.get_index(name)
    except MirrorError as e:
        _raise_http(e)
    return _localize(descriptor, request, service)


# ---------------------------------------------------------------------------
# 3. GET /{name}  (registry index document)
# ---------------------------------------------------------------------------

@router.get("/{name}")
async def get_package_document(
    name: str,
    request: Request,
    service: MirrorService = Depends(get_mirror_service),
) -> dict:
    """
    npm registry package document listing the current snapshot as ``latest``.
    """
    try:
        document = await service.get_full_index(name)
    except MirrorError as e:
        _raise_http(e)

    document["versions"] = {
        version: _localize(descriptor, request, service)
        for version, descriptor in document["versions"].items()
    }
    return document
