import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from gitmirror.api.registry import router as registry_router
from gitmirror.core.dependencies import get_mirror_service
from gitmirror.services.mirroring import prefetch_loop

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create the cache root and start the optional background refresh of
    every mirrored package; stop the refresh on shutdown.
    """
    service = get_mirror_service()
    service.store.ensure_cache_root()
    logger.info(f"Mirroring {len(service.sources)} packages into {service.cache_root}")

    prefetch_task: Optional[asyncio.Task] = None
    interval = service.settings.prefetch_interval_seconds
    if interval > 0:
        prefetch_task = asyncio.create_task(prefetch_loop(service, interval))

    yield

    if prefetch_task is not None:
        prefetch_task.cancel()
        try:
            await prefetch_task
        except asyncio.CancelledError:
            pass


app = FastAPI(
    title="Git mirror npm registry",
    version="0.1.0",
    description="Serves npm registry documents and tarballs built from a fixed set of git repositories.",
    lifespan=lifespan,
)


@app.get("/health")
async def health() -> dict:
    """
    Lightweight health check endpoint.
    """
    return {"status": "ok"}


# Registry routes are catch-all on the package name, so they go last.
app.include_router(registry_router, tags=["registry"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gitmirror.main:app",
        host="0.0.0.0",
        port=8000,
    )
