"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from functools import partial
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from diffable import __version__
from diffable.api.health import router as health_router
from diffable.api.resources import router as resources_router
from diffable.api.resources import token_router
from diffable.config import Settings
from diffable.context import DiffableContext, absolute_path
from diffable.delta.codec import DeltaCodec
from diffable.delta.hasher import DigestHasher, RollingHash
from diffable.exceptions import (
    DiffableError,
    HashAlgorithmError,
    ResourceRequestError,
    StoreInitError,
)
from diffable.filesystem.resource_store import VersionedResourceStore
from diffable.services.monitor_service import ResourceMonitor

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def build_codec(settings: Settings) -> DeltaCodec:
    """Delta codec configured with the block size and window hasher from settings."""
    if settings.hasher == "digest":
        factory = partial(DigestHasher, settings.hash_algorithm)
    else:
        factory = partial(RollingHash, settings.prime_base, settings.prime_mod)
    return DeltaCodec(settings.block_size, factory)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    _configure_logging(settings.debug)
    logger.info("Starting Diffable (debug=%s)", settings.debug)

    folders = [absolute_path(folder) for folder in settings.resolved_resource_folders()]
    context = DiffableContext(resource_folders=folders, url_prefix=settings.url_prefix)
    app.state.context = context

    try:
        store = await asyncio.to_thread(
            VersionedResourceStore.initialize,
            settings.base_dir,
            context,
            store_location=settings.resource_store_path,
            codec=build_codec(settings),
            keep_in_memory=settings.keep_resources_in_memory,
            hash_algorithm=settings.hash_algorithm,
        )
    except (StoreInitError, HashAlgorithmError) as exc:
        logger.critical(
            "Failed to initialize resource store: %s. Check the store path and permissions.", exc
        )
        raise
    app.state.store = store

    monitor = ResourceMonitor(store, folders, settings.resource_monitor_interval)
    app.state.monitor = monitor
    # Serve a consistent view from the first request on.
    await asyncio.to_thread(monitor.check_folders)
    monitor.start()

    yield

    await asyncio.to_thread(monitor.stop)
    logger.info("Diffable stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="Diffable",
        description="Versioned web resources served as deltas",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings

    app.include_router(health_router)
    app.include_router(resources_router)
    app.include_router(token_router, prefix=settings.url_prefix.rstrip("/"))

    @app.exception_handler(ResourceRequestError)
    async def resource_request_handler(
        request: Request, exc: ResourceRequestError
    ) -> JSONResponse:
        logger.warning("Bad resource request %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(DiffableError)
    async def diffable_error_handler(request: Request, exc: DiffableError) -> JSONResponse:
        logger.error(
            "%s in %s %s: %s",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Resource store error"},
        )

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Storage operation failed"},
        )

    return app


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings = Settings()
    uvicorn.run(
        "diffable.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
