"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from diffable import __version__
from diffable.api.deps import get_store
from diffable.filesystem.resource_store import VersionedResourceStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    store: str
    managed_resources: int


@router.get("/api/health", response_model=HealthResponse)
def health_check(
    store: Annotated[VersionedResourceStore, Depends(get_store)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    store_status = "ok" if store.store_root.is_dir() else "error"
    if store_status != "ok":
        logger.warning("Health check: store root %s is missing", store.store_root)

    return HealthResponse(
        status="ok" if store_status == "ok" else "degraded",
        version=__version__,
        store=store_status,
        managed_resources=len(store.get_managed_resources()),
    )
