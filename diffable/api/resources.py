"""Resource serving and page snippet endpoints."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from email.utils import format_datetime
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import HTMLResponse, Response
from pydantic import BaseModel

from diffable.api.deps import get_context, get_store
from diffable.context import DiffableContext
from diffable.filesystem.resource_store import VersionedResourceStore
from diffable.services.request_service import parse_resource_token
from diffable.services.template_service import (
    render_code_bootstrap,
    render_delta_bootstrap,
    render_resource_tag,
)

logger = logging.getLogger(__name__)

# Mounted under the configured url_prefix by create_app().
# Endpoints are plain functions: store calls wait on the store lock, so they
# run in the threadpool instead of on the event loop.
token_router = APIRouter(tags=["resources"])
router = APIRouter(prefix="/api/resources", tags=["resources"])

JAVASCRIPT_MEDIA_TYPE = "application/javascript"
CACHE_MAX_AGE = 63072000
# Every response claims the same age so clients cache aggressively.
LAST_MODIFIED = format_datetime(datetime(2000, 1, 1, tzinfo=UTC), usegmt=True)


class ManagedResource(BaseModel):
    path: str
    resource_hash: str
    version: str | None


def caching_headers(now: datetime | None = None) -> dict[str, str]:
    """Long-lived caching headers for resource and delta responses."""
    now = now if now is not None else datetime.now(UTC)
    return {
        "Cache-Control": f"public, max-age={CACHE_MAX_AGE}",
        "Last-Modified": LAST_MODIFIED,
        "Expires": format_datetime(now + timedelta(seconds=CACHE_MAX_AGE), usegmt=True),
    }


@token_router.get("/{token}")
def serve_resource(
    token: str,
    store: Annotated[VersionedResourceStore, Depends(get_store)],
) -> Response:
    """Serve the current content or a delta as bootstrap script text."""
    request = parse_resource_token(token)
    response = store.get(request)
    if response is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Resource not found")

    if response.is_diff:
        body = render_delta_bootstrap(response.resource_hash, response.content)
    else:
        body = render_code_bootstrap(response.resource_hash, response.content, response.version or "")
    return Response(content=body, media_type=JAVASCRIPT_MEDIA_TYPE, headers=caching_headers())


@router.get("", response_model=list[ManagedResource])
def list_resources(
    store: Annotated[VersionedResourceStore, Depends(get_store)],
) -> list[ManagedResource]:
    """List managed resources with their resource hash and current version."""
    return [
        ManagedResource(
            path=str(resource),
            resource_hash=store.resource_id(resource),
            version=store.current_version(resource),
        )
        for resource in store.get_managed_resources()
    ]


@router.get("/tag", response_class=HTMLResponse)
def resource_tag(
    path: Annotated[str, Query(min_length=1)],
    store: Annotated[VersionedResourceStore, Depends(get_store)],
    context: Annotated[DiffableContext, Depends(get_context)],
) -> HTMLResponse:
    """Render the script snippet a page embeds to load a managed resource."""
    resource = context.find_resource(path)
    if resource is None or not store.is_managed(resource):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Cannot find managed resource {Path(path).name!r}",
        )
    version = context.get_current_version(resource)
    if version is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Resource has no current version yet",
        )
    return HTMLResponse(
        render_resource_tag(store.resource_id(resource), version, context.url_prefix)
    )
