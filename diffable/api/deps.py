"""Shared API dependencies: resource store and context."""

from __future__ import annotations

from fastapi import Request

from diffable.context import DiffableContext
from diffable.filesystem.resource_store import VersionedResourceStore


def get_store(request: Request) -> VersionedResourceStore:
    """Get the resource store from app state."""
    store: VersionedResourceStore = request.app.state.store
    return store


def get_context(request: Request) -> DiffableContext:
    context: DiffableContext = request.app.state.context
    return context
