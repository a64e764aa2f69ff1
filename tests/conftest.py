"""Shared test fixtures for Diffable."""

from __future__ import annotations

import itertools
import os
from typing import TYPE_CHECKING

import pytest

from diffable.config import Settings
from diffable.context import DiffableContext
from diffable.delta.codec import DeltaCodec
from diffable.filesystem.resource_store import VersionedResourceStore

if TYPE_CHECKING:
    from pathlib import Path

# Filesystem timestamps can be coarser than back-to-back writes, so tests
# assign strictly increasing modification times explicitly.
_mtimes = itertools.count(1_700_000_000 * 10**9, 10**9)


def write_resource(path: Path, content: str) -> Path:
    """Write ``content`` to ``path`` and give it a fresh, later modification time."""
    path.parent.mkdir(parents=True, exist_ok=True)
    previous = path.stat().st_mtime_ns if path.exists() else 0
    path.write_text(content, encoding="utf-8")
    mtime_ns = max(next(_mtimes), previous + 10**9)
    os.utime(path, ns=(mtime_ns, mtime_ns))
    return path


@pytest.fixture
def resource_dir(tmp_path: Path) -> Path:
    """Create a temporary resource folder."""
    folder = tmp_path / "static"
    folder.mkdir()
    return folder


@pytest.fixture
def context(resource_dir: Path) -> DiffableContext:
    return DiffableContext(resource_folders=[resource_dir], url_prefix="/diffable")


@pytest.fixture
def store(tmp_path: Path, context: DiffableContext) -> VersionedResourceStore:
    """Resource store under ``tmp_path/.diffable`` with a small block size."""
    return VersionedResourceStore.initialize(tmp_path, context, codec=DeltaCodec(block_size=3))


@pytest.fixture
def test_settings(tmp_path: Path, resource_dir: Path) -> Settings:
    """Create test settings with temp directories."""
    return Settings(
        _env_file=None,
        debug=True,
        base_dir=tmp_path,
        resource_folders=[resource_dir],
        block_size=3,
    )
