"""Tests for application startup and shutdown."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from diffable.exceptions import HashAlgorithmError, StoreInitError
from diffable.main import create_app, lifespan
from tests.conftest import write_resource

if TYPE_CHECKING:
    from pathlib import Path

    from diffable.config import Settings


async def test_lifespan_manages_resources_and_stops_monitor(
    test_settings: Settings, resource_dir: Path
) -> None:
    resource = write_resource(resource_dir / "app.js", "x")
    app = create_app(test_settings)

    async with lifespan(app):
        assert app.state.store.is_managed(resource)
        assert app.state.monitor.running
        assert app.state.context.get_current_version(resource) is not None

    assert not app.state.monitor.running


async def test_lifespan_aborts_when_store_path_is_a_file(
    test_settings: Settings, tmp_path: Path
) -> None:
    (tmp_path / "store").write_text("occupied")
    test_settings.resource_store_path = "store"
    app = create_app(test_settings)

    with pytest.raises(StoreInitError):
        async with lifespan(app):
            pass


async def test_lifespan_aborts_on_unknown_digest(test_settings: Settings) -> None:
    test_settings.hash_algorithm = "not-a-digest"
    app = create_app(test_settings)

    with pytest.raises(HashAlgorithmError):
        async with lifespan(app):
            pass
