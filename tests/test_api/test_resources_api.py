"""Integration tests for the resource endpoints."""

from __future__ import annotations

import asyncio
import hashlib
import threading
import time
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient

from diffable.context import DiffableContext
from diffable.filesystem.resource_store import VersionedResourceStore
from diffable.main import build_codec, create_app
from diffable.services.monitor_service import ResourceMonitor
from tests.conftest import write_resource

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from fastapi import FastAPI

    from diffable.config import Settings


def md5(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


@pytest.fixture
def app(test_settings: Settings, resource_dir: Path) -> FastAPI:
    """Create the app with its state initialized.

    ASGITransport does not run the lifespan, so the store and a monitor
    without a background thread are set up here.
    """
    write_resource(resource_dir / "app.js", "abcdef")
    application = create_app(test_settings)
    context = DiffableContext(
        resource_folders=test_settings.resolved_resource_folders(),
        url_prefix=test_settings.url_prefix,
    )
    store = VersionedResourceStore.initialize(
        test_settings.base_dir, context, codec=build_codec(test_settings)
    )
    monitor = ResourceMonitor(store, context.resource_folders)
    monitor.check_folders()
    application.state.context = context
    application.state.store = store
    application.state.monitor = monitor
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


def resource_hash(app: FastAPI, resource_dir: Path) -> str:
    store: VersionedResourceStore = app.state.store
    return store.resource_id(resource_dir / "app.js")


class TestHealth:
    async def test_health_check(self, client: AsyncClient) -> None:
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["version"] == "0.1.0"
        assert data["managed_resources"] == 1


class TestServeResource:
    async def test_full_content(
        self, client: AsyncClient, app: FastAPI, resource_dir: Path
    ) -> None:
        token = resource_hash(app, resource_dir)
        resp = await client.get(f"/diffable/{token}")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/javascript")
        assert resp.text == (
            f"window['diffable']['bootstrap']('{token}', \"abcdef\", '{md5('abcdef')}');"
        )

    async def test_caching_headers(
        self, client: AsyncClient, app: FastAPI, resource_dir: Path
    ) -> None:
        resp = await client.get(f"/diffable/{resource_hash(app, resource_dir)}")

        assert resp.headers["cache-control"] == "public, max-age=63072000"
        assert resp.headers["last-modified"] == "Sat, 01 Jan 2000 00:00:00 GMT"
        assert resp.headers["expires"].endswith("GMT")

    async def test_delta(self, client: AsyncClient, app: FastAPI, resource_dir: Path) -> None:
        write_resource(resource_dir / "app.js", "defghiabc")
        app.state.monitor.check_folders()
        token = resource_hash(app, resource_dir)

        resp = await client.get(f"/diffable/{token}_{md5('abcdef')}_{md5('defghiabc')}.diff")

        assert resp.status_code == 200
        assert resp.text == f"window['diffable']['applyAndExecute']('{token}', [3,3,\"ghi\",0,3,]);"

    async def test_missing_delta_falls_back_to_full_content(
        self, client: AsyncClient, app: FastAPI, resource_dir: Path
    ) -> None:
        token = resource_hash(app, resource_dir)

        resp = await client.get(f"/diffable/{token}_aaaa_bbbb.diff")

        assert resp.status_code == 200
        assert resp.text == f"window['diffable']['applyAndExecute']('{token}', [\"abcdef\"]);"

    async def test_malformed_token(self, client: AsyncClient) -> None:
        resp = await client.get("/diffable/a_b.diff")
        assert resp.status_code == 400

    async def test_unknown_resource(self, client: AsyncClient) -> None:
        resp = await client.get("/diffable/deadbeef")
        assert resp.status_code == 404


class TestResourceListing:
    async def test_list_resources(
        self, client: AsyncClient, app: FastAPI, resource_dir: Path
    ) -> None:
        resp = await client.get("/api/resources")

        assert resp.status_code == 200
        assert resp.json() == [
            {
                "path": str(resource_dir / "app.js"),
                "resource_hash": resource_hash(app, resource_dir),
                "version": md5("abcdef"),
            }
        ]

    async def test_resource_tag(
        self, client: AsyncClient, app: FastAPI, resource_dir: Path
    ) -> None:
        resp = await client.get("/api/resources/tag", params={"path": "app.js"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/html")
        token = resource_hash(app, resource_dir)
        assert f"window['diffable']['{token}']['cv'] = '{md5('abcdef')}';" in resp.text
        assert f"window['diffable']['addResource']('/diffable/{token}');" in resp.text

    async def test_tag_for_unknown_resource(self, client: AsyncClient) -> None:
        resp = await client.get("/api/resources/tag", params={"path": "missing.js"})
        assert resp.status_code == 404


class TestStoreLockContention:
    async def test_waiting_request_does_not_block_event_loop(
        self, client: AsyncClient, app: FastAPI, resource_dir: Path
    ) -> None:
        store: VersionedResourceStore = app.state.store
        token = resource_hash(app, resource_dir)
        locked = threading.Event()

        def hold_lock() -> None:
            with store._lock:
                locked.set()
                time.sleep(0.5)

        holder = threading.Thread(target=hold_lock)
        holder.start()
        assert locked.wait(5)

        request = asyncio.create_task(client.get(f"/diffable/{token}"))
        gaps: list[float] = []
        last = time.monotonic()
        for _ in range(10):
            await asyncio.sleep(0.02)
            now = time.monotonic()
            gaps.append(now - last)
            last = now
        waiting = not request.done()

        resp = await request
        holder.join(5)

        assert waiting
        assert max(gaps) < 0.3
        assert resp.status_code == 200
