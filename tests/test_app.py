"""Tests for the FastAPI application."""

from collections.abc import AsyncGenerator
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from avatar_sync import __version__
from avatar_sync.app import app, get_engine
from avatar_sync.errors import ResolutionFailed
from avatar_sync.models.enums import HolderKind, ImageSource
from avatar_sync.resolution.engine import CleanupOutcome, ReconcileOutcome, ResolutionOutcome
from avatar_sync.resolution.types import HolderLocation, HolderWriteResult, PersonIdentity, ResolvedImage

URL = "http://storage.test/storage/v1/object/public/profile_images/auth-1/profile.jpg"
PERSON = PersonIdentity(raw="auth-1", auth_identity="auth-1", record_identity="rec-1")


class StubEngine:
    def __init__(self) -> None:
        self.cleanup_calls: list[tuple[str, Any]] = []

    async def resolve(self, identity: str) -> ResolutionOutcome:
        if identity == "broken":
            raise ResolutionFailed(identity, "AL", "upload refused")
        return ResolutionOutcome(PERSON, ResolvedImage(URL, ImageSource.STORAGE_SCAN))

    async def reconcile(self, identity: str) -> ReconcileOutcome:
        return ReconcileOutcome(
            await self.resolve(identity),
            [
                HolderWriteResult(HolderLocation(HolderKind.USERS, "rec-1"), success=True, changed=True),
                HolderWriteResult(HolderLocation(HolderKind.PROFILES, "rec-1"), success=False, error="locked"),
            ],
        )

    async def cleanup(self, identity: str, keep_filenames=None) -> CleanupOutcome:
        self.cleanup_calls.append((identity, keep_filenames))
        return CleanupOutcome(deleted_count=3, image_url=URL)


@pytest.fixture
def stub_engine() -> StubEngine:
    return StubEngine()


@pytest.fixture
async def client(stub_engine: StubEngine) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_engine] = lambda: stub_engine
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def test_health(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": __version__}


async def test_resolve(client: AsyncClient) -> None:
    response = await client.get("/images/auth-1")

    assert response.status_code == 200
    data = response.json()
    assert data["image_url"] == URL
    assert data["source"] == "storage_scan"
    assert data["record_identity"] == "rec-1"
    assert data["display_url"].startswith(URL + "?t=")


async def test_resolution_failure_returns_initials(client: AsyncClient) -> None:
    response = await client.get("/images/broken")

    assert response.status_code == 503
    data = response.json()
    assert data["error"] == "resolution_failed"
    assert data["fallback_initials"] == "AL"


async def test_reconcile_reports_partial_failure(client: AsyncClient) -> None:
    response = await client.post("/images/auth-1/reconcile")

    assert response.status_code == 200
    data = response.json()
    assert data["partial_failure"] is True
    assert [r["success"] for r in data["per_holder_results"]] == [True, False]


async def test_cleanup_with_keep_list(client: AsyncClient, stub_engine: StubEngine) -> None:
    response = await client.post("/images/auth-1/cleanup", json={"keep_filenames": ["profile.jpg"]})

    assert response.status_code == 200
    assert response.json()["deleted_count"] == 3
    assert stub_engine.cleanup_calls == [("auth-1", ["profile.jpg"])]


async def test_cleanup_without_body(client: AsyncClient, stub_engine: StubEngine) -> None:
    response = await client.post("/images/auth-1/cleanup")

    assert response.status_code == 200
    assert stub_engine.cleanup_calls == [("auth-1", None)]
