"""Shared pytest fixtures for AvatarSync tests."""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from avatar_sync.clients.storage import BlobStoreClient, content_type_for
from avatar_sync.models import Base, Profile, User
from avatar_sync.resolution.engine import AssetResolutionEngine
from avatar_sync.resolution.liveness import LivenessVerifier

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


STORAGE_URL = "http://storage.test"
BUCKET = "profile_images"
PUBLIC_PREFIX = f"{STORAGE_URL}/storage/v1/object/public/{BUCKET}/"


class FakeStorage:
    """In-memory blob store speaking the storage REST API.

    Also answers HEAD for any URL: bucket objects are live unless marked
    dead, and external URLs are live only when listed in `live_urls`.
    """

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.dead: set[str] = set()
        self.live_urls: set[str] = set()
        self.timeouts: set[str] = set()
        self.failing_owner_keys: set[str] = set()
        self.fail_uploads = False
        self.fail_deletes = False
        self.uploads: list[str] = []
        self.heads: list[str] = []
        self.list_calls: list[str] = []

    def put(self, path: str, data: bytes = b"\x89PNG", *, live: bool = True) -> str:
        self.objects[path] = data
        self.content_types[path] = content_type_for(path)
        if not live:
            self.dead.add(path)
        return PUBLIC_PREFIX + path

    def files(self, owner_key: str) -> list[str]:
        return sorted(p.split("/", 1)[1] for p in self.objects if p.split("/", 1)[0] == owner_key)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        api = "/storage/v1/object"

        if request.method == "HEAD":
            url = str(request.url)
            self.heads.append(url)
            if url in self.timeouts:
                raise httpx.ReadTimeout("timed out", request=request)
            public = f"{api}/public/{BUCKET}/"
            if request.url.host == "storage.test" and path.startswith(public):
                key = path[len(public) :]
                live = key in self.objects and key not in self.dead
            else:
                live = url in self.live_urls
            return httpx.Response(200 if live else 404)

        if request.method == "POST" and path == f"{api}/list/{BUCKET}":
            body = json.loads(request.content)
            owner_key = body["prefix"]
            self.list_calls.append(owner_key)
            if owner_key in self.failing_owner_keys:
                return httpx.Response(500, json={"error": "internal"})
            items = [
                {
                    "name": name,
                    "id": f"{owner_key}/{name}",
                    "updated_at": "2024-05-01T12:00:00Z",
                    "metadata": {
                        "size": len(self.objects[f"{owner_key}/{name}"]),
                        "mimetype": self.content_types[f"{owner_key}/{name}"],
                    },
                }
                for name in self.files(owner_key)
            ]
            # Sub-folders are listed with a null id
            items.append({"name": "archive", "id": None, "metadata": None})
            offset, limit = body.get("offset", 0), body.get("limit", 100)
            return httpx.Response(200, json=items[offset : offset + limit])

        if request.method == "POST" and path.startswith(f"{api}/{BUCKET}/"):
            if self.fail_uploads:
                return httpx.Response(500, json={"error": "upload refused"})
            key = path[len(f"{api}/{BUCKET}/") :]
            self.objects[key] = request.content
            self.content_types[key] = request.headers["content-type"]
            self.dead.discard(key)
            self.uploads.append(key)
            return httpx.Response(200, json={"Key": f"{BUCKET}/{key}"})

        if request.method == "DELETE" and path == f"{api}/{BUCKET}":
            if self.fail_deletes:
                return httpx.Response(500, json={"error": "delete refused"})
            removed = [p for p in json.loads(request.content)["prefixes"] if self.objects.pop(p, None) is not None]
            return httpx.Response(200, json=[{"name": p} for p in removed])

        return httpx.Response(404)


@pytest.fixture
def storage_server() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
async def http_client(storage_server: FakeStorage) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(storage_server.handle)) as client:
        yield client


@pytest.fixture
def storage(http_client: httpx.AsyncClient) -> BlobStoreClient:
    return BlobStoreClient(
        http_client, base_url=STORAGE_URL, bucket=BUCKET, service_key="test-service-key"
    )


@pytest.fixture
def verifier(http_client: httpx.AsyncClient) -> LivenessVerifier:
    return LivenessVerifier(http_client, timeout=1.0)


@pytest.fixture
async def record_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so each session gets its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'records.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(record_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(record_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def avatar_engine(
    session_factory: async_sessionmaker[AsyncSession],
    storage: BlobStoreClient,
    verifier: LivenessVerifier,
) -> AssetResolutionEngine:
    return AssetResolutionEngine(session_factory, storage, verifier)


AddPerson = Callable[..., Awaitable[User]]


@pytest.fixture
def add_person(session_factory: async_sessionmaker[AsyncSession]) -> AddPerson:
    """Factory fixture inserting a user row and, optionally, its profile row."""

    async def _add(
        *,
        record_id: str,
        auth_id: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        user_image_url: str | None = None,
        profile: bool = True,
        profile_image_url: str | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> User:
        stamp = updated_at or datetime(2024, 1, 1, 12, 0, 0)
        user = User(
            id=record_id,
            auth_id=auth_id,
            first_name=first_name,
            last_name=last_name,
            profile_image_url=user_image_url,
            created_at=created_at or datetime(2024, 1, 1),
            updated_at=stamp,
        )
        async with session_factory() as session:
            session.add(user)
            if profile:
                session.add(Profile(id=record_id, profile_image_url=profile_image_url, updated_at=stamp))
            await session.commit()
        return user

    return _add


async def image_urls(
    session_factory: async_sessionmaker[AsyncSession], record_id: str
) -> tuple[str | None, str | None]:
    """(users.profile_image_url, profiles.profile_image_url) for a person."""
    async with session_factory() as session:
        user = await session.get(User, record_id)
        profile = await session.get(Profile, record_id)
        return (
            user.profile_image_url if user else None,
            profile.profile_image_url if profile else None,
        )
