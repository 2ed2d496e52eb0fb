"""Tests for batch cleanup orchestration."""

import asyncio
from typing import Any

from avatar_sync.errors import StorageDeleteFailed
from avatar_sync.resolution.engine import AssetResolutionEngine, CleanupOutcome
from avatar_sync.services.batch import BatchOrchestrator

from .conftest import AddPerson, FakeStorage


class StubRecords:
    def __init__(self, person_ids: list[str]) -> None:
        self._person_ids = person_ids

    async def person_ids(self) -> list[str]:
        return list(self._person_ids)


class StubEngine:
    """Duck-typed engine recording concurrency and failing on request."""

    def __init__(self, person_ids: list[str], *, raise_for: set[str] | None = None) -> None:
        self.records = StubRecords(person_ids)
        self.raise_for = raise_for or set()
        self.in_flight = 0
        self.peak = 0

    async def cleanup(self, identity: str) -> CleanupOutcome:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            if identity in self.raise_for:
                raise StorageDeleteFailed(f"{identity}/1000.jpg", "HTTP 500")
            return CleanupOutcome(deleted_count=2)
        finally:
            self.in_flight -= 1


class TestBatchOrchestrator:
    async def test_bounded_concurrency(self):
        engine: Any = StubEngine([f"p{i}" for i in range(12)])

        report = await BatchOrchestrator(engine, concurrency=3).run()

        assert report.processed == 12
        assert report.succeeded == 12
        assert report.deleted_object_count == 24
        assert engine.peak <= 3

    async def test_one_failure_does_not_abort(self):
        engine: Any = StubEngine(["a", "b", "c"], raise_for={"b"})

        report = await BatchOrchestrator(engine, concurrency=2).run()

        assert report.processed == 3
        assert report.succeeded == 2
        assert report.failed == 1
        assert report.deleted_object_count == 4
        assert set(report.failures) == {"b"}
        assert "b/1000.jpg" in report.failures["b"]

    async def test_empty_population(self):
        engine: Any = StubEngine([])

        report = await BatchOrchestrator(engine).run()

        assert report.to_dict() == {
            "processed": 0,
            "succeeded": 0,
            "failed": 0,
            "deleted_object_count": 0,
            "failures": {},
        }

    async def test_against_fake_stores(
        self, avatar_engine: AssetResolutionEngine, add_person: AddPerson, storage_server: FakeStorage
    ):
        await add_person(record_id="rec-a", auth_id="auth-a")
        await add_person(record_id="rec-b", auth_id="auth-b")
        await add_person(record_id="rec-c", auth_id="auth-c")
        storage_server.put("auth-a/profile.jpg")
        storage_server.put("auth-a/1000.jpg")
        storage_server.put("auth-a/2000.jpg")
        storage_server.failing_owner_keys.update({"rec-c", "auth-c"})

        report = await BatchOrchestrator(avatar_engine, concurrency=2).run()

        assert report.processed == 3
        assert report.succeeded == 2
        assert report.failed == 1
        assert report.deleted_object_count == 2
        assert set(report.failures) == {"rec-c"}
        assert storage_server.files("auth-a") == ["profile.jpg"]
        assert storage_server.files("auth-b") == ["profile.svg"]
