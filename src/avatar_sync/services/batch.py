"""Batch cleanup across every known person.

Each person runs the full resolve → propagate → collect flow on its own.
A failure for one person is recorded and never aborts the batch. A
semaphore bounds how many people are in flight, since the blob store
rate-limits list and delete calls.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from avatar_sync.config import settings
from avatar_sync.errors import AvatarSyncError
from avatar_sync.resolution.engine import AssetResolutionEngine, CleanupOutcome

logger = logging.getLogger(__name__)


@dataclass
class BatchReport:
    """Aggregate result of a batch cleanup."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    deleted_object_count: int = 0
    failures: dict[str, str] = field(default_factory=dict)  # pyright: ignore[reportUnknownVariableType]
    """Record identity → reason, for people that failed."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "deleted_object_count": self.deleted_object_count,
            "failures": dict(self.failures),
        }


class BatchOrchestrator:
    """Runs cleanup for the whole population under a bounded worker pool.

    Usage:
        async with open_engine() as engine:
            report = await BatchOrchestrator(engine).run()
    """

    def __init__(self, engine: AssetResolutionEngine, *, concurrency: int | None = None) -> None:
        self._engine = engine
        self._concurrency = concurrency or settings.batch_concurrency

    async def run(self) -> BatchReport:
        person_ids = await self._engine.records.person_ids()
        logger.info("[BATCH] %d people, %d at a time", len(person_ids), self._concurrency)

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _one(person_id: str) -> CleanupOutcome:
            async with semaphore:
                return await self._engine.cleanup(person_id)

        outcomes = await asyncio.gather(*(_one(pid) for pid in person_ids), return_exceptions=True)

        report = BatchReport(processed=len(person_ids))
        for person_id, outcome in zip(person_ids, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                if not isinstance(outcome, AvatarSyncError):
                    logger.exception("[BATCH] unexpected error for %s", person_id, exc_info=outcome)
                report.failed += 1
                report.failures[person_id] = str(outcome) or type(outcome).__name__
                continue

            report.deleted_object_count += outcome.deleted_count
            if outcome.failed:
                report.failed += 1
                report.failures[person_id] = "; ".join(
                    str(e) for e in outcome.gc_errors
                ) or "holder writes failed"
            else:
                report.succeeded += 1

        logger.info(
            "[BATCH] processed=%d succeeded=%d failed=%d deleted=%d",
            report.processed, report.succeeded, report.failed, report.deleted_object_count,
        )
        return report
