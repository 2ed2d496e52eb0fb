"""Cross-identity profile image resolution engine.

Per-person state machine:

    START → try_record ─ live ──────────────────────────┐
              └ none → try_storage ─ live ─────────────┤
                         └ none → synthesize ─ ok ─────┤→ RESOLVED → PROPAGATE → DONE
                                     └ upload failed → FAILED

Each stage returns a tagged StageResult (found / not_found / error). One
loop walks the stages in order; recoverable failures ride along as issues.
PROPAGATE is terminal even when some holder writes fail: partial failure is
reported, never retried within the same run.

Nothing is cached here. Every call resolves against the live stores, and
caching resolved URLs is the caller's business.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Collection, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from avatar_sync.clients.storage import BlobStoreClient
from avatar_sync.config import settings
from avatar_sync.errors import (
    AvatarSyncError,
    ResolutionFailed,
    StorageError,
    StorageUploadFailed,
)
from avatar_sync.models.enums import ImageSource, StageStatus
from avatar_sync.resolution.blobs import BlobDirectoryScanner
from avatar_sync.resolution.garbage import GarbageCollector
from avatar_sync.resolution.identity import IdentityResolver
from avatar_sync.resolution.liveness import LivenessResult, LivenessVerifier
from avatar_sync.resolution.placeholder import PlaceholderSynthesizer, user_initials
from avatar_sync.resolution.reconciliation import Reconciler, any_succeeded
from avatar_sync.resolution.records import DEFAULT_HOLDERS, RecordStore, ReferenceHolder
from avatar_sync.resolution.types import (
    AssetReference,
    HolderWriteResult,
    PersonIdentity,
    ResolvedImage,
    StageResult,
    describe_issues,
)

logger = logging.getLogger(__name__)

Stage = Callable[[PersonIdentity], Awaitable[StageResult]]


@dataclass
class ResolutionOutcome:
    """Result of resolve()."""

    person: PersonIdentity
    image: ResolvedImage
    issues: list[AvatarSyncError] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]

    @property
    def image_url(self) -> str:
        return self.image.url

    def to_dict(self) -> dict[str, Any]:
        return {
            "image_url": self.image.url,
            "source": self.image.source.value,
            "auth_identity": self.person.auth_identity,
            "record_identity": self.person.record_identity,
            "issues": describe_issues(self.issues),
        }


@dataclass
class ReconcileOutcome:
    """Result of reconcile(): the resolution plus per-holder write results."""

    resolution: ResolutionOutcome
    holder_results: list[HolderWriteResult]
    issues: list[AvatarSyncError] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]

    @property
    def image_url(self) -> str:
        return self.resolution.image_url

    @property
    def partial_failure(self) -> bool:
        return any(not r.success for r in self.holder_results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "image_url": self.image_url,
            "source": self.resolution.image.source.value,
            "per_holder_results": [r.to_dict() for r in self.holder_results],
            "partial_failure": self.partial_failure,
            "issues": describe_issues(self.resolution.issues + self.issues),
        }


@dataclass
class CleanupOutcome:
    """Result of cleanup()."""

    deleted_count: int
    image_url: str | None = None
    holder_results: list[HolderWriteResult] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    skipped: bool = False
    issues: list[AvatarSyncError] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    gc_errors: list[StorageError] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]

    @property
    def failed(self) -> bool:
        """A holder write failed, collection was skipped, or collection errored."""
        return any(not r.success for r in self.holder_results) or self.skipped or bool(self.gc_errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "deleted_count": self.deleted_count,
            "image_url": self.image_url,
            "skipped": self.skipped,
            "per_holder_results": [r.to_dict() for r in self.holder_results],
            "issues": describe_issues([*self.issues, *self.gc_errors]),
        }


@dataclass
class PlaceholderOutcome:
    """Result of create_placeholder()."""

    person: PersonIdentity
    image_url: str
    holder_results: list[HolderWriteResult]

    def to_dict(self) -> dict[str, Any]:
        return {
            "image_url": self.image_url,
            "per_holder_results": [r.to_dict() for r in self.holder_results],
        }


@dataclass
class StorageCandidate:
    owner_key: str
    filename: str
    liveness: LivenessResult


@dataclass
class InspectionReport:
    """Everything the engine can see for one person, with HEAD results.

    Read-only: inspecting never writes, uploads or deletes.
    """

    person: PersonIdentity
    record_candidates: list[tuple[AssetReference, LivenessResult]]
    storage_candidates: list[StorageCandidate]
    issues: list[AvatarSyncError]

    def to_dict(self) -> dict[str, Any]:
        return {
            "auth_identity": self.person.auth_identity,
            "record_identity": self.person.record_identity,
            "records": [
                {
                    "holder": ref.holder.value,
                    "row_id": ref.row_id,
                    "image_url": ref.image_url,
                    "live": result.live,
                    "status_code": result.status_code,
                }
                for ref, result in self.record_candidates
            ],
            "storage": [
                {
                    "owner_key": c.owner_key,
                    "filename": c.filename,
                    "url": c.liveness.url,
                    "live": c.liveness.live,
                    "status_code": c.liveness.status_code,
                }
                for c in self.storage_candidates
            ],
            "issues": describe_issues(self.issues),
        }


class AssetResolutionEngine:
    """Resolves, repairs and cleans up profile images for one person at a time.

    Usage:
        async with open_engine() as engine:
            outcome = await engine.resolve("89e55400-...")
            outcome.image_url, outcome.image.source
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: BlobStoreClient,
        verifier: LivenessVerifier,
        *,
        holders: Sequence[ReferenceHolder] = DEFAULT_HOLDERS,
    ) -> None:
        self._storage = storage
        self._verifier = verifier
        self._identities = IdentityResolver(session_factory)
        self._records = RecordStore(session_factory, holders)
        self._scanner = BlobDirectoryScanner(storage, verifier)
        self._synthesizer = PlaceholderSynthesizer(storage)
        self._reconciler = Reconciler(self._records)
        self._gc = GarbageCollector(storage)

    @property
    def records(self) -> RecordStore:
        return self._records

    # ── Resolution ──────────────────────────────────────────────────────────

    async def resolve(self, identity: str) -> ResolutionOutcome:
        """Find one live image URL for the person, synthesizing if needed.

        Raises ResolutionFailed only when the placeholder upload fails too.
        """
        lookup = await self._identities.resolve(identity)
        return await self._run_stages(lookup.person, list(lookup.issues))

    async def _run_stages(
        self, person: PersonIdentity, issues: list[AvatarSyncError]
    ) -> ResolutionOutcome:
        stages: tuple[Stage, ...] = (self._try_records, self._try_storage, self._synthesize)
        for stage in stages:
            result = await stage(person)
            issues.extend(result.issues)
            if result.status is StageStatus.FOUND and result.image is not None:
                logger.info(
                    "[RESOLVE] %s → %s (%s)", person.raw, result.image.url, result.image.source.value
                )
                return ResolutionOutcome(person, result.image, issues)

        detail = "; ".join(str(issue) for issue in issues) or "no candidate found"
        raise ResolutionFailed(person.raw, user_initials(person.first_name, person.last_name), detail)

    async def _try_records(self, person: PersonIdentity) -> StageResult:
        scan = await self._records.scan(person.identities)
        live = await self._verifier.first_live(scan.urls)
        if live is not None:
            return StageResult.found(live, ImageSource.EXISTING_RECORD, scan.issues)
        if scan.urls:
            logger.info("[RESOLVE] %s: recorded URLs are dead: %s", person.raw, scan.urls)
        return StageResult.not_found(scan.issues)

    async def _try_storage(self, person: PersonIdentity) -> StageResult:
        return await self._scanner.find_live(person.owner_keys)

    async def _synthesize(self, person: PersonIdentity) -> StageResult:
        try:
            url = await self._synthesizer.synthesize(person)
        except StorageUploadFailed as exc:
            logger.error("[RESOLVE] placeholder upload failed for %s: %s", person.raw, exc)
            return StageResult(StageStatus.ERROR, None, [exc])
        return StageResult.found(url, ImageSource.PLACEHOLDER, [])

    # ── Propagation ─────────────────────────────────────────────────────────

    async def reconcile(self, identity: str) -> ReconcileOutcome:
        """Resolve, then write the URL to every holder row for the person."""
        resolution = await self.resolve(identity)
        results, issues = await self._propagate(resolution.person, resolution.image_url)
        return ReconcileOutcome(resolution, results, issues)

    async def _propagate(
        self, person: PersonIdentity, url: str
    ) -> tuple[list[HolderWriteResult], list[AvatarSyncError]]:
        locations, issues = await self._records.locate(person.identities)
        return await self._reconciler.propagate(url, locations), issues

    async def create_placeholder(self, identity: str) -> PlaceholderOutcome:
        """Synthesize a placeholder even if a live image exists, and propagate it."""
        lookup = await self._identities.resolve(identity)
        person = lookup.person
        try:
            url = await self._synthesizer.synthesize(person)
        except StorageUploadFailed as exc:
            raise ResolutionFailed(
                person.raw, user_initials(person.first_name, person.last_name), str(exc)
            ) from exc
        results, _ = await self._propagate(person, url)
        return PlaceholderOutcome(person, url, results)

    # ── Garbage collection ──────────────────────────────────────────────────

    async def cleanup(
        self, identity: str, keep_filenames: Collection[str] | None = None
    ) -> CleanupOutcome:
        """Delete superseded blobs under every owner key of the person.

        With an explicit allow-list, objects are deleted straight away.
        Without one, the person is reconciled first and only the object the
        resolved URL points at survives; collection is skipped if every
        holder write failed, so the only referenced copy is never removed.
        """
        if keep_filenames is not None:
            lookup = await self._identities.resolve(identity)
            outcome = CleanupOutcome(deleted_count=0, issues=list(lookup.issues))
            for owner_key in lookup.person.owner_keys:
                await self._collect(owner_key, keep_filenames, outcome)
            return outcome

        reconciled = await self.reconcile(identity)
        outcome = CleanupOutcome(
            deleted_count=0,
            image_url=reconciled.image_url,
            holder_results=reconciled.holder_results,
            issues=reconciled.resolution.issues + reconciled.issues,
        )
        if reconciled.holder_results and not any_succeeded(reconciled.holder_results):
            logger.warning("[GC] no holder points at %s, skipping cleanup", reconciled.image_url)
            outcome.skipped = True
            return outcome

        in_use = self._storage.parse_public_url(reconciled.image_url)
        for owner_key in reconciled.resolution.person.owner_keys:
            keep = {in_use.filename} if in_use is not None and in_use.owner_key == owner_key else set()
            await self._collect(owner_key, keep, outcome)
        return outcome

    async def _collect(self, owner_key: str, keep: Collection[str], outcome: CleanupOutcome) -> None:
        try:
            outcome.deleted_count += await self._gc.collect(owner_key, keep)
        except StorageError as exc:
            logger.warning("[GC] %s", exc)
            outcome.gc_errors.append(exc)

    # ── Diagnostics ─────────────────────────────────────────────────────────

    async def inspect(self, identity: str) -> InspectionReport:
        """Report every record and storage candidate with its HEAD status."""
        lookup = await self._identities.resolve(identity)
        person = lookup.person
        issues = list(lookup.issues)

        scan = await self._records.scan(person.identities)
        issues.extend(scan.issues)
        record_checks = await self._verifier.check_all([ref.image_url for ref in scan.references])

        storage_candidates: list[StorageCandidate] = []
        for owner_key in person.owner_keys:
            try:
                ranked = await self._scanner.candidates(owner_key)
            except StorageError as exc:
                issues.append(exc)
                continue
            checks = await self._verifier.check_all(
                [self._storage.public_url(obj.path) for obj in ranked]
            )
            storage_candidates.extend(
                StorageCandidate(obj.owner_key, obj.filename, check)
                for obj, check in zip(ranked, checks)
            )

        return InspectionReport(
            person=person,
            record_candidates=list(zip(scan.references, record_checks)),
            storage_candidates=storage_candidates,
            issues=issues,
        )


@asynccontextmanager
async def open_engine(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AssetResolutionEngine]:
    """Build an engine wired to the configured stores, closing HTTP on exit."""
    if session_factory is None:
        from avatar_sync.db import async_session_factory

        session_factory = async_session_factory

    async with httpx.AsyncClient(
        timeout=httpx.Timeout(settings.storage_timeout_seconds, connect=10),
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
    ) as client:
        yield AssetResolutionEngine(
            session_factory,
            BlobStoreClient(client),
            LivenessVerifier(client),
        )
