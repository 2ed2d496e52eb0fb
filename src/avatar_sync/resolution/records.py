"""Reference holder access: reading candidate URLs and writing them back.

A reference holder is any table that stores a profile image URL for a
person. Holders are treated polymorphically so that adding a third table
only means adding a ReferenceHolder subclass.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from avatar_sync.config import settings
from avatar_sync.errors import AvatarSyncError, RecordReadFailed, RecordWriteFailed
from avatar_sync.models.enums import HolderKind
from avatar_sync.models.profile import Profile
from avatar_sync.models.user import User
from avatar_sync.resolution.types import AssetReference, HolderLocation

logger = logging.getLogger(__name__)


class ReferenceHolder:
    """One record type that carries an image URL."""

    kind: ClassVar[HolderKind]
    model: ClassVar[Any]

    def _match(self, identities: Sequence[str]) -> Any:
        return self.model.id.in_(identities)

    async def latest(self, session: AsyncSession, identities: Sequence[str]) -> AssetReference | None:
        """Most recently updated non-empty image URL, or None."""
        stmt = (
            select(self.model)
            .where(
                self._match(identities),
                self.model.profile_image_url.is_not(None),
                self.model.profile_image_url != "",
            )
            .order_by(self.model.updated_at.desc())
            .limit(1)
        )
        row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return AssetReference(
            holder=self.kind,
            row_id=row.id,
            image_url=row.profile_image_url,
            updated_at=row.updated_at,
        )

    async def locate(self, session: AsyncSession, identities: Sequence[str]) -> list[HolderLocation]:
        stmt = select(self.model.id).where(self._match(identities))
        return [HolderLocation(self.kind, row_id) for row_id in (await session.execute(stmt)).scalars()]

    async def write(self, session: AsyncSession, row_id: str, url: str) -> bool:
        """Point a row at `url`. Returns False when it already did."""
        row = await session.get(self.model, row_id)
        if row is None:
            raise LookupError(f"{self.kind.value} row {row_id} no longer exists")
        if row.profile_image_url == url:
            return False
        row.profile_image_url = url
        await session.commit()
        return True


class UsersHolder(ReferenceHolder):
    kind = HolderKind.USERS
    model = User

    def _match(self, identities: Sequence[str]) -> Any:
        # Either identity half may be stored on the row
        return or_(User.id.in_(identities), User.auth_id.in_(identities))


class ProfilesHolder(ReferenceHolder):
    kind = HolderKind.PROFILES
    model = Profile


DEFAULT_HOLDERS: tuple[ReferenceHolder, ...] = (UsersHolder(), ProfilesHolder())


@dataclass
class RecordScan:
    """Candidate URLs found across holders, newest first."""

    references: list[AssetReference] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    issues: list[AvatarSyncError] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]

    @property
    def urls(self) -> list[str]:
        return list(dict.fromkeys(ref.image_url for ref in self.references))


class RecordStore:
    """Reads and writes image references across every holder type.

    Each operation opens its own session so that writes to different
    holders can run concurrently.

    Usage:
        store = RecordStore(async_session_factory)
        scan = await store.scan(person.identities)
        changed = await store.write(location, url)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        holders: Sequence[ReferenceHolder] = DEFAULT_HOLDERS,
    ) -> None:
        self._session_factory = session_factory
        self._holders = tuple(holders)

    @property
    def holders(self) -> tuple[ReferenceHolder, ...]:
        return self._holders

    async def scan(self, identities: Sequence[str]) -> RecordScan:
        """Return the first non-empty image URL per holder type.

        A holder with no row for this person contributes nothing. A holder
        that fails to read is recorded and the rest are still scanned.
        """
        scan = RecordScan()
        for holder in self._holders:
            try:
                ref = await self._with_session(holder.latest, identities)
            except (SQLAlchemyError, asyncio.TimeoutError) as exc:
                logger.warning("[RECORDS] read %s failed: %s", holder.kind.value, exc)
                scan.issues.append(RecordReadFailed(holder.kind.value, str(exc) or type(exc).__name__))
                continue
            if ref is not None:
                scan.references.append(ref)

        # Across holders the most recently written URL is the best first guess
        scan.references.sort(
            key=lambda ref: ref.updated_at.timestamp() if ref.updated_at else float("-inf"),
            reverse=True,
        )
        return scan

    async def locate(self, identities: Sequence[str]) -> tuple[list[HolderLocation], list[AvatarSyncError]]:
        """Every holder row belonging to the person."""
        locations: list[HolderLocation] = []
        issues: list[AvatarSyncError] = []
        for holder in self._holders:
            try:
                locations.extend(await self._with_session(holder.locate, identities))
            except (SQLAlchemyError, asyncio.TimeoutError) as exc:
                issues.append(RecordReadFailed(holder.kind.value, str(exc) or type(exc).__name__))
        return locations, issues

    async def write(self, location: HolderLocation, url: str) -> bool:
        holder = self._holder_for(location)
        try:
            changed = await asyncio.wait_for(
                self._write(holder, location.row_id, url),
                timeout=settings.record_timeout_seconds,
            )
        except (SQLAlchemyError, LookupError, asyncio.TimeoutError) as exc:
            raise RecordWriteFailed(
                location.holder.value, location.row_id, str(exc) or type(exc).__name__
            ) from exc
        if changed:
            logger.info("[RECORDS] %s/%s → %s", location.holder.value, location.row_id, url)
        return changed

    async def person_ids(self) -> list[str]:
        """Record identities of every known person."""
        async with self._session_factory() as session:
            return list((await session.execute(select(User.id).order_by(User.id))).scalars())

    async def _write(self, holder: ReferenceHolder, row_id: str, url: str) -> bool:
        async with self._session_factory() as session:
            return await holder.write(session, row_id, url)

    async def _with_session(self, fn: Any, identities: Sequence[str]) -> Any:
        async def _run() -> Any:
            async with self._session_factory() as session:
                return await fn(session, identities)

        return await asyncio.wait_for(_run(), timeout=settings.record_timeout_seconds)

    def _holder_for(self, location: HolderLocation) -> ReferenceHolder:
        for holder in self._holders:
            if holder.kind == location.holder:
                return holder
        raise ValueError(f"No holder registered for {location.holder}")
