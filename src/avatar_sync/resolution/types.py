"""Value types threaded through a resolution run."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from avatar_sync.errors import AvatarSyncError
from avatar_sync.models.enums import HolderKind, ImageSource, StageStatus


def _dedupe(values: list[str | None]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(v for v in values if v))


@dataclass(frozen=True)
class PersonIdentity:
    """Both identity halves for one person, plus the raw input.

    Either half may be None. When both are None the raw input stands in
    for every lookup and every owner key.
    """

    raw: str
    auth_identity: str | None = None
    record_identity: str | None = None
    first_name: str | None = None
    last_name: str | None = None

    @property
    def resolved(self) -> bool:
        return self.auth_identity is not None or self.record_identity is not None

    @property
    def identities(self) -> tuple[str, ...]:
        """Deduplicated identities to query reference holders with."""
        if not self.resolved:
            return (self.raw,)
        return _dedupe([self.record_identity, self.auth_identity])

    @property
    def owner_keys(self) -> tuple[str, ...]:
        """Owner keys to scan in the blob store, in probing order."""
        return self.identities

    @property
    def upload_key(self) -> str:
        """Owner key new placeholders are written under.

        Uploads historically land under the auth identity, so it wins.
        """
        return self.auth_identity or self.record_identity or self.raw


@dataclass(frozen=True)
class AssetReference:
    """An image URL read from a reference holder row."""

    holder: HolderKind
    row_id: str
    image_url: str
    updated_at: datetime | None = None


@dataclass(frozen=True)
class HolderLocation:
    """A reference holder row that can be written to."""

    holder: HolderKind
    row_id: str


@dataclass
class HolderWriteResult:
    """Outcome of writing one holder during propagation."""

    location: HolderLocation
    success: bool
    changed: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "holder": self.location.holder.value,
            "row_id": self.location.row_id,
            "success": self.success,
            "changed": self.changed,
            "error": self.error,
        }


@dataclass(frozen=True)
class ResolvedImage:
    url: str
    source: ImageSource


@dataclass
class StageResult:
    """Tagged result of one resolution stage."""

    status: StageStatus
    image: ResolvedImage | None = None
    issues: list[AvatarSyncError] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]

    @classmethod
    def found(cls, url: str, source: ImageSource, issues: list[AvatarSyncError]) -> StageResult:
        return cls(StageStatus.FOUND, ResolvedImage(url, source), issues)

    @classmethod
    def not_found(cls, issues: list[AvatarSyncError]) -> StageResult:
        # Nothing usable and something went wrong on the way: tag it as an error
        return cls(StageStatus.ERROR if issues else StageStatus.NOT_FOUND, None, issues)


def describe_issues(issues: list[AvatarSyncError]) -> list[dict[str, str]]:
    return [{"error": type(issue).__name__, "detail": str(issue)} for issue in issues]
