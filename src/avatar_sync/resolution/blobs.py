"""Blob directory scanning and candidate ranking.

Ranking (most preferred first):
1. Canonical `profile.<ext>` files, by extension preference
2. Legacy timestamp-named files (`1712345678901.jpg`), newest first
3. Any other image file, by name

Canonical files were put there on purpose; legacy uploads are noisy history
and only matter when nothing canonical exists.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from avatar_sync.clients.storage import BlobObject, BlobStoreClient
from avatar_sync.errors import AvatarSyncError, StorageListFailed
from avatar_sync.models.enums import ImageSource
from avatar_sync.resolution.liveness import LivenessVerifier
from avatar_sync.resolution.types import StageResult

logger = logging.getLogger(__name__)

CANONICAL_STEM = "profile"

# SVG last: it is what the placeholder synthesizer writes, so any real upload beats it
CANONICAL_EXTENSIONS = ("jpg", "png", "jpeg", "gif", "webp", "svg")
SUPPORTED_EXTENSIONS = frozenset(CANONICAL_EXTENSIONS)


def split_filename(filename: str) -> tuple[str, str]:
    stem, _, ext = filename.rpartition(".")
    if not stem:
        return filename, ""
    return stem, ext.lower()


def is_supported_image(filename: str) -> bool:
    return split_filename(filename)[1] in SUPPORTED_EXTENSIONS


def is_canonical(filename: str) -> bool:
    stem, ext = split_filename(filename)
    return stem == CANONICAL_STEM and ext in SUPPORTED_EXTENSIONS


def timestamp_of(filename: str) -> int | None:
    """Numeric timestamp of a legacy filename, or None."""
    stem, _ = split_filename(filename)
    # Only ASCII digits: str.isdigit() also accepts "²" and friends, which int() rejects
    return int(stem) if stem.isascii() and stem.isdigit() else None


def _rank_key(obj: BlobObject) -> tuple[int, int, str]:
    stem, ext = split_filename(obj.filename)
    if stem == CANONICAL_STEM:
        return (0, CANONICAL_EXTENSIONS.index(ext), obj.filename)
    ts = timestamp_of(obj.filename)
    if ts is not None:
        return (1, -ts, obj.filename)
    return (2, 0, obj.filename)


def rank_candidates(objects: Iterable[BlobObject]) -> list[BlobObject]:
    """Filter to supported images and order by preference."""
    return sorted((o for o in objects if is_supported_image(o.filename)), key=_rank_key)


class BlobDirectoryScanner:
    """Finds the best live object under a person's owner keys.

    Usage:
        scanner = BlobDirectoryScanner(storage, verifier)
        result = await scanner.find_live(person.owner_keys)
    """

    def __init__(self, storage: BlobStoreClient, verifier: LivenessVerifier) -> None:
        self._storage = storage
        self._verifier = verifier

    async def candidates(self, owner_key: str) -> list[BlobObject]:
        return rank_candidates(await self._storage.list(owner_key))

    async def find_live(self, owner_keys: Sequence[str]) -> StageResult:
        """Scan each owner key in turn, stopping at the first live object."""
        issues: list[AvatarSyncError] = []
        for owner_key in owner_keys:
            try:
                ranked = await self.candidates(owner_key)
            except StorageListFailed as exc:
                logger.warning("[SCAN] %s", exc)
                issues.append(exc)
                continue

            if not ranked:
                logger.debug("[SCAN] nothing under %s", owner_key)
                continue

            urls = [self._storage.public_url(obj.path) for obj in ranked]
            live = await self._verifier.first_live(urls)
            if live is not None:
                logger.info("[SCAN] %s → %s", owner_key, live)
                return StageResult.found(live, ImageSource.STORAGE_SCAN, issues)
            logger.info("[SCAN] %d candidates under %s, none live", len(urls), owner_key)

        return StageResult.not_found(issues)
