"""Garbage collection of superseded blobs under an owner key."""

from __future__ import annotations

import logging
from collections.abc import Collection

from avatar_sync.clients.storage import BlobObject, BlobStoreClient
from avatar_sync.resolution.blobs import is_canonical, rank_candidates

logger = logging.getLogger(__name__)


def default_keep(objects: Collection[BlobObject]) -> set[str]:
    """The canonical file in use: the best-ranked canonical object, if any."""
    ranked = rank_candidates(objects)
    if ranked and is_canonical(ranked[0].filename):
        return {ranked[0].filename}
    return set()


class GarbageCollector:
    """Deletes everything under an owner key except an allow-list.

    Usage:
        gc = GarbageCollector(storage)
        deleted = await gc.collect(owner_key, keep={"profile.svg"})

    A concurrent upload can race with collection and be removed before
    anything points at it. The engine only collects after a holder has been
    updated to the URL it keeps, which makes that race benign.
    """

    def __init__(self, storage: BlobStoreClient) -> None:
        self._storage = storage

    async def collect(self, owner_key: str, keep: Collection[str] | None = None) -> int:
        """Delete every object not in `keep`. Returns the deleted count.

        Raises StorageListFailed / StorageDeleteFailed.
        """
        objects = await self._storage.list(owner_key)
        keep_names = set(keep) if keep is not None else default_keep(objects)
        doomed = [obj.path for obj in objects if obj.filename not in keep_names]
        if not doomed:
            logger.debug("[GC] nothing to delete under %s", owner_key)
            return 0

        deleted = await self._storage.delete(doomed)
        logger.info("[GC] %s: deleted %d, kept %s", owner_key, deleted, sorted(keep_names) or "nothing")
        return deleted
