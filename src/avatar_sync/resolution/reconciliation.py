"""Propagation of a resolved URL to every reference holder.

All writes are issued together and awaited together. One holder failing
does not stop the others, and nothing is rolled back: writes are
idempotent, so re-running is the recovery path.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from avatar_sync.errors import RecordWriteFailed
from avatar_sync.resolution.records import RecordStore
from avatar_sync.resolution.types import HolderLocation, HolderWriteResult

logger = logging.getLogger(__name__)


class Reconciler:
    """Writes one URL to many holders concurrently.

    Usage:
        reconciler = Reconciler(record_store)
        results = await reconciler.propagate(url, locations)
    """

    def __init__(self, records: RecordStore) -> None:
        self._records = records

    async def propagate(
        self,
        url: str,
        locations: Sequence[HolderLocation],
    ) -> list[HolderWriteResult]:
        """Write `url` to every location and report each outcome.

        Writing the URL a holder already has succeeds with changed=False.
        """
        if not locations:
            return []

        outcomes = await asyncio.gather(
            *(self._records.write(location, url) for location in locations),
            return_exceptions=True,
        )

        results: list[HolderWriteResult] = []
        for location, outcome in zip(locations, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome  # Cancellation is not a holder failure
                if not isinstance(outcome, RecordWriteFailed):
                    logger.exception("[RECONCILE] unexpected error writing %s", location, exc_info=outcome)
                results.append(HolderWriteResult(location, success=False, error=str(outcome)))
            else:
                results.append(HolderWriteResult(location, success=True, changed=outcome))

        failed = sum(1 for r in results if not r.success)
        if failed:
            logger.warning("[RECONCILE] %d of %d holder writes failed for %s", failed, len(results), url)
        return results


def any_succeeded(results: Sequence[HolderWriteResult]) -> bool:
    return any(r.success for r in results)
