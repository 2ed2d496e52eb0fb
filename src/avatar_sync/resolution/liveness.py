"""Liveness verification for candidate image URLs.

A URL is live when a HEAD request returns 2xx within the timeout. Anything
else, including network errors and timeouts, means dead. Verification never
raises: a dead candidate just means "try the next one".

Record-sourced and storage-sourced URLs go through the same check. A URL
stored in a profile row is not trusted more than one found by listing.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

import httpx

from avatar_sync.config import settings
from avatar_sync.errors import LivenessCheckTimeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LivenessResult:
    """Outcome of one HEAD request."""

    url: str
    live: bool
    status_code: int | None = None
    error: str | None = None


class LivenessVerifier:
    """Checks whether URLs currently serve content.

    Usage:
        async with httpx.AsyncClient() as client:
            verifier = LivenessVerifier(client)
            url = await verifier.first_live(["https://a/1.png", "https://a/2.png"])
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        timeout: float | None = None,
        concurrency: int | None = None,
    ) -> None:
        self._client = client
        self._timeout = timeout or settings.liveness_timeout_seconds
        self._limit = asyncio.Semaphore(concurrency or settings.liveness_concurrency)

    async def check(self, url: str) -> LivenessResult:
        start_time = time.time()
        async with self._limit:
            try:
                response = await self._client.head(
                    url, timeout=self._timeout, follow_redirects=True
                )
            except httpx.TimeoutException:
                error = LivenessCheckTimeout(url, self._timeout)
                logger.info("[LIVENESS] %s", error)
                return LivenessResult(url, live=False, error=str(error))
            except httpx.HTTPError as exc:
                logger.info("[LIVENESS] HEAD %s failed: %s", url, exc)
                return LivenessResult(url, live=False, error=str(exc) or type(exc).__name__)

        if settings.log_api_calls:
            elapsed = (time.time() - start_time) * 1000  # ms
            logger.info("[LIVENESS] HEAD %s → %d (%.0fms)", url, response.status_code, elapsed)

        return LivenessResult(url, live=response.is_success, status_code=response.status_code)

    async def is_live(self, url: str) -> bool:
        return (await self.check(url)).live

    async def check_all(self, urls: Sequence[str]) -> list[LivenessResult]:
        """Check every URL concurrently, results in input order."""
        return list(await asyncio.gather(*(self.check(url) for url in urls)))

    async def first_live(self, urls: Sequence[str]) -> str | None:
        """Return the first live URL in priority order, or None.

        Checks run concurrently, but a later candidate answering first does
        not win: results are consumed in input order and everything still
        pending is cancelled once the answer is known.
        """
        if not urls:
            return None

        tasks = [asyncio.create_task(self.is_live(url)) for url in urls]
        try:
            for url, task in zip(urls, tasks):
                if await task:
                    return url
            return None
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
