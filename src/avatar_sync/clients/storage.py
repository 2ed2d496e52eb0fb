"""Async client for the blob store holding profile images.

Speaks the Supabase Storage REST API:

    POST   /storage/v1/object/list/{bucket}      list by prefix
    POST   /storage/v1/object/{bucket}/{path}    upload (x-upsert for overwrite)
    DELETE /storage/v1/object/{bucket}           delete by path list
    GET    /storage/v1/object/public/{bucket}/{path}

Objects are addressed as `owner_key/filename` inside a single bucket.
"""

from __future__ import annotations

import logging
import mimetypes
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import quote, unquote

import httpx

from avatar_sync.config import settings
from avatar_sync.errors import StorageDeleteFailed, StorageListFailed, StorageUploadFailed

logger = logging.getLogger(__name__)

# mimetypes does not know every image suffix on every platform
_CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
}


def content_type_for(filename: str) -> str:
    suffix = "." + filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return _CONTENT_TYPES.get(suffix) or mimetypes.guess_type(filename)[0] or "application/octet-stream"


@dataclass(frozen=True)
class BlobObject:
    """One object in the bucket."""

    owner_key: str
    filename: str
    content_type: str | None = None
    size: int | None = None
    updated_at: datetime | None = None

    @property
    def path(self) -> str:
        return f"{self.owner_key}/{self.filename}"

    @classmethod
    def from_listing(cls, owner_key: str, item: dict[str, Any]) -> BlobObject:
        metadata = item.get("metadata") or {}
        updated = item.get("updated_at")
        return cls(
            owner_key=owner_key,
            filename=item["name"],
            content_type=metadata.get("mimetype"),
            size=metadata.get("size"),
            updated_at=datetime.fromisoformat(updated.replace("Z", "+00:00")) if updated else None,
        )


class BlobStoreClient:
    """Async blob store client.

    Usage:
        async with httpx.AsyncClient() as http:
            storage = BlobStoreClient(http)
            objects = await storage.list("36a202aa-...")
            url = storage.public_url(objects[0].path)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str | None = None,
        bucket: str | None = None,
        service_key: str | None = None,
        timeout: float | None = None,
        page_size: int | None = None,
    ) -> None:
        self._client = client
        self._page_size = page_size or settings.storage_list_limit
        self._base_url = (base_url or settings.storage_url).rstrip("/") + "/storage/v1"
        self._bucket = bucket or settings.storage_bucket
        key = service_key or settings.storage_service_key
        self._headers = {"Authorization": f"Bearer {key}", "apikey": key}
        self._timeout = timeout or settings.storage_timeout_seconds

    @property
    def bucket(self) -> str:
        return self._bucket

    def public_url(self, path: str) -> str:
        return f"{self._base_url}/object/public/{self._bucket}/{quote(path)}"

    def parse_public_url(self, url: str) -> BlobObject | None:
        """Inverse of public_url. None when the URL is not in this bucket."""
        prefix = f"{self._base_url}/object/public/{self._bucket}/"
        if not url.startswith(prefix):
            return None
        path = unquote(url[len(prefix) :].split("?", 1)[0])
        owner_key, _, filename = path.partition("/")
        if not filename or "/" in filename:
            return None
        return BlobObject(owner_key=owner_key, filename=filename)

    async def list(self, owner_key: str) -> list[BlobObject]:
        """List the objects directly under an owner key, following pages."""
        start_time = time.time()
        objects: list[BlobObject] = []
        offset = 0
        while True:
            page = await self._list_page(owner_key, offset)
            # Folder placeholders come back with a null id
            objects.extend(
                BlobObject.from_listing(owner_key, item)
                for item in page
                if item.get("id") is not None
            )
            if len(page) < self._page_size:
                break
            offset += len(page)

        if settings.log_api_calls:
            elapsed = (time.time() - start_time) * 1000  # ms
            logger.info("[STORAGE] list %s → %d objects (%.0fms)", owner_key, len(objects), elapsed)

        return objects

    async def _list_page(self, owner_key: str, offset: int) -> list[dict[str, Any]]:
        try:
            response = await self._client.post(
                f"{self._base_url}/object/list/{self._bucket}",
                json={
                    "prefix": owner_key,
                    "limit": self._page_size,
                    "offset": offset,
                    "sortBy": {"column": "name", "order": "asc"},
                },
                headers=self._headers,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageListFailed(owner_key, str(exc) or type(exc).__name__) from exc
        return response.json()

    async def upload(self, path: str, data: bytes, content_type: str | None = None) -> str:
        """Upload with overwrite semantics. Returns the public URL."""
        try:
            response = await self._client.post(
                f"{self._base_url}/object/{self._bucket}/{quote(path)}",
                content=data,
                headers={
                    **self._headers,
                    "Content-Type": content_type or content_type_for(path),
                    "x-upsert": "true",
                    "cache-control": "3600",
                },
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageUploadFailed(path, str(exc) or type(exc).__name__) from exc

        logger.info("[STORAGE] uploaded %s (%d bytes)", path, len(data))
        return self.public_url(path)

    async def delete(self, paths: Sequence[str]) -> int:
        """Delete objects by path. Returns how many the store removed."""
        if not paths:
            return 0
        try:
            response = await self._client.request(
                "DELETE",
                f"{self._base_url}/object/{self._bucket}",
                json={"prefixes": list(paths)},
                headers=self._headers,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageDeleteFailed(", ".join(paths), str(exc) or type(exc).__name__) from exc

        deleted = response.json()
        logger.info("[STORAGE] deleted %d of %d objects", len(deleted), len(paths))
        return len(deleted)
