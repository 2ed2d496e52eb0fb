"""Clients for external stores."""

from avatar_sync.clients.storage import BlobObject, BlobStoreClient

__all__ = [
    "BlobObject",
    "BlobStoreClient",
]
