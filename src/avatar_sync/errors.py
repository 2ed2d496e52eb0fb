"""Error taxonomy for AvatarSync.

Only ResolutionFailed is a hard failure. Everything else is caught where it
happens, recorded on the run result as an issue, and the run moves on to the
next holder, candidate or owner key.
"""

from __future__ import annotations


class AvatarSyncError(Exception):
    """Base class for all engine errors."""


class IdentityUnresolved(AvatarSyncError):
    """Neither identity column matched. The raw input is used as-is."""

    def __init__(self, identity: str) -> None:
        super().__init__(f"No auth or record identity found for {identity!r}")
        self.identity = identity


class RecordReadFailed(AvatarSyncError):
    """Reading a reference holder failed."""

    def __init__(self, holder: str, detail: str) -> None:
        super().__init__(f"Reading {holder} failed: {detail}")
        self.holder = holder


class RecordWriteFailed(AvatarSyncError):
    """Writing an image URL back to a reference holder failed."""

    def __init__(self, holder: str, row_id: str, detail: str) -> None:
        super().__init__(f"Writing {holder}/{row_id} failed: {detail}")
        self.holder = holder
        self.row_id = row_id


class StorageError(AvatarSyncError):
    """A blob store call failed. Retryable."""

    operation = "Storage call"

    def __init__(self, path: str, detail: str) -> None:
        super().__init__(f"{self.operation} {path!r} failed: {detail}")
        self.path = path


class StorageListFailed(StorageError):
    operation = "Listing"


class StorageUploadFailed(StorageError):
    operation = "Uploading"


class StorageDeleteFailed(StorageError):
    operation = "Deleting"


class LivenessCheckTimeout(AvatarSyncError):
    """A HEAD request timed out. Callers treat the URL as dead."""

    def __init__(self, url: str, timeout: float) -> None:
        super().__init__(f"HEAD {url} timed out after {timeout:.1f}s")
        self.url = url


class ResolutionFailed(AvatarSyncError):
    """No record, no storage candidate, and the placeholder upload failed."""

    def __init__(self, identity: str, initials: str, detail: str) -> None:
        super().__init__(f"Could not resolve an image for {identity!r}: {detail}")
        self.identity = identity
        self.initials = initials
