"""Enumerations for AvatarSync data model."""

from enum import Enum


class ImageSource(str, Enum):
    """Where a resolved image URL came from."""

    EXISTING_RECORD = "existing_record"  # A reference holder already pointed at it
    STORAGE_SCAN = "storage_scan"  # Found by listing the blob store
    PLACEHOLDER = "placeholder"  # Synthesized because nothing live existed


class StageStatus(str, Enum):
    """Tagged outcome of one resolution stage."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


class HolderKind(str, Enum):
    """Record types that carry a profile image URL."""

    USERS = "users"
    PROFILES = "profiles"
