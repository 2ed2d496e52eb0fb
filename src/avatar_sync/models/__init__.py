"""Database models for AvatarSync."""

from avatar_sync.models.base import Base
from avatar_sync.models.enums import HolderKind, ImageSource, StageStatus
from avatar_sync.models.profile import Profile
from avatar_sync.models.user import User

__all__ = [
    "Base",
    "HolderKind",
    "ImageSource",
    "Profile",
    "StageStatus",
    "User",
]
