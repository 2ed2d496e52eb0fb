"""Utility modules for AvatarSync."""

from avatar_sync.utils.urls import cache_busted

__all__ = [
    "cache_busted",
]
