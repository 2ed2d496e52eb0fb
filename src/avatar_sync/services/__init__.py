"""Population-level services for AvatarSync."""

from avatar_sync.services.batch import BatchOrchestrator, BatchReport

__all__ = [
    "BatchOrchestrator",
    "BatchReport",
]
