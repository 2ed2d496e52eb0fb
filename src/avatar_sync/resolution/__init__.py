"""Profile image resolution for AvatarSync.

Submodules:
- identity: auth ⇄ record identity lookup
- records: reference holder scanning and write-back
- liveness: HEAD-based liveness checks
- blobs: blob directory listing and candidate ranking
- placeholder: SVG initials avatar synthesis
- reconciliation: concurrent propagation to holders
- garbage: superseded blob deletion
- engine: the per-person state machine and public operations
"""

from avatar_sync.resolution.engine import AssetResolutionEngine, open_engine
from avatar_sync.resolution.liveness import LivenessVerifier
from avatar_sync.resolution.records import RecordStore

__all__ = [
    "AssetResolutionEngine",
    "LivenessVerifier",
    "RecordStore",
    "open_engine",
]
