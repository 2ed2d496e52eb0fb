"""AvatarSync: cross-identity profile image resolution and reconciliation."""

__version__ = "0.1.0"
