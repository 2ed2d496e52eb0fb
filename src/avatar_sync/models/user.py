"""User model: the identity link and the first reference holder."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from avatar_sync.models.base import Base

if TYPE_CHECKING:
    from avatar_sync.models.profile import Profile


class User(Base):
    """An application user row.

    `id` is the record identity and `auth_id` the identity issued by the
    authentication subsystem. The pair is a partial bijection maintained
    by account creation; this package only reads it.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    auth_id: Mapped[str | None] = mapped_column(String(64), index=True)
    first_name: Mapped[str | None] = mapped_column(String(255))
    last_name: Mapped[str | None] = mapped_column(String(255))
    profile_image_url: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    profile: Mapped[Profile | None] = relationship(back_populates="user")
