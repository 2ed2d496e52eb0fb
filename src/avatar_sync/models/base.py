"""Declarative base for AvatarSync models."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
