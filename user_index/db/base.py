"""Declarative base for the relational read models."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    """``createdAt``/``updatedAt`` columns shared by the user-facing tables."""

    created_at: Mapped[Optional[datetime]] = mapped_column("createdAt", DateTime(timezone=True), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column("updatedAt", DateTime(timezone=True), nullable=True)


__all__ = ["Base", "TimestampMixin"]
