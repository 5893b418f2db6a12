"""SweepCheckpoint model: resumable cursor for the untracked-blob pass."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from expense_tracker.models.base import Base, utcnow


class SweepCheckpoint(Base):
    """Last blob examined by a sweep pass.

    Attached blobs never leave the blob store, so an oldest-first scan
    without a cursor would keep returning the same page forever.
    """

    __tablename__ = "sweep_checkpoints"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    cursor_created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cursor_blob_id: Mapped[UUID | None] = mapped_column()
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
