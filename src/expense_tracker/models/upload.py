"""Upload model: the ownership ledger for freshly uploaded blobs."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from expense_tracker.models.base import Base, utcnow


class Upload(Base):
    """Records which user uploaded a blob, before any expense references it.

    Rows are immutable. They are removed when the blob is explicitly deleted,
    when an expense swaps the blob out, or by the orphan sweep.
    """

    __tablename__ = "uploads"

    upload_id: Mapped[UUID] = mapped_column(primary_key=True)
    storage_id: Mapped[UUID] = mapped_column(unique=True, index=True)
    """Blob id issued by the blob store. At most one row per blob."""

    user_id: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
