"""Blob model: bookkeeping for the local blob store."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from expense_tracker.models.base import Base, utcnow


class StoredBlob(Base):
    """A file held by LocalBlobStore.

    Owned by the blob store. Ownership services never query this table;
    they go through the BlobStore interface.
    """

    __tablename__ = "blobs"

    blob_id: Mapped[UUID] = mapped_column(primary_key=True)
    content_type: Mapped[str] = mapped_column(String(255))
    size_bytes: Mapped[int] = mapped_column(BigInteger)
    storage_path: Mapped[str] = mapped_column(String(1024))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
