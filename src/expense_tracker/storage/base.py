"""Blob store contract.

The blob store issues opaque blob ids, mints time-limited download URLs and
deletes blobs. It has no notion of ownership; that lives in the uploads
ledger and the expenses table.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol
from uuid import UUID


class BlobDeleteOutcome(str, Enum):
    """Result of a blob delete. Callers decide whether a failure propagates."""

    DELETED = "deleted"
    ALREADY_ABSENT = "already_absent"
    TRANSIENT_FAILURE = "transient_failure"

    @property
    def ok(self) -> bool:
        """True when the blob is gone afterwards."""
        return self is not BlobDeleteOutcome.TRANSIENT_FAILURE


@dataclass(frozen=True)
class UploadTarget:
    """One-time destination for a client upload."""

    upload_url: str
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class BlobInfo:
    """A blob as reported by list_blobs_older_than."""

    blob_id: UUID
    created_at: datetime


@dataclass(frozen=True)
class BlobCursor:
    """Keyset position in (created_at, blob_id) order."""

    created_at: datetime
    blob_id: UUID


class BlobStore(Protocol):
    """Operations the application needs from a blob store."""

    async def create_upload_target(self) -> UploadTarget: ...

    async def get_signed_url(self, blob_id: UUID) -> str | None:
        """Signed download URL, or None if the blob does not exist."""
        ...

    async def get_blob_info(self, blob_id: UUID) -> BlobInfo | None:
        """Creation metadata for a blob, or None if it does not exist."""
        ...

    async def delete_blob(self, blob_id: UUID) -> BlobDeleteOutcome:
        """Delete a blob. Never raises for a blob that is already gone."""
        ...

    async def list_blobs_older_than(
        self,
        cutoff: datetime,
        limit: int,
        *,
        after: BlobCursor | None = None,
    ) -> list[BlobInfo]:
        """Blobs created before cutoff, oldest first, resuming after cursor."""
        ...
