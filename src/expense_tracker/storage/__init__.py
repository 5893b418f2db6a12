"""Blob storage backends."""

from expense_tracker.storage.base import (
    BlobCursor,
    BlobDeleteOutcome,
    BlobInfo,
    BlobStore,
    UploadTarget,
)
from expense_tracker.storage.local import LocalBlobStore

__all__ = [
    "BlobCursor",
    "BlobDeleteOutcome",
    "BlobInfo",
    "BlobStore",
    "LocalBlobStore",
    "UploadTarget",
]
