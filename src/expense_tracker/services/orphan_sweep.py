"""Orphan sweep: reclaim blobs that no expense references.

Runs in two passes over items older than the retention window:

1. Tracked orphans: stale ``uploads`` rows. The row is always removed; the
   blob is deleted only if no expense (of any user) references it.
2. Untracked orphans: blobs with no ledger row and no expense reference,
   e.g. the client uploaded but never completed registration.

Each item is committed on its own, so an interrupted sweep simply resumes
on the next invocation. A blob is never deleted while an expense
references it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import partial
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expense_tracker.attachments.ledger import find_expense_reference, find_upload_records
from expense_tracker.config import settings
from expense_tracker.db import async_session_factory, run_in_transaction
from expense_tracker.models.base import utcnow
from expense_tracker.models.sweep_checkpoint import SweepCheckpoint
from expense_tracker.models.upload import Upload
from expense_tracker.storage.base import BlobCursor, BlobDeleteOutcome, BlobStore

logger = logging.getLogger(__name__)

UNTRACKED_CHECKPOINT = "untracked_blobs"


@dataclass
class SweepResult:
    """Counts from one sweep invocation. Only successful deletions are counted."""

    tracked_deleted: int = 0
    stale_records_cleared: int = 0
    untracked_deleted: int = 0
    failures: int = 0

    @property
    def deleted(self) -> int:
        return self.tracked_deleted + self.untracked_deleted


class OrphanSweeper:
    """Batch reclamation of abandoned uploads.

    Usage:
        sweeper = OrphanSweeper(blob_store)
        result = await sweeper.run()
    """

    def __init__(
        self,
        blob_store: BlobStore,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        retention: timedelta | None = None,
        batch_size: int | None = None,
        clock=utcnow,
    ) -> None:
        self._blob_store = blob_store
        self._session_factory = session_factory or async_session_factory
        self._retention = retention or timedelta(hours=settings.orphan_retention_hours)
        self._batch_size = batch_size or settings.cleanup_batch_size
        self._clock = clock

    async def run(self) -> SweepResult:
        """Run both passes once."""
        cutoff = self._clock() - self._retention
        result = SweepResult()

        await self._sweep_tracked(cutoff, result)
        await self._sweep_untracked(cutoff, result)

        if result.deleted or result.stale_records_cleared or result.failures:
            logger.info(
                "Orphan sweep: deleted %d file(s) (%d tracked, %d untracked), "
                "cleared %d stale upload record(s), %d failure(s)",
                result.deleted,
                result.tracked_deleted,
                result.untracked_deleted,
                result.stale_records_cleared,
                result.failures,
            )
        return result

    async def _transaction(self, operation):
        return await run_in_transaction(operation, session_factory=self._session_factory)

    # ── Pass 1: tracked orphans ──────────────────────────────────────────────

    async def _stale_uploads(self, session: AsyncSession, cutoff: datetime) -> list[tuple[UUID, UUID]]:
        stmt = (
            select(Upload.upload_id, Upload.storage_id)
            .where(Upload.created_at < cutoff)
            .order_by(Upload.created_at)
            .limit(self._batch_size)
        )
        result = await session.execute(stmt)
        return [(row.upload_id, row.storage_id) for row in result]

    @staticmethod
    async def _drop_record(session: AsyncSession, *, upload_id: UUID, storage_id: UUID) -> bool | None:
        """Delete one stale ledger row. Returns whether an expense references the blob.

        None means the row was already gone.
        """
        record = await session.get(Upload, upload_id)
        if record is None:
            return None
        referenced = await find_expense_reference(session, storage_id) is not None
        await session.delete(record)
        return referenced

    async def _sweep_tracked(self, cutoff: datetime, result: SweepResult) -> None:
        stale = await self._transaction(partial(self._stale_uploads, cutoff=cutoff))

        for upload_id, storage_id in stale:
            try:
                referenced = await self._transaction(
                    partial(self._drop_record, upload_id=upload_id, storage_id=storage_id)
                )
            except SQLAlchemyError as e:
                logger.warning("Failed to clear upload record for blob %s: %s", storage_id, e)
                result.failures += 1
                continue

            if referenced is None:
                continue
            if referenced:
                # Blob is in use; only the ledger row was stale
                result.stale_records_cleared += 1
                continue

            # Row is committed as gone, so no new attach can pass ownership checks
            self._record_delete(await self._blob_store.delete_blob(storage_id), storage_id, result, tracked=True)

    # ── Pass 2: untracked orphans ────────────────────────────────────────────

    @staticmethod
    async def _load_cursor(session: AsyncSession) -> BlobCursor | None:
        checkpoint = await session.get(SweepCheckpoint, UNTRACKED_CHECKPOINT)
        if checkpoint is None or checkpoint.cursor_created_at is None or checkpoint.cursor_blob_id is None:
            return None
        return BlobCursor(created_at=checkpoint.cursor_created_at, blob_id=checkpoint.cursor_blob_id)

    @staticmethod
    async def _save_cursor(session: AsyncSession, *, cursor: BlobCursor | None) -> None:
        checkpoint = await session.get(SweepCheckpoint, UNTRACKED_CHECKPOINT)
        if checkpoint is None:
            checkpoint = SweepCheckpoint(name=UNTRACKED_CHECKPOINT)
            session.add(checkpoint)
        checkpoint.cursor_created_at = cursor.created_at if cursor else None
        checkpoint.cursor_blob_id = cursor.blob_id if cursor else None
        checkpoint.updated_at = utcnow()

    @staticmethod
    async def _is_untracked_orphan(session: AsyncSession, *, blob_id: UUID) -> bool:
        if await find_upload_records(session, blob_id):
            return False  # Pass 1 handles it once the record ages out
        return await find_expense_reference(session, blob_id) is None

    async def _sweep_untracked(self, cutoff: datetime, result: SweepResult) -> None:
        cursor = await self._transaction(self._load_cursor)
        blobs = await self._blob_store.list_blobs_older_than(cutoff, self._batch_size, after=cursor)

        for blob in blobs:
            try:
                orphaned = await self._transaction(partial(self._is_untracked_orphan, blob_id=blob.blob_id))
            except SQLAlchemyError as e:
                logger.warning("Failed to check references for blob %s: %s", blob.blob_id, e)
                result.failures += 1
                continue

            if orphaned:
                self._record_delete(
                    await self._blob_store.delete_blob(blob.blob_id), blob.blob_id, result, tracked=False
                )

        # A short page means the scan reached the end; start over next time
        next_cursor = None
        if len(blobs) == self._batch_size:
            last = blobs[-1]
            next_cursor = BlobCursor(created_at=last.created_at, blob_id=last.blob_id)
        await self._transaction(partial(self._save_cursor, cursor=next_cursor))

    # ── Helpers ──────────────────────────────────────────────────────────────

    @staticmethod
    def _record_delete(outcome: BlobDeleteOutcome, blob_id: UUID, result: SweepResult, *, tracked: bool) -> None:
        if outcome is BlobDeleteOutcome.DELETED:
            if tracked:
                result.tracked_deleted += 1
            else:
                result.untracked_deleted += 1
        elif outcome is BlobDeleteOutcome.ALREADY_ABSENT:
            logger.debug("Blob %s already absent", blob_id)
        else:
            logger.warning("Failed to delete orphaned blob %s, will retry on a later run", blob_id)
            result.failures += 1
