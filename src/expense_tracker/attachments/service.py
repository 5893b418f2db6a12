"""Attachment service: registration, access control and release of blobs.

Lifecycle of a blob as seen by this service:

    unregistered ──register──▶ pending ──attach──▶ attached
         │                        │                   │
         └──── orphan sweep ◀─────┴──── replaced / removed

The service never commits. Callers run each operation in its own
transaction (see ``expense_tracker.db.run_in_transaction``). Blobs released
by an expense change are deleted only after that transaction commits, via
``discard_released_blob``.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from expense_tracker.attachments import ledger
from expense_tracker.config import settings
from expense_tracker.errors import (
    BlobStoreUnavailable,
    NotFoundOrNotOwned,
    OwnershipConflict,
    Unauthenticated,
    UploadTargetInvalid,
)
from expense_tracker.models.base import utcnow
from expense_tracker.models.upload import Upload
from expense_tracker.storage.base import BlobDeleteOutcome, BlobStore, UploadTarget

logger = logging.getLogger(__name__)


def require_user(user_id: str | None) -> str:
    """Return user_id, or raise Unauthenticated when there is none."""
    if not user_id:
        raise Unauthenticated()
    return user_id


async def discard_released_blob(blob_store: BlobStore, storage_id: UUID | None) -> BlobDeleteOutcome | None:
    """Best-effort delete of a blob released by a committed expense change.

    Must run after the commit: the ledger row is gone by then, so no user
    can attach the blob again. A failure is logged and left to the orphan
    sweep.
    """
    if storage_id is None:
        return None

    outcome = await blob_store.delete_blob(storage_id)
    if not outcome.ok:
        logger.warning("Could not delete released blob %s, leaving it to the orphan sweep", storage_id)
    return outcome


class AttachmentService:
    """Ownership checks and lifecycle operations for uploaded blobs.

    Usage:
        async with async_session_factory() as session:
            service = AttachmentService(session, blob_store)
            await service.register(blob_id, user_id)
            await session.commit()
    """

    def __init__(
        self,
        session: AsyncSession,
        blob_store: BlobStore,
        *,
        legacy_expense_claims: bool | None = None,
        registration_window: timedelta | None = None,
    ) -> None:
        self._session = session
        self._blob_store = blob_store
        self._legacy_expense_claims = (
            settings.legacy_expense_claims if legacy_expense_claims is None else legacy_expense_claims
        )
        self._registration_window = registration_window or timedelta(
            minutes=settings.registration_window_minutes
        )

    async def create_upload_target(self, user_id: str | None) -> UploadTarget:
        """Issue a one-time upload target to an authenticated user."""
        require_user(user_id)
        return await self._blob_store.create_upload_target()

    # ── Registration ─────────────────────────────────────────────────────────

    async def _claim_needed(self, storage_id: UUID, user_id: str) -> bool:
        """Apply the claim rules. True if a new ledger row must be written."""
        records = await ledger.find_upload_records(self._session, storage_id)
        if any(r.user_id != user_id for r in records):
            raise OwnershipConflict()
        if records:
            return False

        if self._legacy_expense_claims:
            other = await ledger.find_expense_reference(
                self._session, storage_id, exclude_user_id=user_id
            )
            if other is not None:
                raise OwnershipConflict()

        return True

    async def _check_fresh(self, storage_id: UUID) -> None:
        """Only recently uploaded blobs can be claimed.

        The orphan sweep only reclaims blobs far older than the registration
        window, so it never deletes a blob that a registration is claiming.
        """
        info = await self._blob_store.get_blob_info(storage_id)
        if info is None:
            raise NotFoundOrNotOwned("File not found")
        if info.created_at < utcnow() - self._registration_window:
            raise UploadTargetInvalid("Upload has expired, please upload the file again")

    async def register(self, storage_id: UUID, user_id: str | None) -> bool:
        """Claim a freshly uploaded blob for the user.

        Idempotent for the same user. If a concurrent registration wins the
        unique index on storage_id, the session is rolled back and the claim
        rules are evaluated again against the committed row.

        Returns:
            True if a ledger row was written, False on an idempotent replay.

        Raises:
            Unauthenticated: No current user.
            OwnershipConflict: Another user already holds the blob.
            NotFoundOrNotOwned: The blob does not exist.
            UploadTargetInvalid: The blob is older than the registration window.
        """
        uid = require_user(user_id)

        if not await self._claim_needed(storage_id, uid):
            return False
        await self._check_fresh(storage_id)

        self._session.add(Upload(upload_id=uuid4(), storage_id=storage_id, user_id=uid, created_at=utcnow()))
        try:
            await self._session.flush()
        except IntegrityError:
            await self._session.rollback()
            logger.info("Concurrent registration of blob %s, re-checking claim", storage_id)
            if await self._claim_needed(storage_id, uid):
                raise
            return False

        logger.debug("Registered blob %s for user %s", storage_id, uid)
        return True

    # ── Access ───────────────────────────────────────────────────────────────

    async def _may_read(self, storage_id: UUID, user_id: str) -> bool:
        records = await ledger.find_upload_records(self._session, storage_id)
        if records and all(r.user_id == user_id for r in records):
            return True

        expense = await ledger.find_expense_reference(self._session, storage_id, user_id=user_id)
        return expense is not None

    async def resolve_download_url(self, storage_id: UUID, user_id: str | None) -> str | None:
        """Signed download URL if the user owns the blob, else None.

        None covers both "does not exist" and "belongs to someone else".
        """
        uid = require_user(user_id)
        if not await self._may_read(storage_id, uid):
            return None
        return await self._blob_store.get_signed_url(storage_id)

    async def verify_attachment_ownership(self, storage_id: UUID, user_id: str | None) -> None:
        """Raise NotFoundOrNotOwned unless the user registered the blob."""
        uid = require_user(user_id)
        await ledger.verify_attachment_ownership(self._session, storage_id, uid)

    # ── Deletion ─────────────────────────────────────────────────────────────

    async def delete_attached_blob(self, storage_id: UUID, user_id: str | None) -> None:
        """Delete a blob currently attached to one of the user's expenses.

        The caller clears the expense's attachment_id afterwards.

        Raises:
            NotFoundOrNotOwned: No expense of this user references the blob.
            BlobStoreUnavailable: The blob store failed; safe to retry.
        """
        uid = require_user(user_id)
        expense = await ledger.find_expense_reference(self._session, storage_id, user_id=uid)
        if expense is None:
            raise NotFoundOrNotOwned("File not found or not owned by current user")

        outcome = await self._blob_store.delete_blob(storage_id)
        if not outcome.ok:
            raise BlobStoreUnavailable()

        await ledger.delete_upload_records(self._session, storage_id)

    async def release_if_replaced(
        self,
        old_storage_id: UUID | None,
        new_storage_id: UUID | None,
        *,
        expense_id: UUID | None = None,
    ) -> UUID | None:
        """Release the blob an expense no longer points to.

        Removes the ledger row inside the caller's transaction. The blob itself
        is not touched here: pass the returned id to ``discard_released_blob``
        once the transaction has committed. A blob another expense still
        references is kept.

        Args:
            old_storage_id: Attachment before the change.
            new_storage_id: Attachment after the change (None when removed).
            expense_id: The expense being changed, excluded from the
                reference check.

        Returns:
            The blob id to discard after commit, or None if nothing is released.
        """
        if old_storage_id is None or old_storage_id == new_storage_id:
            return None

        await ledger.delete_upload_records(self._session, old_storage_id)

        still_used = await ledger.find_expense_reference(
            self._session, old_storage_id, exclude_expense_id=expense_id
        )
        if still_used is not None:
            logger.info("Blob %s still referenced by expense %s, keeping it", old_storage_id, still_used.expense_id)
            return None
        return old_storage_id
