"""Ownership ledger lookups shared by the attachment and expense services.

Two sources of truth decide who may act on a blob:

- the ``uploads`` ledger, written when a user registers a fresh upload
- the ``expenses`` table, once an expense references the blob

Read-only helpers take a ``QueryContext``; helpers that write take a
``MutationContext``. An ``AsyncSession`` satisfies both.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import select

from expense_tracker.errors import NotFoundOrNotOwned
from expense_tracker.models.enums import OwnershipState
from expense_tracker.models.expense import Expense
from expense_tracker.models.upload import Upload

if TYPE_CHECKING:
    from expense_tracker.db import MutationContext, QueryContext


@dataclass(frozen=True)
class Ownership:
    """Effective owner of a blob at one instant."""

    state: OwnershipState
    user_id: str | None = None


async def find_upload_records(ctx: QueryContext, storage_id: UUID) -> list[Upload]:
    """All ledger rows for a blob.

    Normally zero or one. Callers check every row so the answer never depends
    on which row a query happens to return first.
    """
    stmt = select(Upload).where(Upload.storage_id == storage_id).order_by(Upload.created_at)
    result = await ctx.execute(stmt)
    return list(result.scalars().all())


async def find_expense_reference(
    ctx: QueryContext,
    storage_id: UUID,
    *,
    user_id: str | None = None,
    exclude_user_id: str | None = None,
    exclude_expense_id: UUID | None = None,
) -> Expense | None:
    """First expense referencing a blob, optionally scoped or filtered.

    Args:
        ctx: Query capability.
        storage_id: The blob id.
        user_id: Only consider expenses owned by this user.
        exclude_user_id: Ignore expenses owned by this user.
        exclude_expense_id: Ignore this expense (e.g. the one being edited).
    """
    stmt = select(Expense).where(Expense.attachment_id == storage_id)
    if user_id is not None:
        stmt = stmt.where(Expense.user_id == user_id)
    if exclude_user_id is not None:
        stmt = stmt.where(Expense.user_id != exclude_user_id)
    if exclude_expense_id is not None:
        stmt = stmt.where(Expense.expense_id != exclude_expense_id)
    stmt = stmt.order_by(Expense.created_at).limit(1)

    result = await ctx.execute(stmt)
    return result.scalar_one_or_none()


async def verify_attachment_ownership(ctx: QueryContext, storage_id: UUID, user_id: str) -> None:
    """Raise NotFoundOrNotOwned unless the user holds the ledger row for the blob."""
    records = await find_upload_records(ctx, storage_id)
    if not records or not all(r.user_id == user_id for r in records):
        raise NotFoundOrNotOwned()


async def delete_upload_records(ctx: MutationContext, storage_id: UUID) -> int:
    """Delete every ledger row for a blob. Returns the number removed (0 is fine)."""
    records = await find_upload_records(ctx, storage_id)
    for record in records:
        await ctx.delete(record)
    if records:
        await ctx.flush()
    return len(records)


async def resolve_ownership(ctx: QueryContext, storage_id: UUID) -> Ownership:
    """Resolve a blob's effective owner.

    An expense reference wins over the ledger; with neither the blob is
    untracked.
    """
    expense = await find_expense_reference(ctx, storage_id)
    if expense is not None:
        return Ownership(OwnershipState.ATTACHED, expense.user_id)

    records = await find_upload_records(ctx, storage_id)
    if records:
        return Ownership(OwnershipState.PENDING, records[0].user_id)

    return Ownership(OwnershipState.UNTRACKED)
