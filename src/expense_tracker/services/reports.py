"""Monthly reports: category totals and attachment links."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expense_tracker.attachments.service import require_user
from expense_tracker.errors import ExpenseValidationError
from expense_tracker.models.category import Category
from expense_tracker.models.expense import Expense
from expense_tracker.storage.base import BlobStore

UNKNOWN_CATEGORY = "Unknown"


@dataclass
class CategoryTotal:
    name: str
    total: int = 0
    count: int = 0


@dataclass
class ReportLine:
    """An expense enriched with its category name."""

    expense_id: UUID
    date: str
    merchant: str
    amount: int
    category_id: UUID
    category_name: str
    attachment_id: UUID | None = None
    comment: str | None = None
    created_at: datetime | None = None


@dataclass
class MonthlyReport:
    expenses: list[ReportLine] = field(default_factory=list)
    categories: dict[str, CategoryTotal] = field(default_factory=dict)
    total: int = 0


@dataclass
class AttachmentLink:
    expense_id: UUID
    date: str
    merchant: str
    url: str
    storage_id: UUID


def month_bounds(year: int, month: int) -> tuple[str, str]:
    """Inclusive ISO date bounds for a month.

    The upper bound is always day 31; ISO strings compare lexically so this
    covers shorter months too.
    """
    if not 1 <= month <= 12:
        raise ExpenseValidationError("Month must be between 1 and 12.")
    return f"{year:04d}-{month:02d}-01", f"{year:04d}-{month:02d}-31"


class ReportService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _month_expenses(self, user_id: str, year: int, month: int) -> list[Expense]:
        start, end = month_bounds(year, month)
        stmt = (
            select(Expense)
            .where(Expense.user_id == user_id)
            .where(Expense.date >= start, Expense.date <= end)
            .order_by(Expense.date, Expense.created_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def monthly_report(self, user_id: str | None, year: int, month: int) -> MonthlyReport:
        """Expenses of one month with per-category totals and a grand total."""
        uid = require_user(user_id)
        expenses = await self._month_expenses(uid, year, month)

        category_ids = {e.category_id for e in expenses}
        names: dict[UUID, str] = {}
        if category_ids:
            result = await self._session.execute(
                select(Category.category_id, Category.name).where(Category.category_id.in_(category_ids))
            )
            names = {row.category_id: row.name for row in result}

        report = MonthlyReport()
        for expense in expenses:
            name = names.get(expense.category_id, UNKNOWN_CATEGORY)
            totals = report.categories.setdefault(name, CategoryTotal(name=name))
            totals.total += expense.amount
            totals.count += 1
            report.total += expense.amount
            report.expenses.append(
                ReportLine(
                    expense_id=expense.expense_id,
                    date=expense.date,
                    merchant=expense.merchant,
                    amount=expense.amount,
                    category_id=expense.category_id,
                    category_name=name,
                    attachment_id=expense.attachment_id,
                    comment=expense.comment,
                    created_at=expense.created_at,
                )
            )
        return report

    async def monthly_attachments(
        self,
        user_id: str | None,
        year: int,
        month: int,
        blob_store: BlobStore,
    ) -> list[AttachmentLink]:
        """Signed URLs for a month's attachments. Blobs that no longer exist are skipped."""
        uid = require_user(user_id)
        links: list[AttachmentLink] = []
        for expense in await self._month_expenses(uid, year, month):
            if expense.attachment_id is None:
                continue
            url = await blob_store.get_signed_url(expense.attachment_id)
            if url is None:
                continue
            links.append(
                AttachmentLink(
                    expense_id=expense.expense_id,
                    date=expense.date,
                    merchant=expense.merchant,
                    url=url,
                    storage_id=expense.attachment_id,
                )
            )
        return links
