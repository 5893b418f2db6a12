"""Expense service: per-user CRUD with attachment ownership enforcement."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID, uuid4

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from expense_tracker.attachments.service import AttachmentService, require_user
from expense_tracker.errors import ExpenseNotFound, ExpenseValidationError
from expense_tracker.models.base import utcnow
from expense_tracker.models.category import Category
from expense_tracker.models.expense import Expense
from expense_tracker.schemas import ExpenseIn
from expense_tracker.services.validation import normalize_comment, validate_expense_fields

logger = logging.getLogger(__name__)


@dataclass
class ExpenseChange:
    """Result of an expense mutation.

    released is a blob the caller deletes with discard_released_blob once the
    transaction has committed.
    """

    expense: Expense
    released: UUID | None = None


class ExpenseService:
    """Create, read, update and delete a user's expenses.

    Attachment changes go through AttachmentService: a new attachment must
    be registered by the acting user, and a replaced or removed attachment
    loses its ledger row in the same transaction.
    """

    def __init__(self, session: AsyncSession, attachments: AttachmentService) -> None:
        self._session = session
        self._attachments = attachments

    async def list_expenses(self, user_id: str | None) -> list[Expense]:
        """All of the user's expenses, most recent date first."""
        uid = require_user(user_id)
        stmt = (
            select(Expense)
            .where(Expense.user_id == uid)
            .order_by(Expense.date.desc(), Expense.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_expense(self, expense_id: UUID, user_id: str | None) -> Expense | None:
        uid = require_user(user_id)
        expense = await self._session.get(Expense, expense_id)
        if expense is None or expense.user_id != uid:
            return None
        return expense

    async def get_merchants(self, user_id: str | None) -> list[str]:
        """Unique merchant names for autocomplete, sorted."""
        uid = require_user(user_id)
        stmt = select(Expense.merchant).where(Expense.user_id == uid).distinct().order_by(Expense.merchant)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def _owned(self, expense_id: UUID, user_id: str) -> Expense:
        expense = await self._session.get(Expense, expense_id)
        if expense is None or expense.user_id != user_id:
            raise ExpenseNotFound()
        return expense

    async def _check_category(self, category_id: UUID, user_id: str) -> None:
        stmt = select(Category.category_id).where(
            Category.category_id == category_id,
            or_(Category.user_id.is_(None), Category.user_id == user_id),
        )
        if (await self._session.execute(stmt)).scalar_one_or_none() is None:
            raise ExpenseValidationError("Category not found.")

    async def _validate(self, data: ExpenseIn, user_id: str) -> None:
        validate_expense_fields(
            date=data.date,
            merchant=data.merchant,
            amount=data.amount,
            comment=data.comment,
        )
        await self._check_category(data.category_id, user_id)

    async def create(self, user_id: str | None, data: ExpenseIn) -> Expense:
        """Create an expense, verifying the user registered its attachment."""
        uid = require_user(user_id)
        await self._validate(data, uid)

        if data.attachment_id is not None:
            await self._attachments.verify_attachment_ownership(data.attachment_id, uid)

        expense = Expense(
            expense_id=uuid4(),
            user_id=uid,
            date=data.date,
            merchant=data.merchant.strip(),
            amount=data.amount,
            category_id=data.category_id,
            attachment_id=data.attachment_id,
            comment=normalize_comment(data.comment),
            created_at=utcnow(),
        )
        self._session.add(expense)
        await self._session.flush()
        return expense

    async def update(self, expense_id: UUID, user_id: str | None, data: ExpenseIn) -> ExpenseChange:
        """Update an expense.

        A changed attachment must be owned by the user. The one it replaces
        loses its ledger row in this transaction; its blob is reported in
        ``ExpenseChange.released`` for deletion after commit.
        """
        uid = require_user(user_id)
        expense = await self._owned(expense_id, uid)
        await self._validate(data, uid)

        if data.attachment_id is not None and data.attachment_id != expense.attachment_id:
            await self._attachments.verify_attachment_ownership(data.attachment_id, uid)

        released = await self._attachments.release_if_replaced(
            expense.attachment_id, data.attachment_id, expense_id=expense.expense_id
        )

        expense.date = data.date
        expense.merchant = data.merchant.strip()
        expense.amount = data.amount
        expense.category_id = data.category_id
        expense.attachment_id = data.attachment_id
        expense.comment = normalize_comment(data.comment)
        await self._session.flush()
        return ExpenseChange(expense, released)

    async def remove(self, expense_id: UUID, user_id: str | None) -> ExpenseChange:
        """Delete an expense and release its attachment."""
        uid = require_user(user_id)
        expense = await self._owned(expense_id, uid)

        released = await self._attachments.release_if_replaced(
            expense.attachment_id, None, expense_id=expense.expense_id
        )
        await self._session.delete(expense)
        await self._session.flush()
        return ExpenseChange(expense, released)

    async def remove_attachment(self, expense_id: UUID, user_id: str | None) -> ExpenseChange:
        """Detach an expense's attachment and release its blob."""
        uid = require_user(user_id)
        expense = await self._owned(expense_id, uid)

        released = await self._attachments.release_if_replaced(
            expense.attachment_id, None, expense_id=expense.expense_id
        )
        if expense.attachment_id is not None:
            expense.attachment_id = None
            await self._session.flush()
        return ExpenseChange(expense, released)
