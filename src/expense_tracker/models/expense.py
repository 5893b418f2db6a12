"""Expense model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_tracker.models.base import Base, utcnow

if TYPE_CHECKING:
    from expense_tracker.models.category import Category


class Expense(Base):
    """A single work expense owned by one user.

    When attachment_id is set the expense is the durable claim on that blob:
    the orphan sweep never deletes a blob any expense still references.
    """

    __tablename__ = "expenses"
    __table_args__ = (
        Index("ix_expenses_user_date", "user_id", "date"),
        Index("ix_expenses_user_attachment", "user_id", "attachment_id"),
    )

    expense_id: Mapped[UUID] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    date: Mapped[str] = mapped_column(String(10))
    """ISO date string (YYYY-MM-DD)."""

    merchant: Mapped[str] = mapped_column(String(200))
    amount: Mapped[int] = mapped_column(Integer)
    """EUR cents (1250 = 12.50 EUR)."""

    category_id: Mapped[UUID] = mapped_column(ForeignKey("categories.category_id"))
    attachment_id: Mapped[UUID | None] = mapped_column(index=True)
    comment: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    # Relationships
    category: Mapped[Category] = relationship(back_populates="expenses")
