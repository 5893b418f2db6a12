"""Category model."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_tracker.models.base import Base

if TYPE_CHECKING:
    from expense_tracker.models.expense import Expense


class Category(Base):
    """Expense category. Predefined when user_id is NULL, custom otherwise."""

    __tablename__ = "categories"

    category_id: Mapped[UUID] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    user_id: Mapped[str | None] = mapped_column(String(255), index=True)
    icon: Mapped[str | None] = mapped_column(String(16))

    # Relationships
    expenses: Mapped[list[Expense]] = relationship(back_populates="category")

    @property
    def is_predefined(self) -> bool:
        return self.user_id is None
