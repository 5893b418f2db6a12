"""Category service: predefined and per-user custom categories."""

from __future__ import annotations

import logging
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expense_tracker.attachments.service import require_user
from expense_tracker.errors import CategoryExists, ExpenseValidationError
from expense_tracker.models.category import Category

logger = logging.getLogger(__name__)

# Predefined categories for work expenses
PREDEFINED_CATEGORIES: list[tuple[str, str]] = [
    ("Coworking", "🏢"),
    ("Pranzo di lavoro", "🍝"),
    ("Cena di lavoro", "🍽️"),
]


class CategoryService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _predefined(self) -> list[Category]:
        stmt = select(Category).where(Category.user_id.is_(None)).order_by(Category.name)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_categories(self, user_id: str | None) -> list[Category]:
        """Predefined categories first, then the user's custom ones."""
        categories = await self._predefined()
        if user_id:
            stmt = select(Category).where(Category.user_id == user_id).order_by(Category.name)
            result = await self._session.execute(stmt)
            categories.extend(result.scalars().all())
        return categories

    async def get_category(self, category_id: UUID, user_id: str | None) -> Category | None:
        """Predefined categories are public; custom ones are visible to their owner only."""
        category = await self._session.get(Category, category_id)
        if category is None:
            return None
        if category.user_id is not None and category.user_id != user_id:
            return None
        return category

    async def create_category(self, user_id: str | None, name: str, icon: str | None = None) -> Category:
        """Create a custom category. Names may not shadow predefined ones."""
        uid = require_user(user_id)
        name = name.strip()
        if not name:
            raise ExpenseValidationError("Category name is required.")

        stmt = (
            select(Category.category_id)
            .where(Category.name == name)
            .where((Category.user_id == uid) | Category.user_id.is_(None))
            .limit(1)
        )
        if (await self._session.execute(stmt)).scalar_one_or_none() is not None:
            raise CategoryExists()

        category = Category(category_id=uuid4(), name=name, user_id=uid, icon=icon)
        self._session.add(category)
        await self._session.flush()
        return category

    async def seed_predefined(self) -> int:
        """Insert the predefined categories if none exist. Returns how many were added."""
        if await self._predefined():
            return 0

        for name, icon in PREDEFINED_CATEGORIES:
            self._session.add(Category(category_id=uuid4(), name=name, user_id=None, icon=icon))
        await self._session.flush()
        logger.info("Seeded %d predefined categories", len(PREDEFINED_CATEGORIES))
        return len(PREDEFINED_CATEGORIES)
