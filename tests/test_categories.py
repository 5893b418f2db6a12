"""Tests for predefined and custom categories."""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from expense_tracker.errors import CategoryExists, ExpenseValidationError, Unauthenticated
from expense_tracker.services.categories import PREDEFINED_CATEGORIES, CategoryService


class TestSeedPredefined:
    async def test_seeds_once(self, db_session: AsyncSession) -> None:
        service = CategoryService(db_session)

        assert await service.seed_predefined() == len(PREDEFINED_CATEGORIES)
        assert await service.seed_predefined() == 0

        names = [c.name for c in await service.list_categories(None)]
        assert sorted(names) == sorted(name for name, _ in PREDEFINED_CATEGORIES)


class TestCustomCategories:
    async def test_create_and_list(self, db_session: AsyncSession) -> None:
        service = CategoryService(db_session)
        await service.seed_predefined()

        created = await service.create_category("alice", "  Taxi  ", "🚕")

        assert created.name == "Taxi"
        assert not created.is_predefined
        listed = await service.list_categories("alice")
        assert listed[-1].category_id == created.category_id
        assert all(c.is_predefined for c in listed[:-1])

    async def test_custom_categories_are_private(self, db_session: AsyncSession) -> None:
        service = CategoryService(db_session)
        created = await service.create_category("alice", "Taxi")

        assert [c.name for c in await service.list_categories("bob")] == []
        assert await service.get_category(created.category_id, "bob") is None
        assert await service.get_category(created.category_id, "alice") is created

    async def test_duplicate_name_for_same_user(self, db_session: AsyncSession) -> None:
        service = CategoryService(db_session)
        await service.create_category("alice", "Taxi")

        with pytest.raises(CategoryExists):
            await service.create_category("alice", "Taxi")

    async def test_same_name_for_other_user_is_allowed(self, db_session: AsyncSession) -> None:
        service = CategoryService(db_session)
        await service.create_category("alice", "Taxi")

        created = await service.create_category("bob", "Taxi")
        assert created.user_id == "bob"

    async def test_cannot_shadow_predefined(self, db_session: AsyncSession) -> None:
        service = CategoryService(db_session)
        await service.seed_predefined()

        with pytest.raises(CategoryExists):
            await service.create_category("alice", "Coworking")

    async def test_blank_name(self, db_session: AsyncSession) -> None:
        with pytest.raises(ExpenseValidationError):
            await CategoryService(db_session).create_category("alice", "   ")

    async def test_requires_user(self, db_session: AsyncSession) -> None:
        with pytest.raises(Unauthenticated):
            await CategoryService(db_session).create_category(None, "Taxi")
