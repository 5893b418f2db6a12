"""Shared pytest fixtures for Expense Tracker tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import timedelta
from pathlib import Path
from uuid import UUID, uuid4

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from expense_tracker.models import Base, Category, Expense, StoredBlob, Upload, utcnow
from expense_tracker.storage.local import LocalBlobStore

TEST_SECRET = "test-signing-secret"
TEST_BASE_URL = "http://test"

# Type aliases for factory fixtures
UploadBlob = Callable[..., Awaitable[UUID]]
MakeExpense = Callable[..., Awaitable[Expense]]
MakeUploadRecord = Callable[..., Awaitable[Upload]]


@pytest.fixture
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """A fresh SQLite database file per test.

    A file (not :memory:) so the blob store and the services can use
    separate connections to the same database.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def blob_store(tmp_path: Path, session_factory: async_sessionmaker[AsyncSession]) -> LocalBlobStore:
    return LocalBlobStore(
        tmp_path / "blobs",
        session_factory,
        secret=TEST_SECRET,
        base_url=TEST_BASE_URL,
    )


@pytest.fixture
async def category(session_factory: async_sessionmaker[AsyncSession]) -> Category:
    """A predefined category every user can book expenses against."""
    async with session_factory() as session:
        category = Category(category_id=uuid4(), name="Coworking", user_id=None, icon="🏢")
        session.add(category)
        await session.commit()
    return category


@pytest.fixture
def upload_blob(
    blob_store: LocalBlobStore,
    session_factory: async_sessionmaker[AsyncSession],
) -> UploadBlob:
    """Upload bytes through a fresh upload target, optionally backdating the blob."""

    async def _upload(
        content: bytes = b"%PDF-1.4 receipt",
        *,
        content_type: str = "application/pdf",
        age: timedelta | None = None,
    ) -> UUID:
        target = await blob_store.create_upload_target()
        blob_id = await blob_store.store_upload(target.token, content, content_type)
        if age is not None:
            async with session_factory() as session:
                await session.execute(
                    update(StoredBlob)
                    .where(StoredBlob.blob_id == blob_id)
                    .values(created_at=utcnow() - age)
                )
                await session.commit()
        return blob_id

    return _upload


@pytest.fixture
def make_upload_record(session_factory: async_sessionmaker[AsyncSession]) -> MakeUploadRecord:
    """Insert a ledger row directly, bypassing registration."""

    async def _make(storage_id: UUID, user_id: str, *, age: timedelta = timedelta(0)) -> Upload:
        async with session_factory() as session:
            record = Upload(
                upload_id=uuid4(),
                storage_id=storage_id,
                user_id=user_id,
                created_at=utcnow() - age,
            )
            session.add(record)
            await session.commit()
        return record

    return _make


@pytest.fixture
def make_expense(
    session_factory: async_sessionmaker[AsyncSession],
    category: Category,
) -> MakeExpense:
    """Insert an expense directly, bypassing ownership checks (legacy data)."""

    async def _make(
        user_id: str,
        *,
        attachment_id: UUID | None = None,
        date: str = "2026-03-15",
        merchant: str = "Talent Garden",
        amount: int = 2500,
        category_id: UUID | None = None,
    ) -> Expense:
        async with session_factory() as session:
            expense = Expense(
                expense_id=uuid4(),
                user_id=user_id,
                date=date,
                merchant=merchant,
                amount=amount,
                category_id=category_id or category.category_id,
                attachment_id=attachment_id,
                created_at=utcnow(),
            )
            session.add(expense)
            await session.commit()
        return expense

    return _make
