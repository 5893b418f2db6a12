"""Tests for the expense service and its attachment hooks."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from uuid import UUID, uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expense_tracker.attachments import AttachmentService, discard_released_blob
from expense_tracker.errors import ExpenseNotFound, ExpenseValidationError, NotFoundOrNotOwned
from expense_tracker.models import Category, Expense, Upload
from expense_tracker.schemas import ExpenseIn
from expense_tracker.services.expenses import ExpenseService
from expense_tracker.storage.base import BlobDeleteOutcome
from expense_tracker.storage.local import LocalBlobStore

# Type aliases for factory fixtures (see conftest.py)
UploadBlob = Callable[..., Awaitable[UUID]]
MakeExpense = Callable[..., Awaitable[Expense]]
MakeUploadRecord = Callable[..., Awaitable[Upload]]


@pytest.fixture
def expense_input(category: Category) -> Callable[..., ExpenseIn]:
    def _make(**overrides) -> ExpenseIn:
        fields = {
            "date": "2026-03-15",
            "merchant": "Talent Garden",
            "amount": 2500,
            "category_id": category.category_id,
        }
        fields.update(overrides)
        return ExpenseIn(**fields)

    return _make


class FailingDeleteStore:
    """Blob store whose deletes always fail transiently."""

    def __init__(self, inner: LocalBlobStore) -> None:
        self._inner = inner

    async def delete_blob(self, blob_id: UUID) -> BlobDeleteOutcome:
        return BlobDeleteOutcome.TRANSIENT_FAILURE


async def ledger_owner(session_factory: async_sessionmaker[AsyncSession], blob_id: UUID) -> list[str]:
    async with session_factory() as session:
        result = await session.execute(select(Upload.user_id).where(Upload.storage_id == blob_id))
        return list(result.scalars().all())


class TestCreate:
    async def test_create_with_owned_attachment(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: LocalBlobStore,
        upload_blob: UploadBlob,
        make_upload_record: MakeUploadRecord,
        expense_input: Callable[..., ExpenseIn],
    ) -> None:
        blob_id = await upload_blob()
        await make_upload_record(blob_id, "alice")

        async with session_factory() as session:
            service = ExpenseService(session, AttachmentService(session, blob_store))
            expense = await service.create("alice", expense_input(attachment_id=blob_id, merchant="  Bar  "))
            await session.commit()

        assert expense.attachment_id == blob_id
        assert expense.merchant == "Bar"
        assert expense.comment is None

    async def test_create_with_foreign_attachment_fails(
        self,
        db_session: AsyncSession,
        blob_store: LocalBlobStore,
        upload_blob: UploadBlob,
        make_upload_record: MakeUploadRecord,
        expense_input: Callable[..., ExpenseIn],
    ) -> None:
        """Attaching someone else's upload is indistinguishable from a missing one."""
        blob_id = await upload_blob()
        await make_upload_record(blob_id, "alice")

        service = ExpenseService(db_session, AttachmentService(db_session, blob_store))
        with pytest.raises(NotFoundOrNotOwned):
            await service.create("bob", expense_input(attachment_id=blob_id))

    async def test_create_with_unregistered_attachment_fails(
        self,
        db_session: AsyncSession,
        blob_store: LocalBlobStore,
        upload_blob: UploadBlob,
        expense_input: Callable[..., ExpenseIn],
    ) -> None:
        blob_id = await upload_blob()

        service = ExpenseService(db_session, AttachmentService(db_session, blob_store))
        with pytest.raises(NotFoundOrNotOwned):
            await service.create("alice", expense_input(attachment_id=blob_id))

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"date": "2026-02-30"}, "Invalid date"),
            ({"amount": 0}, "positive integer"),
            ({"merchant": "   "}, "Merchant name is required"),
            ({"merchant": "x" * 201}, "200 characters"),
            ({"comment": "y" * 1001}, "1000 characters"),
        ],
    )
    async def test_invalid_fields(
        self,
        db_session: AsyncSession,
        blob_store: LocalBlobStore,
        expense_input: Callable[..., ExpenseIn],
        overrides: dict,
        message: str,
    ) -> None:
        service = ExpenseService(db_session, AttachmentService(db_session, blob_store))
        with pytest.raises(ExpenseValidationError, match=message):
            await service.create("alice", expense_input(**overrides))

    async def test_other_users_custom_category_is_rejected(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: LocalBlobStore,
        expense_input: Callable[..., ExpenseIn],
    ) -> None:
        async with session_factory() as session:
            private = Category(category_id=uuid4(), name="Private", user_id="alice")
            session.add(private)
            await session.commit()

        async with session_factory() as session:
            service = ExpenseService(session, AttachmentService(session, blob_store))
            with pytest.raises(ExpenseValidationError, match="Category not found"):
                await service.create("bob", expense_input(category_id=private.category_id))


class TestUpdate:
    async def test_swap_attachment_releases_old_blob(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: LocalBlobStore,
        upload_blob: UploadBlob,
        make_upload_record: MakeUploadRecord,
        make_expense: MakeExpense,
        expense_input: Callable[..., ExpenseIn],
    ) -> None:
        old_blob = await upload_blob(b"old")
        new_blob = await upload_blob(b"new")
        await make_upload_record(old_blob, "alice")
        await make_upload_record(new_blob, "alice")
        expense = await make_expense("alice", attachment_id=old_blob)

        async with session_factory() as session:
            attachments = AttachmentService(session, blob_store)
            change = await ExpenseService(session, attachments).update(
                expense.expense_id, "alice", expense_input(attachment_id=new_blob)
            )
            await session.commit()

        assert change.released == old_blob
        # Ledger row goes with the commit; the blob waits for the discard
        assert await ledger_owner(session_factory, old_blob) == []
        assert await blob_store.get_signed_url(old_blob) is not None

        assert await discard_released_blob(blob_store, change.released) is BlobDeleteOutcome.DELETED
        assert await blob_store.get_signed_url(old_blob) is None

        async with session_factory() as session:
            attachments = AttachmentService(session, blob_store)
            assert await attachments.resolve_download_url(old_blob, "alice") is None
            assert await attachments.resolve_download_url(new_blob, "alice") is not None

    async def test_rolled_back_swap_keeps_old_blob(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: LocalBlobStore,
        upload_blob: UploadBlob,
        make_upload_record: MakeUploadRecord,
        make_expense: MakeExpense,
        expense_input: Callable[..., ExpenseIn],
    ) -> None:
        """A failed commit leaves the expense pointing at a blob that still exists."""
        old_blob = await upload_blob(b"old")
        new_blob = await upload_blob(b"new")
        await make_upload_record(old_blob, "alice")
        await make_upload_record(new_blob, "alice")
        expense = await make_expense("alice", attachment_id=old_blob)

        async with session_factory() as session:
            attachments = AttachmentService(session, blob_store)
            await ExpenseService(session, attachments).update(
                expense.expense_id, "alice", expense_input(attachment_id=new_blob)
            )
            await session.rollback()

        async with session_factory() as session:
            stored = await session.get(Expense, expense.expense_id)
            assert stored is not None
            assert stored.attachment_id == old_blob
            assert await AttachmentService(session, blob_store).resolve_download_url(old_blob, "alice") is not None
        assert await ledger_owner(session_factory, old_blob) == ["alice"]

    async def test_swap_tolerates_already_deleted_blob(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: LocalBlobStore,
        upload_blob: UploadBlob,
        make_upload_record: MakeUploadRecord,
        make_expense: MakeExpense,
        expense_input: Callable[..., ExpenseIn],
    ) -> None:
        old_blob = await upload_blob(b"old")
        new_blob = await upload_blob(b"new")
        await make_upload_record(old_blob, "alice")
        await make_upload_record(new_blob, "alice")
        expense = await make_expense("alice", attachment_id=old_blob)
        await blob_store.delete_blob(old_blob)

        async with session_factory() as session:
            attachments = AttachmentService(session, blob_store)
            change = await ExpenseService(session, attachments).update(
                expense.expense_id, "alice", expense_input(attachment_id=new_blob)
            )
            await session.commit()

        assert change.expense.attachment_id == new_blob
        assert await ledger_owner(session_factory, old_blob) == []
        assert await discard_released_blob(blob_store, change.released) is BlobDeleteOutcome.ALREADY_ABSENT

    async def test_unchanged_attachment_is_not_reverified(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: LocalBlobStore,
        upload_blob: UploadBlob,
        make_expense: MakeExpense,
        expense_input: Callable[..., ExpenseIn],
    ) -> None:
        """Legacy expenses without a ledger row can still be edited."""
        blob_id = await upload_blob()
        expense = await make_expense("alice", attachment_id=blob_id)

        async with session_factory() as session:
            attachments = AttachmentService(session, blob_store)
            change = await ExpenseService(session, attachments).update(
                expense.expense_id, "alice", expense_input(attachment_id=blob_id, amount=999)
            )
            await session.commit()

        assert change.expense.amount == 999
        assert change.released is None
        assert await blob_store.get_signed_url(blob_id) is not None

    async def test_replaced_blob_shared_with_another_expense_is_kept(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: LocalBlobStore,
        upload_blob: UploadBlob,
        make_expense: MakeExpense,
        expense_input: Callable[..., ExpenseIn],
    ) -> None:
        blob_id = await upload_blob()
        first = await make_expense("alice", attachment_id=blob_id)
        await make_expense("alice", attachment_id=blob_id)

        async with session_factory() as session:
            attachments = AttachmentService(session, blob_store)
            change = await ExpenseService(session, attachments).update(
                first.expense_id, "alice", expense_input(attachment_id=None)
            )
            await session.commit()

        assert change.released is None
        assert await blob_store.get_signed_url(blob_id) is not None

    async def test_other_users_expense_is_not_found(
        self,
        db_session: AsyncSession,
        blob_store: LocalBlobStore,
        make_expense: MakeExpense,
        expense_input: Callable[..., ExpenseIn],
    ) -> None:
        expense = await make_expense("alice")

        service = ExpenseService(db_session, AttachmentService(db_session, blob_store))
        with pytest.raises(ExpenseNotFound):
            await service.update(expense.expense_id, "bob", expense_input())


class TestReleaseIfReplaced:
    async def test_noop_when_unchanged(self, db_session: AsyncSession, blob_store: LocalBlobStore) -> None:
        blob_id = uuid4()
        service = AttachmentService(db_session, blob_store)

        assert await service.release_if_replaced(None, blob_id) is None
        assert await service.release_if_replaced(blob_id, blob_id) is None

    async def test_release_does_not_touch_blob_store(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: LocalBlobStore,
        upload_blob: UploadBlob,
        make_upload_record: MakeUploadRecord,
    ) -> None:
        blob_id = await upload_blob()
        await make_upload_record(blob_id, "alice")

        async with session_factory() as session:
            released = await AttachmentService(session, blob_store).release_if_replaced(blob_id, None)
            await session.commit()

        assert released == blob_id
        assert await ledger_owner(session_factory, blob_id) == []
        assert await blob_store.get_signed_url(blob_id) is not None


class TestDiscardReleasedBlob:
    async def test_nothing_to_discard(self, blob_store: LocalBlobStore) -> None:
        assert await discard_released_blob(blob_store, None) is None

    async def test_missing_blob_reports_already_absent(self, blob_store: LocalBlobStore) -> None:
        assert await discard_released_blob(blob_store, uuid4()) is BlobDeleteOutcome.ALREADY_ABSENT

    async def test_transient_failure_is_swallowed(
        self,
        blob_store: LocalBlobStore,
        upload_blob: UploadBlob,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        blob_id = await upload_blob()

        outcome = await discard_released_blob(FailingDeleteStore(blob_store), blob_id)

        assert outcome is BlobDeleteOutcome.TRANSIENT_FAILURE
        assert "leaving it to the orphan sweep" in caplog.text
        assert await blob_store.get_signed_url(blob_id) is not None


class TestRemove:
    async def test_remove_deletes_expense_and_attachment(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: LocalBlobStore,
        upload_blob: UploadBlob,
        make_expense: MakeExpense,
    ) -> None:
        blob_id = await upload_blob()
        expense = await make_expense("alice", attachment_id=blob_id)

        async with session_factory() as session:
            service = ExpenseService(session, AttachmentService(session, blob_store))
            change = await service.remove(expense.expense_id, "alice")
            await session.commit()
        await discard_released_blob(blob_store, change.released)

        async with session_factory() as session:
            assert await session.get(Expense, expense.expense_id) is None
        assert await blob_store.get_signed_url(blob_id) is None

    async def test_rolled_back_remove_keeps_blob(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: LocalBlobStore,
        upload_blob: UploadBlob,
        make_expense: MakeExpense,
    ) -> None:
        blob_id = await upload_blob()
        expense = await make_expense("alice", attachment_id=blob_id)

        async with session_factory() as session:
            service = ExpenseService(session, AttachmentService(session, blob_store))
            await service.remove(expense.expense_id, "alice")
            await session.rollback()

        async with session_factory() as session:
            assert await session.get(Expense, expense.expense_id) is not None
        assert await blob_store.get_signed_url(blob_id) is not None

    async def test_remove_attachment_clears_field(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: LocalBlobStore,
        upload_blob: UploadBlob,
        make_expense: MakeExpense,
    ) -> None:
        blob_id = await upload_blob()
        expense = await make_expense("alice", attachment_id=blob_id)

        async with session_factory() as session:
            service = ExpenseService(session, AttachmentService(session, blob_store))
            change = await service.remove_attachment(expense.expense_id, "alice")
            await session.commit()
        await discard_released_blob(blob_store, change.released)

        assert change.expense.attachment_id is None
        assert change.released == blob_id
        assert await blob_store.get_signed_url(blob_id) is None


class TestQueries:
    async def test_list_is_scoped_and_sorted(
        self,
        db_session: AsyncSession,
        blob_store: LocalBlobStore,
        make_expense: MakeExpense,
    ) -> None:
        await make_expense("alice", date="2026-01-10", merchant="A")
        await make_expense("alice", date="2026-03-01", merchant="B")
        await make_expense("bob", date="2026-02-01", merchant="C")

        service = ExpenseService(db_session, AttachmentService(db_session, blob_store))
        expenses = await service.list_expenses("alice")

        assert [e.merchant for e in expenses] == ["B", "A"]

    async def test_merchants_are_unique_and_sorted(
        self,
        db_session: AsyncSession,
        blob_store: LocalBlobStore,
        make_expense: MakeExpense,
    ) -> None:
        await make_expense("alice", merchant="Zeta")
        await make_expense("alice", merchant="Alpha")
        await make_expense("alice", merchant="Zeta")
        await make_expense("bob", merchant="Bravo")

        service = ExpenseService(db_session, AttachmentService(db_session, blob_store))
        assert await service.get_merchants("alice") == ["Alpha", "Zeta"]

    async def test_get_other_users_expense_returns_none(
        self,
        db_session: AsyncSession,
        blob_store: LocalBlobStore,
        make_expense: MakeExpense,
    ) -> None:
        expense = await make_expense("alice")

        service = ExpenseService(db_session, AttachmentService(db_session, blob_store))
        assert await service.get_expense(expense.expense_id, "bob") is None
        assert (await service.get_expense(expense.expense_id, "alice")) is not None
