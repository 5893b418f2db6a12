"""FastAPI application for Expense Tracker."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Annotated
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expense_tracker import __version__
from expense_tracker.attachments.service import AttachmentService, discard_released_blob
from expense_tracker.auth import resolve_user_id
from expense_tracker.config import settings
from expense_tracker.db import async_session_factory, init_db, run_in_transaction
from expense_tracker.errors import (
    BlobStoreUnavailable,
    CategoryExists,
    ExpenseNotFound,
    ExpenseTrackerError,
    ExpenseValidationError,
    NotFoundOrNotOwned,
    OwnershipConflict,
    Unauthenticated,
    UploadTargetInvalid,
)
from expense_tracker.scheduler import run_daily
from expense_tracker.schemas import (
    AttachmentLinkOut,
    CategoryIn,
    CategoryOut,
    ConfirmUploadIn,
    DownloadUrlOut,
    ExpenseIn,
    ExpenseOut,
    MonthlyReportOut,
    UploadOut,
    UploadTargetOut,
)
from expense_tracker.services.categories import CategoryService
from expense_tracker.services.expenses import ExpenseChange, ExpenseService
from expense_tracker.services.orphan_sweep import OrphanSweeper
from expense_tracker.services.reports import ReportService
from expense_tracker.storage.local import LocalBlobStore

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: list[tuple[type[ExpenseTrackerError], int]] = [
    (Unauthenticated, 401),
    (OwnershipConflict, 409),
    (CategoryExists, 409),
    (NotFoundOrNotOwned, 404),
    (ExpenseNotFound, 404),
    (ExpenseValidationError, 422),
    (UploadTargetInvalid, 400),
    (BlobStoreUnavailable, 503),
]


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


@lru_cache
def get_blob_store() -> LocalBlobStore:
    return LocalBlobStore.from_settings(async_session_factory)


SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
BlobStoreDep = Annotated[LocalBlobStore, Depends(get_blob_store)]
UserId = Annotated[str | None, Depends(resolve_user_id)]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    await init_db()

    sweep_task = None
    if settings.cleanup_schedule_enabled:
        sweeper = OrphanSweeper(get_blob_store())
        sweep_task = asyncio.create_task(
            run_daily(
                sweeper.run,
                hour_utc=settings.cleanup_hour_utc,
                minute_utc=settings.cleanup_minute_utc,
                name="orphan sweep",
            )
        )
    yield

    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task


app = FastAPI(
    title="Expense Tracker",
    description="Work expenses with owned receipt attachments",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(ExpenseTrackerError)
async def handle_app_error(request: Request, exc: ExpenseTrackerError) -> JSONResponse:
    status_code = next((code for cls, code in STATUS_BY_ERROR if isinstance(exc, cls)), 400)
    return JSONResponse({"detail": exc.message}, status_code=status_code)


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


# ── Storage ──────────────────────────────────────────────────────────────────


@app.post("/storage/upload-url", response_model=UploadTargetOut)
async def generate_upload_url(user_id: UserId, factory: SessionFactory, store: BlobStoreDep) -> UploadTargetOut:
    async with factory() as session:
        target = await AttachmentService(session, store).create_upload_target(user_id)
    return UploadTargetOut(upload_url=target.upload_url, token=target.token)


@app.post("/storage/upload/{token}", response_model=UploadOut)
async def upload_blob(token: str, request: Request, store: BlobStoreDep) -> UploadOut:
    """Upload endpoint behind an upload target. The token is the credential."""
    content = await request.body()
    content_type = request.headers.get("content-type", "application/octet-stream")
    blob_id = await store.store_upload(token, content, content_type)
    return UploadOut(storage_id=blob_id)


@app.post("/storage/confirm", status_code=204)
async def confirm_upload(
    body: ConfirmUploadIn, user_id: UserId, factory: SessionFactory, store: BlobStoreDep
) -> None:
    async def op(session: AsyncSession) -> bool:
        return await AttachmentService(session, store).register(body.storage_id, user_id)

    await run_in_transaction(op, session_factory=factory)


@app.get("/storage/{storage_id}/url", response_model=DownloadUrlOut)
async def get_download_url(
    storage_id: UUID, user_id: UserId, factory: SessionFactory, store: BlobStoreDep
) -> DownloadUrlOut:
    async with factory() as session:
        url = await AttachmentService(session, store).resolve_download_url(storage_id, user_id)
    if url is None:
        raise NotFoundOrNotOwned("File not found")
    return DownloadUrlOut(url=url)


@app.delete("/storage/{storage_id}", status_code=204)
async def delete_file(storage_id: UUID, user_id: UserId, factory: SessionFactory, store: BlobStoreDep) -> None:
    async def op(session: AsyncSession) -> None:
        await AttachmentService(session, store).delete_attached_blob(storage_id, user_id)

    await run_in_transaction(op, session_factory=factory)


@app.get("/blobs/{blob_id}")
async def download_blob(
    blob_id: UUID,
    store: BlobStoreDep,
    expires: Annotated[int, Query()],
    signature: Annotated[str, Query()],
) -> FileResponse:
    if not store.verify_signature(blob_id, expires, signature):
        raise HTTPException(status_code=403, detail="Invalid or expired link")
    found = await store.open_blob(blob_id)
    if found is None:
        raise HTTPException(status_code=404, detail="File not found")
    path, content_type = found
    return FileResponse(path, media_type=content_type)


# ── Expenses ─────────────────────────────────────────────────────────────────


def _expenses(session: AsyncSession, store: LocalBlobStore) -> ExpenseService:
    return ExpenseService(session, AttachmentService(session, store))


@app.get("/expenses", response_model=list[ExpenseOut])
async def list_expenses(user_id: UserId, factory: SessionFactory, store: BlobStoreDep) -> list[ExpenseOut]:
    async with factory() as session:
        expenses = await _expenses(session, store).list_expenses(user_id)
    return [ExpenseOut.model_validate(e) for e in expenses]


@app.get("/expenses/merchants", response_model=list[str])
async def list_merchants(user_id: UserId, factory: SessionFactory, store: BlobStoreDep) -> list[str]:
    async with factory() as session:
        return await _expenses(session, store).get_merchants(user_id)


@app.get("/expenses/{expense_id}", response_model=ExpenseOut)
async def get_expense(
    expense_id: UUID, user_id: UserId, factory: SessionFactory, store: BlobStoreDep
) -> ExpenseOut:
    async with factory() as session:
        expense = await _expenses(session, store).get_expense(expense_id, user_id)
    if expense is None:
        raise ExpenseNotFound()
    return ExpenseOut.model_validate(expense)


@app.post("/expenses", response_model=ExpenseOut, status_code=201)
async def create_expense(
    body: ExpenseIn, user_id: UserId, factory: SessionFactory, store: BlobStoreDep
) -> ExpenseOut:
    async def op(session: AsyncSession) -> ExpenseOut:
        expense = await _expenses(session, store).create(user_id, body)
        return ExpenseOut.model_validate(expense)

    return await run_in_transaction(op, session_factory=factory)


@app.put("/expenses/{expense_id}", response_model=ExpenseOut)
async def update_expense(
    expense_id: UUID, body: ExpenseIn, user_id: UserId, factory: SessionFactory, store: BlobStoreDep
) -> ExpenseOut:
    async def op(session: AsyncSession) -> ExpenseChange:
        return await _expenses(session, store).update(expense_id, user_id, body)

    change = await run_in_transaction(op, session_factory=factory)
    await discard_released_blob(store, change.released)
    return ExpenseOut.model_validate(change.expense)


@app.delete("/expenses/{expense_id}", status_code=204)
async def delete_expense(expense_id: UUID, user_id: UserId, factory: SessionFactory, store: BlobStoreDep) -> None:
    async def op(session: AsyncSession) -> ExpenseChange:
        return await _expenses(session, store).remove(expense_id, user_id)

    change = await run_in_transaction(op, session_factory=factory)
    await discard_released_blob(store, change.released)


@app.delete("/expenses/{expense_id}/attachment", response_model=ExpenseOut)
async def remove_expense_attachment(
    expense_id: UUID, user_id: UserId, factory: SessionFactory, store: BlobStoreDep
) -> ExpenseOut:
    async def op(session: AsyncSession) -> ExpenseChange:
        return await _expenses(session, store).remove_attachment(expense_id, user_id)

    change = await run_in_transaction(op, session_factory=factory)
    await discard_released_blob(store, change.released)
    return ExpenseOut.model_validate(change.expense)


# ── Categories ───────────────────────────────────────────────────────────────


@app.get("/categories", response_model=list[CategoryOut])
async def list_categories(user_id: UserId, factory: SessionFactory) -> list[CategoryOut]:
    async with factory() as session:
        categories = await CategoryService(session).list_categories(user_id)
    return [CategoryOut.model_validate(c) for c in categories]


@app.post("/categories", response_model=CategoryOut, status_code=201)
async def create_category(body: CategoryIn, user_id: UserId, factory: SessionFactory) -> CategoryOut:
    async def op(session: AsyncSession) -> CategoryOut:
        category = await CategoryService(session).create_category(user_id, body.name, body.icon)
        return CategoryOut.model_validate(category)

    return await run_in_transaction(op, session_factory=factory)


# ── Reports ──────────────────────────────────────────────────────────────────


@app.get("/reports/monthly", response_model=MonthlyReportOut)
async def monthly_report(
    user_id: UserId,
    factory: SessionFactory,
    year: Annotated[int, Query()],
    month: Annotated[int, Query(ge=1, le=12)],
) -> MonthlyReportOut:
    async with factory() as session:
        report = await ReportService(session).monthly_report(user_id, year, month)
    return MonthlyReportOut.model_validate(report)


@app.get("/reports/monthly/attachments", response_model=list[AttachmentLinkOut])
async def monthly_attachments(
    user_id: UserId,
    factory: SessionFactory,
    store: BlobStoreDep,
    year: Annotated[int, Query()],
    month: Annotated[int, Query(ge=1, le=12)],
) -> list[AttachmentLinkOut]:
    async with factory() as session:
        links = await ReportService(session).monthly_attachments(user_id, year, month, store)
    return [AttachmentLinkOut.model_validate(link) for link in links]
