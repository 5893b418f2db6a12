"""Pydantic request and response schemas."""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ExpenseIn(BaseModel):
    """Fields supplied when creating or updating an expense."""

    date: str = Field(..., description="ISO date (YYYY-MM-DD)")
    merchant: str
    amount: int = Field(..., description="EUR cents")
    category_id: UUID
    attachment_id: UUID | None = None
    comment: str | None = None


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    expense_id: UUID
    date: str
    merchant: str
    amount: int
    category_id: UUID
    attachment_id: UUID | None = None
    comment: str | None = None


class CategoryIn(BaseModel):
    name: str
    icon: str | None = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category_id: UUID
    name: str
    icon: str | None = None
    is_predefined: bool


class ConfirmUploadIn(BaseModel):
    storage_id: UUID


class UploadTargetOut(BaseModel):
    upload_url: str
    token: str


class UploadOut(BaseModel):
    storage_id: UUID


class DownloadUrlOut(BaseModel):
    url: str


class CategoryTotalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    total: int
    count: int


class ReportLineOut(ExpenseOut):
    category_name: str


class MonthlyReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    expenses: list[ReportLineOut]
    categories: dict[str, CategoryTotalOut]
    total: int


class AttachmentLinkOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    expense_id: UUID
    date: str
    merchant: str
    url: str
    storage_id: UUID
