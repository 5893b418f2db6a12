"""Error types raised by Expense Tracker services.

Messages are safe to show to end users. Ownership failures never reveal
whether the underlying blob exists.
"""

from __future__ import annotations


class ExpenseTrackerError(Exception):
    """Base class for all application errors."""

    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class Unauthenticated(ExpenseTrackerError):
    default_message = "Not authenticated"


class OwnershipConflict(ExpenseTrackerError):
    default_message = "File already claimed by another user"


class NotFoundOrNotOwned(ExpenseTrackerError):
    default_message = "Attachment not found or not owned by current user"


class BlobStoreUnavailable(ExpenseTrackerError):
    """Transient blob store failure. Safe to retry."""

    default_message = "File storage is temporarily unavailable"


class UploadTargetInvalid(ExpenseTrackerError):
    default_message = "Upload target is invalid, expired or already used"


class ExpenseNotFound(ExpenseTrackerError):
    default_message = "Expense not found"


class ExpenseValidationError(ExpenseTrackerError):
    default_message = "Invalid expense"


class CategoryExists(ExpenseTrackerError):
    default_message = "Category already exists"
