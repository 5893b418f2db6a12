"""Attachment ownership: upload ledger, access control and release."""

from expense_tracker.attachments.ledger import (
    Ownership,
    delete_upload_records,
    find_expense_reference,
    find_upload_records,
    resolve_ownership,
    verify_attachment_ownership,
)
from expense_tracker.attachments.service import AttachmentService, discard_released_blob, require_user

__all__ = [
    "AttachmentService",
    "Ownership",
    "delete_upload_records",
    "discard_released_blob",
    "find_expense_reference",
    "find_upload_records",
    "require_user",
    "resolve_ownership",
    "verify_attachment_ownership",
]
