"""Pure validation for expense fields."""

from __future__ import annotations

import re
from datetime import date

from expense_tracker.errors import ExpenseValidationError

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MAX_MERCHANT_LENGTH = 200
MAX_COMMENT_LENGTH = 1000


def is_valid_date(value: str) -> bool:
    """Whether value is a real calendar date in YYYY-MM-DD form.

    Rejects well-formed but impossible dates such as 2026-02-30.
    """
    if not DATE_PATTERN.match(value):
        return False
    year, month, day = (int(part) for part in value.split("-"))
    try:
        date(year, month, day)
    except ValueError:
        return False
    return True


def validate_expense_fields(
    *,
    date: str,
    merchant: str,
    amount: int,
    comment: str | None = None,
) -> None:
    """Validate expense fields, raising ExpenseValidationError on the first problem.

    Rules:
    - date must be a valid YYYY-MM-DD calendar date
    - amount must be a positive integer (EUR cents)
    - merchant must be non-empty after trimming, at most 200 characters
    - comment (optional) at most 1000 characters after trimming
    """
    if not is_valid_date(date):
        raise ExpenseValidationError("Invalid date. Expected a valid YYYY-MM-DD date.")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ExpenseValidationError("Amount must be a positive integer (cents).")
    trimmed = merchant.strip()
    if not trimmed:
        raise ExpenseValidationError("Merchant name is required.")
    if len(trimmed) > MAX_MERCHANT_LENGTH:
        raise ExpenseValidationError(f"Merchant name must be {MAX_MERCHANT_LENGTH} characters or less.")
    if comment is not None and len(comment.strip()) > MAX_COMMENT_LENGTH:
        raise ExpenseValidationError(f"Comment must be {MAX_COMMENT_LENGTH} characters or less.")


def normalize_comment(comment: str | None) -> str | None:
    """Trim a comment; empty or whitespace-only comments become None."""
    if comment is None:
        return None
    return comment.strip() or None
