"""Database models for Expense Tracker."""

from expense_tracker.models.base import Base, utcnow
from expense_tracker.models.blob import StoredBlob
from expense_tracker.models.category import Category
from expense_tracker.models.enums import OwnershipState
from expense_tracker.models.expense import Expense
from expense_tracker.models.sweep_checkpoint import SweepCheckpoint
from expense_tracker.models.upload import Upload

__all__ = [
    "Base",
    "Category",
    "Expense",
    "OwnershipState",
    "StoredBlob",
    "SweepCheckpoint",
    "Upload",
    "utcnow",
]
