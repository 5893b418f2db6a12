"""Business logic services for Expense Tracker."""

from expense_tracker.services.categories import PREDEFINED_CATEGORIES, CategoryService
from expense_tracker.services.expenses import ExpenseChange, ExpenseService
from expense_tracker.services.orphan_sweep import OrphanSweeper, SweepResult
from expense_tracker.services.reports import MonthlyReport, ReportService

__all__ = [
    "PREDEFINED_CATEGORIES",
    "CategoryService",
    "ExpenseChange",
    "ExpenseService",
    "MonthlyReport",
    "OrphanSweeper",
    "ReportService",
    "SweepResult",
]
