"""Expense Tracker: work expenses with owned receipt attachments."""

__version__ = "0.1.0"
