"""Enumerations for the Expense Tracker data model."""

from enum import Enum


class OwnershipState(str, Enum):
    """Where a blob's effective owner comes from.

    Precedence is ATTACHED > PENDING > UNTRACKED: an expense reference always
    wins over an upload record.
    """

    ATTACHED = "attached"  # Referenced by an expense
    PENDING = "pending"  # Upload record exists, no expense yet
    UNTRACKED = "untracked"  # Neither; reclaimable once old enough
