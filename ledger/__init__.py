"""
Double-Entry Ledger

This module provides:
- Accounts, currencies and two-leg ledger entries
- An in-memory store with all-or-nothing transactions
- Filtered queries over deposits, withdrawals and transfers
- JSON snapshots for loading and saving a ledger
"""

from .models import (
    AccountType,
    EntryKind,
    Account,
    Currency,
    Leg,
    LedgerEntry,
    EntryView,
    MergeRecord,
)
from .service import (
    LedgerService,
    LedgerServiceError,
    NotFoundError,
    AccountNotFoundError,
    EntryNotFoundError,
    StructuralViolationError,
)

__all__ = [
    "AccountType",
    "EntryKind",
    "Account",
    "Currency",
    "Leg",
    "LedgerEntry",
    "EntryView",
    "MergeRecord",
    "LedgerService",
    "LedgerServiceError",
    "NotFoundError",
    "AccountNotFoundError",
    "EntryNotFoundError",
    "StructuralViolationError",
]
