"""Ledger consistency engine."""

from budget_ledger.ledger.periods import current_month, month_bounds, month_label, validate_month
from budget_ledger.ledger.store import LedgerStore

__all__ = [
    "LedgerStore",
    "current_month",
    "month_bounds",
    "month_label",
    "validate_month",
]
