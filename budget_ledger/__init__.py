"""
Budget Ledger - Source Package

A personal budget ledger: accounts, income/expense/transfer
transactions and monthly budgets, persisted to Firestore or to a
local key-value store.

DESIGN PRINCIPLES:
1. Balances always equal initial balance plus transaction history
2. Fail early, fail visibly
3. Storage layer is swappable
4. Every mutation is auditable
"""

__version__ = "1.0.0"
__author__ = "Budget Ledger Team"
