"""
Data Models Package

This package contains all Pydantic models used by Budget Ledger.
All data flowing between the store, its backends and the UI
conforms to these schemas.
"""

from budget_ledger.models.ledger import (
    Account,
    AccountType,
    BalanceDiscrepancy,
    Budget,
    BudgetUtilization,
    CategoryTotal,
    LedgerExport,
    PeriodSummary,
    Transaction,
    TransactionFilter,
    TransactionResult,
    TransactionType,
    generate_id,
)
from budget_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from budget_ledger.models.categories import (
    EXPENSE_CATEGORIES,
    INCOME_CATEGORIES,
    CategoryInfo,
    categories_for,
    category_label,
    get_category,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountType",
    "BalanceDiscrepancy",
    "Budget",
    "BudgetUtilization",
    "CategoryTotal",
    "LedgerExport",
    "PeriodSummary",
    "Transaction",
    "TransactionFilter",
    "TransactionResult",
    "TransactionType",
    "generate_id",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Category catalog
    "EXPENSE_CATEGORIES",
    "INCOME_CATEGORIES",
    "CategoryInfo",
    "categories_for",
    "category_label",
    "get_category",
]
