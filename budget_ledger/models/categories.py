"""
Category Catalog

Transactions and budgets reference categories by opaque id only.
Display metadata (name, icon, colour) lives here, outside the ledger
core, and is used purely for presentation.
"""

from typing import Optional

from pydantic import BaseModel, Field

from budget_ledger.models.ledger import TransactionType


class CategoryInfo(BaseModel):
    """Presentation metadata for one category id."""

    id: str
    name: str
    icon: str = Field(default="bi-three-dots", description="Bootstrap icon name")
    color: str = Field(default="#8395a7", pattern=r"^#[0-9a-fA-F]{6}$")
    kind: TransactionType


def _expense(id: str, name: str, icon: str, color: str) -> CategoryInfo:
    return CategoryInfo(id=id, name=name, icon=icon, color=color, kind=TransactionType.EXPENSE)


def _income(id: str, name: str, icon: str, color: str) -> CategoryInfo:
    return CategoryInfo(id=id, name=name, icon=icon, color=color, kind=TransactionType.INCOME)


EXPENSE_CATEGORIES: list[CategoryInfo] = [
    _expense("food", "Food & Dining", "bi-basket", "#ff6b6b"),
    _expense("transport", "Transportation", "bi-car-front", "#4ecdc4"),
    _expense("utilities", "Utilities", "bi-lightning", "#45b7d1"),
    _expense("shopping", "Shopping", "bi-bag", "#96ceb4"),
    _expense("entertainment", "Entertainment", "bi-film", "#dda0dd"),
    _expense("health", "Health & Medical", "bi-heart-pulse", "#ff9ff3"),
    _expense("education", "Education", "bi-book", "#54a0ff"),
    _expense("bills", "Bills & Fees", "bi-receipt", "#5f27cd"),
    _expense("groceries", "Groceries", "bi-cart", "#00d2d3"),
    _expense("rent", "Rent & Housing", "bi-house", "#ff9f43"),
    _expense("insurance", "Insurance", "bi-shield-check", "#1dd1a1"),
    _expense("personal", "Personal Care", "bi-person", "#f368e0"),
    _expense("gifts", "Gifts & Donations", "bi-gift", "#ee5a24"),
    _expense("travel", "Travel", "bi-airplane", "#0abde3"),
    _expense("lost_money", "Lost Money", "bi-question-circle", "#576574"),
    _expense("other_expense", "Other Expense", "bi-three-dots", "#8395a7"),
]

INCOME_CATEGORIES: list[CategoryInfo] = [
    _income("salary", "Salary", "bi-briefcase", "#2ecc71"),
    _income("freelance", "Freelance", "bi-laptop", "#3498db"),
    _income("business", "Business", "bi-building", "#9b59b6"),
    _income("investment", "Investment", "bi-graph-up", "#1abc9c"),
    _income("interest", "Interest", "bi-percent", "#e74c3c"),
    _income("rental", "Rental Income", "bi-house-door", "#f39c12"),
    _income("bonus", "Bonus", "bi-star", "#e67e22"),
    _income("refund", "Refund", "bi-arrow-return-left", "#16a085"),
    _income("other_income", "Other Income", "bi-three-dots", "#7f8c8d"),
]


def categories_for(kind: TransactionType) -> list[CategoryInfo]:
    """Catalog for a transaction type. Transfers have no categories."""
    if kind == TransactionType.INCOME:
        return INCOME_CATEGORIES
    if kind == TransactionType.EXPENSE:
        return EXPENSE_CATEGORIES
    return []


def get_category(
    category_id: Optional[str],
    kind: TransactionType = TransactionType.EXPENSE,
) -> CategoryInfo:
    """
    Look up display metadata for a category id.

    Unknown ids resolve to the catalog's catch-all entry (the last one),
    so the UI can always render something.
    """
    catalog = categories_for(kind) or EXPENSE_CATEGORIES
    for category in catalog:
        if category.id == category_id:
            return category
    return catalog[-1]


def category_label(category_id: Optional[str]) -> str:
    """Display name for an id from either catalog, else the raw id."""
    for category in EXPENSE_CATEGORIES + INCOME_CATEGORIES:
        if category.id == category_id:
            return category.name
    return category_id or "-"
