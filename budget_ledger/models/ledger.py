"""
Core Data Models for Budget Ledger

These models define the records owned by the ledger store:
accounts, transactions and monthly budgets, plus the read models
returned by queries.

DESIGN DECISION: Amounts are Decimal everywhere. Balances are the
result of many additions and subtractions; binary floats drift.
Serialized JSON carries amounts as strings.

Field aliases accept the camelCase keys of the legacy
export format (``_id``, ``accountId``, ``userId`` ...), so older
backups import cleanly. Dumps always use the snake_case names.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


def generate_id() -> str:
    """Generate an opaque record identifier."""
    return uuid4().hex


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class AccountType(str, Enum):
    """Account type tag. Unknown tags fall back to OTHER."""
    BANK = "bank"
    CASH = "cash"
    CREDIT = "credit"
    SAVINGS = "savings"
    OTHER = "other"


class TransactionType(str, Enum):
    """
    Transaction type.

    Determines the balance effect:
    - INCOME adds to the source account
    - EXPENSE subtracts from the source account
    - TRANSFER moves the amount from source to destination
    """
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


# =============================================================================
# LEDGER RECORDS
# =============================================================================

class Account(BaseModel):
    """
    A money container (bank account, wallet, credit card...).

    ``balance`` is maintained by the ledger store only. It always equals
    ``initial_balance`` plus the signed effects of every transaction that
    references this account.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=generate_id,
        validation_alias=AliasChoices("id", "_id"),
        description="Opaque account identifier",
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name",
    )
    type: AccountType = Field(
        default=AccountType.BANK,
        description="Account type tag",
    )
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Running balance (signed)",
    )
    initial_balance: Optional[Decimal] = Field(
        default=None,
        validation_alias=AliasChoices("initial_balance", "initialBalance"),
        description="Balance at creation, before any transaction",
    )
    created_at: dt.datetime = Field(
        default_factory=utcnow,
        validation_alias=AliasChoices("created_at", "createdAt"),
    )
    owner_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("owner_id", "userId"),
        description="Owner scope (multi-tenant backends only)",
    )

    @field_validator("type", mode="before")
    @classmethod
    def coerce_unknown_type(cls, v: Any) -> Any:
        """Free-form type tags from older data map to OTHER."""
        if isinstance(v, str) and v.lower() not in {t.value for t in AccountType}:
            return AccountType.OTHER
        if isinstance(v, str):
            return v.lower()
        return v

    @model_validator(mode="after")
    def default_initial_balance(self) -> "Account":
        if self.initial_balance is None:
            self.initial_balance = self.balance
        return self


class Transaction(BaseModel):
    """
    A single ledger entry.

    Shape rules:
    - amount is strictly positive
    - transfers need a destination account different from the source
      and carry no category
    - income and expenses need a category and have no destination
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=generate_id,
        validation_alias=AliasChoices("id", "_id"),
    )
    type: TransactionType
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Positive amount, currency agnostic",
    )
    account_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("account_id", "accountId"),
        description="Source account",
    )
    to_account_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("to_account_id", "toAccountId"),
        description="Destination account (transfers only)",
    )
    category: Optional[str] = Field(
        default=None,
        description="Category catalog id (income/expense only)",
    )
    date: dt.date = Field(
        ...,
        description="Calendar date of the transaction",
    )
    note: Optional[str] = Field(
        default=None,
        max_length=500,
    )
    created_at: dt.datetime = Field(
        default_factory=utcnow,
        validation_alias=AliasChoices("created_at", "createdAt"),
    )
    owner_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("owner_id", "userId"),
    )

    @field_validator("to_account_id", "category", "note", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def validate_shape(self) -> "Transaction":
        if self.type == TransactionType.TRANSFER:
            if not self.to_account_id:
                raise ValueError("Transfer requires a destination account")
            if self.to_account_id == self.account_id:
                raise ValueError("Transfer source and destination must differ")
            self.category = None
        else:
            if not self.category:
                raise ValueError(f"Category is required for {self.type.value}")
            self.to_account_id = None
        return self

    @property
    def account_ids(self) -> tuple[str, ...]:
        """Accounts touched by this transaction."""
        if self.to_account_id:
            return (self.account_id, self.to_account_id)
        return (self.account_id,)

    def references(self, account_id: str) -> bool:
        return account_id in self.account_ids

    @property
    def month(self) -> str:
        return self.date.strftime("%Y-%m")


class Budget(BaseModel):
    """
    Monthly spending target for one category.

    At most one budget exists per (category, month).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=generate_id,
        validation_alias=AliasChoices("id", "_id"),
    )
    category: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, description="Target amount")
    month: str = Field(..., pattern=MONTH_PATTERN, description="YYYY-MM")
    created_at: dt.datetime = Field(
        default_factory=utcnow,
        validation_alias=AliasChoices("created_at", "createdAt"),
    )
    owner_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("owner_id", "userId"),
    )

    @property
    def key(self) -> tuple[str, str]:
        return (self.category, self.month)


# =============================================================================
# QUERY / READ MODELS
# =============================================================================

class TransactionFilter(BaseModel):
    """
    Filters for transaction queries. All supplied filters are ANDed.

    - account_id matches source OR destination
    - date_from / date_to are inclusive
    - month matches the calendar month of the transaction date
    """

    account_id: Optional[str] = None
    type: Optional[TransactionType] = None
    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None
    month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)
    category: Optional[str] = None

    def matches(self, tx: Transaction) -> bool:
        if self.account_id and not tx.references(self.account_id):
            return False
        if self.type and tx.type != self.type:
            return False
        if self.date_from and tx.date < self.date_from:
            return False
        if self.date_to and tx.date > self.date_to:
            return False
        if self.month and tx.month != self.month:
            return False
        if self.category and tx.category != self.category:
            return False
        return True

    @property
    def is_empty(self) -> bool:
        return not any(
            value is not None for value in self.model_dump().values()
        )


class TransactionResult(BaseModel):
    """Outcome of a mutating transaction operation."""

    transaction: Transaction
    accounts: list[Account] = Field(
        default_factory=list,
        description="Accounts after the balance effect was applied",
    )

    def account(self, account_id: str) -> Optional[Account]:
        for account in self.accounts:
            if account.id == account_id:
                return account
        return None


class PeriodSummary(BaseModel):
    """Income and expense totals for one month. Transfers excluded."""

    month: str
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


class BudgetUtilization(BaseModel):
    """
    Spent amount for a category/month next to its target.

    Percentages are NOT capped here; capping for display is up to the
    presentation layer.
    """

    category: str
    month: str
    spent: Decimal = Decimal("0")
    target: Optional[Decimal] = None

    @property
    def remaining(self) -> Optional[Decimal]:
        if self.target is None:
            return None
        return self.target - self.spent

    @property
    def percent_used(self) -> Optional[float]:
        if not self.target:
            return None
        return float(self.spent / self.target * 100)

    @property
    def is_over_budget(self) -> bool:
        return self.target is not None and self.spent > self.target


class CategoryTotal(BaseModel):
    category: str
    total: Decimal


class BalanceDiscrepancy(BaseModel):
    """An account whose stored balance disagrees with its history."""

    account_id: str
    recorded_balance: Decimal
    expected_balance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.recorded_balance - self.expected_balance


class LedgerExport(BaseModel):
    """The whole ledger as one JSON document."""

    accounts: list[Account] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    budgets: list[Budget] = Field(default_factory=list)
    exported_at: dt.datetime = Field(
        default_factory=utcnow,
        validation_alias=AliasChoices("exported_at", "exportedAt"),
    )
