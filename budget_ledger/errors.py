"""
Error Taxonomy for Budget Ledger

Every ledger operation either fully succeeds or raises one of these.
Nothing is silently degraded - the presentation layer decides how to
show the failure, the core only reports it.

    LedgerError
    ├── ValidationError          bad input shape or values
    │   └── AccountInUseError    account still referenced by transactions
    ├── NotFoundError            identifier does not resolve
    │   ├── AccountNotFoundError
    │   ├── TransactionNotFoundError
    │   └── BudgetNotFoundError
    ├── UnauthorizedError        record belongs to another owner scope
    └── StorageError             backend call failed
        ├── ConnectionError      backend unreachable / misconfigured
        └── ConflictError        optimistic-concurrency conflict (retryable)
"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for all ledger failures."""

    #: Short machine-friendly label, used for notifications and audit events
    kind = "ledger_error"


class ValidationError(LedgerError):
    """Input failed validation (missing field, non-positive amount, ...)."""

    kind = "validation_error"


class AccountInUseError(ValidationError):
    """Account cannot be deleted while transactions still reference it."""

    kind = "account_in_use"

    def __init__(self, account_id: str, transaction_count: int):
        self.account_id = account_id
        self.transaction_count = transaction_count
        super().__init__(
            f"Account {account_id} is referenced by {transaction_count} "
            "transaction(s); delete them first"
        )


class NotFoundError(LedgerError):
    """Referenced identifier does not resolve."""

    kind = "not_found"
    entity = "record"

    def __init__(self, entity_id: str, message: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message or f"{self.entity.capitalize()} not found: {entity_id}")


class AccountNotFoundError(NotFoundError):
    kind = "account_not_found"
    entity = "account"


class TransactionNotFoundError(NotFoundError):
    kind = "transaction_not_found"
    entity = "transaction"


class BudgetNotFoundError(NotFoundError):
    kind = "budget_not_found"
    entity = "budget"


class UnauthorizedError(LedgerError):
    """Record exists but belongs to a different owner scope."""

    kind = "unauthorized"


class StorageError(LedgerError):
    """Base exception for storage backend failures."""

    kind = "storage_error"


class ConnectionError(StorageError):
    """Could not connect to storage backend."""

    kind = "connection_error"


class ConflictError(StorageError):
    """
    Concurrent writer changed a document read inside a unit of change.

    The unit was not applied and can be retried as a whole.
    """

    kind = "conflict"
