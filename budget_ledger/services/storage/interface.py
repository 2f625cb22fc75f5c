"""
Abstract Storage Interface

DESIGN DECISION: The ledger store never branches on "which backend am I
using". It talks to one polymorphic storage capability:

1. Plain collection reads and writes (get-all with filters, insert,
   update by id, delete by id)
2. ``run_unit``: a multi-document read-modify-write primitive. The
   callback receives a ``UnitOfChange`` and does all of its reads first,
   then all of its writes.

How ``run_unit`` behaves is the backend's business:
- Firestore and the in-memory store apply the unit atomically and raise
  ConflictError if a document read inside the unit changed underneath it
- The local key-value store performs each write as its own
  load/mutate/save step. A failure midway leaves earlier steps applied.
  This is an accepted limitation of that backend.

The interface is intentionally small - we're not building an ORM.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, TypeVar

from budget_ledger.errors import (
    ConflictError,
    ConnectionError,
    StorageError,
    UnauthorizedError,
)
from budget_ledger.models.ledger import (
    Account,
    Budget,
    LedgerExport,
    Transaction,
    TransactionFilter,
)


T = TypeVar("T")


class UnitOfChange(ABC):
    """
    Reads and writes scoped to one unit of change.

    Reads always hit the backend (never a cached copy), so balances are
    current as of the unit. Writes may be buffered until the unit ends.
    """

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[Account]:
        """Re-read an account inside the unit."""
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def count_transactions_for(self, account_id: str) -> int:
        """Number of transactions referencing the account as source or destination."""
        pass

    @abstractmethod
    async def find_budget(self, category: str, month: str) -> Optional[Budget]:
        pass

    @abstractmethod
    async def put_account(self, account: Account) -> None:
        """Insert or overwrite an account."""
        pass

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> None:
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> None:
        pass

    @abstractmethod
    async def delete_account(self, account_id: str) -> None:
        pass

    @abstractmethod
    async def put_budget(self, budget: Budget) -> None:
        """Insert or overwrite a budget."""
        pass


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage.

    Any storage implementation (Firestore, local JSON, memory...)
    must implement these methods.
    """

    #: True when run_unit commits all-or-nothing
    supports_atomic_units: bool = False

    #: Human readable backend name, shown in the UI
    name: str = "storage"

    @property
    def owner_id(self) -> Optional[str]:
        """Owner scope new records are stamped with (None = unscoped)."""
        return None

    # -- Accounts --------------------------------------------------------

    @abstractmethod
    async def list_accounts(self) -> list[Account]:
        """All accounts in the owner scope, oldest first."""
        pass

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[Account]:
        """
        Retrieve an account by id.

        Returns:
            The account if found, None otherwise

        Raises:
            UnauthorizedError: If the account belongs to another owner
        """
        pass

    # -- Transactions ----------------------------------------------------

    @abstractmethod
    async def list_transactions(
        self,
        filters: Optional[TransactionFilter] = None,
    ) -> list[Transaction]:
        """
        List transactions, in insertion order.

        Backends may apply any subset of ``filters``; the ledger store
        re-applies the full filter and sorts the result.
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        pass

    # -- Budgets ---------------------------------------------------------

    @abstractmethod
    async def list_budgets(self, month: Optional[str] = None) -> list[Budget]:
        pass

    @abstractmethod
    async def find_budget(self, category: str, month: str) -> Optional[Budget]:
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: str) -> bool:
        """
        Delete a budget by id.

        Returns:
            True if deleted, False if it did not exist
        """
        pass

    # -- Units of change -------------------------------------------------

    @abstractmethod
    async def run_unit(self, fn: Callable[[UnitOfChange], Awaitable[T]]) -> T:
        """
        Run ``fn`` as one unit of change and return its result.

        Raises:
            ConflictError: A document read by the unit changed before commit
                (atomic backends only; the unit was not applied)
            StorageError: The backend failed
        """
        pass

    # -- Bulk ------------------------------------------------------------

    @abstractmethod
    async def replace_all(self, data: LedgerExport) -> None:
        """Replace all three collections of the owner scope wholesale."""
        pass


__all__ = [
    "ConflictError",
    "ConnectionError",
    "LedgerStorageInterface",
    "StorageError",
    "UnauthorizedError",
    "UnitOfChange",
]
