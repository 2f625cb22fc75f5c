"""
In-Memory Storage Implementation

In-process ledger storage with optimistic concurrency control.
Suitable for tests and throw-away sessions; all state is lost when
the process exits.

Units of change are atomic:
- Reads inside a unit record the version of every document (and of
  every collection that was queried)
- Writes are staged and applied in one step at the end of the unit
- If anything read by the unit changed in the meantime, the unit is
  discarded and ConflictError is raised

Several storages can share one state with different owner scopes
(``for_owner``), which is how multi-tenant isolation is exercised
without a remote backend.
"""

import asyncio
import threading
from typing import Awaitable, Callable, Optional, TypeVar, Union

import structlog

from budget_ledger.errors import ConflictError, UnauthorizedError
from budget_ledger.models.ledger import (
    Account,
    Budget,
    LedgerExport,
    Transaction,
    TransactionFilter,
)
from budget_ledger.services.storage.interface import (
    LedgerStorageInterface,
    UnitOfChange,
)


T = TypeVar("T")
Record = Union[Account, Transaction, Budget]

ACCOUNTS = "accounts"
TRANSACTIONS = "transactions"
BUDGETS = "budgets"

logger = structlog.get_logger(__name__)


class _MemoryState:
    """Shared, versioned collections."""

    def __init__(self):
        self.collections: dict[str, dict[str, Record]] = {
            ACCOUNTS: {},
            TRANSACTIONS: {},
            BUDGETS: {},
        }
        self.versions: dict[tuple[str, str], int] = {}
        self.collection_versions: dict[str, int] = {
            ACCOUNTS: 0,
            TRANSACTIONS: 0,
            BUDGETS: 0,
        }
        self.lock = threading.Lock()

    def version(self, collection: str, record_id: str) -> int:
        return self.versions.get((collection, record_id), 0)

    def write(self, collection: str, record_id: str, record: Optional[Record]) -> None:
        """Apply one write and bump versions. Caller holds the lock."""
        if record is None:
            self.collections[collection].pop(record_id, None)
        else:
            self.collections[collection][record_id] = record.model_copy(deep=True)
        self.versions[(collection, record_id)] = self.version(collection, record_id) + 1
        self.collection_versions[collection] += 1


class _MemoryUnit(UnitOfChange):
    """Unit of change with version tracking and staged writes."""

    def __init__(self, storage: "InMemoryLedgerStorage"):
        self._storage = storage
        self._state = storage._state
        self._read_versions: dict[tuple[str, str], int] = {}
        self._collection_reads: dict[str, int] = {}
        self._writes: list[tuple[str, str, Optional[Record]]] = []

    async def _read(self, collection: str, record_id: str) -> Optional[Record]:
        await self._storage._pause()
        for coll, rid, staged in reversed(self._writes):
            if coll == collection and rid == record_id:
                return staged.model_copy(deep=True) if staged else None

        self._read_versions.setdefault(
            (collection, record_id), self._state.version(collection, record_id)
        )
        record = self._state.collections[collection].get(record_id)
        if record is None:
            return None
        self._storage._check_owner(record)
        return record.model_copy(deep=True)

    async def _scan(self, collection: str) -> list[Record]:
        await self._storage._pause()
        self._collection_reads.setdefault(
            collection, self._state.collection_versions[collection]
        )
        return [
            record for record in self._state.collections[collection].values()
            if self._storage._visible(record)
        ]

    async def get_account(self, account_id: str) -> Optional[Account]:
        return await self._read(ACCOUNTS, account_id)

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return await self._read(TRANSACTIONS, transaction_id)

    async def count_transactions_for(self, account_id: str) -> int:
        return sum(1 for tx in await self._scan(TRANSACTIONS) if tx.references(account_id))

    async def find_budget(self, category: str, month: str) -> Optional[Budget]:
        for budget in await self._scan(BUDGETS):
            if budget.category == category and budget.month == month:
                return budget.model_copy(deep=True)
        return None

    async def put_account(self, account: Account) -> None:
        self._writes.append((ACCOUNTS, account.id, account.model_copy(deep=True)))

    async def insert_transaction(self, transaction: Transaction) -> None:
        self._writes.append((TRANSACTIONS, transaction.id, transaction.model_copy(deep=True)))

    async def delete_transaction(self, transaction_id: str) -> None:
        self._writes.append((TRANSACTIONS, transaction_id, None))

    async def delete_account(self, account_id: str) -> None:
        self._writes.append((ACCOUNTS, account_id, None))

    async def put_budget(self, budget: Budget) -> None:
        self._writes.append((BUDGETS, budget.id, budget.model_copy(deep=True)))

    def commit(self) -> None:
        """Validate read versions and apply all staged writes at once."""
        with self._state.lock:
            for (collection, record_id), seen in self._read_versions.items():
                if self._state.version(collection, record_id) != seen:
                    raise ConflictError(
                        f"{collection}/{record_id} changed during the unit of change"
                    )
            for collection, seen in self._collection_reads.items():
                if self._state.collection_versions[collection] != seen:
                    raise ConflictError(
                        f"{collection} changed during the unit of change"
                    )
            for collection, record_id, record in self._writes:
                self._state.write(collection, record_id, record)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """
    In-memory implementation of ledger storage.

    Args:
        owner_id: Owner scope. None means unscoped (sees everything).
        latency: Artificial delay (seconds) before every read inside a
            unit and before its commit. Lets concurrent units interleave
            in tests.
    """

    supports_atomic_units = True
    name = "memory"

    def __init__(
        self,
        owner_id: Optional[str] = None,
        latency: float = 0.0,
        state: Optional[_MemoryState] = None,
    ):
        self._owner_id = owner_id
        self._latency = latency
        self._state = state or _MemoryState()

    @property
    def owner_id(self) -> Optional[str]:
        return self._owner_id

    def for_owner(self, owner_id: str) -> "InMemoryLedgerStorage":
        """Another view over the same state, scoped to ``owner_id``."""
        return InMemoryLedgerStorage(owner_id=owner_id, latency=self._latency, state=self._state)

    async def _pause(self) -> None:
        if self._latency:
            await asyncio.sleep(self._latency)

    def _visible(self, record: Record) -> bool:
        return self._owner_id is None or record.owner_id == self._owner_id

    def _check_owner(self, record: Record) -> None:
        if not self._visible(record):
            raise UnauthorizedError(
                f"{type(record).__name__} {record.id} belongs to another owner"
            )

    def _get(self, collection: str, record_id: str) -> Optional[Record]:
        record = self._state.collections[collection].get(record_id)
        if record is None:
            return None
        self._check_owner(record)
        return record.model_copy(deep=True)

    def _all(self, collection: str) -> list[Record]:
        return [
            record.model_copy(deep=True)
            for record in self._state.collections[collection].values()
            if self._visible(record)
        ]

    async def list_accounts(self) -> list[Account]:
        return self._all(ACCOUNTS)

    async def get_account(self, account_id: str) -> Optional[Account]:
        return self._get(ACCOUNTS, account_id)

    async def list_transactions(
        self,
        filters: Optional[TransactionFilter] = None,
    ) -> list[Transaction]:
        transactions = self._all(TRANSACTIONS)
        if filters:
            transactions = [tx for tx in transactions if filters.matches(tx)]
        return transactions

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return self._get(TRANSACTIONS, transaction_id)

    async def list_budgets(self, month: Optional[str] = None) -> list[Budget]:
        budgets = self._all(BUDGETS)
        if month:
            budgets = [b for b in budgets if b.month == month]
        return budgets

    async def find_budget(self, category: str, month: str) -> Optional[Budget]:
        for budget in await self.list_budgets(month):
            if budget.category == category:
                return budget
        return None

    async def delete_budget(self, budget_id: str) -> bool:
        with self._state.lock:
            record = self._state.collections[BUDGETS].get(budget_id)
            if record is None:
                return False
            self._check_owner(record)
            self._state.write(BUDGETS, budget_id, None)
        return True

    async def run_unit(self, fn: Callable[[UnitOfChange], Awaitable[T]]) -> T:
        unit = _MemoryUnit(self)
        result = await fn(unit)
        await self._pause()
        unit.commit()
        return result

    async def replace_all(self, data: LedgerExport) -> None:
        incoming = (
            (ACCOUNTS, data.accounts),
            (TRANSACTIONS, data.transactions),
            (BUDGETS, data.budgets),
        )
        with self._state.lock:
            # Never overwrite another owner's record with the same id
            for collection, records in incoming:
                for record in records:
                    existing = self._state.collections[collection].get(record.id)
                    if existing is not None:
                        self._check_owner(existing)

            for collection, records in incoming:
                stale = [
                    record_id
                    for record_id, record in self._state.collections[collection].items()
                    if self._visible(record)
                ]
                for record_id in stale:
                    self._state.write(collection, record_id, None)
                for record in records:
                    self._state.write(collection, record.id, record)

        logger.info(
            "memory_storage_replaced",
            accounts=len(data.accounts),
            transactions=len(data.transactions),
            budgets=len(data.budgets),
        )
