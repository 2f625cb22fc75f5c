"""
Local Key-Value Storage Implementation

DESIGN DECISION: The local backend follows the ``localStorage``
contract: each collection is one JSON document under one key,
and every write loads the whole collection, mutates it and saves it
back.

TRADEOFFS:
- No transactions. A unit of change is executed as sequential
  load/mutate/save steps. If a later step fails, earlier steps stay
  applied and the ledger is inconsistent until reconciled.
- Concurrent writers can lose updates. Accepted for a single-user,
  single-process backend.
- Fine for personal data volumes; every read parses the collection.

Two key-value stores are provided: an in-process dict (tests) and a
directory of JSON files (persistent, one file per key).
"""

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Awaitable, Callable, Optional, Type, TypeVar, Union

import structlog
from pydantic import BaseModel, ValidationError as PydanticValidationError

from budget_ledger.errors import StorageError
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
M = TypeVar("M", bound=BaseModel)

logger = structlog.get_logger(__name__)


# =============================================================================
# KEY-VALUE STORES
# =============================================================================

class KeyValueStore(ABC):
    """Minimal string key-value store (the ``localStorage`` contract)."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store. Optionally fails on a given key, for failure tests."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})
        self.fail_on_set: set[str] = set()

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if key in self.fail_on_set:
            raise OSError(f"Simulated write failure for {key}")
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class JsonFileKeyValueStore(KeyValueStore):
    """
    One JSON file per key inside ``directory``.

    Writes go to a temporary file first and are moved into place, so a
    crash never leaves a half-written collection.
    """

    def __init__(self, directory: Union[str, Path]):
        self._directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in key)
        return self._directory / f"{safe}.json"

    async def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    async def set(self, key: str, value: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(value)
            os.replace(tmp_path, self._path(key))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()


# =============================================================================
# LEDGER STORAGE
# =============================================================================

class _LocalUnit(UnitOfChange):
    """
    Sequential, non-atomic unit of change.

    Every write is its own load/mutate/save step and takes effect
    immediately.
    """

    def __init__(self, storage: "LocalLedgerStorage"):
        self._storage = storage

    async def get_account(self, account_id: str) -> Optional[Account]:
        return await self._storage.get_account(account_id)

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return await self._storage.get_transaction(transaction_id)

    async def count_transactions_for(self, account_id: str) -> int:
        transactions = await self._storage.list_transactions()
        return sum(1 for tx in transactions if tx.references(account_id))

    async def find_budget(self, category: str, month: str) -> Optional[Budget]:
        return await self._storage.find_budget(category, month)

    async def put_account(self, account: Account) -> None:
        accounts = await self._storage.list_accounts()
        await self._storage._save(
            "accounts", _upsert(accounts, account)
        )

    async def insert_transaction(self, transaction: Transaction) -> None:
        transactions = await self._storage.list_transactions()
        transactions.append(transaction)
        await self._storage._save("transactions", transactions)

    async def delete_transaction(self, transaction_id: str) -> None:
        transactions = await self._storage.list_transactions()
        await self._storage._save(
            "transactions", [tx for tx in transactions if tx.id != transaction_id]
        )

    async def delete_account(self, account_id: str) -> None:
        accounts = await self._storage.list_accounts()
        await self._storage._save(
            "accounts", [acc for acc in accounts if acc.id != account_id]
        )

    async def put_budget(self, budget: Budget) -> None:
        budgets = await self._storage.list_budgets()
        await self._storage._save("budgets", _upsert(budgets, budget))


def _upsert(records: list[M], record: M) -> list[M]:
    """Replace the record with the same id in place, or append it."""
    for index, existing in enumerate(records):
        if existing.id == record.id:
            records[index] = record
            return records
    records.append(record)
    return records


class LocalLedgerStorage(LedgerStorageInterface):
    """
    Ledger storage over a key-value store.

    Collections live under ``{prefix}accounts``, ``{prefix}transactions``
    and ``{prefix}budgets`` as JSON arrays.
    """

    supports_atomic_units = False
    name = "local"

    def __init__(self, store: KeyValueStore, prefix: str = "budget_"):
        self._store = store
        self._prefix = prefix

    def _key(self, collection: str) -> str:
        return f"{self._prefix}{collection}"

    async def _load(self, collection: str, model: Type[M]) -> list[M]:
        key = self._key(collection)
        try:
            raw = await self._store.get(key)
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e
        if not raw:
            return []
        try:
            items = json.loads(raw)
            return [model.model_validate(item) for item in items]
        except (json.JSONDecodeError, TypeError, PydanticValidationError) as e:
            raise StorageError(f"Corrupt data under {key}: {e}") from e

    async def _save(self, collection: str, records: list[BaseModel]) -> None:
        key = self._key(collection)
        payload = json.dumps([record.model_dump(mode="json") for record in records])
        try:
            await self._store.set(key, payload)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e

    async def list_accounts(self) -> list[Account]:
        return await self._load("accounts", Account)

    async def get_account(self, account_id: str) -> Optional[Account]:
        for account in await self.list_accounts():
            if account.id == account_id:
                return account
        return None

    async def list_transactions(
        self,
        filters: Optional[TransactionFilter] = None,
    ) -> list[Transaction]:
        transactions = await self._load("transactions", Transaction)
        if filters:
            transactions = [tx for tx in transactions if filters.matches(tx)]
        return transactions

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        for tx in await self.list_transactions():
            if tx.id == transaction_id:
                return tx
        return None

    async def list_budgets(self, month: Optional[str] = None) -> list[Budget]:
        budgets = await self._load("budgets", Budget)
        if month:
            budgets = [b for b in budgets if b.month == month]
        return budgets

    async def find_budget(self, category: str, month: str) -> Optional[Budget]:
        for budget in await self.list_budgets(month):
            if budget.category == category:
                return budget
        return None

    async def delete_budget(self, budget_id: str) -> bool:
        budgets = await self.list_budgets()
        remaining = [b for b in budgets if b.id != budget_id]
        if len(remaining) == len(budgets):
            return False
        await self._save("budgets", remaining)
        return True

    async def run_unit(self, fn: Callable[[UnitOfChange], Awaitable[T]]) -> T:
        return await fn(_LocalUnit(self))

    async def replace_all(self, data: LedgerExport) -> None:
        await self._save("accounts", data.accounts)
        await self._save("transactions", data.transactions)
        await self._save("budgets", data.budgets)
        logger.info(
            "local_storage_replaced",
            accounts=len(data.accounts),
            transactions=len(data.transactions),
            budgets=len(data.budgets),
        )
