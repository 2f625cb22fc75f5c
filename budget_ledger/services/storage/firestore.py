"""
Google Cloud Firestore Storage Implementation

DESIGN DECISION: Firestore is the remote backend because it offers
multi-document transactions. A unit of change (transaction insert plus
one or two balance updates) commits together or not at all, and every
account read inside the unit goes through the Firestore transaction, so
a concurrent writer causes the commit to abort instead of losing an
update.

TRADEOFFS:
- Documents of every owner share one collection; each carries an
  ``owner_id`` field and every query filters on it
- Only equality filters are pushed down (no composite indexes needed);
  range filters and ordering are applied in Python
- Amounts are stored as decimal strings, dates as ISO strings
"""

from typing import Any, Awaitable, Callable, Optional, Type, TypeVar, Union

import structlog
from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.oauth2.service_account import Credentials
from pydantic import BaseModel, ValidationError as PydanticValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from budget_ledger.config import FirestoreSettings, get_settings
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
from budget_ledger.services.storage.interface import (
    LedgerStorageInterface,
    UnitOfChange,
)


T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

# Firestore rejects batches with more than 500 writes
BATCH_LIMIT = 500

logger = structlog.get_logger(__name__)


def to_document(record: BaseModel) -> dict[str, Any]:
    """Convert a ledger record to a Firestore document (id is the doc key)."""
    return record.model_dump(mode="json", exclude={"id"})


def from_snapshot(model: Type[M], snapshot: Any) -> M:
    """Convert a Firestore snapshot to a ledger record."""
    data = snapshot.to_dict() or {}
    try:
        return model.model_validate({**data, "id": snapshot.id})
    except PydanticValidationError as e:
        raise StorageError(f"Malformed {model.__name__} document {snapshot.id}: {e}") from e


def translate_error(operation: str, error: Exception) -> StorageError:
    """Map a google-api-core error onto the ledger error taxonomy."""
    if isinstance(error, (google_exceptions.Aborted, google_exceptions.Conflict)):
        return ConflictError(f"{operation} conflicted with a concurrent write: {error}")
    if isinstance(error, (google_exceptions.ServiceUnavailable, google_exceptions.DeadlineExceeded)):
        return ConnectionError(f"Firestore unavailable during {operation}: {error}")
    if isinstance(error, (google_exceptions.PermissionDenied, google_exceptions.Unauthenticated)):
        return ConnectionError(f"Firestore rejected credentials during {operation}: {error}")
    return StorageError(f"Failed to {operation}: {error}")


class FirestoreClient:
    """
    Low-level Firestore client wrapper.

    Handles authentication and exposes the three ledger collections.
    """

    def __init__(self, settings: Optional[FirestoreSettings] = None):
        self._client: Optional[firestore.AsyncClient] = None
        self._settings = settings or get_settings().firestore

    @property
    def settings(self) -> FirestoreSettings:
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(ConnectionError),
        reraise=True,
    )
    def connect(self) -> firestore.AsyncClient:
        """
        Create the Firestore client.

        Uses service account credentials when a path is configured,
        application default credentials otherwise.
        """
        if self._client is None:
            try:
                credentials = None
                if self._settings.credentials_path:
                    credentials = Credentials.from_service_account_file(
                        self._settings.credentials_path
                    )
                self._client = firestore.AsyncClient(
                    project=self._settings.project_id,
                    credentials=credentials,
                    database=self._settings.database,
                )
            except FileNotFoundError as e:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                ) from e
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Firestore: {e}") from e

        return self._client

    def collection(self, name: str) -> Any:
        return self.connect().collection(name)

    @property
    def accounts(self) -> Any:
        return self.collection(self._settings.accounts_collection)

    @property
    def transactions(self) -> Any:
        return self.collection(self._settings.transactions_collection)

    @property
    def budgets(self) -> Any:
        return self.collection(self._settings.budgets_collection)

    def transaction(self) -> Any:
        return self.connect().transaction(max_attempts=self._settings.max_attempts)

    def batch(self) -> Any:
        return self.connect().batch()


class _FirestoreUnit(UnitOfChange):
    """Unit of change bound to one Firestore transaction."""

    def __init__(self, storage: "FirestoreLedgerStorage", transaction: Any):
        self._storage = storage
        self._client = storage._client
        self._transaction = transaction

    async def _read(self, collection: Any, model: Type[M], record_id: str) -> Optional[M]:
        snapshot = await collection.document(record_id).get(transaction=self._transaction)
        if not snapshot.exists:
            return None
        record = from_snapshot(model, snapshot)
        self._storage._check_owner(record)
        return record

    async def get_account(self, account_id: str) -> Optional[Account]:
        return await self._read(self._client.accounts, Account, account_id)

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return await self._read(self._client.transactions, Transaction, transaction_id)

    async def count_transactions_for(self, account_id: str) -> int:
        seen: set[str] = set()
        for field in ("account_id", "to_account_id"):
            query = self._storage._scoped(self._client.transactions).where(
                filter=FieldFilter(field, "==", account_id)
            )
            for snapshot in await query.get(transaction=self._transaction):
                seen.add(snapshot.id)
        return len(seen)

    async def find_budget(self, category: str, month: str) -> Optional[Budget]:
        query = (
            self._storage._scoped(self._client.budgets)
            .where(filter=FieldFilter("category", "==", category))
            .where(filter=FieldFilter("month", "==", month))
        )
        snapshots = await query.get(transaction=self._transaction)
        if not snapshots:
            return None
        return from_snapshot(Budget, snapshots[0])

    async def put_account(self, account: Account) -> None:
        self._transaction.set(self._client.accounts.document(account.id), to_document(account))

    async def insert_transaction(self, transaction: Transaction) -> None:
        self._transaction.create(
            self._client.transactions.document(transaction.id), to_document(transaction)
        )

    async def delete_transaction(self, transaction_id: str) -> None:
        self._transaction.delete(self._client.transactions.document(transaction_id))

    async def delete_account(self, account_id: str) -> None:
        self._transaction.delete(self._client.accounts.document(account_id))

    async def put_budget(self, budget: Budget) -> None:
        self._transaction.set(self._client.budgets.document(budget.id), to_document(budget))


class FirestoreLedgerStorage(LedgerStorageInterface):
    """
    Firestore implementation of ledger storage.

    One document per record; the document id is the record id.
    """

    supports_atomic_units = True
    name = "firestore"

    def __init__(self, client: Optional[FirestoreClient] = None):
        self._client = client or FirestoreClient()

    @property
    def owner_id(self) -> Optional[str]:
        return self._client.settings.owner_id

    def _scoped(self, collection: Any) -> Any:
        return collection.where(filter=FieldFilter("owner_id", "==", self.owner_id))

    def _check_owner(self, record: Union[Account, Transaction, Budget]) -> None:
        if record.owner_id != self.owner_id:
            raise UnauthorizedError(
                f"{type(record).__name__} {record.id} belongs to another owner"
            )

    async def _list(self, query: Any, model: Type[M]) -> list[M]:
        records = [from_snapshot(model, snapshot) async for snapshot in query.stream()]
        # Insertion order; Firestore returns documents by id
        records.sort(key=lambda r: r.created_at)
        return records

    async def _get(self, collection: Any, model: Type[M], record_id: str) -> Optional[M]:
        snapshot = await collection.document(record_id).get()
        if not snapshot.exists:
            return None
        record = from_snapshot(model, snapshot)
        self._check_owner(record)
        return record

    async def list_accounts(self) -> list[Account]:
        try:
            return await self._list(self._scoped(self._client.accounts), Account)
        except google_exceptions.GoogleAPICallError as e:
            raise translate_error("list accounts", e) from e

    async def get_account(self, account_id: str) -> Optional[Account]:
        try:
            return await self._get(self._client.accounts, Account, account_id)
        except google_exceptions.GoogleAPICallError as e:
            raise translate_error("get account", e) from e

    async def list_transactions(
        self,
        filters: Optional[TransactionFilter] = None,
    ) -> list[Transaction]:
        query = self._scoped(self._client.transactions)
        if filters and filters.type:
            query = query.where(filter=FieldFilter("type", "==", filters.type.value))
        try:
            transactions = await self._list(query, Transaction)
        except google_exceptions.GoogleAPICallError as e:
            raise translate_error("list transactions", e) from e
        if filters:
            transactions = [tx for tx in transactions if filters.matches(tx)]
        return transactions

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        try:
            return await self._get(self._client.transactions, Transaction, transaction_id)
        except google_exceptions.GoogleAPICallError as e:
            raise translate_error("get transaction", e) from e

    async def list_budgets(self, month: Optional[str] = None) -> list[Budget]:
        query = self._scoped(self._client.budgets)
        if month:
            query = query.where(filter=FieldFilter("month", "==", month))
        try:
            return await self._list(query, Budget)
        except google_exceptions.GoogleAPICallError as e:
            raise translate_error("list budgets", e) from e

    async def find_budget(self, category: str, month: str) -> Optional[Budget]:
        for budget in await self.list_budgets(month):
            if budget.category == category:
                return budget
        return None

    async def delete_budget(self, budget_id: str) -> bool:
        try:
            budget = await self._get(self._client.budgets, Budget, budget_id)
            if budget is None:
                return False
            await self._client.budgets.document(budget_id).delete()
            return True
        except google_exceptions.GoogleAPICallError as e:
            raise translate_error("delete budget", e) from e

    async def run_unit(self, fn: Callable[[UnitOfChange], Awaitable[T]]) -> T:
        """
        Run ``fn`` inside a Firestore transaction.

        Firestore itself retries aborted commits up to ``max_attempts``;
        if contention persists the abort surfaces as ConflictError.
        """

        @firestore.async_transactional
        async def _apply(transaction: Any) -> T:
            return await fn(_FirestoreUnit(self, transaction))

        try:
            return await _apply(self._client.transaction())
        except google_exceptions.GoogleAPICallError as e:
            raise translate_error("apply unit of change", e) from e
        except ValueError as e:
            # The client gives up on repeated aborts with a ValueError chained to the Aborted
            if isinstance(e.__cause__, google_exceptions.Aborted):
                raise ConflictError(
                    f"Unit of change still contended after "
                    f"{self._client.settings.max_attempts} commit attempts: {e.__cause__}"
                ) from e
            raise

    async def replace_all(self, data: LedgerExport) -> None:
        """
        Delete every document of the owner scope, then write the new ones.
        Ids already used by another owner are refused up front.

        Writes are chunked into batches of BATCH_LIMIT. Each batch is
        atomic; the replacement as a whole is not.
        """
        incoming = (
            (self._client.accounts, data.accounts),
            (self._client.transactions, data.transactions),
            (self._client.budgets, data.budgets),
        )
        writes: list[tuple[str, Any, Optional[dict[str, Any]]]] = []
        try:
            for collection, records in incoming:
                for record in records:
                    snapshot = await collection.document(record.id).get()
                    if snapshot.exists and (snapshot.to_dict() or {}).get("owner_id") != self.owner_id:
                        raise UnauthorizedError(
                            f"{type(record).__name__} {record.id} belongs to another owner"
                        )

            for collection, records in incoming:
                # Documents that are re-written are overwritten, not deleted first
                kept = {record.id for record in records}
                async for snapshot in self._scoped(collection).stream():
                    if snapshot.id not in kept:
                        writes.append(("delete", snapshot.reference, None))

            for collection, records in incoming:
                for record in records:
                    writes.append(("set", collection.document(record.id), to_document(record)))

            for start in range(0, len(writes), BATCH_LIMIT):
                batch = self._client.batch()
                for op, reference, document in writes[start:start + BATCH_LIMIT]:
                    if op == "delete":
                        batch.delete(reference)
                    else:
                        batch.set(reference, document)
                await batch.commit()
        except google_exceptions.GoogleAPICallError as e:
            raise translate_error("replace ledger", e) from e

        logger.info(
            "firestore_storage_replaced",
            owner_id=self.owner_id,
            writes=len(writes),
        )
