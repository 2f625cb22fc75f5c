"""
Tests for the Firestore backend.

No real API calls: a small in-process double stands in for the
collections, queries, transactions and batches the backend uses.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from google.api_core import exceptions as google_exceptions

import budget_ledger.services.storage.firestore as firestore_storage
from budget_ledger.config import FirestoreSettings
from budget_ledger.errors import (
    AccountInUseError,
    ConflictError,
    ConnectionError,
    StorageError,
    UnauthorizedError,
)
from budget_ledger.ledger import LedgerStore
from budget_ledger.models import (
    Account,
    AuditEventType,
    Budget,
    LedgerExport,
    Transaction,
    TransactionFilter,
)
from budget_ledger.services.storage import FirestoreLedgerStorage
from budget_ledger.services.storage.firestore import (
    _FirestoreUnit,
    from_snapshot,
    to_document,
    translate_error,
)


# =============================================================================
# FIRESTORE DOUBLES
# =============================================================================

class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data
        self.exists = data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeDocument:
    def __init__(self, collection, doc_id):
        self.collection = collection
        self.id = doc_id

    async def get(self, transaction=None):
        return FakeSnapshot(self, self.collection.docs.get(self.id))

    async def delete(self):
        self.collection.docs.pop(self.id, None)


class FakeQuery:
    def __init__(self, collection, filters=()):
        self.collection = collection
        self.filters = filters

    def where(self, filter):
        return FakeQuery(self.collection, self.filters + (filter,))

    def _snapshots(self):
        if self.collection.error:
            raise self.collection.error
        return [
            FakeSnapshot(FakeDocument(self.collection, doc_id), data)
            for doc_id, data in sorted(self.collection.docs.items())
            if all(data.get(f.field_path) == f.value for f in self.filters)
        ]

    async def get(self, transaction=None):
        return self._snapshots()

    async def stream(self):
        for snapshot in self._snapshots():
            yield snapshot


class FakeCollection(FakeQuery):
    def __init__(self):
        super().__init__(self)
        self.docs = {}
        self.error = None

    def document(self, doc_id):
        return FakeDocument(self, doc_id)


class FakeWrites:
    """Applies writes straight to the collections (batches and bare units)."""

    def __init__(self):
        self.operations = []

    def set(self, reference, data):
        self.operations.append(("set", reference.id))
        reference.collection.docs[reference.id] = data

    def create(self, reference, data):
        if reference.id in reference.collection.docs:
            raise google_exceptions.Conflict("document exists")
        self.operations.append(("create", reference.id))
        reference.collection.docs[reference.id] = data

    def delete(self, reference):
        self.operations.append(("delete", reference.id))
        reference.collection.docs.pop(reference.id, None)

    async def commit(self):
        return None


class FakeTransaction(FakeWrites):
    """Stages writes until commit; commits abort while the client says so."""

    def __init__(self, client):
        super().__init__()
        self._client = client
        self._max_attempts = client.settings.max_attempts
        self._pending = []

    def _begin(self):
        self._pending = []

    def set(self, reference, data):
        self._pending.append(("set", reference, data))

    def create(self, reference, data):
        self._pending.append(("create", reference, data))

    def delete(self, reference):
        self._pending.append(("delete", reference, None))

    async def commit(self):
        self._client.commits += 1
        if self._client.commit_aborts:
            self._client.commit_aborts -= 1
            raise google_exceptions.Aborted("too much contention")
        for op, reference, data in self._pending:
            if op == "delete":
                FakeWrites.delete(self, reference)
            else:
                getattr(FakeWrites, op)(self, reference, data)


def fake_async_transactional(to_wrap):
    """Same contract as firestore.async_transactional.

    Aborted commits are retried up to the transaction's max attempts, then
    the client gives up with a ValueError chained to the last Aborted.
    """
    async def wrapper(transaction, *args, **kwargs):
        last_error = None
        for _ in range(transaction._max_attempts):
            transaction._begin()
            result = await to_wrap(transaction, *args, **kwargs)
            try:
                await transaction.commit()
            except google_exceptions.Aborted as exc:
                last_error = exc
                continue
            return result
        raise ValueError(
            f"Failed to commit transaction in {transaction._max_attempts} attempts."
        ) from last_error
    return wrapper


class FakeClient:
    def __init__(self, owner_id="alice", max_attempts=5, commit_aborts=0):
        self.settings = FirestoreSettings(owner_id=owner_id, max_attempts=max_attempts)
        self.accounts = FakeCollection()
        self.transactions = FakeCollection()
        self.budgets = FakeCollection()
        self.commit_aborts = commit_aborts
        self.commits = 0
        self.batches = []

    def transaction(self):
        return FakeTransaction(self)

    def batch(self):
        batch = FakeWrites()
        self.batches.append(batch)
        return batch


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def storage(client):
    return FirestoreLedgerStorage(client)


@pytest.fixture
def fake_transactional(monkeypatch):
    """Run units on the transaction double instead of a real Firestore transaction."""
    monkeypatch.setattr(firestore_storage.firestore, "async_transactional", fake_async_transactional)


def put(collection, record):
    collection.docs[record.id] = to_document(record)


# =============================================================================
# TESTS
# =============================================================================

class TestDocumentMapping:
    """Record <-> document conversion."""

    def test_to_document(self):
        tx = Transaction(
            id="t1",
            type="expense",
            amount=Decimal("12.50"),
            account_id="a",
            category="food",
            date=date(2024, 6, 1),
            owner_id="alice",
        )
        document = to_document(tx)
        assert "id" not in document
        assert document["amount"] == "12.50"
        assert document["date"] == "2024-06-01"
        assert document["owner_id"] == "alice"

    def test_from_snapshot(self):
        collection = FakeCollection()
        put(collection, Budget(id="b1", category="food", month="2024-06", amount=100))
        snapshot = FakeSnapshot(collection.document("b1"), collection.docs["b1"])
        budget = from_snapshot(Budget, snapshot)
        assert budget.id == "b1"
        assert budget.amount == Decimal("100")

    def test_malformed_snapshot(self):
        collection = FakeCollection()
        snapshot = FakeSnapshot(collection.document("x"), {"name": ""})
        with pytest.raises(StorageError, match="Malformed Account"):
            from_snapshot(Account, snapshot)


class TestErrorTranslation:
    """google-api-core errors map onto the ledger taxonomy."""

    @pytest.mark.parametrize("error,expected", [
        (google_exceptions.Aborted("x"), ConflictError),
        (google_exceptions.Conflict("x"), ConflictError),
        (google_exceptions.ServiceUnavailable("x"), ConnectionError),
        (google_exceptions.DeadlineExceeded("x"), ConnectionError),
        (google_exceptions.PermissionDenied("x"), ConnectionError),
        (google_exceptions.InternalServerError("x"), StorageError),
    ])
    def test_mapping(self, error, expected):
        translated = translate_error("list accounts", error)
        assert type(translated) is expected
        assert "list accounts" in str(translated)

    @pytest.mark.asyncio
    async def test_read_failure_is_translated(self, client, storage):
        client.accounts.error = google_exceptions.ServiceUnavailable("offline")
        with pytest.raises(ConnectionError):
            await storage.list_accounts()


class TestFirestoreReads:
    """Owner-scoped reads."""

    @pytest.mark.asyncio
    async def test_list_is_scoped_and_ordered(self, client, storage):
        early = Account(id="z", name="Early", owner_id="alice",
                        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        late = Account(id="a", name="Late", owner_id="alice",
                       created_at=datetime(2024, 2, 1, tzinfo=timezone.utc))
        foreign = Account(id="m", name="Bob's", owner_id="bob")
        for account in (late, early, foreign):
            put(client.accounts, account)

        assert [a.id for a in await storage.list_accounts()] == ["z", "a"]

    @pytest.mark.asyncio
    async def test_foreign_document_is_unauthorized(self, client, storage):
        put(client.accounts, Account(id="m", name="Bob's", owner_id="bob"))
        with pytest.raises(UnauthorizedError):
            await storage.get_account("m")
        assert await storage.get_account("missing") is None

    @pytest.mark.asyncio
    async def test_transaction_filters(self, client, storage):
        for tx in (
            Transaction(id="t1", type="income", amount=1, account_id="a", category="salary",
                        date=date(2024, 6, 1), owner_id="alice"),
            Transaction(id="t2", type="expense", amount=1, account_id="a", category="food",
                        date=date(2024, 7, 1), owner_id="alice"),
        ):
            put(client.transactions, tx)

        result = await storage.list_transactions(TransactionFilter(type="expense", month="2024-07"))
        assert [tx.id for tx in result] == ["t2"]

    @pytest.mark.asyncio
    async def test_delete_budget(self, client, storage):
        put(client.budgets, Budget(id="b1", category="food", month="2024-06", amount=1, owner_id="alice"))
        assert await storage.delete_budget("b1") is True
        assert await storage.delete_budget("b1") is False
        assert client.budgets.docs == {}


class TestFirestoreUnit:
    """Reads and staged writes inside a unit of change."""

    @pytest.mark.asyncio
    async def test_count_transactions_for(self, client, storage):
        for tx in (
            Transaction(id="t1", type="transfer", amount=1, account_id="a", to_account_id="b",
                        date=date(2024, 6, 1), owner_id="alice"),
            Transaction(id="t2", type="transfer", amount=1, account_id="b", to_account_id="c",
                        date=date(2024, 6, 1), owner_id="alice"),
            Transaction(id="t3", type="expense", amount=1, account_id="b", category="food",
                        date=date(2024, 6, 1), owner_id="bob"),
        ):
            put(client.transactions, tx)

        unit = _FirestoreUnit(storage, FakeWrites())
        assert await unit.count_transactions_for("b") == 2
        assert await unit.count_transactions_for("a") == 1
        assert await unit.count_transactions_for("x") == 0

    @pytest.mark.asyncio
    async def test_find_budget(self, client, storage):
        put(client.budgets, Budget(id="b1", category="food", month="2024-06", amount=1, owner_id="alice"))
        unit = _FirestoreUnit(storage, FakeWrites())
        assert (await unit.find_budget("food", "2024-06")).id == "b1"
        assert await unit.find_budget("food", "2024-07") is None

    @pytest.mark.asyncio
    async def test_writes_go_through_the_transaction(self, client, storage):
        writes = FakeWrites()
        unit = _FirestoreUnit(storage, writes)
        await unit.put_account(Account(id="a", name="A", owner_id="alice"))
        await unit.insert_transaction(
            Transaction(id="t1", type="income", amount=1, account_id="a", category="salary",
                        date=date(2024, 6, 1), owner_id="alice")
        )
        await unit.delete_transaction("t1")
        assert writes.operations == [("set", "a"), ("create", "t1"), ("delete", "t1")]


@pytest.mark.usefixtures("fake_transactional")
class TestLedgerStoreOnFirestore:
    """The ledger store end to end over the Firestore backend."""

    @pytest.mark.asyncio
    async def test_add_and_delete_transaction(self, client, storage):
        store = LedgerStore(storage, retry_min_wait=0, retry_max_wait=0)
        a = await store.create_account("A", initial_balance=1000)
        b = await store.create_account("B", initial_balance=500)

        result = await store.add_transaction("transfer", 300, a.id, date(2024, 6, 2), to_account_id=b.id)
        assert client.accounts.docs[a.id]["balance"] == "700"
        assert client.transactions.docs[result.transaction.id]["owner_id"] == "alice"

        with pytest.raises(AccountInUseError):
            await store.delete_account(b.id)

        await store.delete_transaction(result.transaction.id)
        assert (await store.get_account(b.id)).balance == Decimal("500")
        assert await store.reconcile() == []

    @pytest.mark.asyncio
    async def test_aborts_absorbed_by_firestore_retries(self):
        client = FakeClient(max_attempts=5, commit_aborts=2)
        store = LedgerStore(FirestoreLedgerStorage(client), retry_min_wait=0, retry_max_wait=0)
        account = await store.create_account("A")
        assert account.id in client.accounts.docs
        assert client.commits == 3

    @pytest.mark.asyncio
    async def test_exhausted_commit_attempts_become_a_retried_conflict(self):
        """Firestore gives up after 2 commits; the store retries the whole unit."""
        client = FakeClient(max_attempts=2, commit_aborts=3)
        store = LedgerStore(FirestoreLedgerStorage(client), retry_min_wait=0, retry_max_wait=0)

        account = await store.create_account("A")

        assert account.id in client.accounts.docs
        assert client.commits == 4
        retried = [
            e for e in store.audit_logger.recent_events
            if e.event_type == AuditEventType.UNIT_RETRIED
        ]
        assert len(retried) == 1

    @pytest.mark.asyncio
    async def test_persistent_contention_is_a_conflict(self):
        client = FakeClient(max_attempts=2, commit_aborts=100)
        store = LedgerStore(FirestoreLedgerStorage(client), max_attempts=2, retry_min_wait=0, retry_max_wait=0)

        with pytest.raises(ConflictError) as exc_info:
            await store.create_account("A")

        assert isinstance(exc_info.value, StorageError)
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert client.accounts.docs == {}
        assert client.commits == 4
        failure = store.audit_logger.recent_events[0]
        assert failure.event_type == AuditEventType.OPERATION_FAILED
        assert failure.error_kind == "conflict"

    @pytest.mark.asyncio
    async def test_unrelated_value_error_is_not_a_conflict(self, storage):
        async def unit(uow):
            raise ValueError("bug in unit")

        with pytest.raises(ValueError, match="bug in unit"):
            await storage.run_unit(unit)

    @pytest.mark.asyncio
    async def test_replace_all_keeps_other_owners(self, client, storage):
        put(client.accounts, Account(id="old", name="Old", owner_id="alice"))
        put(client.accounts, Account(id="keep", name="Keep", owner_id="alice"))
        put(client.accounts, Account(id="bob1", name="Bob's", owner_id="bob"))

        await storage.replace_all(LedgerExport(accounts=[Account(id="keep", name="Kept", owner_id="alice")]))

        assert set(client.accounts.docs) == {"keep", "bob1"}
        assert client.accounts.docs["keep"]["name"] == "Kept"
        assert ("delete", "keep") not in client.batches[0].operations

    @pytest.mark.asyncio
    async def test_replace_all_refuses_foreign_ids(self, client, storage):
        put(client.accounts, Account(id="bob1", name="Bob's", owner_id="bob"))
        with pytest.raises(UnauthorizedError):
            await storage.replace_all(LedgerExport(accounts=[Account(id="bob1", name="Mine", owner_id="alice")]))
        assert client.accounts.docs["bob1"]["name"] == "Bob's"
        assert client.batches == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
