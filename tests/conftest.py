"""
Shared fixtures.

Ledger behaviour tests run twice: once on the atomic in-memory backend
and once on the non-atomic local key-value backend.
"""

import pytest

from budget_ledger.ledger import LedgerStore
from budget_ledger.services.storage import (
    InMemoryLedgerStorage,
    LocalLedgerStorage,
    MemoryKeyValueStore,
)


def make_storage(kind: str):
    if kind == "memory":
        return InMemoryLedgerStorage()
    return LocalLedgerStorage(MemoryKeyValueStore())


@pytest.fixture(params=["memory", "local"])
def backend_kind(request) -> str:
    return request.param


@pytest.fixture
def storage(backend_kind):
    return make_storage(backend_kind)


@pytest.fixture
def store(storage) -> LedgerStore:
    return LedgerStore(storage, retry_min_wait=0, retry_max_wait=0)


@pytest.fixture
def empty_store_factory(backend_kind):
    """Build further empty stores on the same kind of backend."""
    def factory() -> LedgerStore:
        return LedgerStore(make_storage(backend_kind), retry_min_wait=0, retry_max_wait=0)
    return factory
