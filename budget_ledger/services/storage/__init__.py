"""
Storage Services Package

Provides the abstract storage capability and its interchangeable
implementations: Firestore (remote, atomic), local key-value JSON
(non-atomic) and in-memory (atomic, for tests and ephemeral sessions).
"""

from budget_ledger.services.storage.interface import (
    ConflictError,
    ConnectionError,
    LedgerStorageInterface,
    StorageError,
    UnauthorizedError,
    UnitOfChange,
)
from budget_ledger.services.storage.memory import InMemoryLedgerStorage
from budget_ledger.services.storage.local import (
    JsonFileKeyValueStore,
    KeyValueStore,
    LocalLedgerStorage,
    MemoryKeyValueStore,
)
from budget_ledger.services.storage.firestore import (
    FirestoreClient,
    FirestoreLedgerStorage,
)

__all__ = [
    # Interfaces
    "LedgerStorageInterface",
    "UnitOfChange",
    # Exceptions
    "ConflictError",
    "ConnectionError",
    "StorageError",
    "UnauthorizedError",
    # In-memory implementation
    "InMemoryLedgerStorage",
    # Local key-value implementation
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "LocalLedgerStorage",
    "MemoryKeyValueStore",
    # Firestore implementation
    "FirestoreClient",
    "FirestoreLedgerStorage",
]
