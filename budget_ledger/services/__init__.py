"""Services package."""

from budget_ledger.services.storage import (
    ConflictError,
    ConnectionError,
    FirestoreClient,
    FirestoreLedgerStorage,
    InMemoryLedgerStorage,
    JsonFileKeyValueStore,
    KeyValueStore,
    LedgerStorageInterface,
    LocalLedgerStorage,
    MemoryKeyValueStore,
    StorageError,
    UnauthorizedError,
    UnitOfChange,
)

__all__ = [
    "ConflictError",
    "ConnectionError",
    "FirestoreClient",
    "FirestoreLedgerStorage",
    "InMemoryLedgerStorage",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "LedgerStorageInterface",
    "LocalLedgerStorage",
    "MemoryKeyValueStore",
    "StorageError",
    "UnauthorizedError",
    "UnitOfChange",
]
