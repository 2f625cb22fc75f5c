"""
Application Wiring for Budget Ledger

Builds the ledger store on top of the storage backend selected in
configuration. The presentation layer calls ``create_ledger_store`` once
and then only talks to the store.

DESIGN DECISION: If the configured backend cannot be initialized, the
factory can fall back to the local backend. The fallback is
explicit and logged; it is never silent.
"""

from typing import Optional

import structlog

from budget_ledger.audit import AuditLogger, configure_logging
from budget_ledger.config import Settings, get_settings
from budget_ledger.errors import ConnectionError
from budget_ledger.ledger import LedgerStore
from budget_ledger.services.storage import (
    FirestoreClient,
    FirestoreLedgerStorage,
    InMemoryLedgerStorage,
    JsonFileKeyValueStore,
    LedgerStorageInterface,
    LocalLedgerStorage,
)


logger = structlog.get_logger(__name__)


def create_storage(
    settings: Optional[Settings] = None,
    backend: Optional[str] = None,
) -> LedgerStorageInterface:
    """
    Create the storage backend.

    Args:
        settings: Settings to use (cached global settings if None)
        backend: Override for ``settings.storage.backend``

    Raises:
        ConnectionError: Firestore is selected but not configured
    """
    settings = settings or get_settings()
    storage_settings = settings.storage
    backend = backend or storage_settings.backend

    if backend == "memory":
        return InMemoryLedgerStorage()

    if backend == "local":
        return LocalLedgerStorage(
            JsonFileKeyValueStore(storage_settings.local_data_dir),
            prefix=storage_settings.key_prefix,
        )

    if backend == "firestore":
        try:
            client = FirestoreClient(settings.firestore)
        except Exception as e:
            raise ConnectionError(f"Firestore is not configured: {e}") from e
        return FirestoreLedgerStorage(client)

    raise ValueError(f"Unknown storage backend: {backend}")


def create_ledger_store(
    settings: Optional[Settings] = None,
    backend: Optional[str] = None,
    fallback_to_local: bool = True,
) -> LedgerStore:
    """
    Factory function to create the ledger store.

    Args:
        settings: Settings to use (cached global settings if None)
        backend: Override for the configured backend
        fallback_to_local: Use the local backend if the configured one
            cannot be initialized

    Returns:
        A ready-to-use LedgerStore
    """
    settings = settings or get_settings()
    app_settings = settings.app
    configure_logging(app_settings.log_level)

    try:
        storage = create_storage(settings, backend)
    except ConnectionError as e:
        if not fallback_to_local:
            raise
        logger.warning("storage_fallback_to_local", error=str(e))
        storage = create_storage(settings, "local")

    logger.info("ledger_store_created", backend=storage.name, owner_id=storage.owner_id)

    return LedgerStore(
        storage,
        audit_logger=AuditLogger(),
        max_attempts=app_settings.unit_max_attempts,
        retry_min_wait=app_settings.unit_retry_min_wait,
        retry_max_wait=app_settings.unit_retry_max_wait,
    )
