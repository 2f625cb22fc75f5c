"""Configuration package."""

from budget_ledger.config.settings import (
    AppSettings,
    FirestoreSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "FirestoreSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
