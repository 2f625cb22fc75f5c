"""
Configuration Management for Budget Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The storage backend is chosen by configuration, not by code, so the
same ledger logic runs against Firestore, local JSON files or memory.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Which backend the ledger store persists to."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    backend: Literal["memory", "local", "firestore"] = Field(
        default="local",
        description="Storage backend to use"
    )
    local_data_dir: Path = Field(
        default=Path.home() / ".budget_ledger",
        description="Directory for the local JSON key-value store"
    )
    key_prefix: str = Field(
        default="budget_",
        description="Key prefix for collections in the local store"
    )


class FirestoreSettings(BaseSettings):
    """Google Cloud Firestore storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FIRESTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    credentials_path: Optional[str] = Field(
        default=None,
        description="Path to Google service account credentials JSON. "
                    "Falls back to application default credentials."
    )
    project_id: Optional[str] = Field(
        default=None,
        description="Google Cloud project id"
    )
    database: Optional[str] = Field(
        default=None,
        description="Firestore database id (default database if unset)"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Owner scope for all ledger documents"
    )

    accounts_collection: str = Field(default="accounts")
    transactions_collection: str = Field(default="transactions")
    budgets_collection: str = Field(default="budgets")

    max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Firestore transaction attempts before giving up"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: Optional[str]) -> Optional[str]:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if v and not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level for structlog output"
    )
    currency_label: str = Field(
        default="Rs.",
        description="Currency prefix used by the UI"
    )

    # Retry policy for units of change that hit a write conflict
    unit_max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Attempts per unit of change on conflict"
    )
    unit_retry_min_wait: float = Field(
        default=0.05,
        ge=0.0,
        description="Minimum backoff between attempts (seconds)"
    )
    unit_retry_max_wait: float = Field(
        default=2.0,
        ge=0.0,
        description="Maximum backoff between attempts (seconds)"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Loaded lazily so a local-only setup never needs Firestore config

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def firestore(self) -> FirestoreSettings:
        return FirestoreSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries for failures. Firestore is only
    checked when it is the selected backend.
    """
    results = {}

    settings = get_settings()

    try:
        storage = settings.storage
        results["storage"] = True
    except Exception as e:
        storage = None
        results["storage"] = False
        results["storage_error"] = str(e)

    if storage is not None and storage.backend == "firestore":
        try:
            _ = settings.firestore
            results["firestore"] = True
        except Exception as e:
            results["firestore"] = False
            results["firestore_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    return results
