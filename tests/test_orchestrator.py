"""
Tests for configuration and backend wiring.
"""

import logging

import pytest

from budget_ledger.audit import configure_logging
from budget_ledger.config import Settings, get_settings, validate_all_settings
from budget_ledger.errors import ConnectionError
from budget_ledger.orchestrator import create_ledger_store, create_storage
from budget_ledger.services.storage import InMemoryLedgerStorage, LocalLedgerStorage


@pytest.fixture
def env(monkeypatch, tmp_path):
    """Isolated environment: no Firestore owner, local data under tmp_path."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("FIRESTORE_OWNER_ID", raising=False)
    monkeypatch.delenv("LEDGER_STORAGE_BACKEND", raising=False)
    monkeypatch.setenv("LEDGER_STORAGE_LOCAL_DATA_DIR", str(tmp_path / "data"))
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


class TestSettings:
    """pydantic-settings configuration."""

    def test_defaults(self, env):
        settings = Settings()
        assert settings.storage.backend == "local"
        assert settings.storage.key_prefix == "budget_"
        assert settings.app.unit_max_attempts == 5
        assert settings.app.currency_label == "Rs."

    def test_environment_overrides(self, env):
        env.setenv("LEDGER_STORAGE_BACKEND", "memory")
        env.setenv("UNIT_MAX_ATTEMPTS", "7")
        settings = Settings()
        assert settings.storage.backend == "memory"
        assert settings.app.unit_max_attempts == 7

    def test_firestore_only_checked_when_selected(self, env):
        assert "firestore" not in validate_all_settings()

        env.setenv("LEDGER_STORAGE_BACKEND", "firestore")
        results = validate_all_settings()
        assert results["firestore"] is False
        assert "owner_id" in results["firestore_error"]


class TestCreateStorage:
    """Backend selection."""

    def test_memory(self, env):
        assert isinstance(create_storage(Settings(), "memory"), InMemoryLedgerStorage)

    def test_local_is_default(self, env):
        assert isinstance(create_storage(Settings()), LocalLedgerStorage)

    def test_unconfigured_firestore(self, env):
        with pytest.raises(ConnectionError, match="not configured"):
            create_storage(Settings(), "firestore")

    def test_unknown_backend(self, env):
        with pytest.raises(ValueError):
            create_storage(Settings(), "sqlite")


class TestCreateLedgerStore:
    """Store factory with explicit fallback."""

    def test_falls_back_to_local(self, env):
        store = create_ledger_store(Settings(), backend="firestore")
        assert store.storage.name == "local"

    def test_fallback_can_be_disabled(self, env):
        with pytest.raises(ConnectionError):
            create_ledger_store(Settings(), backend="firestore", fallback_to_local=False)

    @pytest.mark.asyncio
    async def test_store_is_usable(self, env, tmp_path):
        store = create_ledger_store(Settings(), backend="local")
        await store.create_account("Bank", initial_balance=10)
        assert (tmp_path / "data" / "budget_accounts.json").exists()


class TestLoggingConfiguration:
    """The configured log level reaches the stdlib loggers structlog filters on."""

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        yield
        configure_logging()

    def test_last_call_wins(self):
        configure_logging("WARNING")
        assert logging.getLogger().level == logging.WARNING
        configure_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_store_factory_applies_log_level(self, env):
        env.setenv("LOG_LEVEL", "ERROR")
        create_ledger_store(Settings(), backend="memory")
        assert logging.getLogger().level == logging.ERROR
        assert not logging.getLogger("budget_ledger.audit").isEnabledFor(logging.INFO)
