"""
Audit Logger

DESIGN DECISION: Every mutation of the ledger is logged.
This provides:
1. Traceability of every balance change
2. Debugging capability when a unit of change fails
3. A trail for reconciling the non-atomic local backend

The audit logger:
- Is async so it can be awaited inline by the ledger store
- Never raises: a failing log sink must not fail a committed mutation
"""

import logging
import sys
from decimal import Decimal
from typing import Any, Optional

import structlog

from budget_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


def configure_logging(level: str = "INFO") -> None:
    """
    Configure structlog for JSON output on stderr.

    Safe to call more than once; the last call wins.
    """
    # force: replace the handler installed by the import-time call
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(default=str)
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Events are written as structured log lines. Keeps the most recent
    events in memory so the UI can show an activity feed.
    """

    def __init__(self, history_size: int = 200):
        self._logger = structlog.get_logger("budget_ledger.audit")
        self._history: list[AuditEvent] = []
        self._history_size = history_size

    @property
    def recent_events(self) -> list[AuditEvent]:
        """Most recent events, newest first."""
        return list(reversed(self._history))

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns False if the log sink failed (the failure itself is swallowed).
        """
        return self.record(event)

    def record(self, event: AuditEvent) -> bool:
        """Synchronous variant of ``log`` for callbacks that cannot await."""
        log_dict = event.to_log_dict()

        try:
            if event.severity == AuditSeverity.ERROR:
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception:
            return False
        finally:
            self._history.append(event)
            del self._history[:-self._history_size]

        return True

    async def log_account_created(
        self,
        account_id: str,
        name: str,
        balance: Decimal,
        owner_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_created(account_id, name, balance, owner_id))

    async def log_account_updated(
        self,
        account_id: str,
        changes: dict[str, Any],
        owner_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_updated(account_id, changes, owner_id))

    async def log_account_deleted(self, account_id: str, owner_id: Optional[str] = None) -> None:
        await self.log(AuditEventBuilder.account_deleted(account_id, owner_id))

    async def log_transaction_added(
        self,
        transaction_id: str,
        tx_type: str,
        amount: Decimal,
        balances: dict[str, Decimal],
        owner_id: Optional[str] = None,
    ) -> None:
        """Log a transaction insert together with the resulting balances."""
        await self.log(
            AuditEventBuilder.transaction_added(transaction_id, tx_type, amount, balances, owner_id)
        )

    async def log_transaction_deleted(
        self,
        transaction_id: str,
        tx_type: str,
        amount: Decimal,
        balances: dict[str, Decimal],
        owner_id: Optional[str] = None,
    ) -> None:
        await self.log(
            AuditEventBuilder.transaction_deleted(transaction_id, tx_type, amount, balances, owner_id)
        )

    async def log_budget_upserted(
        self,
        budget_id: str,
        category: str,
        month: str,
        amount: Decimal,
        created: bool,
    ) -> None:
        await self.log(AuditEventBuilder.budget_upserted(budget_id, category, month, amount, created))

    async def log_budget_deleted(self, budget_id: str) -> None:
        await self.log(AuditEventBuilder.budget_deleted(budget_id))

    async def log_data_exported(self, counts: dict[str, int]) -> None:
        await self.log(AuditEventBuilder.data_exported(counts))

    async def log_data_imported(self, counts: dict[str, int], owner_id: Optional[str] = None) -> None:
        await self.log(AuditEventBuilder.data_imported(counts, owner_id))

    async def log_balance_discrepancy(self, account_id: str, recorded: Decimal, expected: Decimal) -> None:
        await self.log(AuditEventBuilder.balance_discrepancy(account_id, recorded, expected))

    async def log_operation_failed(
        self,
        operation: str,
        error_kind: str,
        error_message: str,
        entity_id: Optional[str] = None,
    ) -> None:
        """Log a failed ledger operation before the error propagates."""
        await self.log(
            AuditEventBuilder.operation_failed(operation, error_kind, error_message, entity_id)
        )
