"""
Audit Models for Budget Ledger

Every mutation of the ledger is recorded as an audit event.
This provides:
1. Traceability of balance changes
2. Debugging information when a unit of change fails
3. Evidence for reconciling the non-atomic local backend

DESIGN DECISION: Audit events are append-only. We never modify them.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Accounts
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"

    # Transactions
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_DELETED = "transaction_deleted"

    # Budgets
    BUDGET_UPSERTED = "budget_upserted"
    BUDGET_DELETED = "budget_deleted"

    # Import / export
    DATA_EXPORTED = "data_exported"
    DATA_IMPORTED = "data_imported"

    # Consistency
    UNIT_RETRIED = "unit_retried"
    BALANCE_DISCREPANCY = "balance_discrepancy"

    # Failures
    OPERATION_FAILED = "operation_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every mutation creates one of these.
    """

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # What entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (account, transaction, budget, ledger)"
    )
    entity_id: Optional[str] = None
    owner_id: Optional[str] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_kind: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "owner_id": self.owner_id,
            "description": self.description,
            "details": self.details,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
        }


def _amount(value: Decimal) -> str:
    return str(value)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_added(tx.id, tx.type.value, tx.amount, balances)
        event = AuditEventBuilder.operation_failed("delete_account", exc.kind, str(exc), account_id)
    """

    @staticmethod
    def account_created(account_id: str, name: str, balance: Decimal, owner_id: Optional[str] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=account_id,
            owner_id=owner_id,
            description=f"Account created: {name}",
            details={"initial_balance": _amount(balance)},
        )

    @staticmethod
    def account_updated(account_id: str, changes: dict[str, Any], owner_id: Optional[str] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_UPDATED,
            entity_type="account",
            entity_id=account_id,
            owner_id=owner_id,
            description="Account updated",
            details=changes,
        )

    @staticmethod
    def account_deleted(account_id: str, owner_id: Optional[str] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            entity_type="account",
            entity_id=account_id,
            owner_id=owner_id,
            description=f"Account deleted: {account_id}",
        )

    @staticmethod
    def transaction_added(
        transaction_id: str,
        tx_type: str,
        amount: Decimal,
        balances: dict[str, Decimal],
        owner_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            entity_type="transaction",
            entity_id=transaction_id,
            owner_id=owner_id,
            description=f"{tx_type.capitalize()} of {amount} recorded",
            details={
                "type": tx_type,
                "amount": _amount(amount),
                "balances": {k: _amount(v) for k, v in balances.items()},
            },
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: str,
        tx_type: str,
        amount: Decimal,
        balances: dict[str, Decimal],
        owner_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            owner_id=owner_id,
            description=f"{tx_type.capitalize()} of {amount} reversed and deleted",
            details={
                "type": tx_type,
                "amount": _amount(amount),
                "balances": {k: _amount(v) for k, v in balances.items()},
            },
        )

    @staticmethod
    def budget_upserted(budget_id: str, category: str, month: str, amount: Decimal, created: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_UPSERTED,
            entity_type="budget",
            entity_id=budget_id,
            description=f"Budget {'created' if created else 'updated'} for {category} {month}",
            details={"category": category, "month": month, "amount": _amount(amount)},
        )

    @staticmethod
    def budget_deleted(budget_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_DELETED,
            entity_type="budget",
            entity_id=budget_id,
            description=f"Budget deleted: {budget_id}",
        )

    @staticmethod
    def data_exported(counts: dict[str, int]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_EXPORTED,
            entity_type="ledger",
            description="Ledger exported",
            details=counts,
        )

    @staticmethod
    def data_imported(counts: dict[str, int], owner_id: Optional[str] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_IMPORTED,
            severity=AuditSeverity.WARNING,
            entity_type="ledger",
            owner_id=owner_id,
            description="Ledger replaced from import",
            details=counts,
        )

    @staticmethod
    def unit_retried(operation: str, attempt: int, error: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UNIT_RETRIED,
            severity=AuditSeverity.WARNING,
            description=f"Retrying {operation} after conflict (attempt {attempt})",
            details={"operation": operation, "attempt": attempt},
            error_kind="conflict",
            error_message=error,
        )

    @staticmethod
    def balance_discrepancy(account_id: str, recorded: Decimal, expected: Decimal) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_DISCREPANCY,
            severity=AuditSeverity.ERROR,
            entity_type="account",
            entity_id=account_id,
            description="Stored balance disagrees with transaction history",
            details={"recorded": _amount(recorded), "expected": _amount(expected)},
        )

    @staticmethod
    def operation_failed(operation: str, error_kind: str, error_message: str, entity_id: Optional[str] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_id=entity_id,
            description=f"{operation} failed",
            details={"operation": operation},
            error_kind=error_kind,
            error_message=error_message,
        )
