"""
Ledger Store

DESIGN DECISION: The ledger store is the only code that mutates
accounts, transactions and budgets. It owns the balance invariant:

    account.balance == account.initial_balance
                       + signed effects of every transaction referencing it

Every mutation that touches balances runs as one unit of change on the
storage backend:
- Atomic backends commit the record and the balance updates together,
  re-reading balances inside the unit. On a write conflict the whole
  unit is retried (bounded, exponential backoff).
- The local backend runs the same steps sequentially. A failure midway
  is NOT masked; ``reconcile()`` reports the resulting drift.

The store emits no events. Callers re-query after a mutation or use the
records returned by it.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

import structlog
from pydantic import BaseModel, ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from budget_ledger.audit import AuditLogger
from budget_ledger.errors import (
    AccountInUseError,
    AccountNotFoundError,
    BudgetNotFoundError,
    ConflictError,
    LedgerError,
    TransactionNotFoundError,
    ValidationError,
)
from budget_ledger.ledger.balances import apply_effects, balance_effects, find_discrepancies, inverse_effects
from budget_ledger.ledger.periods import validate_month
from budget_ledger.ledger.transfer import (
    ImportDocument,
    build_export,
    export_to_json,
    parse_import,
    rescope,
)
from budget_ledger.models.ledger import (
    Account,
    AccountType,
    BalanceDiscrepancy,
    Budget,
    BudgetUtilization,
    CategoryTotal,
    LedgerExport,
    PeriodSummary,
    Transaction,
    TransactionFilter,
    TransactionResult,
    TransactionType,
)
from budget_ledger.models.audit import AuditEventBuilder
from budget_ledger.services.storage import LedgerStorageInterface, UnitOfChange


T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

logger = structlog.get_logger(__name__)


def _to_decimal(value: Union[Decimal, int, float, str], field: str) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field} must be a number, got {value!r}") from e
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return amount


def _build(model: type[M], **data: Any) -> M:
    """Construct a record, reporting pydantic failures as ValidationError."""
    try:
        return model(**data)
    except PydanticValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        raise ValidationError(f"Invalid {model.__name__.lower()}: {messages}") from e


def _sort_newest_first(transactions: list[Transaction]) -> list[Transaction]:
    # Backends list in insertion order; reversing before the stable sort puts
    # the later insert first among equal (date, created_at)
    return sorted(reversed(transactions), key=lambda tx: (tx.date, tx.created_at), reverse=True)


class LedgerStore:
    """
    Backend-agnostic ledger with balance consistency.

    Args:
        storage: Storage capability (Firestore, local, memory)
        audit_logger: Audit sink. A local-only logger is created if None.
        max_attempts: Attempts per unit of change on ConflictError
        retry_min_wait / retry_max_wait: Backoff bounds in seconds
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        max_attempts: int = 5,
        retry_min_wait: float = 0.05,
        retry_max_wait: float = 2.0,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._max_attempts = max_attempts
        self._retry_min_wait = retry_min_wait
        self._retry_max_wait = retry_max_wait

    @property
    def storage(self) -> LedgerStorageInterface:
        return self._storage

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit

    @property
    def owner_id(self) -> Optional[str]:
        return self._storage.owner_id

    # =========================================================================
    # Units of change
    # =========================================================================

    def _log_retry(self, operation: str) -> Callable[[RetryCallState], None]:
        def before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            logger.warning(
                "unit_retried",
                operation=operation,
                attempt=state.attempt_number,
                error=str(error),
            )
            self._audit.record(
                AuditEventBuilder.unit_retried(operation, state.attempt_number, str(error))
            )
        return before_sleep

    async def _run_unit(self, operation: str, fn: Callable[[UnitOfChange], Awaitable[T]]) -> T:
        """
        Run ``fn`` as a unit of change, retrying the whole unit on conflict.

        Failures are audited and re-raised unchanged.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(
                multiplier=self._retry_min_wait,
                min=self._retry_min_wait,
                max=self._retry_max_wait,
            ),
            retry=retry_if_exception_type(ConflictError),
            before_sleep=self._log_retry(operation),
            reraise=True,
        )
        try:
            return await retrying(self._storage.run_unit, fn)
        except LedgerError as e:
            await self._audit.log_operation_failed(operation, e.kind, str(e))
            raise

    # =========================================================================
    # Accounts
    # =========================================================================

    async def create_account(
        self,
        name: str,
        type: Union[AccountType, str] = AccountType.BANK,
        initial_balance: Union[Decimal, int, float, str] = Decimal("0"),
    ) -> Account:
        """Create an account whose balance starts at ``initial_balance``."""
        balance = _to_decimal(initial_balance, "Initial balance")
        account = _build(
            Account,
            name=name,
            type=type,
            balance=balance,
            initial_balance=balance,
            owner_id=self.owner_id,
        )

        async def unit(uow: UnitOfChange) -> Account:
            await uow.put_account(account)
            return account

        created = await self._run_unit("create_account", unit)
        await self._audit.log_account_created(created.id, created.name, created.balance, self.owner_id)
        return created

    async def rename_account(
        self,
        account_id: str,
        name: Optional[str] = None,
        type: Union[AccountType, str, None] = None,
    ) -> Account:
        """
        Change an account's display name and/or type.

        The balance is never edited directly; it only moves through
        transactions.
        """
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if type is not None:
            changes["type"] = type

        async def unit(uow: UnitOfChange) -> Account:
            account = await uow.get_account(account_id)
            if account is None:
                raise AccountNotFoundError(account_id)
            updated = _build(Account, **{**account.model_dump(), **changes})
            await uow.put_account(updated)
            return updated

        updated = await self._run_unit("rename_account", unit)
        await self._audit.log_account_updated(
            account_id, {k: str(v) for k, v in changes.items()}, self.owner_id
        )
        return updated

    async def get_account(self, account_id: str) -> Account:
        account = await self._storage.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    async def list_accounts(self) -> list[Account]:
        accounts = await self._storage.list_accounts()
        return sorted(accounts, key=lambda a: a.created_at)

    async def total_balance(self) -> Decimal:
        return sum((a.balance for a in await self._storage.list_accounts()), Decimal("0"))

    async def delete_account(self, account_id: str) -> None:
        """
        Delete an account.

        Refused with AccountInUseError while any transaction references
        the account as source or destination; those must be deleted
        first so their balance effects are reversed explicitly.
        """

        async def unit(uow: UnitOfChange) -> None:
            account = await uow.get_account(account_id)
            if account is None:
                raise AccountNotFoundError(account_id)
            in_use = await uow.count_transactions_for(account_id)
            if in_use:
                raise AccountInUseError(account_id, in_use)
            await uow.delete_account(account_id)

        await self._run_unit("delete_account", unit)
        await self._audit.log_account_deleted(account_id, self.owner_id)

    # =========================================================================
    # Transactions
    # =========================================================================

    def _new_transaction(
        self,
        type: Union[TransactionType, str],
        amount: Union[Decimal, int, float, str],
        account_id: str,
        to_account_id: Optional[str],
        category: Optional[str],
        date: date,
        note: Optional[str],
    ) -> Transaction:
        try:
            tx_type = TransactionType(type)
        except ValueError as e:
            raise ValidationError(f"Unknown transaction type: {type!r}") from e

        value = _to_decimal(amount, "Amount")
        if value <= 0:
            raise ValidationError("Amount must be greater than zero")
        if not account_id:
            raise ValidationError("Source account is required")

        if tx_type == TransactionType.TRANSFER:
            if not to_account_id:
                raise ValidationError("Transfer requires a destination account")
            if to_account_id == account_id:
                raise ValidationError("Transfer source and destination must differ")
            category = None
        else:
            if not category or not category.strip():
                raise ValidationError(f"Category is required for {tx_type.value}")
            to_account_id = None

        return _build(
            Transaction,
            type=tx_type,
            amount=value,
            account_id=account_id,
            to_account_id=to_account_id,
            category=category,
            date=date,
            note=note,
            owner_id=self.owner_id,
        )

    async def add_transaction(
        self,
        type: Union[TransactionType, str],
        amount: Union[Decimal, int, float, str],
        account_id: str,
        date: date,
        to_account_id: Optional[str] = None,
        category: Optional[str] = None,
        note: Optional[str] = None,
    ) -> TransactionResult:
        """
        Record a transaction and apply its balance effect.

        Returns:
            The created transaction and the updated account(s)

        Raises:
            ValidationError: amount <= 0, transfer to the same account,
                missing category
            AccountNotFoundError: source or destination does not resolve
        """
        try:
            tx = self._new_transaction(type, amount, account_id, to_account_id, category, date, note)
        except ValidationError as e:
            await self._audit.log_operation_failed("add_transaction", e.kind, str(e))
            raise

        async def unit(uow: UnitOfChange) -> TransactionResult:
            touched: dict[str, Account] = {}
            for ref in tx.account_ids:
                account = await uow.get_account(ref)
                if account is None:
                    raise AccountNotFoundError(ref)
                touched[ref] = account

            updated = apply_effects(touched, balance_effects(tx))
            for account in updated.values():
                await uow.put_account(account)
            await uow.insert_transaction(tx)
            return TransactionResult(transaction=tx, accounts=list(updated.values()))

        result = await self._run_unit("add_transaction", unit)
        await self._audit.log_transaction_added(
            tx.id,
            tx.type.value,
            tx.amount,
            {a.id: a.balance for a in result.accounts},
            self.owner_id,
        )
        return result

    async def delete_transaction(self, transaction_id: str) -> TransactionResult:
        """
        Delete a transaction and reverse its balance effect.

        Accounts that no longer resolve (orphaned imported data) are
        skipped; the others are reversed exactly.

        Returns:
            The deleted transaction and the updated account(s)
        """

        async def unit(uow: UnitOfChange) -> TransactionResult:
            tx = await uow.get_transaction(transaction_id)
            if tx is None:
                raise TransactionNotFoundError(transaction_id)

            touched: dict[str, Account] = {}
            for ref in tx.account_ids:
                account = await uow.get_account(ref)
                if account is not None:
                    touched[ref] = account

            updated = apply_effects(touched, inverse_effects(tx))
            for account in updated.values():
                await uow.put_account(account)
            await uow.delete_transaction(transaction_id)
            return TransactionResult(transaction=tx, accounts=list(updated.values()))

        result = await self._run_unit("delete_transaction", unit)
        await self._audit.log_transaction_deleted(
            transaction_id,
            result.transaction.type.value,
            result.transaction.amount,
            {a.id: a.balance for a in result.accounts},
            self.owner_id,
        )
        return result

    async def get_transaction(self, transaction_id: str) -> Transaction:
        tx = await self._storage.get_transaction(transaction_id)
        if tx is None:
            raise TransactionNotFoundError(transaction_id)
        return tx

    async def query_transactions(
        self,
        account_id: Optional[str] = None,
        type: Union[TransactionType, str, None] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        month: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[Transaction]:
        """
        Transactions matching every supplied filter, newest first.

        ``account_id`` matches source or destination; date bounds are
        inclusive; ``month`` is YYYY-MM. Same-date transactions are
        ordered by creation time, newest first.
        """
        if month is not None:
            validate_month(month)
        filters = _build(
            TransactionFilter,
            account_id=account_id,
            type=type,
            date_from=date_from,
            date_to=date_to,
            month=month,
            category=category,
        )
        transactions = await self._storage.list_transactions(None if filters.is_empty else filters)
        return _sort_newest_first([tx for tx in transactions if filters.matches(tx)])

    # =========================================================================
    # Budgets
    # =========================================================================

    async def upsert_budget(
        self,
        category: str,
        month: str,
        amount: Union[Decimal, int, float, str],
    ) -> Budget:
        """
        Set the target for (category, month).

        Replaces the amount of an existing budget for that key, otherwise
        creates one. Never creates a duplicate.
        """
        validate_month(month)
        value = _to_decimal(amount, "Budget amount")
        if value <= 0:
            raise ValidationError("Budget amount must be greater than zero")
        if not category or not category.strip():
            raise ValidationError("Budget category is required")
        candidate = _build(Budget, category=category, month=month, amount=value, owner_id=self.owner_id)

        async def unit(uow: UnitOfChange) -> tuple[Budget, bool]:
            existing = await uow.find_budget(candidate.category, month)
            if existing is not None:
                budget = existing.model_copy(update={"amount": value})
                created = False
            else:
                budget = candidate
                created = True
            await uow.put_budget(budget)
            return budget, created

        budget, created = await self._run_unit("upsert_budget", unit)
        await self._audit.log_budget_upserted(budget.id, budget.category, budget.month, budget.amount, created)
        return budget

    async def list_budgets(self, month: Optional[str] = None) -> list[Budget]:
        if month is not None:
            validate_month(month)
        return await self._storage.list_budgets(month)

    async def delete_budget(self, budget_id: str) -> None:
        if not await self._storage.delete_budget(budget_id):
            error = BudgetNotFoundError(budget_id)
            await self._audit.log_operation_failed("delete_budget", error.kind, str(error), budget_id)
            raise error
        await self._audit.log_budget_deleted(budget_id)

    # =========================================================================
    # Summaries
    # =========================================================================

    async def compute_period_summary(self, month: str) -> PeriodSummary:
        """Total income and expense for a month. Transfers count as neither."""
        summary = PeriodSummary(month=validate_month(month))
        for tx in await self.query_transactions(month=month):
            if tx.type == TransactionType.INCOME:
                summary.income += tx.amount
            elif tx.type == TransactionType.EXPENSE:
                summary.expense += tx.amount
        return summary

    async def compute_budget_utilization(self, category: str, month: str) -> BudgetUtilization:
        """
        Expense total for (category, month) next to the budget target.

        ``target`` is None when no budget exists for the key.
        """
        validate_month(month)
        budget = await self._storage.find_budget(category, month)
        expenses = await self.query_transactions(
            type=TransactionType.EXPENSE, month=month, category=category
        )
        return BudgetUtilization(
            category=category,
            month=month,
            spent=sum((tx.amount for tx in expenses), Decimal("0")),
            target=budget.amount if budget else None,
        )

    async def list_budget_utilization(self, month: str) -> list[BudgetUtilization]:
        """Utilization of every budget set for ``month``."""
        budgets = await self.list_budgets(month)
        spent = await self._expense_totals(month)
        return [
            BudgetUtilization(
                category=budget.category,
                month=month,
                spent=spent.get(budget.category, Decimal("0")),
                target=budget.amount,
            )
            for budget in sorted(budgets, key=lambda b: b.category)
        ]

    async def spending_by_category(self, month: str) -> list[CategoryTotal]:
        """Expense totals per category for ``month``, largest first."""
        totals = await self._expense_totals(month)
        return [
            CategoryTotal(category=category, total=total)
            for category, total in sorted(totals.items(), key=lambda item: item[1], reverse=True)
        ]

    async def _expense_totals(self, month: str) -> dict[str, Decimal]:
        totals: dict[str, Decimal] = defaultdict(Decimal)
        for tx in await self.query_transactions(type=TransactionType.EXPENSE, month=month):
            totals[tx.category] += tx.amount
        return dict(totals)

    async def reconcile(self) -> list[BalanceDiscrepancy]:
        """
        Recompute balances from history and report every mismatch.

        A clean ledger returns an empty list. Mismatches appear after a
        partial failure on a non-atomic backend.
        """
        accounts = await self._storage.list_accounts()
        transactions = await self._storage.list_transactions()
        discrepancies = find_discrepancies(accounts, transactions)
        for item in discrepancies:
            await self._audit.log_balance_discrepancy(
                item.account_id, item.recorded_balance, item.expected_balance
            )
        return discrepancies

    # =========================================================================
    # Import / export
    # =========================================================================

    async def export_data(self) -> LedgerExport:
        export = build_export(
            accounts=await self.list_accounts(),
            transactions=await self._storage.list_transactions(),
            budgets=await self._storage.list_budgets(),
        )
        await self._audit.log_data_exported({
            "accounts": len(export.accounts),
            "transactions": len(export.transactions),
            "budgets": len(export.budgets),
        })
        return export

    async def export_json(self) -> str:
        return export_to_json(await self.export_data())

    async def import_data(self, document: ImportDocument) -> LedgerExport:
        """
        Replace the ledger of the current owner scope with ``document``.

        Ids and values are preserved; records are moved into the current
        owner scope.

        Raises:
            ValidationError: The document is malformed
        """
        try:
            export = rescope(parse_import(document), self.owner_id)
            await self._storage.replace_all(export)
        except LedgerError as e:
            await self._audit.log_operation_failed("import_data", e.kind, str(e))
            raise

        await self._audit.log_data_imported({
            "accounts": len(export.accounts),
            "transactions": len(export.transactions),
            "budgets": len(export.budgets),
        }, self.owner_id)
        return export

    async def import_json(self, payload: Union[str, bytes]) -> LedgerExport:
        return await self.import_data(payload)
