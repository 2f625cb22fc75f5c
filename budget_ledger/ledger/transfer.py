"""
Import / Export

The whole ledger travels as one JSON document:

    {
      "accounts": [...],
      "transactions": [...],
      "budgets": [...],
      "exported_at": "2024-06-30T12:00:00+00:00"
    }

Import replaces every collection wholesale. Legacy backups (camelCase
keys, no ``initial_balance``) are accepted; missing initial balances
are derived from the current balance and the imported transaction
history.
"""

import json
from collections import Counter
from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from budget_ledger.errors import ValidationError
from budget_ledger.ledger.balances import balance_effects
from budget_ledger.models.ledger import (
    Account,
    Budget,
    LedgerExport,
    Transaction,
)


ImportDocument = Union[LedgerExport, dict, str, bytes]


def build_export(
    accounts: list[Account],
    transactions: list[Transaction],
    budgets: list[Budget],
) -> LedgerExport:
    return LedgerExport(accounts=accounts, transactions=transactions, budgets=budgets)


def export_to_json(export: LedgerExport, indent: Optional[int] = 2) -> str:
    return export.model_dump_json(indent=indent)


def _raw_accounts_without_initial_balance(document: dict) -> set[str]:
    missing = set()
    for raw in document.get("accounts") or []:
        if not isinstance(raw, dict):
            continue
        if "initial_balance" in raw or "initialBalance" in raw:
            continue
        account_id = raw.get("id") or raw.get("_id")
        if account_id:
            missing.add(str(account_id))
    return missing


def derive_initial_balances(export: LedgerExport, account_ids: set[str]) -> LedgerExport:
    """
    Set ``initial_balance = balance - effects of history`` for the given accounts.

    Keeps the balance invariant true for data that never recorded an
    initial balance.
    """
    totals: dict[str, Decimal] = Counter()
    for tx in export.transactions:
        for account_id, delta in balance_effects(tx).items():
            totals[account_id] += delta

    accounts = [
        account.model_copy(update={"initial_balance": account.balance - totals.get(account.id, Decimal("0"))})
        if account.id in account_ids else account
        for account in export.accounts
    ]
    return export.model_copy(update={"accounts": accounts})


def _check_unique(export: LedgerExport) -> None:
    for name, records in (
        ("account", export.accounts),
        ("transaction", export.transactions),
        ("budget", export.budgets),
    ):
        duplicates = [rid for rid, count in Counter(r.id for r in records).items() if count > 1]
        if duplicates:
            raise ValidationError(f"Duplicate {name} id(s) in import: {', '.join(duplicates)}")

    keys = Counter(budget.key for budget in export.budgets)
    clashes = [f"{category}/{month}" for (category, month), count in keys.items() if count > 1]
    if clashes:
        raise ValidationError(f"More than one budget for: {', '.join(clashes)}")


def parse_import(document: ImportDocument) -> LedgerExport:
    """
    Validate an import document.

    Raises:
        ValidationError: Not JSON, not an object, a record fails
            validation, or ids / budget keys repeat
    """
    if isinstance(document, LedgerExport):
        export = document.model_copy(deep=True)
        _check_unique(export)
        return export

    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Import is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise ValidationError("Import must be a JSON object with accounts, transactions and budgets")

    raw: dict[str, Any] = {key: value for key, value in document.items() if value is not None}
    try:
        export = LedgerExport.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(f"Import contains invalid records: {e}") from e

    missing = _raw_accounts_without_initial_balance(raw)
    if missing:
        export = derive_initial_balances(export, missing)

    _check_unique(export)
    return export


def rescope(export: LedgerExport, owner_id: Optional[str]) -> LedgerExport:
    """Rewrite every record into the given owner scope."""
    update = {"owner_id": owner_id}
    return export.model_copy(update={
        "accounts": [a.model_copy(update=update) for a in export.accounts],
        "transactions": [t.model_copy(update=update) for t in export.transactions],
        "budgets": [b.model_copy(update=update) for b in export.budgets],
    })
