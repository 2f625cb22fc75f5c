"""Pure balance arithmetic.

Every balance change in the ledger goes through ``balance_effects`` so
that adding and deleting a transaction are exact inverses.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Iterable

from budget_ledger.models.ledger import (
    Account,
    BalanceDiscrepancy,
    Transaction,
    TransactionType,
)


def balance_effects(tx: Transaction) -> dict[str, Decimal]:
    """Signed balance delta per account for applying ``tx``.

    Args:
        tx: The transaction being applied.

    Returns:
        Mapping of account id to delta:
        - income: source +amount
        - expense: source -amount
        - transfer: source -amount, destination +amount
    """
    if tx.type == TransactionType.INCOME:
        return {tx.account_id: tx.amount}
    if tx.type == TransactionType.EXPENSE:
        return {tx.account_id: -tx.amount}
    return {tx.account_id: -tx.amount, tx.to_account_id: tx.amount}


def inverse_effects(tx: Transaction) -> dict[str, Decimal]:
    """Signed balance delta per account for removing ``tx``."""
    return {account_id: -delta for account_id, delta in balance_effects(tx).items()}


def apply_effects(
    accounts: dict[str, Account],
    effects: dict[str, Decimal],
) -> dict[str, Account]:
    """Return updated copies of the accounts named in ``effects``.

    Accounts missing from ``accounts`` are skipped.
    """
    updated = {}
    for account_id, delta in effects.items():
        account = accounts.get(account_id)
        if account is None:
            continue
        updated[account_id] = account.model_copy(update={"balance": account.balance + delta})
    return updated


def expected_balances(
    accounts: Iterable[Account],
    transactions: Iterable[Transaction],
) -> dict[str, Decimal]:
    """Recompute every balance from its initial balance and the history."""
    totals: dict[str, Decimal] = defaultdict(Decimal)
    for tx in transactions:
        for account_id, delta in balance_effects(tx).items():
            totals[account_id] += delta
    return {
        account.id: (account.initial_balance or Decimal("0")) + totals[account.id]
        for account in accounts
    }


def find_discrepancies(
    accounts: list[Account],
    transactions: list[Transaction],
) -> list[BalanceDiscrepancy]:
    """Accounts whose stored balance disagrees with the transaction history."""
    expected = expected_balances(accounts, transactions)
    return [
        BalanceDiscrepancy(
            account_id=account.id,
            recorded_balance=account.balance,
            expected_balance=expected[account.id],
        )
        for account in accounts
        if account.balance != expected[account.id]
    ]
