"""
Streamlit Frontend for Budget Ledger

Thin presentation layer over the ledger store.

DESIGN PRINCIPLES:
1. The UI never edits balances; it only calls store operations
2. After every mutation the page re-reads from the store
3. Failures show a short notification naming the failure kind;
   the session keeps running
"""

import asyncio
import threading
from datetime import date
from decimal import Decimal

import streamlit as st

from budget_ledger.config import get_settings, validate_all_settings
from budget_ledger.errors import LedgerError
from budget_ledger.ledger import LedgerStore, current_month, month_label
from budget_ledger.models import (
    AccountType,
    TransactionType,
    categories_for,
    category_label,
)
from budget_ledger.orchestrator import create_ledger_store


st.set_page_config(
    page_title="Budget Ledger",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)


@st.cache_resource
def get_event_loop() -> asyncio.AbstractEventLoop:
    """One long-lived loop, so async storage clients stay bound to it across reruns."""
    loop = asyncio.new_event_loop()
    threading.Thread(target=loop.run_forever, daemon=True).start()
    return loop


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    return asyncio.run_coroutine_threadsafe(coro, get_event_loop()).result()


_FAILED = object()


def call(coro, success: str = "", failed=None):
    """Run a store call; show a toast for ledger failures instead of crashing.

    Returns ``failed`` when the call raised a LedgerError.
    """
    try:
        result = run_async(coro)
    except LedgerError as e:
        st.toast(f"⚠️ {e.kind.replace('_', ' ').capitalize()}: {e}")
        return failed
    if success:
        st.toast(f"✅ {success}")
    return result


def attempt(coro, success: str = "") -> bool:
    """Like ``call`` but reports whether the operation succeeded."""
    return call(coro, success, failed=_FAILED) is not _FAILED


@st.cache_resource
def get_store() -> LedgerStore:
    """Get or create the ledger store (cached)."""
    return create_ledger_store()


def money(amount: Decimal) -> str:
    return f"{get_settings().app.currency_label} {amount:,.2f}"


def main():
    store = get_store()

    st.sidebar.title("💰 Budget Ledger")
    st.sidebar.caption(f"Storage: {store.storage.name}")
    if not store.storage.supports_atomic_units:
        st.sidebar.caption("Writes are not atomic; run Reconcile after a failed save.")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["📊 Dashboard", "🏦 Accounts", "💸 Transactions", "🎯 Budgets", "⚙️ Settings"],
        index=0,
    )

    if page == "📊 Dashboard":
        render_dashboard(store)
    elif page == "🏦 Accounts":
        render_accounts_page(store)
    elif page == "💸 Transactions":
        render_transactions_page(store)
    elif page == "🎯 Budgets":
        render_budgets_page(store)
    elif page == "⚙️ Settings":
        render_settings_page(store)


def render_dashboard(store: LedgerStore):
    month = current_month()
    st.header(f"📊 {month_label(month)}")

    total = call(store.total_balance())
    summary = call(store.compute_period_summary(month))
    if total is None or summary is None:
        return

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Total balance", money(total))
    col2.metric("Income", money(summary.income))
    col3.metric("Expenses", money(summary.expense))
    col4.metric("Net", money(summary.net))

    spending = call(store.spending_by_category(month)) or []
    if spending:
        st.subheader("Spending by category")
        st.bar_chart(
            {category_label(item.category): float(item.total) for item in spending}
        )

    st.subheader("Recent transactions")
    render_transaction_list(store, (call(store.query_transactions()) or [])[:10], key="recent")


def render_accounts_page(store: LedgerStore):
    st.header("🏦 Accounts")

    with st.form("add_account", clear_on_submit=True):
        name = st.text_input("Account name")
        account_type = st.selectbox("Type", [t.value for t in AccountType])
        balance = st.number_input("Opening balance", value=0.0, step=100.0)
        if st.form_submit_button("Add account"):
            call(
                store.create_account(name, account_type, Decimal(str(balance))),
                success=f"Account '{name}' created",
            )

    accounts = call(store.list_accounts()) or []
    if not accounts:
        st.info("No accounts yet.")
        return

    for account in accounts:
        col1, col2, col3 = st.columns([3, 2, 1])
        col1.markdown(f"**{account.name}** · {account.type.value}")
        col2.markdown(money(account.balance))
        if col3.button("Delete", key=f"del_acc_{account.id}"):
            if attempt(store.delete_account(account.id), success="Account deleted"):
                st.rerun()


def render_transactions_page(store: LedgerStore):
    st.header("💸 Transactions")

    accounts = call(store.list_accounts()) or []
    if not accounts:
        st.info("Create an account first.")
        return
    names = {a.id: a.name for a in accounts}

    tx_type = TransactionType(
        st.radio("Type", [t.value for t in TransactionType], horizontal=True)
    )
    with st.form("add_transaction", clear_on_submit=True):
        amount = st.number_input("Amount", min_value=0.0, step=10.0)
        account_id = st.selectbox("Account", list(names), format_func=names.get)
        to_account_id = None
        category = None
        if tx_type == TransactionType.TRANSFER:
            to_account_id = st.selectbox("To account", list(names), format_func=names.get)
        else:
            catalog = categories_for(tx_type)
            category = st.selectbox(
                "Category", [c.id for c in catalog], format_func=category_label
            )
        tx_date = st.date_input("Date", value=date.today())
        note = st.text_input("Note")
        if st.form_submit_button("Save"):
            call(
                store.add_transaction(
                    type=tx_type,
                    amount=Decimal(str(amount)),
                    account_id=account_id,
                    to_account_id=to_account_id,
                    category=category,
                    date=tx_date,
                    note=note or None,
                ),
                success="Transaction saved",
            )

    st.subheader("History")
    col1, col2, col3 = st.columns(3)
    account_filter = col1.selectbox(
        "Account", [None, *names], format_func=lambda v: "All" if v is None else names[v]
    )
    type_filter = col2.selectbox("Type", [None, *[t.value for t in TransactionType]],
                                 format_func=lambda v: "All" if v is None else v)
    month_filter = col3.text_input("Month (YYYY-MM)", value=current_month())

    transactions = call(store.query_transactions(
        account_id=account_filter,
        type=type_filter,
        month=month_filter or None,
    )) or []
    render_transaction_list(store, transactions, key="history", names=names)


def render_transaction_list(store: LedgerStore, transactions, key: str, names=None):
    if not transactions:
        st.info("No transactions.")
        return
    names = names or {}
    for tx in transactions:
        col1, col2, col3, col4 = st.columns([2, 3, 2, 1])
        col1.markdown(tx.date.isoformat())
        if tx.type == TransactionType.TRANSFER:
            label = f"{names.get(tx.account_id, tx.account_id)} → {names.get(tx.to_account_id, tx.to_account_id)}"
        else:
            label = category_label(tx.category)
        col2.markdown(f"{label}" + (f" · _{tx.note}_" if tx.note else ""))
        sign = {"income": "+", "expense": "-"}.get(tx.type.value, "")
        col3.markdown(f"{sign}{money(tx.amount)}")
        if col4.button("Delete", key=f"{key}_del_{tx.id}"):
            if attempt(store.delete_transaction(tx.id), success="Transaction deleted"):
                st.rerun()


def render_budgets_page(store: LedgerStore):
    st.header("🎯 Budgets")
    month = st.text_input("Month (YYYY-MM)", value=current_month())

    with st.form("set_budget", clear_on_submit=True):
        catalog = categories_for(TransactionType.EXPENSE)
        category = st.selectbox("Category", [c.id for c in catalog], format_func=category_label)
        amount = st.number_input("Monthly target", min_value=0.0, step=100.0)
        if st.form_submit_button("Save budget"):
            call(store.upsert_budget(category, month, Decimal(str(amount))), success="Budget saved")

    utilizations = call(store.list_budget_utilization(month)) or []
    if not utilizations:
        st.info("No budgets for this month.")
        return

    for item in utilizations:
        st.markdown(
            f"**{category_label(item.category)}**: {money(item.spent)} of {money(item.target)}"
        )
        # Display is capped at 100%; the store reports the raw percentage
        st.progress(min((item.percent_used or 0) / 100, 1.0))
        if item.is_over_budget:
            st.caption(f"Over budget by {money(-item.remaining)}")


def render_settings_page(store: LedgerStore):
    st.header("⚙️ Settings")

    st.subheader("Configuration")
    results = validate_all_settings()
    for name in ("storage", "firestore", "app"):
        if name not in results:
            continue
        if results[name]:
            st.success(f"✅ {name} - OK")
        else:
            st.error(f"❌ {name} - {results.get(name + '_error')}")

    st.subheader("Consistency check")
    if st.button("Reconcile balances"):
        discrepancies = call(store.reconcile())
        if discrepancies == []:
            st.success("All balances match the transaction history.")
        for item in discrepancies or []:
            st.warning(
                f"{item.account_id}: recorded {money(item.recorded_balance)}, "
                f"expected {money(item.expected_balance)}"
            )

    st.subheader("Backup")
    payload = call(store.export_json())
    if payload:
        st.download_button(
            "Download backup (JSON)",
            data=payload,
            file_name=f"budget-ledger-{date.today().isoformat()}.json",
            mime="application/json",
        )

    uploaded = st.file_uploader("Restore from backup", type=["json"])
    if uploaded and st.button("Replace ledger with this backup"):
        call(store.import_json(uploaded.getvalue()), success="Backup restored")


if __name__ == "__main__":
    main()
