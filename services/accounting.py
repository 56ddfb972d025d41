# services/accounting.py
"""
Financial statements built from posted journal lines.

Everything here reads Posted journals only; drafts and voided journals never
reach a report. Frames carry their summary figures in ``DataFrame.attrs``.
"""
from __future__ import annotations
from datetime import date

import pandas as pd

from models.base import session_scope
from models import journals_store

TB_COLUMNS = ["account_id", "account_code", "account_name", "account_type",
              "debits", "credits", "balance"]


def journal_frame(org_id: int, start: date | None = None, end: date | None = None) -> pd.DataFrame:
    """One row per posted journal line in the window."""
    with session_scope() as s:
        rows = journals_store.posted_lines_frame_rows(
            s, org_id, start=start, end=end)
    cols = ["date", "journal_number", "account_id", "account_code",
            "account_name", "account_type", "debit", "credit"]
    return pd.DataFrame(rows, columns=cols)


def _tb_from_journal(journal: pd.DataFrame) -> pd.DataFrame:
    """
    Sum debits/credits per account and compute ending balance by account type.
    Balance sign convention:
      Asset/Expense: balance = debits - credits
      Liability/Equity/Revenue: balance = credits - debits
    """
    if journal.empty:
        g = pd.DataFrame(columns=TB_COLUMNS)
        g.attrs.update(sum_debits=0.0, sum_credits=0.0, out_of_balance=0.0)
        return g

    g = journal.groupby(["account_id", "account_code", "account_name", "account_type"],
                        dropna=False).agg(
        debits=("debit", "sum"),
        credits=("credit", "sum"),
    ).reset_index()

    def _balance(row):
        if row["account_type"] in ("Asset", "Expense"):
            return row["debits"] - row["credits"]
        return row["credits"] - row["debits"]

    g["debits"] = g["debits"].round(2)
    g["credits"] = g["credits"].round(2)
    g["balance"] = g.apply(_balance, axis=1).round(2)
    g = g.sort_values("account_code").reset_index(drop=True)
    # TB check (should be zero): sum(debit) == sum(credit)
    g.attrs["sum_debits"] = round(float(journal["debit"].sum()), 2)
    g.attrs["sum_credits"] = round(float(journal["credit"].sum()), 2)
    g.attrs["out_of_balance"] = round(
        g.attrs["sum_debits"] - g.attrs["sum_credits"], 2)
    return g


def trial_balance(org_id: int, start: date | None = None, end: date | None = None) -> pd.DataFrame:
    return _tb_from_journal(journal_frame(org_id, start, end))


def _total(tb: pd.DataFrame, account_type: str) -> float:
    if tb.empty:
        return 0.0
    return round(float(tb.loc[tb["account_type"] == account_type, "balance"].sum()), 2)


def income_statement(org_id: int, start: date | None = None, end: date | None = None) -> pd.DataFrame:
    """
    Revenue and expense accounts over the window.
      Revenue: credits - debits
      Expenses: debits - credits
    attrs: total_revenue, total_expenses, net_income
    """
    tb = trial_balance(org_id, start, end)
    pl = tb[tb["account_type"].isin(["Revenue", "Expense"])].reset_index(drop=True)
    revenue = _total(tb, "Revenue")
    expenses = _total(tb, "Expense")
    pl.attrs.update(
        total_revenue=revenue,
        total_expenses=expenses,
        net_income=round(revenue - expenses, 2),
    )
    return pl


def balance_sheet(org_id: int, as_of: date | None = None) -> pd.DataFrame:
    """
    Cumulative position at `as_of`: Assets vs Liabilities + Equity.
    Current-period earnings (Revenue - Expense to date) are folded into
    equity as a computed Retained Earnings figure so the sheet balances.
    """
    tb = trial_balance(org_id, None, as_of)
    bs = tb[tb["account_type"].isin(["Asset", "Liability", "Equity"])].reset_index(drop=True)

    assets = _total(tb, "Asset")
    liabilities = _total(tb, "Liability")
    equity = _total(tb, "Equity")
    retained = round(_total(tb, "Revenue") - _total(tb, "Expense"), 2)
    total_equity = round(equity + retained, 2)

    bs.attrs.update(
        as_of=as_of.isoformat() if as_of else None,
        total_assets=assets,
        total_liabilities=liabilities,
        total_equity=total_equity,
        retained_earnings=retained,
        check=round(assets - (liabilities + total_equity), 2),
    )
    return bs


def frame_payload(df: pd.DataFrame) -> dict:
    """JSON-ready body for a report frame."""
    rows = df.astype(object).where(pd.notna(df), None).to_dict(orient="records")
    return {"rows": rows, **df.attrs}
