# models/accounts_store.py
from __future__ import annotations
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from models.gl import Account, Journal, JournalLine

CENT = Decimal("0.01")

# debit-normal accounts grow with debits; everything else grows with credits
DEBIT_NORMAL = ("Asset", "Expense")


def signed_balance(account_type: str, debits, credits) -> Decimal:
    d = Decimal(debits or 0)
    c = Decimal(credits or 0)
    bal = d - c if account_type in DEBIT_NORMAL else c - d
    return bal.quantize(CENT)


def get_account(s: Session, org_id: int, account_id: int) -> Account | None:
    return s.execute(select(Account).where(
        Account.id == account_id, Account.organization_id == org_id,
    )).scalar_one_or_none()


def get_account_by_code(s: Session, org_id: int, code: str) -> Account | None:
    return s.execute(select(Account).where(
        Account.code == code, Account.organization_id == org_id,
    )).scalar_one_or_none()


def accounts_by_id(s: Session, org_id: int, ids: Iterable[int]) -> dict[int, Account]:
    ids = set(ids)
    if not ids:
        return {}
    rows = s.execute(select(Account).where(
        Account.organization_id == org_id, Account.id.in_(ids),
    )).scalars().all()
    return {a.id: a for a in rows}


def list_accounts(s: Session, org_id: int, *, type_: str | None = None,
                  active: bool | None = None, q: str | None = None) -> list[Account]:
    stmt = select(Account).where(Account.organization_id == org_id)
    if type_:
        stmt = stmt.where(Account.type == type_)
    if active is not None:
        stmt = stmt.where(Account.is_active == active)
    if q:
        like = f"%{q}%"
        stmt = stmt.where(Account.name.ilike(like) | Account.code.ilike(like))
    return list(s.execute(stmt.order_by(Account.code)).scalars().all())


def has_lines(s: Session, account_id: int) -> bool:
    return s.execute(select(JournalLine.id).where(
        JournalLine.account_id == account_id).limit(1)).first() is not None


def posted_totals(s: Session, org_id: int, account_ids: Iterable[int]) -> dict[int, tuple[Decimal, Decimal]]:
    """(debits, credits) per account over Posted journals only."""
    ids = set(account_ids)
    if not ids:
        return {}
    rows = s.execute(
        select(JournalLine.account_id,
               func.coalesce(func.sum(JournalLine.debit), 0),
               func.coalesce(func.sum(JournalLine.credit), 0))
        .join(Journal, Journal.id == JournalLine.journal_id)
        .where(Journal.organization_id == org_id,
               Journal.status == "Posted",
               JournalLine.account_id.in_(ids))
        .group_by(JournalLine.account_id)
    ).all()
    out = {aid: (Decimal("0"), Decimal("0")) for aid in ids}
    for aid, d, c in rows:
        out[aid] = (Decimal(str(d)), Decimal(str(c)))
    return out


def recalculate_balances(s: Session, org_id: int, account_ids: Iterable[int]) -> dict[int, Decimal]:
    """Rebuild the cached balance of each account from its posted lines.

    Caller must flush pending line/status changes first (autoflush is off).
    """
    totals = posted_totals(s, org_id, account_ids)
    accounts = accounts_by_id(s, org_id, totals.keys())
    out: dict[int, Decimal] = {}
    for aid, (d, c) in totals.items():
        acc = accounts.get(aid)
        if acc is None:
            continue
        acc.current_balance = signed_balance(acc.type, d, c)
        out[aid] = acc.current_balance
    return out
