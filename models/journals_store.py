# models/journals_store.py
from __future__ import annotations
from datetime import date

from sqlalchemy import select, func, asc, desc
from sqlalchemy.orm import Session, selectinload

from models.gl import Account, Journal, JournalLine

SORTABLE = {
    "transaction_date": Journal.transaction_date,
    "journal_number": Journal.sequence_no,
    "created_at": Journal.created_at,
    "total_debits": Journal.total_debits,
    "status": Journal.status,
}


def format_journal_number(year: int, seq: int) -> str:
    return f"JE-{year}-{seq:06d}"


def next_sequence(s: Session, org_id: int) -> int:
    cur = s.execute(select(func.max(Journal.sequence_no)).where(
        Journal.organization_id == org_id)).scalar_one()
    return int(cur or 0) + 1


def get_journal(s: Session, org_id: int, journal_id: int, *, with_lines: bool = True) -> Journal | None:
    stmt = select(Journal).where(
        Journal.id == journal_id, Journal.organization_id == org_id)
    if with_lines:
        stmt = stmt.options(selectinload(Journal.lines))
    return s.execute(stmt).scalar_one_or_none()


def find_reversal(s: Session, org_id: int, journal_id: int) -> Journal | None:
    return s.execute(select(Journal).where(
        Journal.organization_id == org_id,
        Journal.reversal_of_id == journal_id,
    ).limit(1)).scalar_one_or_none()


def query_journals(s: Session, org_id: int, *, status: str | None = None,
                   source: str | None = None, start: date | None = None,
                   end: date | None = None, q: str | None = None,
                   sort: str = "transaction_date", order: str = "desc",
                   limit: int = 50, offset: int = 0) -> tuple[list[Journal], int]:
    """Filtered page of journals plus the unpaged total."""
    conds = [Journal.organization_id == org_id]
    if status:
        conds.append(Journal.status == status)
    if source:
        conds.append(Journal.source == source)
    if start:
        conds.append(Journal.transaction_date >= start)
    if end:
        conds.append(Journal.transaction_date <= end)
    if q:
        like = f"%{q}%"
        conds.append(Journal.description.ilike(like)
                     | Journal.journal_number.ilike(like)
                     | Journal.reference.ilike(like))

    total = int(s.execute(select(func.count(Journal.id)).where(*conds)).scalar_one())

    col = SORTABLE.get(sort, Journal.transaction_date)
    direction = asc if order == "asc" else desc
    rows = s.execute(
        select(Journal).where(*conds)
        .options(selectinload(Journal.lines))
        .order_by(direction(col), direction(Journal.id))
        .limit(limit).offset(offset)
    ).scalars().all()
    return list(rows), total


def posted_lines_frame_rows(s: Session, org_id: int, *, start: date | None = None,
                            end: date | None = None) -> list[dict]:
    """Flat posted journal lines, one dict per line, for the report builders."""
    conds = [Journal.organization_id == org_id, Journal.status == "Posted"]
    if start:
        conds.append(Journal.transaction_date >= start)
    if end:
        conds.append(Journal.transaction_date <= end)
    rows = s.execute(
        select(Journal.transaction_date, Journal.journal_number,
               Account.id, Account.code, Account.name, Account.type,
               JournalLine.debit, JournalLine.credit)
        .join(JournalLine, JournalLine.journal_id == Journal.id)
        .join(Account, Account.id == JournalLine.account_id)
        .where(*conds)
        .order_by(Journal.transaction_date, Journal.sequence_no, JournalLine.id)
    ).all()
    return [
        {"date": r[0], "journal_number": r[1], "account_id": r[2],
         "account_code": r[3], "account_name": r[4], "account_type": r[5],
         "debit": float(r[6] or 0), "credit": float(r[7] or 0)}
        for r in rows
    ]


def account_activity(s: Session, org_id: int, account_id: int, *,
                     start: date | None = None, end: date | None = None,
                     limit: int = 100) -> list[dict]:
    conds = [Journal.organization_id == org_id, Journal.status == "Posted",
             JournalLine.account_id == account_id]
    if start:
        conds.append(Journal.transaction_date >= start)
    if end:
        conds.append(Journal.transaction_date <= end)
    rows = s.execute(
        select(Journal.id, Journal.journal_number, Journal.transaction_date,
               Journal.description, JournalLine.description,
               JournalLine.debit, JournalLine.credit)
        .join(JournalLine, JournalLine.journal_id == Journal.id)
        .where(*conds)
        .order_by(desc(Journal.transaction_date), desc(Journal.sequence_no))
        .limit(limit)
    ).all()
    return [
        {"journal_id": r[0], "journal_number": r[1],
         "transaction_date": r[2].isoformat(),
         "description": r[4] or r[3],
         "debit": f"{r[5]:.2f}", "credit": f"{r[6]:.2f}"}
        for r in rows
    ]
