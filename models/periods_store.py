# models/periods_store.py
from __future__ import annotations
from datetime import date, datetime

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from models.gl import FiscalPeriod


def has_periods(s: Session, org_id: int) -> bool:
    return s.execute(select(func.count(FiscalPeriod.id)).where(
        FiscalPeriod.organization_id == org_id)).scalar_one() > 0


def open_period_for(s: Session, org_id: int, d: date) -> FiscalPeriod | None:
    return s.execute(select(FiscalPeriod).where(
        FiscalPeriod.organization_id == org_id,
        FiscalPeriod.status == "Open",
        FiscalPeriod.start_date <= d,
        FiscalPeriod.end_date >= d,
    ).order_by(FiscalPeriod.start_date).limit(1)).scalar_one_or_none()


def is_posting_open(s: Session, org_id: int, d: date) -> bool:
    """True when `d` sits inside an Open period, or the org has no periods at all.

    Locked periods block exactly like Closed ones.
    """
    if not has_periods(s, org_id):
        return True
    return open_period_for(s, org_id, d) is not None


def get_period(s: Session, org_id: int, period_id: int) -> FiscalPeriod | None:
    return s.execute(select(FiscalPeriod).where(
        FiscalPeriod.id == period_id, FiscalPeriod.organization_id == org_id,
    )).scalar_one_or_none()


def get_period_by_name(s: Session, org_id: int, name: str) -> FiscalPeriod | None:
    return s.execute(select(FiscalPeriod).where(
        FiscalPeriod.organization_id == org_id, FiscalPeriod.period_name == name,
    )).scalar_one_or_none()


def list_periods(s: Session, org_id: int, *, status: str | None = None) -> list[FiscalPeriod]:
    stmt = select(FiscalPeriod).where(FiscalPeriod.organization_id == org_id)
    if status:
        stmt = stmt.where(FiscalPeriod.status == status)
    return list(s.execute(stmt.order_by(FiscalPeriod.start_date.desc())).scalars().all())


def set_status(p: FiscalPeriod, status: str, actor: str, now: datetime) -> None:
    p.status = status
    if status == "Open":
        p.closed_by = None
        p.closed_at = None
    else:
        p.closed_by = actor
        p.closed_at = now
