# services/gl_periods.py
"""
Fiscal periods: the date ranges that gate posting.

A period is Open, Closed or Locked. Operators move it between states with
``update_period_status``; nothing closes a period automatically. Locked
behaves like Closed for posting, it only signals that reopening is not
expected.
"""
from __future__ import annotations
import logging
from datetime import date

from sqlalchemy.exc import IntegrityError

from models.audit_store import audit
from models.base import session_scope
from models.gl import FiscalPeriod
from models import periods_store
from services.datetimex import now_utc, to_iso_z
from services.errors import Conflict, NotFound
from services.metrics import PERIOD_TRANSITIONS

log = logging.getLogger(__name__)


def period_to_dict(p: FiscalPeriod) -> dict:
    return {
        "id": p.id,
        "period_name": p.period_name,
        "start_date": p.start_date.isoformat(),
        "end_date": p.end_date.isoformat(),
        "status": p.status,
        "is_year_end": bool(p.is_year_end),
        "closed_by": p.closed_by,
        "closed_at": to_iso_z(p.closed_at),
    }


def list_periods(org_id: int, status: str | None = None) -> list[dict]:
    with session_scope() as s:
        return [period_to_dict(p) for p in periods_store.list_periods(s, org_id, status=status)]


def create_period(org_id: int, data, actor: str) -> dict:
    """Insert a period. `data` is a validated PeriodCreate."""
    try:
        with session_scope() as s:
            if periods_store.get_period_by_name(s, org_id, data.period_name):
                raise Conflict(f"Period '{data.period_name}' already exists",
                               code="duplicate_period")
            p = FiscalPeriod(
                organization_id=org_id,
                period_name=data.period_name,
                start_date=data.start_date,
                end_date=data.end_date,
                is_year_end=data.is_year_end,
            )
            periods_store.set_status(p, data.status, actor, now_utc())
            s.add(p)
            s.flush()
            out = period_to_dict(p)
    except IntegrityError:
        # lost a race on the unique (org, name) constraint
        raise Conflict(f"Period '{data.period_name}' already exists",
                       code="duplicate_period")

    audit("gl.period.created", target_type="period", target_id=str(out["id"]),
          outcome="success", status=201, organization_id=org_id, actor=actor,
          extra={"period": out["period_name"], "status": out["status"]})
    return out


def update_period_status(org_id: int, period_id: int, status: str, actor: str) -> dict:
    """The only transition path between Open, Closed and Locked."""
    with session_scope() as s:
        p = periods_store.get_period(s, org_id, period_id)
        if not p:
            raise NotFound("Period not found")
        old = p.status
        if old == status:
            out, changed = period_to_dict(p), False
        else:
            periods_store.set_status(p, status, actor, now_utc())
            s.flush()
            out, changed = period_to_dict(p), True

    if not changed:
        audit("gl.period.status.noop", target_type="period", target_id=str(period_id),
              outcome="noop", status=200, organization_id=org_id, actor=actor,
              extra={"period": out["period_name"], "status": status})
        return out

    PERIOD_TRANSITIONS.labels(status=status).inc()
    log.info("Period %s (%s) %s -> %s by %s",
             out["period_name"], period_id, old, status, actor)
    audit("gl.period.status.changed", target_type="period", target_id=str(period_id),
          outcome="success", status=200, organization_id=org_id, actor=actor,
          extra={"period": out["period_name"], "old": old, "new": status})
    return out


def is_posting_allowed(org_id: int, tx_date: date) -> bool:
    with session_scope() as s:
        return periods_store.is_posting_open(s, org_id, tx_date)
