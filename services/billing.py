# services/billing.py
"""
Calendar and proration helpers for subscription billing.

All dates are handled in UTC. The anniversary day is capped at 28 so a
subscription started on the 29th-31st still bills every month.
"""
from __future__ import annotations
from calendar import monthrange
from datetime import date, datetime, timezone

from dateutil.relativedelta import relativedelta

from services.datetimex import as_utc, now_utc

MAX_ANNIVERSARY_DAY = 28


def calculate_anniversary_day(d: datetime) -> int:
    return min(as_utc(d).day, MAX_ANNIVERSARY_DAY)


def is_billing_anniversary(anniversary_day: int, today: datetime | None = None) -> bool:
    return (as_utc(today) if today else now_utc()).day == anniversary_day


def calculate_next_period_end(current_period_start: datetime,
                              anniversary_day: int | None) -> datetime:
    """One month after `current_period_start`, pinned to the anniversary day
    (or the last day of that month when it is shorter)."""
    start = as_utc(current_period_start)
    next_month = start + relativedelta(months=1)
    days_in_next = monthrange(next_month.year, next_month.month)[1]
    effective = anniversary_day if anniversary_day is not None else calculate_anniversary_day(start)
    return next_month.replace(day=min(effective, days_in_next))


def was_invoiced_today(last_invoiced_at: datetime | None, today: datetime | None = None) -> bool:
    if not last_invoiced_at:
        return False
    now = as_utc(today) if today else now_utc()
    return as_utc(last_invoiced_at).date() == now.date()


def _whole_days(later: datetime, earlier: datetime) -> int:
    """Whole days between two instants, truncated toward zero."""
    secs = (as_utc(later) - as_utc(earlier)).total_seconds()
    return int(secs / 86400)


def calculate_plan_change_proration(old_price_per_member: float, new_price_per_member: float,
                                    member_count: int, current_period_start: datetime,
                                    current_period_end: datetime,
                                    now: datetime | None = None) -> dict:
    """
    Credit the unused share of the old plan and charge the same share of the
    new one. Amounts are rounded to 2 decimals; a period that already ended
    prorates to zero.
    """
    now = as_utc(now) if now else now_utc()
    total_days = _whole_days(current_period_end, current_period_start)
    remaining_days = _whole_days(current_period_end, now)

    if remaining_days <= 0 or total_days <= 0:
        return {"credit": 0.0, "charge": 0.0, "net_amount": 0.0,
                "remaining_days": 0, "total_days": total_days}

    factor = remaining_days / total_days
    credit = float(old_price_per_member) * member_count * factor
    charge = float(new_price_per_member) * member_count * factor
    return {
        "credit": round(credit, 2),
        "charge": round(charge, 2),
        "net_amount": round(charge - credit, 2),
        "remaining_days": remaining_days,
        "total_days": total_days,
    }


def calculate_days_overdue(due_date: date | datetime | str,
                           current_date: datetime | None = None) -> int:
    if isinstance(due_date, str):
        due = datetime.fromisoformat(due_date.replace("Z", "+00:00"))
    elif isinstance(due_date, datetime):
        due = due_date
    else:
        due = datetime(due_date.year, due_date.month, due_date.day, tzinfo=timezone.utc)
    now = as_utc(current_date) if current_date else now_utc()
    return max(0, _whole_days(now, due))
