from datetime import date

import pytest
from pydantic import ValidationError as PydanticValidationError

from schemas.gl import PeriodCreate
from services import gl_periods
from services.errors import Conflict, NotFound


def _create(org_id, name="Q1 2025", start="2025-01-01", end="2025-03-31", **kw):
    return gl_periods.create_period(org_id, PeriodCreate.model_validate(
        {"period_name": name, "start_date": start, "end_date": end, **kw}), "alice")


@pytest.mark.db
def test_no_periods_means_posting_is_open(owner):
    assert gl_periods.is_posting_allowed(owner["org_id"], date(1999, 12, 31)) is True


@pytest.mark.db
def test_gate_follows_period_status(owner):
    org = owner["org_id"]
    p = _create(org)
    assert gl_periods.is_posting_allowed(org, date(2025, 2, 14)) is True
    assert gl_periods.is_posting_allowed(org, date(2025, 4, 1)) is False

    for status in ("Closed", "Locked"):
        gl_periods.update_period_status(org, p["id"], status, "alice")
        assert gl_periods.is_posting_allowed(org, date(2025, 2, 14)) is False

    gl_periods.update_period_status(org, p["id"], "Open", "alice")
    assert gl_periods.is_posting_allowed(org, date(2025, 2, 14)) is True


@pytest.mark.db
def test_period_boundaries_are_inclusive(owner):
    org = owner["org_id"]
    _create(org)
    assert gl_periods.is_posting_allowed(org, date(2025, 1, 1))
    assert gl_periods.is_posting_allowed(org, date(2025, 3, 31))


@pytest.mark.db
def test_closing_stamps_and_reopening_clears(owner):
    org = owner["org_id"]
    p = _create(org)
    closed = gl_periods.update_period_status(org, p["id"], "Closed", "alice")
    assert closed["status"] == "Closed"
    assert closed["closed_by"] == "alice"
    assert closed["closed_at"]

    reopened = gl_periods.update_period_status(org, p["id"], "Open", "alice")
    assert reopened["closed_by"] is None
    assert reopened["closed_at"] is None


@pytest.mark.db
def test_locked_can_go_straight_back_to_open(owner):
    org = owner["org_id"]
    p = _create(org, status="Locked")
    assert p["status"] == "Locked"
    assert gl_periods.update_period_status(org, p["id"], "Open", "alice")["status"] == "Open"


@pytest.mark.db
def test_periods_are_scoped_to_their_org(owner):
    from models.users_db import create_organization
    org = owner["org_id"]
    other = create_organization("Other Co", "alice")
    p = _create(org, status="Closed")

    assert gl_periods.is_posting_allowed(other, date(2025, 2, 1)) is True
    with pytest.raises(NotFound):
        gl_periods.update_period_status(other, p["id"], "Open", "alice")


@pytest.mark.db
def test_duplicate_name_conflicts(owner):
    org = owner["org_id"]
    _create(org)
    with pytest.raises(Conflict):
        _create(org, start="2025-04-01", end="2025-06-30")


def test_end_before_start_is_invalid():
    with pytest.raises(PydanticValidationError):
        PeriodCreate.model_validate({"period_name": "bad", "start_date": "2025-02-01",
                                     "end_date": "2025-01-01"})


@pytest.mark.db
def test_list_periods_newest_first(owner):
    org = owner["org_id"]
    _create(org, "Q1 2025", "2025-01-01", "2025-03-31")
    _create(org, "Q2 2025", "2025-04-01", "2025-06-30", status="Closed")
    names = [p["period_name"] for p in gl_periods.list_periods(org)]
    assert names == ["Q2 2025", "Q1 2025"]
    assert [p["period_name"] for p in gl_periods.list_periods(org, status="Closed")] == ["Q2 2025"]
