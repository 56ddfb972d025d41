from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from models.audit_store import verify_chain
from models.base import session_scope
from models.gl import Account, Journal, JournalLine
from models.schema import AuditLog
from schemas.gl import JournalCreate, JournalUpdate, PeriodCreate
from services import gl_accounts, gl_periods, gl_posting
from services.errors import (
    AlreadyPosted, Conflict, JournalLocked, JournalNotFound, JournalVoided,
    PeriodClosed, UnbalancedJournal, ValidationError,
)


def _accounts(org_id):
    gl_accounts.ensure_default_accounts(org_id)
    with session_scope() as s:
        rows = s.execute(select(Account).where(
            Account.organization_id == org_id)).scalars().all()
        return {a.code: a.id for a in rows}


def _balances(org_id):
    with session_scope() as s:
        rows = s.execute(select(Account).where(
            Account.organization_id == org_id)).scalars().all()
        return {a.code: Decimal(a.current_balance) for a in rows}


def _payload(accts, amount="100.00", tx=date(2025, 1, 15), status="Draft",
             debit="1000", credit="4000"):
    return JournalCreate.model_validate({
        "transaction_date": tx.isoformat(),
        "description": "Cash sale",
        "status": status,
        "lines": [
            {"account_id": accts[debit], "debit": amount},
            {"account_id": accts[credit], "credit": amount},
        ],
    })


def _unbalanced_draft(org_id, accts):
    with session_scope() as s:
        j = Journal(organization_id=org_id, journal_number="JE-2025-000099",
                    sequence_no=99, transaction_date=date(2025, 1, 20),
                    description="Typo", status="Draft",
                    total_debits=Decimal("100.00"), total_credits=Decimal("90.00"))
        j.lines = [
            JournalLine(organization_id=org_id, account_id=accts["1000"],
                        debit=Decimal("100.00"), credit=Decimal("0")),
            JournalLine(organization_id=org_id, account_id=accts["4000"],
                        debit=Decimal("0"), credit=Decimal("90.00")),
        ]
        s.add(j)
        s.flush()
        return j.id


def _period(org_id, name, start, end, status="Open"):
    return gl_periods.create_period(org_id, PeriodCreate.model_validate({
        "period_name": name, "start_date": start.isoformat(),
        "end_date": end.isoformat(), "status": status}), "alice")


@pytest.mark.db
def test_create_draft_does_not_touch_balances(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    j = gl_posting.create_journal(org, _payload(accts), "alice")
    assert j["status"] == "Draft"
    assert j["journal_number"] == "JE-2025-000001"
    assert j["total_debits"] == j["total_credits"] == "100.00"
    assert all(v == 0 for v in _balances(org).values())


@pytest.mark.db
def test_post_updates_balances_by_normal_side(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    j = gl_posting.create_journal(org, _payload(accts, "250.00"), "alice")

    out = gl_posting.post_journal(org, j["id"], "alice")
    assert out["status"] == "Posted"
    assert out["posted_by"] == "alice"
    assert out["posted_at"] is not None

    bal = _balances(org)
    assert bal["1000"] == Decimal("250.00")   # asset grows with debits
    assert bal["4000"] == Decimal("250.00")   # revenue grows with credits


@pytest.mark.db
def test_post_twice_is_rejected_and_applied_once(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    j = gl_posting.create_journal(org, _payload(accts), "alice")
    gl_posting.post_journal(org, j["id"], "alice")

    with pytest.raises(AlreadyPosted):
        gl_posting.post_journal(org, j["id"], "alice")
    assert _balances(org)["1000"] == Decimal("100.00")


@pytest.mark.db
def test_unbalanced_post_fails_without_side_effects(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    jid = _unbalanced_draft(org, accts)

    with pytest.raises(UnbalancedJournal) as ei:
        gl_posting.post_journal(org, jid, "alice")
    assert ei.value.details == {"debits": "100.00", "credits": "90.00"}

    j = gl_posting.get_journal(org, jid)
    assert j["status"] == "Draft"
    assert j["posted_by"] is None
    assert all(v == 0 for v in _balances(org).values())


@pytest.mark.db
def test_unbalanced_create_is_rejected(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    data = JournalCreate.model_validate({
        "transaction_date": "2025-01-15", "description": "x",
        "lines": [{"account_id": accts["1000"], "debit": "100.00"},
                  {"account_id": accts["4000"], "credit": "99.99"}]})
    with pytest.raises(UnbalancedJournal):
        gl_posting.create_journal(org, data, "alice")
    with session_scope() as s:
        assert s.execute(select(Journal)).first() is None


@pytest.mark.db
@pytest.mark.parametrize("status", ["Closed", "Locked"])
def test_post_into_closed_or_locked_period_fails(owner, status):
    org = owner["org_id"]
    accts = _accounts(org)
    _period(org, "January 2025", date(2025, 1, 1), date(2025, 1, 31), status=status)
    j = gl_posting.create_journal(org, _payload(accts), "alice")

    with pytest.raises(PeriodClosed):
        gl_posting.post_journal(org, j["id"], "alice")
    assert gl_posting.get_journal(org, j["id"])["status"] == "Draft"
    assert _balances(org)["1000"] == 0


@pytest.mark.db
def test_post_outside_any_period_fails_once_periods_exist(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    _period(org, "February 2025", date(2025, 2, 1), date(2025, 2, 28))
    j = gl_posting.create_journal(org, _payload(accts, tx=date(2025, 1, 15)), "alice")
    with pytest.raises(PeriodClosed):
        gl_posting.post_journal(org, j["id"], "alice")


@pytest.mark.db
def test_post_into_open_period_succeeds(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    _period(org, "January 2025", date(2025, 1, 1), date(2025, 1, 31))
    j = gl_posting.create_journal(org, _payload(accts), "alice")
    assert gl_posting.post_journal(org, j["id"], "alice")["status"] == "Posted"


@pytest.mark.db
def test_reopened_period_allows_posting(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    p = _period(org, "January 2025", date(2025, 1, 1), date(2025, 1, 31), status="Closed")
    j = gl_posting.create_journal(org, _payload(accts), "alice")
    with pytest.raises(PeriodClosed):
        gl_posting.post_journal(org, j["id"], "alice")

    gl_periods.update_period_status(org, p["id"], "Open", "alice")
    assert gl_posting.post_journal(org, j["id"], "alice")["status"] == "Posted"


@pytest.mark.db
def test_create_posted_goes_through_gate(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    _period(org, "January 2025", date(2025, 1, 1), date(2025, 1, 31), status="Locked")

    with pytest.raises(PeriodClosed):
        gl_posting.create_journal(org, _payload(accts, status="Posted"), "alice")
    with session_scope() as s:
        assert s.execute(select(Journal)).first() is None

    # no Open period covers March either
    with pytest.raises(PeriodClosed):
        gl_posting.create_journal(
            org, _payload(accts, tx=date(2025, 3, 3), status="Posted"), "alice")


@pytest.mark.db
def test_create_posted_without_periods(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    j = gl_posting.create_journal(org, _payload(accts, status="Posted"), "alice")
    assert j["status"] == "Posted"
    assert _balances(org)["1000"] == Decimal("100.00")


@pytest.mark.db
def test_voided_journal_cannot_be_posted(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    j = gl_posting.create_journal(org, _payload(accts), "alice")
    with session_scope() as s:
        s.get(Journal, j["id"]).status = "Voided"
    with pytest.raises(JournalVoided):
        gl_posting.post_journal(org, j["id"], "alice")


@pytest.mark.db
def test_delete_draft_and_refuse_posted(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    draft = gl_posting.create_journal(org, _payload(accts), "alice")
    gl_posting.delete_journal(org, draft["id"], "alice")
    with pytest.raises(JournalNotFound):
        gl_posting.get_journal(org, draft["id"])
    with session_scope() as s:
        assert s.execute(select(JournalLine)).first() is None

    posted = gl_posting.create_journal(org, _payload(accts, status="Posted"), "alice")
    with pytest.raises(JournalLocked):
        gl_posting.delete_journal(org, posted["id"], "alice")
    assert gl_posting.get_journal(org, posted["id"])["status"] == "Posted"


@pytest.mark.db
def test_numbering_is_sequential_per_org(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    a = gl_posting.create_journal(org, _payload(accts), "alice")
    b = gl_posting.create_journal(org, _payload(accts, tx=date(2026, 2, 1)), "alice")
    assert a["journal_number"] == "JE-2025-000001"
    assert b["journal_number"] == "JE-2026-000002"

    gl_posting.delete_journal(org, a["id"], "alice")
    c = gl_posting.create_journal(org, _payload(accts), "alice")
    assert c["journal_number"] == "JE-2025-000003"


@pytest.mark.db
def test_lines_must_use_active_accounts_of_the_org(owner):
    from models.users_db import create_organization
    org = owner["org_id"]
    accts = _accounts(org)
    other = _accounts(create_organization("Other Co", "alice"))

    foreign = JournalCreate.model_validate({
        "transaction_date": "2025-01-15", "description": "x",
        "lines": [{"account_id": other["1000"], "debit": "5.00"},
                  {"account_id": accts["4000"], "credit": "5.00"}]})
    with pytest.raises(ValidationError):
        gl_posting.create_journal(org, foreign, "alice")

    with session_scope() as s:
        s.get(Account, accts["6000"]).is_active = False
    with pytest.raises(ValidationError):
        gl_posting.create_journal(org, _payload(accts, debit="6000", credit="1000"), "alice")


@pytest.mark.db
def test_update_replaces_lines_on_drafts_only(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    j = gl_posting.create_journal(org, _payload(accts), "alice")

    upd = JournalUpdate.model_validate({
        "transaction_date": "2025-01-16", "description": "Office supplies",
        "lines": [{"account_id": accts["6000"], "debit": "40.00"},
                  {"account_id": accts["1000"], "credit": "40.00"}]})
    out = gl_posting.update_journal(org, j["id"], upd, "alice")
    assert out["description"] == "Office supplies"
    assert out["total_debits"] == "40.00"
    assert {l["account_code"] for l in out["lines"]} == {"6000", "1000"}
    assert len(out["lines"]) == 2

    gl_posting.post_journal(org, j["id"], "alice")
    with pytest.raises(JournalLocked):
        gl_posting.update_journal(org, j["id"], upd, "alice")


@pytest.mark.db
def test_reverse_nets_balances_to_zero_once(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    j = gl_posting.create_journal(org, _payload(accts, status="Posted"), "alice")

    rev = gl_posting.reverse_journal(org, j["id"], "alice", reversal_date=date(2025, 1, 31))
    assert rev["status"] == "Posted"
    assert rev["reversal_of_id"] == j["id"]
    assert rev["reference"] == j["journal_number"]
    assert all(v == 0 for v in _balances(org).values())
    assert gl_posting.get_journal(org, j["id"])["status"] == "Posted"

    with pytest.raises(Conflict):
        gl_posting.reverse_journal(org, j["id"], "alice")
    with pytest.raises(Conflict):
        gl_posting.reverse_journal(org, rev["id"], "alice")


@pytest.mark.db
def test_reverse_requires_posted(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    j = gl_posting.create_journal(org, _payload(accts), "alice")
    with pytest.raises(JournalLocked):
        gl_posting.reverse_journal(org, j["id"], "alice")


@pytest.mark.db
def test_blocked_post_is_audited(owner):
    org = owner["org_id"]
    accts = _accounts(org)
    jid = _unbalanced_draft(org, accts)
    with pytest.raises(UnbalancedJournal):
        gl_posting.post_journal(org, jid, "alice")

    with session_scope() as s:
        row = s.execute(select(AuditLog).where(
            AuditLog.action == "gl.journal.post.blocked")).scalars().one()
        assert row.outcome == "blocked"
        assert row.error_code == "unbalanced"
        assert row.organization_id == org
        assert row.actor == "alice"
    assert verify_chain()["ok"] is True
