# services/gl_posting.py
"""
Journal lifecycle: create, edit, post, delete and reverse.

Posting is the only way account balances move. A Draft journal becomes
Posted only when
  * its debit and credit totals are equal (to the cent),
  * its transaction date lies inside an Open fiscal period, or the
    organization has no periods configured,
  * it is still a Draft.
On success each referenced account's cached ``current_balance`` is rebuilt
from every posted line in the same transaction. On failure a typed
LedgerError is raised and nothing is written.

Audit rows are appended after the business transaction has finished so a
refused posting still leaves a trace.
"""
from __future__ import annotations
import logging
from datetime import date
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from models.audit_store import audit
from models.base import session_scope
from models.gl import Journal, JournalLine
from models import accounts_store, journals_store, periods_store
from services.datetimex import now_utc, to_iso_z
from services.errors import (
    AlreadyPosted, Conflict, JournalLocked, JournalNotFound, JournalVoided,
    LedgerError, PeriodClosed, UnbalancedJournal, ValidationError,
)
from services.metrics import JOURNALS_CREATED, JOURNALS_POSTED, POSTING_BLOCKED

log = logging.getLogger(__name__)

CENT = Decimal("0.01")


# ---- helpers ---------------------------------------------------------------

def _money(v) -> Decimal:
    return Decimal(v or 0).quantize(CENT)


def _totals(lines: Iterable) -> tuple[Decimal, Decimal]:
    debits = sum((_money(l.debit) for l in lines), Decimal("0"))
    credits = sum((_money(l.credit) for l in lines), Decimal("0"))
    return debits, credits


def line_to_dict(l: JournalLine) -> dict:
    acc = l.account
    return {
        "id": l.id,
        "account_id": l.account_id,
        "account_code": acc.code if acc else None,
        "account_name": acc.name if acc else None,
        "description": l.description,
        "debit": f"{_money(l.debit):.2f}",
        "credit": f"{_money(l.credit):.2f}",
        "entity_id": l.entity_id,
    }


def journal_to_dict(j: Journal, with_lines: bool = True) -> dict:
    out = {
        "id": j.id,
        "journal_number": j.journal_number,
        "transaction_date": j.transaction_date.isoformat(),
        "posting_date": j.posting_date.isoformat() if j.posting_date else None,
        "description": j.description,
        "reference": j.reference,
        "source": j.source,
        "source_id": j.source_id,
        "status": j.status,
        "total_debits": f"{_money(j.total_debits):.2f}",
        "total_credits": f"{_money(j.total_credits):.2f}",
        "reversal_of_id": j.reversal_of_id,
        "created_by": j.created_by,
        "posted_by": j.posted_by,
        "posted_at": to_iso_z(j.posted_at),
    }
    if with_lines:
        out["lines"] = [line_to_dict(l) for l in j.lines]
    return out


def _resolve_accounts(s: Session, org_id: int, lines, source: str) -> dict:
    """Every line must hit an active account of this org; manual journals
    may only touch accounts that allow them."""
    accounts = accounts_store.accounts_by_id(
        s, org_id, (l.account_id for l in lines))
    for l in lines:
        acc = accounts.get(l.account_id)
        if acc is None:
            raise ValidationError(f"Account {l.account_id} not found",
                                  details={"account_id": l.account_id})
        if not acc.is_active:
            raise ValidationError(f"Account {acc.code} is inactive",
                                  details={"account_id": acc.id})
        if source == "Manual" and not acc.allow_manual_journals:
            raise ValidationError(
                f"Account {acc.code} does not accept manual journals",
                details={"account_id": acc.id})
    return accounts


def _build_lines(org_id: int, lines, accounts: dict) -> list[JournalLine]:
    return [
        JournalLine(
            organization_id=org_id,
            account_id=l.account_id,
            account=accounts[l.account_id],
            description=l.description,
            debit=_money(l.debit),
            credit=_money(l.credit),
            entity_id=l.entity_id,
        )
        for l in lines
    ]


def _ensure_balanced(lines) -> tuple[Decimal, Decimal]:
    debits, credits = _totals(lines)
    if debits != credits:
        raise UnbalancedJournal(debits, credits)
    return debits, credits


def _post_in_session(s: Session, org_id: int, j: Journal, actor: str) -> list[int]:
    """Flip a Draft to Posted and rebuild affected balances.

    Raises before touching anything if the journal may not be posted.
    Returns the ids of the accounts whose balance was rebuilt.
    """
    if j.status == "Posted":
        raise AlreadyPosted()
    if j.status == "Voided":
        raise JournalVoided()

    debits, credits = _ensure_balanced(j.lines)
    if not periods_store.is_posting_open(s, org_id, j.transaction_date):
        raise PeriodClosed(j.transaction_date)

    now = now_utc()
    j.total_debits = debits
    j.total_credits = credits
    j.status = "Posted"
    j.posted_by = actor
    j.posted_at = now
    j.posting_date = now.date()
    s.flush()

    account_ids = sorted({l.account_id for l in j.lines})
    accounts_store.recalculate_balances(s, org_id, account_ids)
    return account_ids


def _blocked(action: str, org_id: int, target_id, e: LedgerError, actor: str,
             extra: dict | None = None):
    POSTING_BLOCKED.labels(reason=e.code).inc()
    audit(action, target_type="journal", target_id=str(target_id),
          outcome="blocked", status=e.status, error_code=e.code,
          organization_id=org_id, actor=actor, extra={"reason": e.message, **(extra or {})})


# ---- reads -----------------------------------------------------------------

def get_journal(org_id: int, journal_id: int) -> dict:
    with session_scope() as s:
        j = journals_store.get_journal(s, org_id, journal_id)
        if not j:
            raise JournalNotFound(journal_id)
        return journal_to_dict(j)


def list_journals(org_id: int, query) -> dict:
    """`query` is a validated JournalListQuery."""
    with session_scope() as s:
        rows, total = journals_store.query_journals(
            s, org_id,
            status=query.status, source=query.source,
            start=query.start_date, end=query.end_date, q=query.q,
            sort=query.sort, order=query.order,
            limit=query.limit, offset=query.offset,
        )
        return {
            "items": [journal_to_dict(j) for j in rows],
            "total": total,
            "limit": query.limit,
            "offset": query.offset,
        }


# ---- writes ----------------------------------------------------------------

def create_journal(org_id: int, data, actor: str) -> dict:
    """Create a journal from a validated JournalCreate.

    Unbalanced input is refused even for drafts. With ``status="Posted"``
    the new journal goes through the posting gate in the same transaction.
    """
    try:
        with session_scope() as s:
            accounts = _resolve_accounts(s, org_id, data.lines, data.source)
            debits, credits = _ensure_balanced(data.lines)

            seq = journals_store.next_sequence(s, org_id)
            j = Journal(
                organization_id=org_id,
                journal_number=journals_store.format_journal_number(
                    data.transaction_date.year, seq),
                sequence_no=seq,
                transaction_date=data.transaction_date,
                description=data.description,
                reference=data.reference,
                source=data.source,
                source_id=data.source_id,
                status="Draft",
                total_debits=debits,
                total_credits=credits,
                created_by=actor,
            )
            j.lines = _build_lines(org_id, data.lines, accounts)
            s.add(j)
            s.flush()

            posted = data.status == "Posted"
            if posted:
                _post_in_session(s, org_id, j, actor)
            out = journal_to_dict(j)
    except LedgerError as e:
        _blocked("gl.journal.create.blocked", org_id, "new", e, actor,
                 {"transaction_date": data.transaction_date.isoformat()})
        raise

    JOURNALS_CREATED.labels(source=out["source"]).inc()
    audit("gl.journal.created", target_type="journal", target_id=str(out["id"]),
          outcome="success", status=201, organization_id=org_id, actor=actor,
          extra={"journal_number": out["journal_number"], "status": out["status"],
                 "totals": out["total_debits"]})
    if posted:
        JOURNALS_POSTED.inc()
        audit("gl.journal.posted", target_type="journal", target_id=str(out["id"]),
              outcome="success", status=200, organization_id=org_id, actor=actor,
              extra={"journal_number": out["journal_number"],
                     "transaction_date": out["transaction_date"]})
    return out


def update_journal(org_id: int, journal_id: int, data, actor: str) -> dict:
    """Replace header and lines of a Draft journal."""
    with session_scope() as s:
        j = journals_store.get_journal(s, org_id, journal_id)
        if not j:
            raise JournalNotFound(journal_id)
        if j.status != "Draft":
            raise JournalLocked(f"Cannot edit a {j.status.lower()} journal")

        accounts = _resolve_accounts(s, org_id, data.lines, data.source)
        debits, credits = _ensure_balanced(data.lines)

        j.transaction_date = data.transaction_date
        j.description = data.description
        j.reference = data.reference
        j.source = data.source
        j.source_id = data.source_id
        j.total_debits = debits
        j.total_credits = credits
        j.lines.clear()
        s.flush()
        j.lines.extend(_build_lines(org_id, data.lines, accounts))
        s.flush()
        out = journal_to_dict(j)

    audit("gl.journal.updated", target_type="journal", target_id=str(journal_id),
          outcome="success", status=200, organization_id=org_id, actor=actor,
          extra={"journal_number": out["journal_number"], "totals": out["total_debits"]})
    return out


def post_journal(org_id: int, journal_id: int, actor: str) -> dict:
    try:
        with session_scope() as s:
            j = journals_store.get_journal(s, org_id, journal_id)
            if not j:
                raise JournalNotFound(journal_id)
            account_ids = _post_in_session(s, org_id, j, actor)
            out = journal_to_dict(j)
    except LedgerError as e:
        if not isinstance(e, JournalNotFound):
            _blocked("gl.journal.post.blocked", org_id, journal_id, e, actor)
        raise

    JOURNALS_POSTED.inc()
    log.info("Posted %s (org %s) by %s", out["journal_number"], org_id, actor)
    audit("gl.journal.posted", target_type="journal", target_id=str(journal_id),
          outcome="success", status=200, organization_id=org_id, actor=actor,
          extra={"journal_number": out["journal_number"],
                 "transaction_date": out["transaction_date"],
                 "accounts": account_ids})
    return out


def delete_journal(org_id: int, journal_id: int, actor: str) -> None:
    """Drafts only; posted history is corrected by reversal, never deletion."""
    try:
        with session_scope() as s:
            j = journals_store.get_journal(s, org_id, journal_id)
            if not j:
                raise JournalNotFound(journal_id)
            if j.status != "Draft":
                raise JournalLocked(
                    f"Cannot delete a {j.status.lower()} journal. Only drafts can be deleted.")
            number = j.journal_number
            s.delete(j)
    except JournalLocked as e:
        audit("gl.journal.delete.blocked", target_type="journal", target_id=str(journal_id),
              outcome="blocked", status=e.status, error_code=e.code,
              organization_id=org_id, actor=actor, extra={"reason": e.message})
        raise

    audit("gl.journal.deleted", target_type="journal", target_id=str(journal_id),
          outcome="success", status=200, organization_id=org_id, actor=actor,
          extra={"journal_number": number})


def reverse_journal(org_id: int, journal_id: int, actor: str,
                    reversal_date: date | None = None, description: str | None = None) -> dict:
    """Post a counter-journal that swaps every debit and credit.

    The original stays Posted; the pair nets to zero on every account.
    A journal can be reversed once.
    """
    try:
        with session_scope() as s:
            orig = journals_store.get_journal(s, org_id, journal_id)
            if not orig:
                raise JournalNotFound(journal_id)
            if orig.status != "Posted":
                raise JournalLocked("Only posted journals can be reversed")
            if orig.reversal_of_id is not None:
                raise Conflict("A reversal cannot itself be reversed",
                               code="already_reversed")
            if journals_store.find_reversal(s, org_id, journal_id):
                raise Conflict(f"Journal {orig.journal_number} is already reversed",
                               code="already_reversed")

            tx_date = reversal_date or now_utc().date()
            seq = journals_store.next_sequence(s, org_id)
            rev = Journal(
                organization_id=org_id,
                journal_number=journals_store.format_journal_number(
                    tx_date.year, seq),
                sequence_no=seq,
                transaction_date=tx_date,
                description=description or f"Reversal of {orig.journal_number}",
                reference=orig.journal_number,
                source=orig.source,
                source_id=orig.source_id,
                status="Draft",
                total_debits=orig.total_credits,
                total_credits=orig.total_debits,
                reversal_of_id=orig.id,
                created_by=actor,
            )
            rev.lines = [
                JournalLine(
                    organization_id=org_id,
                    account_id=l.account_id,
                    account=l.account,
                    description=l.description,
                    debit=_money(l.credit),
                    credit=_money(l.debit),
                    entity_id=l.entity_id,
                )
                for l in orig.lines
            ]
            s.add(rev)
            s.flush()
            _post_in_session(s, org_id, rev, actor)
            out = journal_to_dict(rev)
    except (LedgerError, Conflict) as e:
        if not isinstance(e, JournalNotFound):
            audit("gl.journal.reverse.blocked", target_type="journal", target_id=str(journal_id),
                  outcome="blocked", status=e.status, error_code=e.code,
                  organization_id=org_id, actor=actor, extra={"reason": e.message})
        raise

    JOURNALS_CREATED.labels(source=out["source"]).inc()
    JOURNALS_POSTED.inc()
    audit("gl.journal.reversed", target_type="journal", target_id=str(journal_id),
          outcome="success", status=201, organization_id=org_id, actor=actor,
          extra={"journal_number": out["journal_number"],
                 "transaction_date": out["transaction_date"]})
    return out
