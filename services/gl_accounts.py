# services/gl_accounts.py
from __future__ import annotations
import logging
from datetime import date

from models.audit_store import audit
from models.base import session_scope
from models.gl import Account
from models import accounts_store, journals_store
from services.errors import (
    Conflict, NotFound, SystemAccountProtected, ValidationError,
)

log = logging.getLogger(__name__)

# Seeded for every organization; protected from edit and delete.
DEFAULT_GL_ACCOUNTS = [
    {"code": "1000", "name": "Cash / Bank", "type": "Asset",
     "account_class": "Current Asset", "description": "Default cash and bank account"},
    {"code": "1200", "name": "Accounts Receivable", "type": "Asset",
     "account_class": "Current Asset", "description": "Amounts owed by customers"},
    {"code": "2000", "name": "Accounts Payable", "type": "Liability",
     "account_class": "Current Liability", "description": "Amounts owed to suppliers"},
    {"code": "4000", "name": "Sales Revenue", "type": "Revenue",
     "account_class": "Operating Revenue", "description": "Default sales income account"},
    {"code": "6000", "name": "Expenses", "type": "Expense",
     "account_class": "Operating Expense", "description": "Default expense account"},
]


def account_to_dict(a: Account) -> dict:
    return {
        "id": a.id,
        "code": a.code,
        "name": a.name,
        "type": a.type,
        "account_class": a.account_class,
        "description": a.description,
        "parent_id": a.parent_id,
        "current_balance": f"{a.current_balance or 0:.2f}",
        "currency": a.currency,
        "is_active": bool(a.is_active),
        "is_system": bool(a.is_system),
        "allow_manual_journals": bool(a.allow_manual_journals),
    }


def ensure_default_accounts(org_id: int, actor: str = "system") -> int:
    """Create whichever default accounts are missing. Returns how many were added."""
    created = 0
    with session_scope() as s:
        for acct in DEFAULT_GL_ACCOUNTS:
            if accounts_store.get_account_by_code(s, org_id, acct["code"]):
                continue
            s.add(Account(organization_id=org_id, is_system=True,
                          created_by=actor, **acct))
            created += 1
    if created:
        log.info("Seeded %d default GL accounts for org %s", created, org_id)
    return created


def list_accounts(org_id: int, *, type_: str | None = None,
                  active: bool | None = None, q: str | None = None) -> list[dict]:
    ensure_default_accounts(org_id)
    with session_scope() as s:
        return [account_to_dict(a) for a in accounts_store.list_accounts(
            s, org_id, type_=type_, active=active, q=q)]


def get_account(org_id: int, account_id: int) -> dict:
    with session_scope() as s:
        a = accounts_store.get_account(s, org_id, account_id)
        if not a:
            raise NotFound("Account not found")
        return account_to_dict(a)


def get_account_activity(org_id: int, account_id: int, start: date | None = None,
                         end: date | None = None, limit: int = 100) -> dict:
    with session_scope() as s:
        a = accounts_store.get_account(s, org_id, account_id)
        if not a:
            raise NotFound("Account not found")
        return {
            "account": account_to_dict(a),
            "activity": journals_store.account_activity(
                s, org_id, account_id, start=start, end=end, limit=limit),
        }


def _check_parent(s, org_id: int, parent_id: int | None, self_id: int | None = None) -> None:
    if parent_id is None:
        return
    if self_id is not None and parent_id == self_id:
        raise ValidationError("An account cannot be its own parent")
    if not accounts_store.get_account(s, org_id, parent_id):
        raise ValidationError("Parent account not found",
                              details={"parent_id": parent_id})


def create_account(org_id: int, data, actor: str) -> dict:
    """`data` is a validated AccountCreate."""
    with session_scope() as s:
        if accounts_store.get_account_by_code(s, org_id, data.code):
            raise ValidationError(f"Account code {data.code} already exists",
                                  code="duplicate_code")
        _check_parent(s, org_id, data.parent_id)
        a = Account(organization_id=org_id, created_by=actor,
                    is_system=False, **data.model_dump())
        s.add(a)
        s.flush()
        out = account_to_dict(a)

    audit("gl.account.created", target_type="account", target_id=str(out["id"]),
          outcome="success", status=201, organization_id=org_id, actor=actor,
          extra={"new": {"code": out["code"], "type": out["type"]}})
    return out


def update_account(org_id: int, account_id: int, data, actor: str) -> dict:
    changes = data.model_dump(exclude_unset=True)
    with session_scope() as s:
        a = accounts_store.get_account(s, org_id, account_id)
        if not a:
            raise NotFound("Account not found")
        if a.is_system:
            raise SystemAccountProtected("System accounts cannot be edited")
        if "parent_id" in changes:
            _check_parent(s, org_id, changes["parent_id"], self_id=a.id)
        if changes.get("name") is None:
            changes.pop("name", None)
        for k, v in changes.items():
            setattr(a, k, v)
        s.flush()
        out = account_to_dict(a)

    audit("gl.account.updated", target_type="account", target_id=str(account_id),
          outcome="success", status=200, organization_id=org_id, actor=actor,
          extra={"diff": sorted(changes)})
    return out


def delete_account(org_id: int, account_id: int, actor: str) -> None:
    with session_scope() as s:
        a = accounts_store.get_account(s, org_id, account_id)
        if not a:
            raise NotFound("Account not found")
        if a.is_system:
            raise SystemAccountProtected("System accounts cannot be deleted")
        if accounts_store.has_lines(s, a.id):
            raise Conflict("Account has journal lines; deactivate it instead",
                           code="account_in_use")
        code = a.code
        s.delete(a)

    audit("gl.account.deleted", target_type="account", target_id=str(account_id),
          outcome="success", status=200, organization_id=org_id, actor=actor,
          extra={"old": {"code": code}})
