import pytest
from pydantic import ValidationError as PydanticValidationError

from schemas.gl import AccountCreate, AccountUpdate, JournalCreate
from services import gl_accounts, gl_posting
from services.errors import Conflict, NotFound, SystemAccountProtected, ValidationError


def _new(org_id, code="1100", name="Petty Cash", type_="Asset", **kw):
    return gl_accounts.create_account(org_id, AccountCreate.model_validate(
        {"code": code, "name": name, "type": type_, **kw}), "alice")


@pytest.mark.db
def test_defaults_seeded_once(owner):
    org = owner["org_id"]
    assert gl_accounts.ensure_default_accounts(org) == 5
    assert gl_accounts.ensure_default_accounts(org) == 0
    codes = [a["code"] for a in gl_accounts.list_accounts(org)]
    assert codes == ["1000", "1200", "2000", "4000", "6000"]
    assert all(a["is_system"] for a in gl_accounts.list_accounts(org))


@pytest.mark.db
def test_list_filters(owner):
    org = owner["org_id"]
    _new(org)
    assets = gl_accounts.list_accounts(org, type_="Asset")
    assert {a["code"] for a in assets} == {"1000", "1100", "1200"}
    assert [a["code"] for a in gl_accounts.list_accounts(org, q="petty")] == ["1100"]


@pytest.mark.db
def test_create_and_duplicate_code(owner):
    org = owner["org_id"]
    a = _new(org)
    assert a["is_system"] is False
    assert a["current_balance"] == "0.00"
    assert a["currency"] == "NGN"
    with pytest.raises(ValidationError) as ei:
        _new(org, name="Another")
    assert ei.value.code == "duplicate_code"


@pytest.mark.db
def test_parent_must_exist_in_org(owner):
    org = owner["org_id"]
    with pytest.raises(ValidationError):
        _new(org, parent_id=999999)


def test_unknown_type_rejected():
    with pytest.raises(PydanticValidationError):
        AccountCreate.model_validate({"code": "9", "name": "X", "type": "Asset-ish"})


@pytest.mark.db
def test_system_accounts_are_protected(owner):
    org = owner["org_id"]
    gl_accounts.ensure_default_accounts(org)
    cash = next(a for a in gl_accounts.list_accounts(org) if a["code"] == "1000")
    with pytest.raises(SystemAccountProtected):
        gl_accounts.update_account(org, cash["id"], AccountUpdate(name="Money"), "alice")
    with pytest.raises(SystemAccountProtected):
        gl_accounts.delete_account(org, cash["id"], "alice")


@pytest.mark.db
def test_update_and_delete_custom_account(owner):
    org = owner["org_id"]
    a = _new(org)
    out = gl_accounts.update_account(org, a["id"], AccountUpdate(name="Till", is_active=False), "alice")
    assert out["name"] == "Till"
    assert out["is_active"] is False

    gl_accounts.delete_account(org, a["id"], "alice")
    with pytest.raises(NotFound):
        gl_accounts.get_account(org, a["id"])


@pytest.mark.db
def test_account_with_lines_cannot_be_deleted(owner):
    org = owner["org_id"]
    gl_accounts.ensure_default_accounts(org)
    a = _new(org)
    sales = next(x for x in gl_accounts.list_accounts(org) if x["code"] == "4000")
    gl_posting.create_journal(org, JournalCreate.model_validate({
        "transaction_date": "2025-01-10", "description": "Float",
        "status": "Posted",
        "lines": [{"account_id": a["id"], "debit": "20.00"},
                  {"account_id": sales["id"], "credit": "20.00"}]}), "alice")

    with pytest.raises(Conflict):
        gl_accounts.delete_account(org, a["id"], "alice")

    activity = gl_accounts.get_account_activity(org, a["id"])
    assert activity["account"]["current_balance"] == "20.00"
    assert len(activity["activity"]) == 1
    assert activity["activity"][0]["debit"] == "20.00"
