# controllers/gl.py
from flask import Blueprint, request, jsonify
from flask_login import current_user

from controllers.auth import org_required, org_admin_required
from models.audit_store import list_audit
from schemas.gl import (
    AccountCreate, AccountUpdate, AsOfQuery, DateRangeQuery,
    JournalCreate, JournalListQuery, JournalReverse, JournalUpdate,
    PeriodCreate, PeriodStatusUpdate,
)
from services import accounting, gl_accounts, gl_periods, gl_posting

gl_bp = Blueprint("gl", __name__, url_prefix="/api/gl")


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _args() -> dict:
    return request.args.to_dict()


def _bool_arg(name: str):
    v = request.args.get(name)
    if v is None:
        return None
    return v.strip().lower() in ("1", "true", "yes", "on")


# ---- chart of accounts -----------------------------------------------------

@gl_bp.get("/accounts")
@org_required
def list_accounts(org_id):
    items = gl_accounts.list_accounts(
        org_id, type_=request.args.get("type"),
        active=_bool_arg("active"), q=request.args.get("q"))
    return jsonify({"items": items, "total": len(items)})


@gl_bp.post("/accounts")
@org_admin_required
def create_account(org_id):
    data = AccountCreate.model_validate(_body())
    return jsonify(gl_accounts.create_account(org_id, data, current_user.username)), 201


@gl_bp.get("/accounts/<int:account_id>")
@org_required
def get_account(org_id, account_id):
    return jsonify(gl_accounts.get_account(org_id, account_id))


@gl_bp.get("/accounts/<int:account_id>/activity")
@org_required
def account_activity(org_id, account_id):
    rng = DateRangeQuery.model_validate(_args())
    limit = min(max(request.args.get("limit", 100, type=int), 1), 500)
    return jsonify(gl_accounts.get_account_activity(
        org_id, account_id, start=rng.start_date, end=rng.end_date, limit=limit))


@gl_bp.patch("/accounts/<int:account_id>")
@org_admin_required
def update_account(org_id, account_id):
    data = AccountUpdate.model_validate(_body())
    return jsonify(gl_accounts.update_account(org_id, account_id, data, current_user.username))


@gl_bp.delete("/accounts/<int:account_id>")
@org_admin_required
def delete_account(org_id, account_id):
    gl_accounts.delete_account(org_id, account_id, current_user.username)
    return jsonify({"ok": True})


# ---- journals --------------------------------------------------------------

@gl_bp.get("/journals")
@org_required
def list_journals(org_id):
    query = JournalListQuery.model_validate(_args())
    return jsonify(gl_posting.list_journals(org_id, query))


@gl_bp.post("/journals")
@org_required
def create_journal(org_id):
    data = JournalCreate.model_validate(_body())
    return jsonify(gl_posting.create_journal(org_id, data, current_user.username)), 201


@gl_bp.get("/journals/<int:journal_id>")
@org_required
def get_journal(org_id, journal_id):
    return jsonify(gl_posting.get_journal(org_id, journal_id))


@gl_bp.patch("/journals/<int:journal_id>")
@org_required
def update_journal(org_id, journal_id):
    data = JournalUpdate.model_validate(_body())
    return jsonify(gl_posting.update_journal(org_id, journal_id, data, current_user.username))


@gl_bp.delete("/journals/<int:journal_id>")
@org_required
def delete_journal(org_id, journal_id):
    gl_posting.delete_journal(org_id, journal_id, current_user.username)
    return jsonify({"ok": True})


@gl_bp.post("/journals/<int:journal_id>/post")
@org_required
def post_journal(org_id, journal_id):
    return jsonify(gl_posting.post_journal(org_id, journal_id, current_user.username))


@gl_bp.post("/journals/<int:journal_id>/reverse")
@org_required
def reverse_journal(org_id, journal_id):
    data = JournalReverse.model_validate(_body())
    out = gl_posting.reverse_journal(
        org_id, journal_id, current_user.username,
        reversal_date=data.reversal_date, description=data.description)
    return jsonify(out), 201


# ---- fiscal periods --------------------------------------------------------

@gl_bp.get("/periods")
@org_required
def list_periods(org_id):
    items = gl_periods.list_periods(org_id, status=request.args.get("status"))
    return jsonify({"items": items, "total": len(items)})


@gl_bp.post("/periods")
@org_admin_required
def create_period(org_id):
    data = PeriodCreate.model_validate(_body())
    return jsonify(gl_periods.create_period(org_id, data, current_user.username)), 201


@gl_bp.patch("/periods/<int:period_id>")
@org_admin_required
def update_period_status(org_id, period_id):
    data = PeriodStatusUpdate.model_validate(_body())
    return jsonify(gl_periods.update_period_status(
        org_id, period_id, data.status, current_user.username))


# ---- reports ---------------------------------------------------------------

@gl_bp.get("/reports/trial-balance")
@org_required
def trial_balance(org_id):
    rng = DateRangeQuery.model_validate(_args())
    df = accounting.trial_balance(org_id, rng.start_date, rng.end_date)
    return jsonify(accounting.frame_payload(df))


@gl_bp.get("/reports/income-statement")
@org_required
def income_statement(org_id):
    rng = DateRangeQuery.model_validate(_args())
    df = accounting.income_statement(org_id, rng.start_date, rng.end_date)
    return jsonify(accounting.frame_payload(df))


@gl_bp.get("/reports/balance-sheet")
@org_required
def balance_sheet(org_id):
    q = AsOfQuery.model_validate(_args())
    return jsonify(accounting.frame_payload(accounting.balance_sheet(org_id, q.as_of)))


@gl_bp.get("/audit")
@org_admin_required
def audit_log(org_id):
    limit = min(max(request.args.get("limit", 200, type=int), 1), 1000)
    return jsonify({"items": list_audit(org_id, limit=limit)})
