from functools import wraps
from flask import Blueprint, request, jsonify, session
from flask_wtf.csrf import generate_csrf
from flask_login import LoginManager, UserMixin, login_user, logout_user, login_required, current_user
from models.users_db import get_user, verify_password, list_memberships, get_member_role
from models.audit_store import audit
from services.metrics import LOGIN_SUCCESSES, LOGIN_FAILURES, FORBIDDEN

auth_bp = Blueprint("auth", __name__)
login_manager = LoginManager()


class User(UserMixin):
    def __init__(self, username, role):
        self.id = username
        self.username = username
        self.role = role

    @property
    def is_admin(self):
        return self.role == "admin"


@login_manager.user_loader
def load_user(user_id):
    row = get_user(user_id)
    if not row:
        return None
    return User(row["username"], row["role"])


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Authentication required", "code": "unauthorized"}), 401


def active_org_id():
    """Organization id kept in the session, falling back to the first membership."""
    org_id = session.get("org_id")
    if org_id is not None and get_member_role(current_user.username, org_id):
        return org_id
    memberships = list_memberships(current_user.username)
    if not memberships:
        session.pop("org_id", None)
        return None
    session["org_id"] = memberships[0]["organization_id"]
    return session["org_id"]


def _forbidden(reason, org_id=None):
    FORBIDDEN.inc()
    audit(
        "auth.forbidden",
        target_type="organization", target_id=str(org_id) if org_id else None,
        outcome="failure", status=403, error_code=reason,
        extra={"reason": reason}
    )
    return jsonify({"error": "Forbidden", "code": reason}), 403


def org_required(f):
    """Injects ``org_id`` for the caller's active organization."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        org_id = active_org_id()
        if org_id is None:
            return _forbidden("no_organization")
        return f(*args, org_id=org_id, **kwargs)
    return wrapper


def org_admin_required(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        org_id = active_org_id()
        if org_id is None:
            return _forbidden("no_organization")
        if get_member_role(current_user.username, org_id) != "admin":
            return _forbidden("not_org_admin", org_id)
        return f(*args, org_id=org_id, **kwargs)
    return wrapper


@auth_bp.get("/csrf-token")
def csrf_token():
    """Token for the X-CSRFToken header on state-changing requests."""
    return jsonify({"csrf_token": generate_csrf()})


@auth_bp.post("/login")
def login_post():
    payload = request.get_json(silent=True) or request.form
    u = (payload.get("username") or "").strip()
    p = payload.get("password") or ""

    if not verify_password(u, p):
        LOGIN_FAILURES.labels(reason="bad_credentials").inc()
        audit(
            "auth.login.failure",
            target_type="user", target_id=(u or "unknown"),
            outcome="failure", status=401,
            error_code="bad_credentials", actor=(u or "anonymous"),
            extra={"reason": "bad_credentials"}
        )
        return jsonify({"error": "Invalid username or password.", "code": "bad_credentials"}), 401

    row = get_user(u)
    login_user(User(row["username"], row["role"]))
    session.pop("org_id", None)
    LOGIN_SUCCESSES.inc()

    audit(
        "auth.login.success",
        target_type="user", target_id=row["username"],
        outcome="success", status=200, actor=row["username"],
        extra={"note": f"role={row['role']}"}
    )
    return jsonify({"username": row["username"], "role": row["role"],
                    "organization_id": active_org_id()})


@auth_bp.post("/logout")
@login_required
def logout():
    audit(
        "auth.logout",
        target_type="user", target_id=current_user.username,
        outcome="success", status=200
    )
    logout_user()
    session.pop("org_id", None)
    return jsonify({"ok": True})


@auth_bp.get("/api/orgs")
@login_required
def list_orgs():
    return jsonify({"items": list_memberships(current_user.username),
                    "active": active_org_id()})


@auth_bp.post("/api/orgs/active")
@login_required
def set_active_org():
    payload = request.get_json(silent=True) or {}
    try:
        org_id = int(payload.get("organization_id"))
    except (TypeError, ValueError):
        return jsonify({"error": "organization_id must be an integer", "code": "validation_error"}), 400
    if not get_member_role(current_user.username, org_id):
        return _forbidden("not_member", org_id)
    session["org_id"] = org_id
    audit("auth.org.switch", target_type="organization", target_id=str(org_id),
          outcome="success", status=200, organization_id=org_id)
    return jsonify({"active": org_id})
