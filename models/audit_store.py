# models/audit_store.py
import os
import json
import hmac
import hashlib
from typing import Any, Optional
from datetime import datetime, timezone
from flask import request, has_request_context, g, current_app, session
from sqlalchemy import select, asc
from models.base import session_scope
from models.schema import AuditLog
from flask_login import current_user

APP_SECRET = (os.getenv("AUDIT_HMAC_SECRET") or "secret-key").encode("utf-8")
ANONYMIZE_IP = os.getenv("AUDIT_ANONYMIZE_IP", "1") == "1"
SCHEMA_VERSION = 3
SIGNING_KEY_ID = os.getenv("AUDIT_HMAC_KEY_ID", "k1")

_ALLOWED_EXTRA_KEYS = {
    "reason", "note", "diff", "count", "totals", "old", "new",
    "journal_number", "status", "transaction_date", "accounts",
    "period", "plan", "amount", "event", "invoice_id", "subscription_id",
}


def _load_keyring() -> dict[str, bytes]:
    ring: dict[str, bytes] = {}
    # Optional ring for rotated keys
    cfg = os.getenv("AUDIT_HMAC_KEYRING", "")
    if cfg:
        for part in cfg.split(","):
            part = part.strip()
            if not part or "=" not in part:
                continue
            kid, sec = part.split("=", 1)
            ring[kid.strip()] = sec.strip().encode("utf-8")
    ring[SIGNING_KEY_ID] = APP_SECRET
    return ring


def _ts_to_payload_str(ts_val: datetime) -> str:
    """Recreate the exact 'ts' string format used when hashing."""
    if ts_val.tzinfo is None:
        # SQLite drops the offset; everything we write is UTC
        ts_val = ts_val.replace(tzinfo=timezone.utc)
    return ts_val.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _rebuild_payload_from_row(r: AuditLog) -> dict:
    return {
        "ts": _ts_to_payload_str(r.ts),
        "actor": r.actor,
        "actor_role": r.actor_role,
        "organization_id": r.organization_id,
        "request_id": r.request_id,
        "session_id": r.session_id,
        "ip": r.ip,
        "ua": r.ua_fingerprint,
        "method": r.method,
        "path": r.path,
        "action": r.action,
        "target_type": r.target_type,
        "target_id": r.target_id,
        "outcome": r.outcome,
        "status": r.status,
        "error_code": r.error_code,
        "extra": r.extra or {},
        "schema_version": r.schema_version or SCHEMA_VERSION,
        "key_id": r.key_id,
    }


def _fail(checked: int, last_ok, bad_id, reason: str) -> dict:
    return {"ok": False, "checked": checked, "last_ok_id": last_ok,
            "first_bad_id": bad_id, "reason": reason}


def verify_chain(limit: Optional[int] = None) -> dict:
    """
    Return:
      {
        "ok": bool,
        "checked": int,
        "last_ok_id": int | None,
        "first_bad_id": int | None,
        "reason": str | None
      }
    """
    ring = _load_keyring()
    prev = ""
    checked = 0
    last_ok = None

    with session_scope() as s:
        q = select(AuditLog).order_by(asc(AuditLog.id))
        if limit:
            q = q.limit(int(limit))
        rows = s.execute(q).scalars().all()

        for r in rows:
            exp_hash = _compute_hash(prev, _rebuild_payload_from_row(r))

            if r.prev_hash != prev:
                return _fail(checked, last_ok, r.id, "prev_hash_mismatch")
            if r.hash != exp_hash:
                return _fail(checked, last_ok, r.id, "hash_mismatch")

            kid = r.key_id or SIGNING_KEY_ID
            key = ring.get(kid)
            if not key:
                return _fail(checked, last_ok, r.id, f"missing_key:{kid}")

            exp_sig = hmac.new(key, exp_hash.encode(
                "utf-8"), hashlib.sha256).hexdigest()
            if r.signature != exp_sig:
                return _fail(checked, last_ok, r.id, "signature_mismatch")

            checked += 1
            last_ok = r.id
            prev = r.hash or ""

    return {
        "ok": True,
        "checked": checked,
        "last_ok_id": last_ok,
        "first_bad_id": None,
        "reason": None,
    }


def _latest_hash() -> str:
    with session_scope() as s:
        row = s.execute(select(AuditLog).order_by(
            AuditLog.id.desc()).limit(1)).scalars().first()
        return row.hash or "" if row else ""


def _compute_hash(prev_hash: str, payload: dict) -> str:
    s = prev_hash + json.dumps(payload, separators=(",", ":"),
                               sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _sign(h: str) -> str:
    return hmac.new(APP_SECRET, h.encode("utf-8"), hashlib.sha256).hexdigest()


def _anon_ip(ip: str | None) -> str | None:
    if not ip:
        return None
    if not ANONYMIZE_IP:
        return ip
    # IPv4 /24 or IPv6 /48 truncation
    if ":" in ip:
        parts = ip.split(":")
        return ":".join(parts[:3]) + "::"
    quads = ip.split(".")
    return ".".join(quads[:3]) + ".0"


def _fingerprint(val: str | None, maxlen: int = 64) -> str | None:
    if not val:
        return None
    return hashlib.sha256(val.encode("utf-8")).hexdigest()[:maxlen]


def _clean_extra(extra: Optional[dict[str, Any]]) -> dict:
    if not extra:
        return {}
    out = {}
    for k, v in extra.items():
        if k not in _ALLOWED_EXTRA_KEYS:
            continue
        if isinstance(v, str) and len(v) > 512:
            v = v[:512] + "…"
        out[k] = v
    # round-trip so the hashed payload equals what the JSON column hands back
    return json.loads(json.dumps(out, default=str))


def audit(
    action: str,
    *,
    target_type: str | None = None,
    target_id: str | None = None,
    outcome: str | None = None,            # 'success'|'failure'|'blocked'|'noop'
    status: int | None = None,
    error_code: str | None = None,
    extra: Optional[dict[str, Any]] = None,
    actor: Optional[str] = None,
    organization_id: Optional[int] = None,
) -> None:
    """Append one signed row to the audit chain.

    Call this outside any open write transaction: the row is written in its
    own session so a failed business transaction still leaves a trace.
    """
    ts = datetime.now(timezone.utc).replace(microsecond=0)

    ip = ua = method = path = req_id = sess_id = None
    if has_request_context():
        fwd = request.headers.get("X-Forwarded-For", "")
        ip = _anon_ip(fwd.split(",")[0].strip() or request.remote_addr)
        method = request.method
        path = request.path
        req_id = getattr(g, "request_id", None) or request.headers.get(
            "X-Request-ID")
        # Never store raw session cookies; keep a stable fingerprint only.
        cookie_name = current_app.config.get(
            "SESSION_COOKIE_NAME", "session")
        sess_id = _fingerprint(request.cookies.get(cookie_name), 64)
        ua = _fingerprint(
            request.user_agent.string if request.user_agent else None, 32)
        if organization_id is None:
            organization_id = session.get("org_id")

    actor_role = None
    if actor is None:
        if has_request_context() and current_user and current_user.is_authenticated:
            actor = current_user.username
            actor_role = current_user.role
        else:
            actor = "anonymous"

    payload = {
        "ts": _ts_to_payload_str(ts), "actor": actor, "actor_role": actor_role,
        "organization_id": organization_id,
        "request_id": req_id, "session_id": sess_id,
        "ip": ip, "ua": ua, "method": method, "path": path,
        "action": action, "target_type": target_type,
        "target_id": None if target_id is None else str(target_id),
        "outcome": outcome, "status": status, "error_code": error_code,
        "extra": _clean_extra(extra),
        "schema_version": SCHEMA_VERSION,
        "key_id": SIGNING_KEY_ID,
    }

    prev = _latest_hash()
    h = _compute_hash(prev, payload)
    sig = _sign(h)

    with session_scope() as s:
        s.add(AuditLog(
            ts=ts,
            actor=actor, actor_role=actor_role,
            organization_id=organization_id,
            request_id=req_id, session_id=sess_id,
            ip=ip, ua_fingerprint=ua,
            method=method, path=path,
            action=action, target_type=target_type, target_id=payload["target_id"],
            outcome=outcome, status=status, error_code=error_code,
            extra=payload["extra"],
            prev_hash=prev, hash=h, signature=sig, schema_version=SCHEMA_VERSION,
            key_id=SIGNING_KEY_ID
        ))


def list_audit(organization_id: int, limit: int = 200) -> list[dict]:
    with session_scope() as s:
        rows = s.execute(
            select(AuditLog)
            .where(AuditLog.organization_id == organization_id)
            .order_by(AuditLog.id.desc()).limit(limit)
        ).scalars().all()
        return [
            {
                "id": r.id,
                "ts": _ts_to_payload_str(r.ts),
                "actor": r.actor,
                "action": r.action,
                "target": (f"{r.target_type}:{r.target_id}"
                           if (r.target_type or r.target_id) else None),
                "outcome": r.outcome,
                "status": r.status,
                "error_code": r.error_code,
                "extra": r.extra or {},
            }
            for r in rows
        ]
