# controllers/webhooks.py
from __future__ import annotations
import logging
from flask import Blueprint, request, jsonify
from pydantic import ValidationError as PydanticValidationError

from models.audit_store import audit
from schemas.paystack import HANDLED_EVENTS, parse_event
from services.billing_webhook import handle_event, record_event
from services.metrics import WEBHOOK_EVENTS
from services.payments.registry import get_provider

log = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")

_AUDIT_OUTCOME = {"handled": "success", "ignored": "noop", "rejected": "failure"}


@webhooks_bp.post("/paystack")
def paystack():
    """
    Signed Paystack callback. No session, CSRF-exempt in app.py.
    Signature is checked over the raw body before anything is decoded.
    """
    provider = get_provider()
    try:
        evt = provider.parse_webhook(request)
    except ValueError:
        log.warning("Webhook body is not valid JSON")
        WEBHOOK_EVENTS.labels(provider=provider.name, event="unknown", outcome="invalid").inc()
        return jsonify({"error": "Invalid payload", "code": "invalid_payload"}), 400

    if not evt.signature_ok:
        WEBHOOK_EVENTS.labels(provider=provider.name, event="unknown", outcome="unauthorized").inc()
        audit("billing.webhook.rejected", target_type="webhook", target_id=provider.name,
              outcome="failure", status=401, error_code="invalid_signature",
              actor="paystack")
        return jsonify({"error": "Unauthorized: Invalid signature", "code": "invalid_signature"}), 401

    event_type = evt.event_type or "unknown"
    try:
        parsed = parse_event(evt.payload)
    except PydanticValidationError as e:
        log.warning("Malformed %s payload: %s", event_type, e.errors(include_url=False))
        record_event(provider.name, event_type, evt.reference, evt.raw, "invalid")
        WEBHOOK_EVENTS.labels(provider=provider.name, event=event_type, outcome="invalid").inc()
        return jsonify({"error": "Invalid payload", "code": "invalid_payload"}), 400

    try:
        result = handle_event(parsed)
    except Exception:
        log.exception("Webhook processing failed for %s", event_type)
        record_event(provider.name, event_type, evt.reference, evt.raw, "failed")
        WEBHOOK_EVENTS.labels(provider=provider.name, event=event_type, outcome="failed").inc()
        audit("billing.webhook.failed", target_type="webhook", target_id=evt.reference,
              outcome="failure", status=500, error_code="processing_error",
              actor="paystack", extra={"event": event_type})
        return jsonify({"error": "Webhook processing failed", "code": "internal_error"}), 500

    record_event(provider.name, event_type, evt.reference, evt.raw, result.outcome)
    WEBHOOK_EVENTS.labels(provider=provider.name, event=event_type, outcome=result.outcome).inc()
    action = event_type if event_type in HANDLED_EVENTS else "unhandled"
    audit(f"billing.webhook.{action}", target_type=result.target_type or "webhook",
          target_id=result.target_id or evt.reference,
          outcome=_AUDIT_OUTCOME.get(result.outcome, "noop"),
          status=200, actor="paystack", extra={"event": event_type})
    return jsonify(result.body), 200
