# services/billing_webhook.py
"""
Billing state machine driven by verified Paystack events.

    charge.success  new-subscription -> subscription active on a paid plan
                    invoice-payment  -> open invoice paid, period extended
    charge.failed   with open invoice -> subscription past_due
    subscription.update   -> plan switched by subscription code
    subscription.disable  -> subscription canceled
    anything else         -> acknowledged and ignored

Only invoice settlement is idempotent (a paid invoice is left alone).
subscription.update, subscription.disable and charge.failed apply again on
every delivery, so a Paystack retry re-stamps ``canceled_at`` or flips a
recovered subscription back to past_due.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime

from models.base import session_scope
from models import subscriptions_store as store
from models.schema import WebhookEvent
from services.billing import calculate_anniversary_day, calculate_next_period_end
from services.datetimex import as_utc, now_utc
from services.plans import get_paid_plan
from schemas.paystack import (
    ChargeFailedEvent, ChargeSuccessEvent, SubscriptionCreateEvent,
    SubscriptionDisableEvent, SubscriptionUpdateEvent,
)

log = logging.getLogger(__name__)


@dataclass
class WebhookOutcome:
    outcome: str                      # handled | ignored | rejected
    body: dict = field(default_factory=lambda: {"status": "success"})
    target_type: str | None = None
    target_id: str | None = None


def record_event(provider: str, event_type: str, reference: str | None,
                 raw: bytes, outcome: str) -> int:
    with session_scope() as s:
        row = WebhookEvent(provider=provider, event_type=event_type or "unknown",
                           reference=reference, raw=raw.decode("utf-8", "replace"),
                           outcome=outcome, received_at=now_utc())
        s.add(row)
        s.flush()
        return row.id


def _activate_subscription(evt: ChargeSuccessEvent, now: datetime) -> WebhookOutcome:
    meta = evt.data.metadata
    plan = get_paid_plan(meta.plan_id)
    if not (meta.user_id and plan and meta.subscription_id):
        log.error("charge.success new-subscription without usable metadata (plan=%r)", meta.plan_id)
        return WebhookOutcome("rejected", {"status": "error", "message": "Missing metadata."})

    with session_scope() as s:
        sub = store.get_subscription(s, meta.subscription_id)
        if not sub:
            log.warning("Subscription %s not found for new-subscription charge",
                        meta.subscription_id)
            return WebhookOutcome("ignored", target_type="subscription",
                                  target_id=meta.subscription_id)
        anniversary = calculate_anniversary_day(now)
        sub.status = "active"
        sub.plan = plan["id"]
        sub.price_per_member = plan["price_per_member"]
        sub.current_period_start = now
        sub.current_period_end = calculate_next_period_end(now, anniversary)
        sub.billing_anniversary_day = anniversary
        sub.trial_end = None
        if evt.data.subscription and evt.data.subscription.subscription_code:
            sub.paystack_subscription_code = evt.data.subscription.subscription_code
        sub.updated_at = now

    log.info("Subscription %s activated for user %s (plan %s)",
             meta.subscription_id, meta.user_id, meta.plan_id)
    return WebhookOutcome("handled", target_type="subscription",
                          target_id=meta.subscription_id)


def _settle_invoice(evt: ChargeSuccessEvent, now: datetime) -> WebhookOutcome:
    invoice_id = evt.data.metadata.invoice_id
    with session_scope() as s:
        inv = store.get_invoice(s, invoice_id)
        if not inv:
            log.warning("Invoice %s not found for charge.success", invoice_id)
            return WebhookOutcome("ignored", {"message": "Success (invoice not found)"},
                                  target_type="invoice", target_id=invoice_id)
        if inv.status != "open":
            log.info("Invoice %s is %s; nothing to settle", invoice_id, inv.status)
            return WebhookOutcome("ignored", target_type="invoice", target_id=invoice_id)

        inv.status = "paid"
        inv.paid_at = now
        inv.updated_at = now

        sub = store.get_subscription(s, inv.subscription_id)
        if sub:
            start = as_utc(inv.billing_period_end) or now
            anniversary = sub.billing_anniversary_day or calculate_anniversary_day(
                as_utc(sub.created_at) or now)
            sub.status = "active"
            sub.current_period_start = start
            sub.current_period_end = calculate_next_period_end(start, anniversary)
            sub.updated_at = now

    log.info("Invoice %s paid", invoice_id)
    return WebhookOutcome("handled", target_type="invoice", target_id=invoice_id)


def _mark_past_due(evt: ChargeFailedEvent, now: datetime) -> WebhookOutcome:
    invoice_id = evt.data.metadata.invoice_id
    if not invoice_id:
        log.info("charge.failed without invoice metadata")
        return WebhookOutcome("ignored")
    with session_scope() as s:
        inv = store.get_invoice(s, invoice_id)
        if not inv or inv.status != "open":
            return WebhookOutcome("ignored", target_type="invoice", target_id=invoice_id)
        sub = store.get_subscription(s, inv.subscription_id)
        if not sub:
            return WebhookOutcome("ignored", target_type="invoice", target_id=invoice_id)
        sub.status = "past_due"
        sub.updated_at = now
        sub_id = sub.id

    log.warning("Payment failed for invoice %s; subscription %s past due", invoice_id, sub_id)
    return WebhookOutcome("handled", target_type="subscription", target_id=sub_id)


def _update_plan(evt: SubscriptionUpdateEvent, now: datetime) -> WebhookOutcome:
    code = evt.data.subscription_code
    plan_code = evt.data.plan.plan_code if evt.data.plan else None
    plan = get_paid_plan(plan_code)
    if not code or not plan:
        log.warning("subscription.update with unknown plan %r", plan_code)
        return WebhookOutcome("ignored", target_type="subscription", target_id=code)
    with session_scope() as s:
        sub = store.get_subscription_by_code(s, code)
        if not sub:
            return WebhookOutcome("ignored", target_type="subscription", target_id=code)
        sub.plan = plan["id"]
        sub.price_per_member = plan["price_per_member"]
        sub.updated_at = now
        sub_id = sub.id

    log.info("Subscription %s moved to plan %s", sub_id, plan["id"])
    return WebhookOutcome("handled", target_type="subscription", target_id=sub_id)


def _disable(evt: SubscriptionDisableEvent, now: datetime) -> WebhookOutcome:
    code = evt.data.subscription_code
    if not code:
        return WebhookOutcome("ignored")
    with session_scope() as s:
        sub = store.get_subscription_by_code(s, code)
        if not sub:
            return WebhookOutcome("ignored", target_type="subscription", target_id=code)
        sub.status = "canceled"
        sub.canceled_at = now
        sub.cancel_at_period_end = True
        sub.updated_at = now
        sub_id = sub.id

    log.info("Subscription %s disabled by provider", sub_id)
    return WebhookOutcome("handled", target_type="subscription", target_id=sub_id)


def handle_event(evt, now: datetime | None = None) -> WebhookOutcome:
    """Apply one parsed event. Database errors propagate to the caller."""
    now = as_utc(now) if now else now_utc()

    if isinstance(evt, ChargeSuccessEvent):
        meta = evt.data.metadata
        if meta.type == "new-subscription":
            return _activate_subscription(evt, now)
        if meta.invoice_id:
            return _settle_invoice(evt, now)
        log.info("charge.success without billing metadata (ref=%s)", evt.data.reference)
        return WebhookOutcome("ignored")
    if isinstance(evt, ChargeFailedEvent):
        return _mark_past_due(evt, now)
    if isinstance(evt, SubscriptionUpdateEvent):
        return _update_plan(evt, now)
    if isinstance(evt, SubscriptionDisableEvent):
        return _disable(evt, now)
    if isinstance(evt, SubscriptionCreateEvent):
        log.info("Subscription created: %s", evt.data.subscription_code)
        return WebhookOutcome("ignored", target_type="subscription",
                              target_id=evt.data.subscription_code)

    log.info("Unhandled Paystack event: %s", getattr(evt, "event", "unknown"))
    return WebhookOutcome("ignored")
