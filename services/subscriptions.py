# services/subscriptions.py
"""
User-facing subscription actions: checkout, plan change with proration,
cancellation and invoice payment through the configured gateway.
"""
from __future__ import annotations
import logging
from datetime import datetime, timedelta
from decimal import Decimal

from models.audit_store import audit
from models.base import session_scope
from models.schema import Invoice, InvoiceItem, Subscription
from models import subscriptions_store as store
from models.users_db import count_billable_members, get_user
from services.billing import (
    calculate_anniversary_day, calculate_next_period_end, calculate_plan_change_proration,
)
from services.datetimex import as_utc, now_utc, to_iso_z
from services.errors import (
    Conflict, Forbidden, NotFound, PaymentProviderError, ValidationError,
)
from services.metrics import INVOICES_CREATED
from services.payments.registry import get_provider
from services.plans import billing_currency, get_paid_plan, to_kobo

log = logging.getLogger(__name__)

INVOICE_DUE_DAYS = 14


def subscription_to_dict(sub: Subscription) -> dict:
    return {
        "id": sub.id,
        "user_id": sub.user_id,
        "plan": sub.plan,
        "status": sub.status,
        "price_per_member": f"{sub.price_per_member or 0:.2f}",
        "paystack_subscription_code": sub.paystack_subscription_code,
        "trial_end": to_iso_z(sub.trial_end),
        "current_period_start": to_iso_z(sub.current_period_start),
        "current_period_end": to_iso_z(sub.current_period_end),
        "cancel_at_period_end": bool(sub.cancel_at_period_end),
        "canceled_at": to_iso_z(sub.canceled_at),
        "billing_anniversary_day": sub.billing_anniversary_day,
        "last_invoiced_at": to_iso_z(sub.last_invoiced_at),
    }


def invoice_to_dict(inv: Invoice, with_items: bool = True) -> dict:
    out = {
        "id": inv.id,
        "subscription_id": inv.subscription_id,
        "status": inv.status,
        "amount": f"{inv.amount:.2f}",
        "currency": inv.currency,
        "billing_period_start": to_iso_z(inv.billing_period_start),
        "billing_period_end": to_iso_z(inv.billing_period_end),
        "due_date": to_iso_z(inv.due_date),
        "paid_at": to_iso_z(inv.paid_at),
        "created_at": to_iso_z(inv.created_at),
    }
    if with_items:
        out["items"] = [{
            "id": it.id,
            "description": it.description,
            "amount": f"{it.amount:.2f}",
            "prorated": bool(it.prorated),
        } for it in inv.items]
    return out


def get_subscription_details(username: str) -> dict | None:
    with session_scope() as s:
        sub = store.get_subscription_for_user(s, username)
        return subscription_to_dict(sub) if sub else None


def get_invoice_history(username: str) -> list[dict]:
    with session_scope() as s:
        sub = store.get_subscription_for_user(s, username)
        if not sub:
            return []
        return [invoice_to_dict(i) for i in store.list_invoices(s, sub.id)]


def create_checkout_session(username: str, plan_id: str, now: datetime | None = None) -> dict:
    """Put the user on a paid plan, starting a fresh anniversary-based period."""
    plan = get_paid_plan(plan_id)
    if not plan:
        raise ValidationError("Invalid plan selected.")
    now = as_utc(now) if now else now_utc()
    anniversary = calculate_anniversary_day(now)
    period_end = calculate_next_period_end(now, anniversary)

    with session_scope() as s:
        sub = store.get_subscription_for_user(s, username)
        if sub is None:
            sub = Subscription(id=store.new_subscription_id(username), user_id=username)
            s.add(sub)
        sub.plan = plan["id"]
        sub.price_per_member = plan["price_per_member"]
        sub.status = "active"
        sub.current_period_start = now
        sub.current_period_end = period_end
        sub.billing_anniversary_day = anniversary
        sub.cancel_at_period_end = False
        sub.canceled_at = None
        s.flush()
        out = subscription_to_dict(sub)

    audit("billing.checkout", target_type="subscription", target_id=out["id"],
          outcome="success", status=200, actor=username,
          extra={"plan": plan["id"]})
    return out


def _payment_link(username: str, invoice_id: str) -> str | None:
    """Best-effort checkout link for a fresh proration invoice."""
    try:
        return pay_invoice(username, invoice_id)["authorization_url"]
    except (PaymentProviderError, ValidationError) as e:
        log.warning("Could not create payment link for %s: %s", invoice_id, e.message)
        return None


def change_plan(username: str, plan_id: str, now: datetime | None = None) -> dict:
    """Switch plan mid-period, invoicing the prorated difference.

    A positive difference becomes an open invoice to pay; a negative one is
    kept as a draft credit note. Differences of a cent or less are ignored.
    """
    new_plan = get_paid_plan(plan_id)
    if not new_plan:
        raise ValidationError("Invalid plan selected.")
    now = as_utc(now) if now else now_utc()
    members = count_billable_members(username)

    with session_scope() as s:
        sub = store.get_subscription_for_user(s, username)
        if not sub:
            raise NotFound("No subscription found.")
        if sub.plan == new_plan["id"]:
            raise Conflict("Already on this plan.", code="same_plan")
        if members == 0:
            raise ValidationError("No organizations found for billing.")

        old_plan = sub.plan
        old_price = Decimal(sub.price_per_member or 0)
        new_price = new_plan["price_per_member"]
        proration = None
        invoice_id = None

        if sub.current_period_start and sub.current_period_end:
            proration = calculate_plan_change_proration(
                float(old_price), float(new_price), members,
                as_utc(sub.current_period_start), as_utc(sub.current_period_end), now=now)
            net = proration["net_amount"]
            if abs(net) > 0.01:
                amount = Decimal(f"{net:.2f}")
                direction = "upgrade" if net > 0 else "downgrade"
                kind = "prorated charge" if net > 0 else "prorated credit"
                inv = Invoice(
                    id=store.new_invoice_id(),
                    subscription_id=sub.id,
                    status="open" if net > 0 else "draft",
                    amount=amount,
                    currency=billing_currency(),
                    billing_period_start=now,
                    billing_period_end=as_utc(sub.current_period_end),
                    due_date=now + timedelta(days=INVOICE_DUE_DAYS),
                )
                inv.items.append(InvoiceItem(
                    id=store.new_item_id(),
                    description=(
                        f"Plan {direction}: {old_plan} → {new_plan['id']} ({kind} for remaining period)\n"
                        f"Old price: ₦{old_price:.2f}/member, New price: ₦{new_price:.2f}/member\n"
                        f"{members} members × {proration['remaining_days']}/{proration['total_days']} days"),
                    amount=amount,
                    prorated=True,
                    billing_period_start=now,
                    billing_period_end=as_utc(sub.current_period_end),
                ))
                s.add(inv)
                invoice_id = inv.id

        sub.plan = new_plan["id"]
        sub.price_per_member = new_price
        s.flush()
        out = {"subscription": subscription_to_dict(sub),
               "proration": proration, "proration_invoice_id": invoice_id}

    if invoice_id:
        INVOICES_CREATED.labels(kind="proration").inc()
        if proration["net_amount"] > 0:
            out["payment_url"] = _payment_link(username, invoice_id)
    audit("billing.plan.changed", target_type="subscription", target_id=out["subscription"]["id"],
          outcome="success", status=200, actor=username,
          extra={"old": old_plan, "new": new_plan["id"], "invoice_id": invoice_id,
                 "amount": proration["net_amount"] if proration else None})
    return out


def request_cancellation(username: str) -> dict:
    with session_scope() as s:
        sub = store.get_subscription_for_user(s, username)
        if not sub:
            raise NotFound("No subscription found to cancel.")
        sub.status = "canceled"
        sub.cancel_at_period_end = True
        sub.canceled_at = now_utc()
        s.flush()
        out = subscription_to_dict(sub)

    audit("billing.subscription.canceled", target_type="subscription", target_id=out["id"],
          outcome="success", status=200, actor=username)
    return out


def pay_invoice(username: str, invoice_id: str, callback_url: str | None = None) -> dict:
    """Open a hosted checkout for one of the user's invoices."""
    user = get_user(username)
    if not user or not user.get("email"):
        raise ValidationError("User email is missing.")

    with session_scope() as s:
        sub = store.get_subscription_for_user(s, username)
        if not sub:
            raise NotFound("No subscription found.")
        inv = store.get_invoice(s, invoice_id)
        if not inv:
            raise NotFound("Invoice not found.")
        if inv.subscription_id != sub.id:
            raise Forbidden("Invoice does not belong to current user.")
        if inv.status == "paid":
            raise Conflict("Invoice is already paid.", code="invoice_paid")
        if inv.status != "open" or inv.amount <= 0:
            raise Conflict("Invoice is not payable.", code="invoice_not_payable")
        amount_kobo = to_kobo(inv.amount)

    provider = get_provider()
    try:
        result = provider.initialize_transaction(
            email=user["email"],
            amount_kobo=amount_kobo,
            metadata={"invoice_id": invoice_id, "user_id": username,
                      "type": "invoice-payment"},
            callback_url=callback_url,
        )
    except PaymentProviderError as e:
        audit("billing.invoice.pay", target_type="invoice", target_id=invoice_id,
              outcome="failure", status=e.status, error_code=e.code, actor=username,
              extra={"reason": e.message})
        raise

    audit("billing.invoice.pay", target_type="invoice", target_id=invoice_id,
          outcome="success", status=200, actor=username,
          extra={"amount": amount_kobo})
    return {"authorization_url": result.authorization_url, "reference": result.reference}
