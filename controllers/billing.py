# controllers/billing.py
from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user

from schemas.billing import ChangePlanRequest, CheckoutRequest
from services import subscriptions
from services.plans import PLANS

billing_bp = Blueprint("billing", __name__, url_prefix="/api/billing")


def _body() -> dict:
    return request.get_json(silent=True) or {}


@billing_bp.get("/plans")
def list_plans():
    return jsonify({"items": [
        {"id": p["id"], "name": p["name"], "price_per_member": f"{p['price_per_member']:.2f}"}
        for p in PLANS.values()
    ]})


@billing_bp.get("/subscription")
@login_required
def subscription_details():
    return jsonify({"subscription": subscriptions.get_subscription_details(current_user.username)})


@billing_bp.get("/invoices")
@login_required
def invoice_history():
    items = subscriptions.get_invoice_history(current_user.username)
    return jsonify({"items": items, "total": len(items)})


@billing_bp.post("/checkout")
@login_required
def checkout():
    data = CheckoutRequest.model_validate(_body())
    return jsonify({"success": True,
                    "subscription": subscriptions.create_checkout_session(
                        current_user.username, data.plan_id)})


@billing_bp.post("/change-plan")
@login_required
def change_plan():
    data = ChangePlanRequest.model_validate(_body())
    out = subscriptions.change_plan(current_user.username, data.plan_id)
    return jsonify({"success": True, **out})


@billing_bp.post("/cancel")
@login_required
def cancel():
    return jsonify({"success": True,
                    "subscription": subscriptions.request_cancellation(current_user.username)})


@billing_bp.post("/invoices/<invoice_id>/pay")
@login_required
def pay_invoice(invoice_id):
    callback = (_body().get("callback_url") or None)
    return jsonify(subscriptions.pay_invoice(current_user.username, invoice_id,
                                             callback_url=callback))
