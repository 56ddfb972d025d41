# services/plans.py
from __future__ import annotations
import os
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app, has_app_context

# Per-member monthly prices in NGN; Paystack amounts are in kobo (x100).
PLANS = {
    "free": {"id": "free", "name": "Free", "price_per_member": Decimal("0.00")},
    "pro": {"id": "pro", "name": "Pro", "price_per_member": Decimal("9000.00")},
    "proAI": {"id": "proAI", "name": "Pro + AI", "price_per_member": Decimal("18000.00")},
    "premium": {"id": "premium", "name": "Premium", "price_per_member": Decimal("45000.00")},
    "premiumAI": {"id": "premiumAI", "name": "Premium + AI", "price_per_member": Decimal("60000.00")},
}

PAID_PLANS = tuple(k for k in PLANS if k != "free")


def get_paid_plan(plan_id: str | None) -> dict | None:
    return PLANS.get(plan_id) if plan_id in PAID_PLANS else None


def to_kobo(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def billing_currency() -> str:
    """Env first, then Flask config."""
    cur = os.environ.get("BILLING_CURRENCY")
    if not cur and has_app_context():
        cur = current_app.config.get("BILLING_CURRENCY")
    return (cur or "NGN").upper()
