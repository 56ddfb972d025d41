# services/payments/registry.py
import os
from flask import current_app, has_app_context
from services.payments.paystack import PaystackProvider


def _cfg(key: str, default: str | None = None) -> str | None:
    v = os.environ.get(key)
    if v is not None:
        return v
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def get_provider():
    name = (_cfg("PAYMENT_PROVIDER") or "paystack").lower()
    if name == "paystack":
        return PaystackProvider()
    raise RuntimeError(f"Unknown PAYMENT_PROVIDER: {name}")
