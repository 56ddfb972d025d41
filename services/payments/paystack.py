# services/payments/paystack.py
"""
Thin Paystack client.

Configuration (env first, Flask config second):
  PAYSTACK_SECRET_KEY   secret key; signs webhooks and authorizes API calls
  PAYSTACK_API_BASE     default: https://api.paystack.co
  PAYSTACK_TIMEOUT      seconds (default 15)

Webhooks carry ``x-paystack-signature``: the hex HMAC-SHA512 of the raw
request body keyed with the secret key.
"""

from __future__ import annotations
import hashlib
import hmac
import json
import logging
import os
from typing import Any, Dict, Optional

import requests
from flask import current_app, has_app_context

from services.errors import PaymentProviderError
from services.payments.base import CheckoutResult, PaymentProvider, WebhookEvent

log = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"


def _get(key: str, default: str | None = None) -> str | None:
    """Env first, then Flask config."""
    env = os.environ.get(key)
    if env is not None:
        return env
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


def verify_signature(secret: str | None, body: bytes, signature: str | None) -> bool:
    """Constant-time check; a missing secret or header never verifies."""
    if not secret or not signature:
        return False
    return hmac.compare_digest(compute_signature(secret, body), signature.strip().lower())


class PaystackProvider(PaymentProvider):
    name = "paystack"

    def __init__(self) -> None:
        self.secret_key = _get("PAYSTACK_SECRET_KEY")
        self.base_url = (_get("PAYSTACK_API_BASE") or "https://api.paystack.co").rstrip("/")
        self.timeout = int(_get("PAYSTACK_TIMEOUT", "15") or 15)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def initialize_transaction(self, *, email: str, amount_kobo: int,
                               metadata: Dict[str, Any],
                               callback_url: Optional[str] = None) -> CheckoutResult:
        if not self.secret_key:
            log.error("PAYSTACK_SECRET_KEY is not set")
            raise PaymentProviderError("Server configuration error.", status=500,
                                       code="payment_not_configured")
        body: Dict[str, Any] = {"email": email,
                                "amount": int(amount_kobo), "metadata": metadata}
        if callback_url:
            body["callback_url"] = callback_url

        try:
            resp = requests.post(f"{self.base_url}/transaction/initialize",
                                 json=body, headers=self._headers(), timeout=self.timeout)
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            log.exception("Paystack transaction/initialize failed")
            raise PaymentProviderError(
                "An unexpected error occurred while contacting the payment provider.") from e

        auth_url = ((data or {}).get("data") or {}).get("authorization_url")
        if not data.get("status") or not auth_url:
            log.error("Paystack API error: %s", data.get("message"))
            raise PaymentProviderError(
                f"Failed to create checkout session: {data.get('message') or 'unknown error'}")

        return CheckoutResult(
            authorization_url=auth_url,
            reference=data["data"].get("reference"),
            access_code=data["data"].get("access_code"),
        )

    def parse_webhook(self, request) -> WebhookEvent:
        raw = request.get_data(cache=True) or b""
        ok = verify_signature(self.secret_key, raw,
                              request.headers.get(SIGNATURE_HEADER))
        if not ok:
            return WebhookEvent(provider=self.name, event_type="", reference=None,
                                raw=raw, payload={}, signature_ok=False)

        payload = json.loads(raw.decode("utf-8"))
        data = payload.get("data") if isinstance(payload, dict) else None
        return WebhookEvent(
            provider=self.name,
            event_type=str(payload.get("event") or "") if isinstance(payload, dict) else "",
            reference=data.get("reference") if isinstance(data, dict) else None,
            raw=raw,
            payload=payload if isinstance(payload, dict) else {},
            signature_ok=True,
        )
