# services/payments/base.py
"""
Interface + simple event model for payment gateways.
Adapters must implement PaymentProvider.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Dict, Any, Protocol


@dataclass
class CheckoutResult:
    # URL to redirect the payer to (provider-hosted checkout)
    authorization_url: str
    reference: Optional[str]
    access_code: Optional[str]


@dataclass
class WebhookEvent:
    provider: str                 # 'paystack'
    event_type: str               # e.g. 'charge.success'
    reference: Optional[str]
    raw: bytes                    # body exactly as received
    payload: Dict[str, Any]       # decoded JSON; empty unless signature_ok
    signature_ok: bool


class PaymentProvider(Protocol):
    name: str

    def initialize_transaction(self, *, email: str, amount_kobo: int,
                               metadata: Dict[str, Any],
                               callback_url: Optional[str] = None) -> CheckoutResult:
        """
        Start a hosted checkout for `amount_kobo`.
        Raise PaymentProviderError when the gateway refuses or is unreachable.
        """

    def parse_webhook(self, request) -> WebhookEvent:
        """
        Verify the signature over the raw body, then decode it.
        Must mark signature_ok=True only if verification passes, and must not
        decode the body otherwise.
        """
