# schemas/paystack.py
"""
Paystack webhook payloads as a tagged union on the ``event`` field.

Only the fields the billing state machine reads are modelled; anything
else Paystack sends is ignored. Event types we do not handle parse into
``UnhandledEvent`` so the caller can log and acknowledge them.
"""
import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


def _as_str(v: Any) -> Any:
    if v is None or isinstance(v, str):
        return v
    return str(v)


class ChargeMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None            # 'new-subscription' | 'invoice-payment'
    user_id: Optional[str] = None
    plan_id: Optional[str] = None
    subscription_id: Optional[str] = None
    invoice_id: Optional[str] = None

    @field_validator("user_id", "plan_id", "subscription_id", "invoice_id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return _as_str(v)


class SubscriptionRef(BaseModel):
    subscription_code: Optional[str] = None


class ChargeData(BaseModel):
    reference: Optional[str] = None
    amount: Optional[int] = None           # kobo
    currency: Optional[str] = None
    metadata: ChargeMetadata = Field(default_factory=ChargeMetadata)
    subscription: Optional[SubscriptionRef] = None

    @field_validator("metadata", mode="before")
    @classmethod
    def normalize_metadata(cls, v):
        # Paystack sends "" when no metadata was attached, sometimes a JSON string
        if isinstance(v, str):
            try:
                v = json.loads(v) if v.strip() else {}
            except ValueError:
                return {}
        return v if isinstance(v, dict) else {}

    @field_validator("subscription", mode="before")
    @classmethod
    def normalize_subscription(cls, v):
        return v if isinstance(v, dict) else None


class PlanRef(BaseModel):
    plan_code: Optional[str] = None
    name: Optional[str] = None


class SubscriptionData(BaseModel):
    subscription_code: Optional[str] = None
    status: Optional[str] = None
    plan: Optional[PlanRef] = None


class ChargeSuccessEvent(BaseModel):
    event: Literal["charge.success"]
    data: ChargeData = Field(default_factory=ChargeData)


class ChargeFailedEvent(BaseModel):
    event: Literal["charge.failed"]
    data: ChargeData = Field(default_factory=ChargeData)


class SubscriptionCreateEvent(BaseModel):
    event: Literal["subscription.create"]
    data: SubscriptionData = Field(default_factory=SubscriptionData)


class SubscriptionUpdateEvent(BaseModel):
    event: Literal["subscription.update"]
    data: SubscriptionData = Field(default_factory=SubscriptionData)


class SubscriptionDisableEvent(BaseModel):
    event: Literal["subscription.disable"]
    data: SubscriptionData = Field(default_factory=SubscriptionData)


class UnhandledEvent(BaseModel):
    event: str = "unknown"
    data: Any = None

    @field_validator("event", mode="before")
    @classmethod
    def coerce_event(cls, v):
        return "unknown" if v is None else _as_str(v)


PaystackEvent = Annotated[
    Union[ChargeSuccessEvent, ChargeFailedEvent, SubscriptionCreateEvent,
          SubscriptionUpdateEvent, SubscriptionDisableEvent],
    Field(discriminator="event"),
]

_ADAPTER = TypeAdapter(PaystackEvent)
HANDLED_EVENTS = frozenset({
    "charge.success", "charge.failed",
    "subscription.create", "subscription.update", "subscription.disable",
})


def parse_event(payload: Any):
    """Validate a decoded webhook body. Raises pydantic.ValidationError."""
    event = payload.get("event") if isinstance(payload, dict) else None
    if isinstance(event, str) and event in HANDLED_EVENTS:
        return _ADAPTER.validate_python(payload)
    return UnhandledEvent.model_validate(payload if isinstance(payload, dict) else {})
