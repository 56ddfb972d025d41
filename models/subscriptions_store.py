# models/subscriptions_store.py
from __future__ import annotations
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from models.schema import Subscription, Invoice


def new_subscription_id(username: str) -> str:
    return f"sub_{username}_{uuid.uuid4().hex[:12]}"


def new_invoice_id() -> str:
    return f"inv_{uuid.uuid4().hex}"


def new_item_id() -> str:
    return f"item_{uuid.uuid4().hex}"


def get_subscription(s: Session, subscription_id: str) -> Subscription | None:
    return s.get(Subscription, subscription_id)


def get_subscription_for_user(s: Session, username: str) -> Subscription | None:
    return s.execute(select(Subscription).where(
        Subscription.user_id == username)).scalar_one_or_none()


def get_subscription_by_code(s: Session, code: str) -> Subscription | None:
    return s.execute(select(Subscription).where(
        Subscription.paystack_subscription_code == code)).scalar_one_or_none()


def get_invoice(s: Session, invoice_id: str) -> Invoice | None:
    return s.get(Invoice, invoice_id)


def list_invoices(s: Session, subscription_id: str) -> list[Invoice]:
    return list(s.execute(
        select(Invoice).where(Invoice.subscription_id == subscription_id)
        .options(selectinload(Invoice.items))
        .order_by(Invoice.created_at.desc())
    ).scalars().all())
