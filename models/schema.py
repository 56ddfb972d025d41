# models/schema.py
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    JSON, Boolean, String, Text, Integer, Numeric, DateTime, ForeignKey,
    CheckConstraint, UniqueConstraint, Index
)
from models.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- USERS & ORGANIZATIONS


class User(Base):
    __tablename__ = "users"
    username: Mapped[str] = mapped_column(String, primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255))
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(
        String, nullable=False)  # ('admin','user')
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        CheckConstraint("role in ('admin','user')", name="ck_users_role"),
    )


class Organization(Base):
    __tablename__ = "organizations"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    # billing owner; their subscription pays for every member of the org
    owner_username: Mapped[str] = mapped_column(
        String, ForeignKey("users.username", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)

    memberships = relationship(
        "Membership", back_populates="organization",
        cascade="all, delete-orphan", passive_deletes=True)


class Membership(Base):
    __tablename__ = "memberships"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(
        String, ForeignKey("users.username", ondelete="CASCADE"), nullable=False)
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(
        String(16), nullable=False, default="member")  # admin|member
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)

    organization = relationship("Organization", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("username", "organization_id",
                         name="uq_membership_user_org"),
        CheckConstraint("role in ('admin','member')",
                        name="ck_membership_role"),
        Index("idx_membership_org", "organization_id"),
    )


# --- SUBSCRIPTION BILLING (NGN, Paystack)

class Subscription(Base):
    __tablename__ = "subscriptions"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("users.username", ondelete="CASCADE"), nullable=False, unique=True)
    paystack_subscription_code: Mapped[str | None] = mapped_column(
        String(64), unique=True)
    # free|pro|proAI|premium|premiumAI
    plan: Mapped[str] = mapped_column(
        String(16), nullable=False, default="free")
    # active|inactive|past_due|canceled|trialing
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="inactive")
    price_per_member: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"))
    trial_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    current_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False)
    canceled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    billing_anniversary_day: Mapped[int | None] = mapped_column(Integer)
    last_invoiced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("plan in ('free','pro','proAI','premium','premiumAI')",
                        name="ck_subscriptions_plan"),
        CheckConstraint("status in ('active','inactive','past_due','canceled','trialing')",
                        name="ck_subscriptions_status"),
        CheckConstraint("billing_anniversary_day is null or "
                        "(billing_anniversary_day >= 1 and billing_anniversary_day <= 28)",
                        name="ck_subscriptions_anniversary"),
    )


class Invoice(Base):
    __tablename__ = "invoices"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subscription_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False)
    # draft|open|paid|uncollectible|void
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="draft")
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="NGN")
    billing_period_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    billing_period_end: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    items = relationship(
        "InvoiceItem", back_populates="invoice",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="InvoiceItem.id")

    __table_args__ = (
        CheckConstraint("status in ('draft','open','paid','uncollectible','void')",
                        name="ck_invoices_status"),
        Index("idx_invoices_subscription", "subscription_id"),
        Index("idx_invoices_status", "status"),
    )


class InvoiceItem(Base):
    __tablename__ = "invoice_items"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    invoice_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    organization_id: Mapped[int | None] = mapped_column(Integer)
    member_username: Mapped[str | None] = mapped_column(String)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    prorated: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False)
    billing_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    billing_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)

    invoice = relationship("Invoice", back_populates="items")


class WebhookEvent(Base):
    """Every signed webhook delivery we accepted, for diagnosis."""
    __tablename__ = "webhook_events"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    event_type: Mapped[str] = mapped_column(String, nullable=False)
    reference: Mapped[str | None] = mapped_column(String)   # data.reference
    raw: Mapped[str] = mapped_column(Text, nullable=False)
    # handled|ignored|rejected|invalid|failed
    outcome: Mapped[str | None] = mapped_column(String(16))
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        Index("idx_webhook_events_type", "event_type"),
        Index("idx_webhook_events_reference", "provider", "reference"),
    )


class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    ts: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)

    # Actor & request context
    actor: Mapped[str | None] = mapped_column(String(128))
    # 'admin'|'user'|...
    actor_role: Mapped[str | None] = mapped_column(String(32))
    organization_id: Mapped[int | None] = mapped_column(Integer)
    request_id: Mapped[str | None] = mapped_column(
        String(64))     # e.g., per-request UUID
    session_id: Mapped[str | None] = mapped_column(String(64))

    ip: Mapped[str | None] = mapped_column(
        String(64))             # anonymized if configured
    ua_fingerprint: Mapped[str | None] = mapped_column(String(64))  # hashed UA

    method: Mapped[str | None] = mapped_column(String(8))
    path: Mapped[str | None] = mapped_column(String(512))

    # Event semantics
    action: Mapped[str] = mapped_column(
        String(64), nullable=False)  # controlled vocabulary
    target_type: Mapped[str | None] = mapped_column(String(32))
    target_id: Mapped[str | None] = mapped_column(String(128))
    outcome: Mapped[str | None] = mapped_column(
        String(16))          # 'success'|'failure'|'blocked'|'noop'
    status: Mapped[int | None] = mapped_column(Integer)
    error_code: Mapped[str | None] = mapped_column(String(64))

    # Structured details (small, redacted)
    extra: Mapped[dict | None] = mapped_column(JSON)

    # Tamper-evident chain
    prev_hash: Mapped[str | None] = mapped_column(String(128))
    hash: Mapped[str | None] = mapped_column(String(128))
    signature: Mapped[str | None] = mapped_column(
        String(128))       # HMAC(hash, SECRET)
    schema_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3)
    key_id: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "outcome in ('success','failure','partial','blocked','noop') or outcome is null",
            name="ck_audit_outcome"),
        Index("idx_audit_ts", "ts"),
        Index("idx_audit_actor", "actor"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_org", "organization_id"),
        Index("idx_audit_target", "target_type", "target_id"),
    )
