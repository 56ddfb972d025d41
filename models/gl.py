# models/gl.py
from __future__ import annotations
from datetime import datetime, date
from decimal import Decimal

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    Boolean, String, Integer, Numeric, Date, DateTime, Text, ForeignKey,
    UniqueConstraint, CheckConstraint, Index
)
from models.base import Base
from models.schema import utcnow

ACCOUNT_TYPES = ("Asset", "Liability", "Equity", "Revenue", "Expense")
JOURNAL_STATUSES = ("Draft", "Posted", "Voided")
JOURNAL_SOURCES = ("Manual", "Payables", "Receivables", "Payroll",
                   "Inventory", "Fixed Assets", "Banking", "System")
PERIOD_STATUSES = ("Open", "Closed", "Locked")


def _in(col: str, values: tuple[str, ...]) -> str:
    return f"{col} in (" + ",".join(f"'{v}'" for v in values) + ")"


class Account(Base):
    __tablename__ = "gl_accounts"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    code: Mapped[str] = mapped_column(String(16), nullable=False)  # '1000'
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    # Asset|Liability|Equity|Revenue|Expense
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    account_class: Mapped[str | None] = mapped_column(
        String(64))  # e.g. 'Current Asset'
    description: Mapped[str | None] = mapped_column(Text)
    parent_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("gl_accounts.id", ondelete="SET NULL"))
    # cache; rebuilt from posted lines on every posting
    current_balance: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="NGN")
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True)
    is_system: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False)
    allow_manual_journals: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True)
    created_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_account_org_code"),
        CheckConstraint(_in("type", ACCOUNT_TYPES), name="ck_account_type"),
        Index("idx_account_org_type", "organization_id", "type"),
    )


class Journal(Base):
    __tablename__ = "gl_journals"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    journal_number: Mapped[str] = mapped_column(
        String(32), nullable=False)  # JE-2025-000001
    sequence_no: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    posting_date: Mapped[date | None] = mapped_column(Date)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reference: Mapped[str | None] = mapped_column(String(128))
    source: Mapped[str] = mapped_column(
        String(16), nullable=False, default="Manual")
    source_id: Mapped[str | None] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="Draft")
    total_debits: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0"))
    total_credits: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0"))
    reversal_of_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("gl_journals.id", ondelete="RESTRICT"))
    created_by: Mapped[str | None] = mapped_column(String(64))
    posted_by: Mapped[str | None] = mapped_column(String(64))
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    lines = relationship(
        "JournalLine", back_populates="journal",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="JournalLine.id")

    __table_args__ = (
        UniqueConstraint("organization_id", "journal_number",
                         name="uq_journal_org_number"),
        UniqueConstraint("organization_id", "sequence_no",
                         name="uq_journal_org_seq"),
        CheckConstraint(_in("status", JOURNAL_STATUSES),
                        name="ck_journal_status"),
        CheckConstraint(_in("source", JOURNAL_SOURCES),
                        name="ck_journal_source"),
        CheckConstraint("total_debits >= 0 and total_credits >= 0",
                        name="ck_journal_totals_nonneg"),
        Index("idx_journal_org_date", "organization_id", "transaction_date"),
        Index("idx_journal_org_status", "organization_id", "status"),
    )


class JournalLine(Base):
    __tablename__ = "gl_journal_lines"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    journal_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("gl_journals.id", ondelete="CASCADE"), nullable=False)
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("gl_accounts.id", ondelete="RESTRICT"), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    debit: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0"))
    credit: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0"))
    # customer/supplier/employee the line relates to, if any
    entity_id: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)

    journal = relationship("Journal", back_populates="lines")
    account = relationship("Account", lazy="joined")

    __table_args__ = (
        CheckConstraint("debit >= 0 and credit >= 0", name="ck_line_nonneg"),
        Index("idx_line_journal", "journal_id"),
        Index("idx_line_account", "account_id"),
    )


class FiscalPeriod(Base):
    __tablename__ = "gl_periods"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    period_name: Mapped[str] = mapped_column(
        String(64), nullable=False)  # 'January 2025', 'FY2025'
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="Open")  # Open|Closed|Locked
    is_year_end: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False)
    closed_by: Mapped[str | None] = mapped_column(String(64))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("organization_id", "period_name",
                         name="uq_period_org_name"),
        CheckConstraint(_in("status", PERIOD_STATUSES),
                        name="ck_period_status"),
        CheckConstraint("end_date >= start_date", name="ck_period_range"),
        Index("idx_period_org_range", "organization_id",
              "start_date", "end_date"),
    )
