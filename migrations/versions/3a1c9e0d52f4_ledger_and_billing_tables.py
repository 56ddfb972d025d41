"""ledger and billing tables

Revision ID: 3a1c9e0d52f4
Revises:
Create Date: 2026-10-19 09:12:04.118305

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3a1c9e0d52f4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TS = sa.DateTime(timezone=True)
MONEY = sa.Numeric(15, 2)


def upgrade():
    op.create_table(
        "users",
        sa.Column("username", sa.String(), primary_key=True),
        sa.Column("email", sa.String(255)),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.CheckConstraint("role in ('admin','user')", name="ck_users_role"),
    )
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("owner_username", sa.String(),
                  sa.ForeignKey("users.username", ondelete="RESTRICT"), nullable=False),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(),
                  sa.ForeignKey("users.username", ondelete="CASCADE"), nullable=False),
        sa.Column("organization_id", sa.Integer(),
                  sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.UniqueConstraint("username", "organization_id", name="uq_membership_user_org"),
        sa.CheckConstraint("role in ('admin','member')", name="ck_membership_role"),
    )
    op.create_index("idx_membership_org", "memberships", ["organization_id"])

    # --- ledger
    op.create_table(
        "gl_accounts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(),
                  sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("code", sa.String(16), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("account_class", sa.String(64)),
        sa.Column("description", sa.Text()),
        sa.Column("parent_id", sa.Integer(),
                  sa.ForeignKey("gl_accounts.id", ondelete="SET NULL")),
        sa.Column("current_balance", MONEY, nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="NGN"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("allow_manual_journals", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(64)),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.UniqueConstraint("organization_id", "code", name="uq_account_org_code"),
        sa.CheckConstraint(
            "type in ('Asset','Liability','Equity','Revenue','Expense')", name="ck_account_type"),
    )
    op.create_index("idx_account_org_type", "gl_accounts", ["organization_id", "type"])

    op.create_table(
        "gl_journals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(),
                  sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("journal_number", sa.String(32), nullable=False),
        sa.Column("sequence_no", sa.Integer(), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("posting_date", sa.Date()),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("reference", sa.String(128)),
        sa.Column("source", sa.String(16), nullable=False, server_default="Manual"),
        sa.Column("source_id", sa.String(64)),
        sa.Column("status", sa.String(16), nullable=False, server_default="Draft"),
        sa.Column("total_debits", MONEY, nullable=False, server_default="0"),
        sa.Column("total_credits", MONEY, nullable=False, server_default="0"),
        sa.Column("reversal_of_id", sa.Integer(),
                  sa.ForeignKey("gl_journals.id", ondelete="RESTRICT")),
        sa.Column("created_by", sa.String(64)),
        sa.Column("posted_by", sa.String(64)),
        sa.Column("posted_at", TS),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.UniqueConstraint("organization_id", "journal_number", name="uq_journal_org_number"),
        sa.UniqueConstraint("organization_id", "sequence_no", name="uq_journal_org_seq"),
        sa.CheckConstraint("status in ('Draft','Posted','Voided')", name="ck_journal_status"),
        sa.CheckConstraint(
            "source in ('Manual','Payables','Receivables','Payroll',"
            "'Inventory','Fixed Assets','Banking','System')", name="ck_journal_source"),
        sa.CheckConstraint("total_debits >= 0 and total_credits >= 0",
                           name="ck_journal_totals_nonneg"),
    )
    op.create_index("idx_journal_org_date", "gl_journals", ["organization_id", "transaction_date"])
    op.create_index("idx_journal_org_status", "gl_journals", ["organization_id", "status"])

    op.create_table(
        "gl_journal_lines",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(),
                  sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("journal_id", sa.Integer(),
                  sa.ForeignKey("gl_journals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("account_id", sa.Integer(),
                  sa.ForeignKey("gl_accounts.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("debit", MONEY, nullable=False, server_default="0"),
        sa.Column("credit", MONEY, nullable=False, server_default="0"),
        sa.Column("entity_id", sa.String(64)),
        sa.Column("created_at", TS, nullable=False),
        sa.CheckConstraint("debit >= 0 and credit >= 0", name="ck_line_nonneg"),
    )
    op.create_index("idx_line_journal", "gl_journal_lines", ["journal_id"])
    op.create_index("idx_line_account", "gl_journal_lines", ["account_id"])

    op.create_table(
        "gl_periods",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(),
                  sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("period_name", sa.String(64), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="Open"),
        sa.Column("is_year_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("closed_by", sa.String(64)),
        sa.Column("closed_at", TS),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.UniqueConstraint("organization_id", "period_name", name="uq_period_org_name"),
        sa.CheckConstraint("status in ('Open','Closed','Locked')", name="ck_period_status"),
        sa.CheckConstraint("end_date >= start_date", name="ck_period_range"),
    )
    op.create_index("idx_period_org_range", "gl_periods",
                    ["organization_id", "start_date", "end_date"])

    # --- billing
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(),
                  sa.ForeignKey("users.username", ondelete="CASCADE"),
                  nullable=False, unique=True),
        sa.Column("paystack_subscription_code", sa.String(64), unique=True),
        sa.Column("plan", sa.String(16), nullable=False, server_default="free"),
        sa.Column("status", sa.String(16), nullable=False, server_default="inactive"),
        sa.Column("price_per_member", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("trial_end", TS),
        sa.Column("current_period_start", TS),
        sa.Column("current_period_end", TS),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("canceled_at", TS),
        sa.Column("billing_anniversary_day", sa.Integer()),
        sa.Column("last_invoiced_at", TS),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.CheckConstraint("plan in ('free','pro','proAI','premium','premiumAI')",
                           name="ck_subscriptions_plan"),
        sa.CheckConstraint("status in ('active','inactive','past_due','canceled','trialing')",
                           name="ck_subscriptions_status"),
        sa.CheckConstraint("billing_anniversary_day is null or "
                           "(billing_anniversary_day >= 1 and billing_anniversary_day <= 28)",
                           name="ck_subscriptions_anniversary"),
    )
    op.create_table(
        "invoices",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("subscription_id", sa.String(64),
                  sa.ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="NGN"),
        sa.Column("billing_period_start", TS, nullable=False),
        sa.Column("billing_period_end", TS, nullable=False),
        sa.Column("due_date", TS),
        sa.Column("paid_at", TS),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.CheckConstraint("status in ('draft','open','paid','uncollectible','void')",
                           name="ck_invoices_status"),
    )
    op.create_index("idx_invoices_subscription", "invoices", ["subscription_id"])
    op.create_index("idx_invoices_status", "invoices", ["status"])

    op.create_table(
        "invoice_items",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("invoice_id", sa.String(64),
                  sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("organization_id", sa.Integer()),
        sa.Column("member_username", sa.String()),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("prorated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("billing_period_start", TS),
        sa.Column("billing_period_end", TS),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("reference", sa.String()),
        sa.Column("raw", sa.Text(), nullable=False),
        sa.Column("outcome", sa.String(16)),
        sa.Column("received_at", TS, nullable=False),
    )
    op.create_index("idx_webhook_events_type", "webhook_events", ["event_type"])
    op.create_index("idx_webhook_events_reference", "webhook_events", ["provider", "reference"])

    # --- audit
    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("ts", TS, nullable=False),
        sa.Column("actor", sa.String(128)),
        sa.Column("actor_role", sa.String(32)),
        sa.Column("organization_id", sa.Integer()),
        sa.Column("request_id", sa.String(64)),
        sa.Column("session_id", sa.String(64)),
        sa.Column("ip", sa.String(64)),
        sa.Column("ua_fingerprint", sa.String(64)),
        sa.Column("method", sa.String(8)),
        sa.Column("path", sa.String(512)),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("target_type", sa.String(32)),
        sa.Column("target_id", sa.String(128)),
        sa.Column("outcome", sa.String(16)),
        sa.Column("status", sa.Integer()),
        sa.Column("error_code", sa.String(64)),
        sa.Column("extra", sa.JSON()),
        sa.Column("prev_hash", sa.String(128)),
        sa.Column("hash", sa.String(128)),
        sa.Column("signature", sa.String(128)),
        sa.Column("schema_version", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("key_id", sa.String(16)),
        sa.CheckConstraint(
            "outcome in ('success','failure','partial','blocked','noop') or outcome is null",
            name="ck_audit_outcome"),
    )
    op.create_index("idx_audit_ts", "audit_log", ["ts"])
    op.create_index("idx_audit_actor", "audit_log", ["actor"])
    op.create_index("idx_audit_action", "audit_log", ["action"])
    op.create_index("idx_audit_org", "audit_log", ["organization_id"])
    op.create_index("idx_audit_target", "audit_log", ["target_type", "target_id"])


def downgrade():
    for table in ("audit_log", "webhook_events", "invoice_items", "invoices",
                  "subscriptions", "gl_periods", "gl_journal_lines", "gl_journals",
                  "gl_accounts", "memberships", "organizations", "users"):
        op.drop_table(table)
