"""add tenant_subscriptions and subscription_invoices

Revision ID: 4f1c9a2e7b3d
Revises: 
Create Date: 2026-10-18 09:12:04.118230

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '4f1c9a2e7b3d'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# Enum columns store member names, as SQLModel maps them
subscription_status = sa.Enum(
    "ACTIVE", "TRIAL", "EXPIRED", "CANCELLED", "PAST_DUE", "GRACE_PERIOD",
    name="subscriptionstatus",
)
invoice_status = sa.Enum(
    "PENDING", "PAID", "FAILED", "CANCELLED", "OVERDUE",
    name="invoicestatus",
)
billing_cycle = sa.Enum("MONTHLY", "SEMI_ANNUAL", "YEARLY", name="billingcycle")


def upgrade() -> None:
    op.create_table(
        "tenant_subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("plan_id", sa.String(100), nullable=False),
        sa.Column("plan_name", sa.String(255), nullable=False),
        sa.Column("status", subscription_status, nullable=False),
        sa.Column("billing_cycle", billing_cycle, nullable=False),
        sa.Column("billing_cycle_months", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("current_period_start", sa.DateTime(), nullable=False),
        sa.Column("current_period_end", sa.DateTime(), nullable=False),
        sa.Column("next_billing_date", sa.DateTime(), nullable=True),
        sa.Column("trial_ends_at", sa.DateTime(), nullable=True),
        sa.Column("grace_period_ends_at", sa.DateTime(), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("auto_renew", sa.Boolean(), nullable=False),
        sa.Column("last_payment_date", sa.DateTime(), nullable=True),
        sa.Column("total_paid", sa.Float(), nullable=False),
        sa.Column("renewal_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_tenant_subscriptions_tenant_id", "tenant_subscriptions", ["tenant_id"], unique=True
    )
    op.create_index("ix_tenant_subscriptions_status", "tenant_subscriptions", ["status"])
    op.create_index(
        "ix_tenant_subscriptions_current_period_end", "tenant_subscriptions", ["current_period_end"]
    )
    op.create_index("ix_tenant_subscriptions_created_at", "tenant_subscriptions", ["created_at"])

    op.create_table(
        "subscription_invoices",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column(
            "subscription_id", sa.Uuid(), sa.ForeignKey("tenant_subscriptions.id"), nullable=True
        ),
        sa.Column("invoice_number", sa.String(32), nullable=False),
        sa.Column("plan_id", sa.String(100), nullable=False),
        sa.Column("plan_name", sa.String(255), nullable=False),
        sa.Column("billing_cycle", billing_cycle, nullable=False),
        sa.Column("billing_cycle_months", sa.Integer(), nullable=False),
        sa.Column("subtotal", sa.Float(), nullable=False),
        sa.Column("discount", sa.Float(), nullable=False),
        sa.Column("tax", sa.Float(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", invoice_status, nullable=False),
        sa.Column("period_start", sa.DateTime(), nullable=False),
        sa.Column("period_end", sa.DateTime(), nullable=False),
        sa.Column("due_date", sa.DateTime(), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("transaction_id", sa.String(255), nullable=True),
        sa.Column("items", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("notes", sa.String(2000), nullable=True),
        sa.Column("reminders_sent", sa.Integer(), nullable=False),
        sa.Column("last_reminder_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_subscription_invoices_invoice_number", "subscription_invoices", ["invoice_number"], unique=True
    )
    op.create_index("ix_subscription_invoices_tenant_id", "subscription_invoices", ["tenant_id"])
    op.create_index(
        "ix_subscription_invoices_subscription_id", "subscription_invoices", ["subscription_id"]
    )
    op.create_index("ix_subscription_invoices_status", "subscription_invoices", ["status"])
    op.create_index("ix_subscription_invoices_due_date", "subscription_invoices", ["due_date"])
    op.create_index("ix_subscription_invoices_created_at", "subscription_invoices", ["created_at"])


def downgrade() -> None:
    op.drop_table("subscription_invoices")
    op.drop_table("tenant_subscriptions")
    invoice_status.drop(op.get_bind(), checkfirst=True)
    subscription_status.drop(op.get_bind(), checkfirst=True)
    billing_cycle.drop(op.get_bind(), checkfirst=True)
