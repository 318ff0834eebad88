"""SubscriptionInvoice — one billing document per subscription period."""

import json
import uuid
from datetime import datetime

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from storekit.core.subscription import BillingCycle, InvoiceItem, InvoiceStatus
from storekit.models.base import TimestampMixin, new_uuid


class SubscriptionInvoice(TimestampMixin, SQLModel, table=True):
    __tablename__ = "subscription_invoices"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    subscription_id: uuid.UUID | None = Field(
        default=None, foreign_key="tenant_subscriptions.id", nullable=True, index=True,
    )
    invoice_number: str = Field(max_length=32, unique=True, nullable=False, index=True)

    plan_id: str = Field(max_length=100, nullable=False)
    plan_name: str = Field(max_length=255, nullable=False)
    billing_cycle: BillingCycle = Field(nullable=False)
    billing_cycle_months: int = Field(nullable=False)

    # amount == subtotal - discount + tax
    subtotal: float = Field(nullable=False)
    discount: float = Field(default=0.0)
    tax: float = Field(default=0.0)
    amount: float = Field(nullable=False)
    currency: str = Field(default="USD", max_length=3)

    status: InvoiceStatus = Field(default=InvoiceStatus.PENDING, index=True)
    period_start: datetime = Field(nullable=False)
    period_end: datetime = Field(nullable=False)
    due_date: datetime = Field(nullable=False, index=True)
    paid_at: datetime | None = Field(default=None)
    transaction_id: str | None = Field(default=None, max_length=255)

    # JSON list of InvoiceItem
    items: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))
    notes: str | None = Field(default=None, max_length=2000)
    reminders_sent: int = Field(default=0)
    last_reminder_at: datetime | None = Field(default=None)

    def line_items(self) -> list[InvoiceItem]:
        return [InvoiceItem.model_validate(item) for item in json.loads(self.items)]


# ── Pydantic schemas ─────────────────────────────────────────

class SubscriptionInvoiceRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    subscription_id: uuid.UUID | None
    invoice_number: str
    plan_id: str
    plan_name: str
    billing_cycle: BillingCycle
    billing_cycle_months: int
    subtotal: float
    discount: float
    tax: float
    amount: float
    currency: str
    status: InvoiceStatus
    period_start: datetime
    period_end: datetime
    due_date: datetime
    paid_at: datetime | None
    transaction_id: str | None
    items: list[InvoiceItem]
    notes: str | None
    reminders_sent: int
    created_at: datetime

    @classmethod
    def from_invoice(cls, invoice: SubscriptionInvoice) -> "SubscriptionInvoiceRead":
        data = invoice.model_dump()
        data["items"] = invoice.line_items()
        return cls.model_validate(data)
