"""TenantSubscription — the persisted billing state of one tenant."""

import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

from storekit.core.subscription import (
    BillingCycle,
    SubscriptionStatus,
    SubscriptionStatusDetails,
)
from storekit.models.base import TimestampMixin, new_uuid
from storekit.models.invoice import SubscriptionInvoiceRead


class TenantSubscription(TimestampMixin, SQLModel, table=True):
    __tablename__ = "tenant_subscriptions"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, unique=True, index=True)

    plan_id: str = Field(max_length=100, nullable=False)
    plan_name: str = Field(default="", max_length=255)
    status: SubscriptionStatus = Field(default=SubscriptionStatus.ACTIVE, index=True)
    billing_cycle: BillingCycle = Field(default=BillingCycle.MONTHLY)
    billing_cycle_months: int = Field(default=1)
    amount: float = Field(default=0.0)
    currency: str = Field(default="USD", max_length=3)

    current_period_start: datetime = Field(nullable=False)
    current_period_end: datetime = Field(nullable=False, index=True)
    next_billing_date: datetime | None = Field(default=None)
    trial_ends_at: datetime | None = Field(default=None)
    # Always current_period_end + 7 days when set
    grace_period_ends_at: datetime | None = Field(default=None)

    cancel_at_period_end: bool = Field(default=False)
    cancelled_at: datetime | None = Field(default=None)
    auto_renew: bool = Field(default=True)

    last_payment_date: datetime | None = Field(default=None)
    total_paid: float = Field(default=0.0)
    renewal_count: int = Field(default=0)


# ── Pydantic schemas ─────────────────────────────────────────

class TenantSubscriptionRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    plan_id: str
    plan_name: str
    status: SubscriptionStatus
    billing_cycle: BillingCycle
    billing_cycle_months: int
    amount: float
    currency: str
    current_period_start: datetime
    current_period_end: datetime
    next_billing_date: datetime | None
    trial_ends_at: datetime | None
    grace_period_ends_at: datetime | None
    cancel_at_period_end: bool
    cancelled_at: datetime | None
    auto_renew: bool
    last_payment_date: datetime | None
    total_paid: float
    renewal_count: int


class SubscriptionOverview(SQLModel):
    subscription: TenantSubscriptionRead | None
    status: SubscriptionStatusDetails
    open_invoice: SubscriptionInvoiceRead | None = None



