"""Subscription plans, billing-cycle pricing and lifecycle date arithmetic.

Everything here is pure: functions take the clock as an optional ``now``
argument and never touch the database. The persisted subscription record
is mutated by ``storekit.services.billing``; the status details view is
derived from it on every read and is never stored.
"""

from __future__ import annotations

import math
import re
import secrets
import string
from datetime import datetime, timedelta, timezone
from enum import IntEnum, StrEnum
from typing import Literal, Protocol

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict

GRACE_PERIOD_DAYS = 7
RENEWAL_NOTICE_DAYS = 7
URGENT_NOTICE_DAYS = 3

_DAY_SECONDS = 24 * 60 * 60


class SubscriptionStatus(StrEnum):
    ACTIVE = "active"
    TRIAL = "trial"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"
    GRACE_PERIOD = "grace_period"


class InvoiceStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    OVERDUE = "overdue"


class BillingCycle(StrEnum):
    MONTHLY = "monthly"
    SEMI_ANNUAL = "semi_annual"
    YEARLY = "yearly"


class BillingCycleMonths(IntEnum):
    MONTHLY = 1
    SEMI_ANNUAL = 6
    YEARLY = 12


BILLING_CYCLE_MONTHS: dict[BillingCycle, BillingCycleMonths] = {
    BillingCycle.MONTHLY: BillingCycleMonths.MONTHLY,
    BillingCycle.SEMI_ANNUAL: BillingCycleMonths.SEMI_ANNUAL,
    BillingCycle.YEARLY: BillingCycleMonths.YEARLY,
}

BILLING_CYCLES: dict[BillingCycleMonths, BillingCycle] = {
    months: cycle for cycle, months in BILLING_CYCLE_MONTHS.items()
}

BILLING_CYCLE_NAMES: dict[BillingCycleMonths, str] = {
    BillingCycleMonths.MONTHLY: "Monthly",
    BillingCycleMonths.SEMI_ANNUAL: "6 Months",
    BillingCycleMonths.YEARLY: "Yearly",
}

# Percent off the undiscounted total for longer commitments.
BILLING_CYCLE_DISCOUNTS: dict[BillingCycleMonths, int] = {
    BillingCycleMonths.MONTHLY: 0,
    BillingCycleMonths.SEMI_ANNUAL: 10,
    BillingCycleMonths.YEARLY: 20,
}

# Invoice status machine: current -> allowed next states.
INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.PENDING: frozenset({
        InvoiceStatus.PAID,
        InvoiceStatus.FAILED,
        InvoiceStatus.CANCELLED,
        InvoiceStatus.OVERDUE,
    }),
    InvoiceStatus.OVERDUE: frozenset({
        InvoiceStatus.PAID,
        InvoiceStatus.FAILED,
        InvoiceStatus.CANCELLED,
    }),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.FAILED: frozenset(),
    InvoiceStatus.CANCELLED: frozenset(),
}

OPEN_INVOICE_STATUSES = (InvoiceStatus.PENDING, InvoiceStatus.OVERDUE)


# ── Plans ────────────────────────────────────────────────────

class PlanFeatures(BaseModel):
    """Capability map of a plan. Unknown keys are kept as extra features."""

    model_config = ConfigDict(extra="allow")

    max_products: int | Literal["unlimited"]
    max_storage_gb: int | Literal["unlimited"]
    custom_domain: bool
    remove_branding: bool
    advanced_analytics: bool
    ads_tracking_platforms: list[str]
    payment_gateways: int | Literal["unlimited"]
    team_members: int | Literal["unlimited"]
    api_access: bool | Literal["limited", "full"]
    support_level: Literal["email", "priority", "24/7"]


class BasePlanConfig(BaseModel):
    id: str
    name: str
    description: str
    base_price: float  # monthly, before cycle discount
    features: PlanFeatures
    is_popular: bool = False
    sort_order: int


class SubscriptionPlan(BaseModel):
    id: str
    name: str
    description: str | None = None
    base_price: float
    price: float
    monthly_equivalent: float
    billing_cycle: BillingCycle
    billing_cycle_months: BillingCycleMonths
    features: PlanFeatures
    is_active: bool = True
    is_popular: bool = False
    sort_order: int = 0


BASE_PLANS: list[BasePlanConfig] = [
    BasePlanConfig(
        id="starter",
        name="Starter",
        description="Perfect for small businesses getting started",
        base_price=29,
        sort_order=1,
        features=PlanFeatures(
            max_products=50,
            max_storage_gb=5,
            custom_domain=False,
            remove_branding=False,
            advanced_analytics=False,
            ads_tracking_platforms=["meta", "gtm"],
            payment_gateways=1,
            team_members=1,
            api_access=False,
            support_level="email",
        ),
    ),
    BasePlanConfig(
        id="professional",
        name="Professional",
        description="For growing businesses with advanced needs",
        base_price=79,
        is_popular=True,
        sort_order=2,
        features=PlanFeatures(
            max_products=500,
            max_storage_gb=50,
            custom_domain=True,
            remove_branding=False,
            advanced_analytics=True,
            ads_tracking_platforms=["meta", "tiktok", "gtm", "ga4", "pinterest", "snapchat", "linkedin"],
            payment_gateways=2,
            team_members=5,
            api_access="limited",
            support_level="priority",
        ),
    ),
    BasePlanConfig(
        id="enterprise",
        name="Enterprise",
        description="For large businesses with unlimited needs",
        base_price=199,
        sort_order=3,
        features=PlanFeatures(
            max_products="unlimited",
            max_storage_gb=500,
            custom_domain=True,
            remove_branding=True,
            advanced_analytics=True,
            ads_tracking_platforms=[
                "meta", "tiktok", "gtm", "ga4", "pinterest", "snapchat", "linkedin", "custom",
            ],
            payment_gateways="unlimited",
            team_members="unlimited",
            api_access="full",
            support_level="24/7",
        ),
    ),
]

_CYCLE_SUFFIX = re.compile(r"_(monthly|semi_annual|yearly)$")


def round2(value: float) -> float:
    """Round half up to cents, matching how prices are shown to customers."""
    return math.floor(value * 100 + 0.5) / 100


def calculate_plan_price(base_monthly_price: float, cycle_months: int) -> float:
    months = BillingCycleMonths(cycle_months)
    total = base_monthly_price * months
    discount = total * (BILLING_CYCLE_DISCOUNTS[months] / 100)
    return round2(total - discount)


def get_monthly_equivalent(total_price: float, cycle_months: int) -> float:
    return round2(total_price / BillingCycleMonths(cycle_months))


def generate_plan_id(base_plan_id: str, cycle_months: int) -> str:
    return f"{base_plan_id}_{BILLING_CYCLES[BillingCycleMonths(cycle_months)]}"


def base_plan_id(plan_id: str) -> str:
    return _CYCLE_SUFFIX.sub("", plan_id)


def generate_plan_variants(base_plan: BasePlanConfig) -> list[SubscriptionPlan]:
    """Expand one base plan into its monthly, semi-annual and yearly editions."""
    variants = []
    for months in BillingCycleMonths:
        price = calculate_plan_price(base_plan.base_price, months)
        variants.append(SubscriptionPlan(
            id=generate_plan_id(base_plan.id, months),
            name=base_plan.name,
            description=base_plan.description,
            base_price=base_plan.base_price,
            price=price,
            monthly_equivalent=get_monthly_equivalent(price, months),
            billing_cycle=BILLING_CYCLES[months],
            billing_cycle_months=months,
            features=base_plan.features,
            # Only the yearly edition of a popular plan is highlighted.
            is_popular=base_plan.is_popular and months == BillingCycleMonths.YEARLY,
            sort_order=base_plan.sort_order * 10 + months,
        ))
    return variants


def generate_all_plans(base_plans: list[BasePlanConfig] | None = None) -> list[SubscriptionPlan]:
    plans: list[SubscriptionPlan] = []
    for base_plan in BASE_PLANS if base_plans is None else base_plans:
        plans.extend(generate_plan_variants(base_plan))
    return plans


def get_plan(plan_id: str) -> SubscriptionPlan | None:
    for plan in generate_all_plans():
        if plan.id == plan_id:
            return plan
    return None


def group_plans_by_base(plans: list[SubscriptionPlan]) -> dict[str, list[SubscriptionPlan]]:
    grouped: dict[str, list[SubscriptionPlan]] = {}
    for plan in plans:
        grouped.setdefault(base_plan_id(plan.id), []).append(plan)
    return grouped


class InvoiceItem(BaseModel):
    description: str
    quantity: int = 1
    unit_price: float
    discount: float = 0.0
    total: float


# ── Feature limits ───────────────────────────────────────────

def get_feature_limit(features: PlanFeatures, key: str) -> int | Literal["unlimited"] | None:
    value = features.model_dump().get(key)
    if value == "unlimited":
        return "unlimited"
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def can_use_feature(features: PlanFeatures, key: str, current_usage: int, amount: int = 1) -> bool:
    limit = get_feature_limit(features, key)
    if limit is None:
        return False
    if limit == "unlimited":
        return True
    return current_usage + amount <= limit


# ── Dates ────────────────────────────────────────────────────

class SubscriptionDates(Protocol):
    """The persisted fields status derivation reads."""

    status: str
    current_period_end: datetime
    grace_period_ends_at: datetime | None
    cancel_at_period_end: bool


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Stored datetimes are naive UTC; convert aware values to match."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _days_between(later: datetime, earlier: datetime) -> int:
    return math.ceil((later - earlier).total_seconds() / _DAY_SECONDS)


def calculate_period_end(start: datetime, cycle_months: int) -> datetime:
    """Add calendar months; the 31st rolls back to the target month's last day."""
    return start + relativedelta(months=int(BillingCycleMonths(cycle_months)))


def calculate_grace_period_end(period_end: datetime) -> datetime:
    return period_end + timedelta(days=GRACE_PERIOD_DAYS)


def get_days_until_expiry(period_end: datetime, now: datetime | None = None) -> int:
    now = as_naive_utc(now or utcnow())
    return _days_between(as_naive_utc(period_end), now)


def is_in_grace_period(subscription: SubscriptionDates, now: datetime | None = None) -> bool:
    if subscription.grace_period_ends_at is None:
        return False
    now = as_naive_utc(now or utcnow())
    period_end = as_naive_utc(subscription.current_period_end)
    grace_end = as_naive_utc(subscription.grace_period_ends_at)
    return period_end < now <= grace_end


def calculate_proration_credit(
    amount: float,
    period_start: datetime,
    period_end: datetime,
    now: datetime | None = None,
) -> float:
    """Value of the unused part of the current period."""
    now = as_naive_utc(now or utcnow())
    start, end = as_naive_utc(period_start), as_naive_utc(period_end)
    if amount <= 0 or end <= start or now >= end:
        return 0.0
    remaining = (end - max(now, start)).total_seconds()
    return round2(amount * remaining / (end - start).total_seconds())


def calculate_invoice_amount(subtotal: float, discount: float = 0.0, tax: float = 0.0) -> float:
    return max(round2(subtotal - discount + tax), 0.0)


def generate_invoice_number(now: datetime | None = None) -> str:
    now = now or utcnow()
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"INV-{now:%Y%m}-{suffix}"


# ── Status ───────────────────────────────────────────────────

class SubscriptionStatusDetails(BaseModel):
    is_active: bool
    is_expired: bool
    is_grace_period: bool
    is_trial: bool
    is_past_due: bool
    days_remaining: int
    grace_days_remaining: int
    show_renewal_notice: bool
    show_urgent_notice: bool
    show_expired_notice: bool
    requires_payment: bool


NO_SUBSCRIPTION = SubscriptionStatusDetails(
    is_active=False,
    is_expired=True,
    is_grace_period=False,
    is_trial=False,
    is_past_due=False,
    days_remaining=0,
    grace_days_remaining=0,
    show_renewal_notice=False,
    show_urgent_notice=False,
    show_expired_notice=True,
    requires_payment=True,
)


def get_subscription_status_details(
    subscription: SubscriptionDates | None,
    now: datetime | None = None,
) -> SubscriptionStatusDetails:
    """Derive the banner / payment-gate view of a subscription at ``now``."""
    if subscription is None:
        return NO_SUBSCRIPTION.model_copy()

    now = as_naive_utc(now or utcnow())
    period_end = as_naive_utc(subscription.current_period_end)
    grace_end = (
        as_naive_utc(subscription.grace_period_ends_at)
        if subscription.grace_period_ends_at is not None
        else None
    )

    days_remaining = _days_between(period_end, now)
    grace_days_remaining = _days_between(grace_end, now) if grace_end is not None else 0

    lapsed = now > period_end
    is_expired = lapsed and (grace_end is None or now > grace_end)
    is_grace_period = grace_end is not None and not is_expired and lapsed and now <= grace_end
    is_active = subscription.status == SubscriptionStatus.ACTIVE and not lapsed
    is_trial = subscription.status == SubscriptionStatus.TRIAL
    is_past_due = subscription.status == SubscriptionStatus.PAST_DUE or is_grace_period

    return SubscriptionStatusDetails(
        is_active=is_active,
        is_expired=is_expired,
        is_grace_period=is_grace_period,
        is_trial=is_trial,
        is_past_due=is_past_due,
        days_remaining=max(0, days_remaining),
        grace_days_remaining=max(0, grace_days_remaining),
        show_renewal_notice=is_active and URGENT_NOTICE_DAYS < days_remaining <= RENEWAL_NOTICE_DAYS,
        show_urgent_notice=is_active and 0 < days_remaining <= URGENT_NOTICE_DAYS,
        show_expired_notice=is_expired or is_grace_period,
        requires_payment=(
            is_expired or is_grace_period or subscription.status == SubscriptionStatus.PAST_DUE
        ),
    )


def next_subscription_status(
    subscription: SubscriptionDates,
    now: datetime | None = None,
) -> SubscriptionStatus:
    """Status the stored record should carry at ``now``."""
    current = SubscriptionStatus(subscription.status)
    if current in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED):
        return current

    now = as_naive_utc(now or utcnow())
    if now <= as_naive_utc(subscription.current_period_end):
        return current
    if subscription.cancel_at_period_end:
        return SubscriptionStatus.CANCELLED
    if is_in_grace_period(subscription, now):
        return SubscriptionStatus.GRACE_PERIOD
    return SubscriptionStatus.EXPIRED


def describe_cycle(cycle_months: int) -> str:
    months = int(BillingCycleMonths(cycle_months))
    return f"{months} Month{'s' if months > 1 else ''}"


def invoice_line(plan: SubscriptionPlan, unit_price: float) -> InvoiceItem:
    return InvoiceItem(
        description=f"{plan.name} Plan - {describe_cycle(plan.billing_cycle_months)}",
        quantity=1,
        unit_price=unit_price,
        total=unit_price,
    )
