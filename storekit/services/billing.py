"""Billing service — tenant subscriptions and their invoices.

Every function takes the request's (or job's) ``AsyncSession`` and commits
its own changes. The clock is injectable through ``now`` so sweeps and
tests can pin time.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta

from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from storekit.core.config import get_settings
from storekit.core.errors import AppError
from storekit.core.subscription import (
    BILLING_CYCLES,
    INVOICE_TRANSITIONS,
    OPEN_INVOICE_STATUSES,
    BillingCycleMonths,
    InvoiceStatus,
    SubscriptionPlan,
    SubscriptionStatus,
    as_naive_utc,
    calculate_grace_period_end,
    calculate_invoice_amount,
    calculate_period_end,
    calculate_proration_credit,
    can_use_feature,
    generate_invoice_number,
    get_plan,
    get_subscription_status_details,
    invoice_line,
    next_subscription_status,
    round2,
    utcnow,
)
from storekit.models.invoice import SubscriptionInvoice, SubscriptionInvoiceRead
from storekit.models.subscription import (
    SubscriptionOverview,
    TenantSubscription,
    TenantSubscriptionRead,
)

logger = logging.getLogger(__name__)


def _now(now: datetime | None) -> datetime:
    return as_naive_utc(now) if now is not None else utcnow()


def _require_plan(plan_id: str) -> SubscriptionPlan:
    plan = get_plan(plan_id)
    if plan is None:
        raise AppError(status.HTTP_404_NOT_FOUND, f"Unknown plan '{plan_id}'")
    return plan


# ── Lookups ──────────────────────────────────────────────────

async def get_tenant_subscription(
    session: AsyncSession, tenant_id: uuid.UUID
) -> TenantSubscription | None:
    result = await session.execute(
        select(TenantSubscription).where(TenantSubscription.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def _require_subscription(
    session: AsyncSession, tenant_id: uuid.UUID
) -> TenantSubscription:
    subscription = await get_tenant_subscription(session, tenant_id)
    if subscription is None:
        raise AppError(status.HTTP_404_NOT_FOUND, "Tenant has no subscription")
    return subscription


async def get_open_invoice(
    session: AsyncSession, tenant_id: uuid.UUID
) -> SubscriptionInvoice | None:
    """Most recent pending or overdue invoice of the tenant."""
    result = await session.execute(
        select(SubscriptionInvoice)
        .where(
            SubscriptionInvoice.tenant_id == tenant_id,
            SubscriptionInvoice.status.in_(OPEN_INVOICE_STATUSES),  # type: ignore[attr-defined]
        )
        .order_by(SubscriptionInvoice.created_at.desc())  # type: ignore[attr-defined]
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_invoice(
    session: AsyncSession, tenant_id: uuid.UUID, invoice_id: uuid.UUID
) -> SubscriptionInvoice:
    invoice = await session.get(SubscriptionInvoice, invoice_id)
    if invoice is None or invoice.tenant_id != tenant_id:
        raise AppError(status.HTTP_404_NOT_FOUND, "Invoice not found")
    return invoice


async def get_subscription_with_status(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    now: datetime | None = None,
) -> SubscriptionOverview:
    """Subscription, its derived status, and the open invoice when payment is due."""
    subscription = await get_tenant_subscription(session, tenant_id)
    details = get_subscription_status_details(subscription, _now(now))

    open_invoice = None
    if details.requires_payment:
        invoice = await get_open_invoice(session, tenant_id)
        if invoice is not None:
            open_invoice = SubscriptionInvoiceRead.from_invoice(invoice)

    return SubscriptionOverview(
        subscription=(
            TenantSubscriptionRead.model_validate(subscription)
            if subscription is not None else None
        ),
        status=details,
        open_invoice=open_invoice,
    )


# ── Subscription lifecycle ───────────────────────────────────

async def start_trial(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    plan_id: str | None = None,
    currency: str | None = None,
    now: datetime | None = None,
) -> TenantSubscription:
    """Open a free trial; a tenant gets at most one subscription record."""
    settings = get_settings()
    plan = _require_plan(plan_id or settings.trial_plan_id)
    if await get_tenant_subscription(session, tenant_id) is not None:
        raise AppError(status.HTTP_409_CONFLICT, "Tenant already has a subscription")

    now = _now(now)
    trial_end = now + timedelta(days=settings.trial_days)
    subscription = TenantSubscription(
        tenant_id=tenant_id,
        plan_id=plan.id,
        plan_name=plan.name,
        status=SubscriptionStatus.TRIAL,
        billing_cycle=plan.billing_cycle,
        billing_cycle_months=plan.billing_cycle_months,
        amount=0.0,
        currency=currency or settings.default_currency,
        current_period_start=now,
        current_period_end=trial_end,
        next_billing_date=trial_end,
        trial_ends_at=trial_end,
        grace_period_ends_at=calculate_grace_period_end(trial_end),
    )
    session.add(subscription)
    await session.commit()
    await session.refresh(subscription)
    logger.info("Started %s trial for tenant %s until %s", plan.id, tenant_id, trial_end)
    return subscription


def _build_invoice(
    tenant_id: uuid.UUID,
    subscription: TenantSubscription | None,
    plan: SubscriptionPlan,
    unit_price: float,
    period_start: datetime,
    due_date: datetime,
    currency: str,
    discount: float = 0.0,
    notes: str | None = None,
    now: datetime | None = None,
) -> SubscriptionInvoice:
    item = invoice_line(plan, unit_price)
    if discount:
        item.discount = discount
    return SubscriptionInvoice(
        tenant_id=tenant_id,
        subscription_id=subscription.id if subscription is not None else None,
        invoice_number=generate_invoice_number(now),
        plan_id=plan.id,
        plan_name=plan.name,
        billing_cycle=plan.billing_cycle,
        billing_cycle_months=plan.billing_cycle_months,
        subtotal=unit_price,
        discount=discount,
        tax=0.0,
        amount=calculate_invoice_amount(unit_price, discount),
        currency=currency,
        status=InvoiceStatus.PENDING,
        period_start=period_start,
        period_end=calculate_period_end(period_start, plan.billing_cycle_months),
        due_date=due_date,
        items=json.dumps([item.model_dump()]),
        notes=notes,
    )


async def _cancel_open_invoices(
    session: AsyncSession, tenant_id: uuid.UUID, now: datetime
) -> None:
    stale = await session.execute(
        select(SubscriptionInvoice).where(
            SubscriptionInvoice.tenant_id == tenant_id,
            SubscriptionInvoice.status.in_(OPEN_INVOICE_STATUSES),  # type: ignore[attr-defined]
        )
    )
    for previous in stale.scalars().all():
        previous.status = InvoiceStatus.CANCELLED
        previous.updated_at = now
        session.add(previous)
        logger.info("Cancelled superseded invoice %s", previous.invoice_number)


async def create_checkout_invoice(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    plan_id: str,
    now: datetime | None = None,
) -> SubscriptionInvoice:
    """Invoice a plan purchase starting now.

    Switching away from a paid, still running plan credits the unused part
    of the current period as the invoice discount. Earlier open invoices
    are cancelled so the tenant has one invoice to pay.
    """
    settings = get_settings()
    plan = _require_plan(plan_id)
    now = _now(now)
    subscription = await get_tenant_subscription(session, tenant_id)

    discount = 0.0
    notes = None
    if (
        subscription is not None
        and subscription.plan_id != plan.id
        and subscription.status == SubscriptionStatus.ACTIVE
    ):
        credit = calculate_proration_credit(
            subscription.amount,
            subscription.current_period_start,
            subscription.current_period_end,
            now,
        )
        discount = min(credit, plan.price)
        if discount:
            notes = f"Proration credit for unused {subscription.plan_name} period"

    await _cancel_open_invoices(session, tenant_id, now)

    invoice = _build_invoice(
        tenant_id,
        subscription,
        plan,
        unit_price=plan.price,
        period_start=now,
        due_date=now + timedelta(days=settings.invoice_due_days),
        currency=subscription.currency if subscription is not None else settings.default_currency,
        discount=discount,
        notes=notes,
        now=now,
    )
    session.add(invoice)
    await session.commit()
    await session.refresh(invoice)
    logger.info(
        "Created checkout invoice %s for tenant %s: plan=%s amount=%.2f discount=%.2f",
        invoice.invoice_number, tenant_id, plan.id, invoice.amount, discount,
    )
    return invoice


def _has_lapsed(subscription: TenantSubscription, now: datetime) -> bool:
    """True once the subscription is past its grace window or ended for good."""
    if subscription.status in (SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED):
        return True
    return now > (subscription.grace_period_ends_at or subscription.current_period_end)


async def create_renewal_invoice(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    now: datetime | None = None,
) -> SubscriptionInvoice:
    """Invoice the next period of the current plan.

    A running or grace-period subscription renews from ``current_period_end``.
    A lapsed one restarts at ``now`` so the paid period is never already over;
    its stale open invoices are cancelled. An open invoice for the same
    period is returned instead of a duplicate.
    """
    settings = get_settings()
    now = _now(now)
    subscription = await _require_subscription(session, tenant_id)
    plan = _require_plan(subscription.plan_id)
    lapsed = _has_lapsed(subscription, now)

    if lapsed:
        reusable = SubscriptionInvoice.period_end > now  # type: ignore[operator]
    else:
        reusable = SubscriptionInvoice.period_start == subscription.current_period_end
    existing = await session.execute(
        select(SubscriptionInvoice)
        .where(
            SubscriptionInvoice.tenant_id == tenant_id,
            SubscriptionInvoice.plan_id == plan.id,
            SubscriptionInvoice.status.in_(OPEN_INVOICE_STATUSES),  # type: ignore[attr-defined]
            reusable,
        )
        .order_by(SubscriptionInvoice.created_at.desc())  # type: ignore[attr-defined]
    )
    invoice = existing.scalars().first()
    if invoice is not None:
        return invoice

    if lapsed:
        await _cancel_open_invoices(session, tenant_id, now)
        period_start = now
        due_date = now + timedelta(days=settings.invoice_due_days)
    else:
        period_start = subscription.current_period_end
        due_date = period_start

    invoice = _build_invoice(
        tenant_id,
        subscription,
        plan,
        unit_price=subscription.amount or plan.price,
        period_start=period_start,
        due_date=due_date,
        currency=subscription.currency or settings.default_currency,
        now=now,
    )
    session.add(invoice)
    await session.commit()
    await session.refresh(invoice)
    logger.info(
        "Created %s invoice %s for tenant %s covering %s - %s",
        "restart" if lapsed else "renewal",
        invoice.invoice_number, tenant_id, invoice.period_start, invoice.period_end,
    )
    return invoice


def _transition(invoice: SubscriptionInvoice, target: InvoiceStatus) -> None:
    current = InvoiceStatus(invoice.status)
    if target not in INVOICE_TRANSITIONS[current]:
        raise AppError(
            status.HTTP_409_CONFLICT,
            f"Invoice {invoice.invoice_number} is {current} and cannot become {target}",
        )
    invoice.status = target


async def mark_invoice_paid(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    invoice_id: uuid.UUID,
    transaction_id: str | None = None,
    now: datetime | None = None,
) -> SubscriptionInvoice:
    """Settle an invoice and move the subscription onto the period it covers."""
    now = _now(now)
    invoice = await get_invoice(session, tenant_id, invoice_id)
    _transition(invoice, InvoiceStatus.PAID)
    invoice.paid_at = now
    invoice.transaction_id = transaction_id
    invoice.updated_at = now

    subscription = await get_tenant_subscription(session, tenant_id)
    if subscription is None:
        subscription = TenantSubscription(
            tenant_id=tenant_id,
            plan_id=invoice.plan_id,
            current_period_start=invoice.period_start,
            current_period_end=invoice.period_end,
        )
        logger.info("Creating subscription for tenant %s from invoice %s", tenant_id, invoice.invoice_number)
    elif subscription.status != SubscriptionStatus.TRIAL:
        subscription.renewal_count += 1

    months = BillingCycleMonths(invoice.billing_cycle_months)
    subscription.plan_id = invoice.plan_id
    subscription.plan_name = invoice.plan_name
    subscription.billing_cycle = BILLING_CYCLES[months]
    subscription.billing_cycle_months = months
    subscription.amount = invoice.subtotal
    subscription.currency = invoice.currency
    subscription.status = SubscriptionStatus.ACTIVE
    subscription.current_period_start = invoice.period_start
    subscription.current_period_end = invoice.period_end
    subscription.next_billing_date = invoice.period_end
    subscription.grace_period_ends_at = calculate_grace_period_end(invoice.period_end)
    subscription.trial_ends_at = None
    subscription.cancel_at_period_end = False
    subscription.cancelled_at = None
    subscription.last_payment_date = now
    subscription.total_paid = round2(subscription.total_paid + invoice.amount)
    subscription.updated_at = now
    invoice.subscription_id = subscription.id

    session.add(subscription)
    session.add(invoice)
    await session.commit()
    await session.refresh(invoice)
    logger.info(
        "Invoice %s paid (txn=%s); tenant %s active on %s until %s",
        invoice.invoice_number, transaction_id, tenant_id,
        subscription.plan_id, subscription.current_period_end,
    )
    return invoice


async def mark_invoice_failed(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    invoice_id: uuid.UUID,
    reason: str | None = None,
    now: datetime | None = None,
) -> SubscriptionInvoice:
    invoice = await get_invoice(session, tenant_id, invoice_id)
    _transition(invoice, InvoiceStatus.FAILED)
    if reason:
        invoice.notes = reason
    invoice.updated_at = _now(now)
    session.add(invoice)
    await session.commit()
    await session.refresh(invoice)
    logger.warning("Payment failed for invoice %s: %s", invoice.invoice_number, reason)
    return invoice


async def cancel_invoice(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    invoice_id: uuid.UUID,
    now: datetime | None = None,
) -> SubscriptionInvoice:
    invoice = await get_invoice(session, tenant_id, invoice_id)
    _transition(invoice, InvoiceStatus.CANCELLED)
    invoice.updated_at = _now(now)
    session.add(invoice)
    await session.commit()
    await session.refresh(invoice)
    logger.info("Cancelled invoice %s", invoice.invoice_number)
    return invoice


async def cancel_subscription(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    at_period_end: bool = True,
    now: datetime | None = None,
) -> TenantSubscription:
    """Stop renewal, either when the paid period runs out or right away."""
    now = _now(now)
    subscription = await _require_subscription(session, tenant_id)
    if subscription.status in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED):
        raise AppError(
            status.HTTP_409_CONFLICT, f"Subscription is already {subscription.status}"
        )

    subscription.cancelled_at = now
    subscription.auto_renew = False
    subscription.next_billing_date = None
    if at_period_end:
        subscription.cancel_at_period_end = True
    else:
        subscription.status = SubscriptionStatus.CANCELLED
        subscription.cancel_at_period_end = False
    subscription.updated_at = now
    session.add(subscription)
    await session.commit()
    await session.refresh(subscription)
    logger.info(
        "Cancelled subscription of tenant %s (at_period_end=%s)", tenant_id, at_period_end
    )
    return subscription


async def reactivate_subscription(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    now: datetime | None = None,
) -> TenantSubscription:
    """Undo a pending cancellation while the current period is still running."""
    now = _now(now)
    subscription = await _require_subscription(session, tenant_id)
    if subscription.status in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED):
        raise AppError(
            status.HTTP_409_CONFLICT,
            f"Subscription is {subscription.status}; purchase a plan to resume",
        )
    if not subscription.cancel_at_period_end:
        raise AppError(status.HTTP_409_CONFLICT, "Subscription is not scheduled for cancellation")

    subscription.cancel_at_period_end = False
    subscription.cancelled_at = None
    subscription.auto_renew = True
    subscription.next_billing_date = subscription.current_period_end
    subscription.updated_at = now
    session.add(subscription)
    await session.commit()
    await session.refresh(subscription)
    logger.info("Reactivated subscription of tenant %s", tenant_id)
    return subscription


# ── Sweeps ───────────────────────────────────────────────────

async def refresh_subscription_statuses(
    session: AsyncSession, now: datetime | None = None
) -> int:
    """Persist the status every subscription should carry at ``now``."""
    now = _now(now)
    result = await session.execute(
        select(TenantSubscription).where(
            TenantSubscription.status.not_in(  # type: ignore[attr-defined]
                (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED)
            ),
            TenantSubscription.current_period_end < now,
        )
    )
    changed = 0
    for subscription in result.scalars().all():
        if subscription.grace_period_ends_at is None:
            subscription.grace_period_ends_at = calculate_grace_period_end(
                subscription.current_period_end
            )
        target = next_subscription_status(subscription, now)
        if target != subscription.status:
            logger.info(
                "Subscription of tenant %s: %s -> %s",
                subscription.tenant_id, subscription.status, target,
            )
            subscription.status = target
            changed += 1
        subscription.updated_at = now
        session.add(subscription)
    await session.commit()
    return changed


async def mark_overdue_invoices(session: AsyncSession, now: datetime | None = None) -> int:
    now = _now(now)
    result = await session.execute(
        select(SubscriptionInvoice).where(
            SubscriptionInvoice.status == InvoiceStatus.PENDING,
            SubscriptionInvoice.due_date < now,
        )
    )
    count = 0
    for invoice in result.scalars().all():
        _transition(invoice, InvoiceStatus.OVERDUE)
        invoice.updated_at = now
        session.add(invoice)
        count += 1
        logger.info("Invoice %s is overdue (due %s)", invoice.invoice_number, invoice.due_date)
    await session.commit()
    return count


async def list_expiring_subscriptions(
    session: AsyncSession,
    days_ahead: int = 7,
    now: datetime | None = None,
) -> list[TenantSubscription]:
    """Active, auto-renewing subscriptions whose period ends within ``days_ahead``."""
    now = _now(now)
    result = await session.execute(
        select(TenantSubscription)
        .where(
            TenantSubscription.status == SubscriptionStatus.ACTIVE,
            TenantSubscription.auto_renew.is_(True),  # type: ignore[attr-defined]
            TenantSubscription.cancel_at_period_end.is_(False),  # type: ignore[attr-defined]
            TenantSubscription.current_period_end > now,
            TenantSubscription.current_period_end <= now + timedelta(days=days_ahead),
        )
        .order_by(TenantSubscription.current_period_end)
    )
    return list(result.scalars().all())


async def send_renewal_reminders(session: AsyncSession, now: datetime | None = None) -> int:
    """Issue (or reuse) renewal invoices for expiring subscriptions and count the reminder.

    Delivering the reminder is left to whoever reads ``reminders_sent``.
    """
    settings = get_settings()
    now = _now(now)
    expiring = await list_expiring_subscriptions(session, settings.renewal_reminder_days, now)

    sent = 0
    for subscription in expiring:
        invoice = await create_renewal_invoice(session, subscription.tenant_id, now)
        if invoice.last_reminder_at is not None and now - invoice.last_reminder_at < timedelta(days=1):
            continue
        invoice.reminders_sent += 1
        invoice.last_reminder_at = now
        invoice.updated_at = now
        session.add(invoice)
        await session.commit()
        sent += 1
        logger.info(
            "Renewal reminder %d for invoice %s (tenant %s)",
            invoice.reminders_sent, invoice.invoice_number, subscription.tenant_id,
        )
    return sent


# ── Plan limits ──────────────────────────────────────────────

async def ensure_feature_available(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    feature: str,
    current_usage: int,
    amount: int = 1,
) -> None:
    """Raise 403 when the tenant's plan does not allow ``amount`` more of ``feature``."""
    subscription = await _require_subscription(session, tenant_id)
    plan = _require_plan(subscription.plan_id)
    if not can_use_feature(plan.features, feature, current_usage, amount):
        raise AppError(
            status.HTTP_403_FORBIDDEN,
            f"The {plan.name} plan does not allow more {feature.replace('_', ' ')}",
        )


async def ensure_plan_includes(session: AsyncSession, tenant_id: uuid.UUID, feature: str) -> None:
    """Raise 403 unless the tenant's plan switches ``feature`` on."""
    subscription = await _require_subscription(session, tenant_id)
    plan = _require_plan(subscription.plan_id)
    if getattr(plan.features, feature, False) is not True:
        raise AppError(
            status.HTTP_403_FORBIDDEN,
            f"The {plan.name} plan does not include {feature.replace('_', ' ')}",
        )
