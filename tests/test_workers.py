"""Periodic billing jobs run against the test database."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from storekit.core.subscription import InvoiceStatus, SubscriptionStatus, utcnow
from storekit.models.subscription import TenantSubscription
from storekit.models.tenant import Tenant
from storekit.services import billing
from storekit.workers.billing import (
    mark_overdue_invoices,
    refresh_subscription_statuses,
    send_renewal_reminders,
)
from storekit.workers.main import WorkerSettings


async def _lapsed_tenant(session, slug: str, days_ago: int) -> Tenant:
    tenant = Tenant(name=slug, slug=slug)
    session.add(tenant)
    await session.flush()
    end = utcnow() - timedelta(days=days_ago)
    session.add(TenantSubscription(
        tenant_id=tenant.id,
        plan_id="starter_monthly",
        status=SubscriptionStatus.ACTIVE,
        amount=29,
        current_period_start=end - timedelta(days=30),
        current_period_end=end,
        grace_period_ends_at=end + timedelta(days=7),
    ))
    await session.commit()
    return tenant


@pytest.mark.asyncio
async def test_status_sweep_job(session, test_session_factory):
    await _lapsed_tenant(session, "grace", days_ago=2)
    await _lapsed_tenant(session, "gone", days_ago=9)

    with patch("storekit.workers.billing.async_session_factory", test_session_factory):
        result = await refresh_subscription_statuses({})
    assert result == {"changed": 2}

    with patch("storekit.workers.billing.async_session_factory", test_session_factory):
        assert await refresh_subscription_statuses({}) == {"changed": 0}


@pytest.mark.asyncio
async def test_overdue_job(session, test_session_factory):
    tenant = Tenant(name="late", slug="late")
    session.add(tenant)
    await session.commit()
    invoice = await billing.create_checkout_invoice(
        session, tenant.id, "starter_monthly", now=utcnow() - timedelta(days=10),
    )

    with patch("storekit.workers.billing.async_session_factory", test_session_factory):
        result = await mark_overdue_invoices({})
    assert result == {"overdue": 1}

    await session.refresh(invoice)
    assert invoice.status == InvoiceStatus.OVERDUE


@pytest.mark.asyncio
async def test_reminder_job(session, test_session_factory):
    tenant = Tenant(name="soon", slug="soon")
    session.add(tenant)
    await session.commit()
    paid_at = utcnow() - timedelta(days=27)
    invoice = await billing.create_checkout_invoice(session, tenant.id, "starter_monthly", now=paid_at)
    await billing.mark_invoice_paid(session, tenant.id, invoice.id, now=paid_at)

    with patch("storekit.workers.billing.async_session_factory", test_session_factory):
        result = await send_renewal_reminders({})
    assert result == {"sent": 1}


def test_worker_registers_cron_jobs():
    names = {job.name for job in WorkerSettings.cron_jobs}
    assert names == {
        "cron:refresh_subscription_statuses",
        "cron:mark_overdue_invoices",
        "cron:send_renewal_reminders",
    }
