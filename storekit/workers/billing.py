"""Periodic billing jobs — status sweep, overdue invoices, renewal reminders."""

from __future__ import annotations

import logging

from storekit.core.database import async_session_factory
from storekit.services import billing

logger = logging.getLogger(__name__)


async def refresh_subscription_statuses(ctx: dict) -> dict:
    """Move lapsed subscriptions to grace_period / expired / cancelled."""
    async with async_session_factory() as session:
        changed = await billing.refresh_subscription_statuses(session)
    logger.info("Subscription sweep: %d status changes", changed)
    return {"changed": changed}


async def mark_overdue_invoices(ctx: dict) -> dict:
    async with async_session_factory() as session:
        overdue = await billing.mark_overdue_invoices(session)
    logger.info("Invoice sweep: %d invoices overdue", overdue)
    return {"overdue": overdue}


async def send_renewal_reminders(ctx: dict) -> dict:
    async with async_session_factory() as session:
        sent = await billing.send_renewal_reminders(session)
    logger.info("Renewal reminders: %d sent", sent)
    return {"sent": sent}
