"""ARQ worker for the billing sweeps.

Run with ``arq storekit.workers.main.WorkerSettings`` or
``python -m storekit.workers.main``.
"""

import asyncio
import logging

from arq import cron
from arq.connections import RedisSettings

from storekit.core.config import get_settings
from storekit.core.logging_setup import configure_logging
from storekit.workers.billing import (
    mark_overdue_invoices,
    refresh_subscription_statuses,
    send_renewal_reminders,
)

logger = logging.getLogger(__name__)

settings = get_settings()


async def startup(ctx: dict) -> None:
    from storekit.core.database import init_db

    configure_logging(settings.log_level)
    await init_db()
    logger.info("Billing worker started (redis=%s)", settings.redis_url)


async def shutdown(ctx: dict) -> None:
    from storekit.core.database import engine

    await engine.dispose()


class WorkerSettings:
    functions = [refresh_subscription_statuses, mark_overdue_invoices, send_renewal_reminders]
    cron_jobs = [
        # Twice an hour so grace periods end close to on time
        cron(refresh_subscription_statuses, minute={0, 30}),
        cron(mark_overdue_invoices, minute=5),
        cron(send_renewal_reminders, hour=settings.reminder_hour_utc, minute=0),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    max_jobs = 4
    job_timeout = 300


if __name__ == "__main__":
    from arq import run_worker
    asyncio.run(run_worker(WorkerSettings))  # type: ignore[arg-type]
