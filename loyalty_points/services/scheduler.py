# loyalty_points/services/scheduler.py

import logging
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from loyalty_points.services.bootstrap import LoyaltyContainer

log = logging.getLogger("loyalty.scheduler")


# --------------------------------------------------------
# Expired-hold reclamation + used-code / award retention
# --------------------------------------------------------

def start_reclaim_tasks(
    scheduler: AsyncIOScheduler,
    container: LoyaltyContainer,
    interval_seconds: int = 60,
    retention_hours: int = 24,
    award_retention_days: int = 90,
):
    """
    Registers the periodic sweep jobs. Each run catches its own errors so a
    Shopify outage never kills the scheduler.
    """

    async def reclaim_expired():
        try:
            await container.redemptions.reclaim_expired()
        except Exception as e:
            log.error(f"[SWEEP] reclaim run failed: {e!r}")

    async def purge_used():
        try:
            await container.redemptions.purge_used(timedelta(hours=retention_hours))
        except Exception as e:
            log.error(f"[SWEEP] purge run failed: {e!r}")
        container.orders.prune_awards(timedelta(days=award_retention_days))

    scheduler.add_job(
        reclaim_expired,
        "interval",
        seconds=interval_seconds,
        id="reclaim_expired_holds",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.add_job(
        purge_used,
        "interval",
        hours=1,
        id="purge_used_holds",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    log.info(
        f"[SWEEP] Scheduler started, reclaim every {interval_seconds}s, "
        f"used-code retention {retention_hours}h, award retention {award_retention_days}d"
    )
