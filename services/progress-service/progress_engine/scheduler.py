"""
Background jobs (APScheduler)

- One leaderboard refresh job per update frequency (realtime, hourly, daily, weekly)
- Daily goal expiry sweep

Jobs run the blocking DynamoDB work in a worker thread so the API event loop
stays responsive.
"""
import asyncio
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from progress_engine.logic import goal_service, leaderboard_service
from progress_engine.schemas import UpdateFrequency

logger = logging.getLogger(__name__)

scheduler: Optional[AsyncIOScheduler] = None

FREQUENCY_TRIGGERS = {
    UpdateFrequency.REALTIME: lambda: CronTrigger(second=0),
    UpdateFrequency.HOURLY: lambda: CronTrigger(minute=0),
    UpdateFrequency.DAILY: lambda: CronTrigger(hour=0, minute=5),
    UpdateFrequency.WEEKLY: lambda: CronTrigger(day_of_week="sun", hour=0, minute=10),
}


async def refresh_leaderboards(frequency: UpdateFrequency) -> int:
    """Recompute the auto-updating leaderboards scheduled at this frequency"""
    try:
        refreshed = await asyncio.to_thread(leaderboard_service.recompute_all, frequency)
        logger.info(f"Refreshed {refreshed} {frequency.value} leaderboards")
        return refreshed
    except Exception as e:
        logger.error(f"Error refreshing {frequency.value} leaderboards: {e}", exc_info=True)
        return 0


async def expire_goals() -> int:
    try:
        return await asyncio.to_thread(goal_service.expire_goals)
    except Exception as e:
        logger.error(f"Error in goal expiry sweep: {e}", exc_info=True)
        return 0


def create_scheduler() -> AsyncIOScheduler:
    """Create the scheduler and register all jobs"""
    global scheduler

    scheduler = AsyncIOScheduler(timezone="UTC")

    for frequency, trigger in FREQUENCY_TRIGGERS.items():
        scheduler.add_job(
            refresh_leaderboards,
            trigger(),
            args=[frequency],
            id=f"leaderboards_{frequency.value}",
            name=f"Refresh {frequency.value} leaderboards",
            replace_existing=True
        )

    scheduler.add_job(
        expire_goals,
        CronTrigger(hour=0, minute=1),
        id="expire_goals",
        name="Fail expired goals",
        replace_existing=True
    )

    logger.info(f"Scheduler configured with {len(scheduler.get_jobs())} jobs")
    return scheduler


def start_scheduler():
    if scheduler and not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def stop_scheduler():
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
