"""Scheduler for housekeeping jobs (session expiry)."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.services.onboarding_service import OnboardingService


logger = logging.getLogger(__name__)

SESSION_SWEEP_JOB_ID = "session_expiry_sweep"


async def expire_idle_sessions(onboarding: OnboardingService) -> None:
    """Expire sessions that have been idle past SESSION_EXPIRY_HOURS.

    Runs every SESSION_SWEEP_MINUTES. Each expired actor gets a notice in
    their verification surface.
    """
    logger.info("Running session expiry sweep")

    try:
        count = await onboarding.expire_stale_sessions()
        logger.info("Completed session expiry sweep: %d sessions expired", count)
    except Exception as e:
        logger.error("Error in session expiry sweep: %s", e)


def start_scheduler(*, onboarding: OnboardingService, sweep_minutes: int) -> AsyncIOScheduler:
    """Create and start the scheduler with all jobs registered.

    This should be called during FastAPI app startup.
    """
    logger.info("Starting scheduler")
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        expire_idle_sessions,
        trigger=IntervalTrigger(minutes=sweep_minutes),
        args=[onboarding],
        id=SESSION_SWEEP_JOB_ID,
        name="Expire Idle Onboarding Sessions",
        replace_existing=True,
    )
    logger.info("Scheduled session expiry sweep: every %d minutes", sweep_minutes)

    scheduler.start()
    logger.info("Scheduler started successfully")
    return scheduler


def stop_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Stop the scheduler.

    This should be called during FastAPI app shutdown.
    """
    logger.info("Stopping scheduler")
    scheduler.shutdown(wait=True)
    logger.info("Scheduler stopped")
