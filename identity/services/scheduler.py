import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

INVITATION_CLEANUP_JOB_ID = "invitation_cleanup"


def schedule_invitation_cleanup(interval_minutes: int):
    """Register (or replace) the periodic sweep of expired guardian invitations."""
    from identity.jobs.invitation_cleanup import cleanup_expired_invitations

    job = scheduler.add_job(
        cleanup_expired_invitations,
        IntervalTrigger(minutes=interval_minutes),
        id=INVITATION_CLEANUP_JOB_ID,
        replace_existing=True,
    )
    logger.info(f"Invitation cleanup scheduled every {interval_minutes} minute(s)")
    return job


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        scheduler.start()
        logger.info("Background scheduler started")


def stop_scheduler():
    """Stop the background job scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")
