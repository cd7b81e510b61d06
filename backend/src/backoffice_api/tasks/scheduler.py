"""Background task scheduler using APScheduler."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from backoffice_api.config import Settings, get_settings

logger = logging.getLogger(__name__)

BACKUP_JOB_ID = "scheduled_backup"
INITIAL_BACKUP_JOB_ID = "initial_backup"
SESSION_PURGE_JOB_ID = "purge_expired_sessions"

# Global scheduler instance
_scheduler: AsyncIOScheduler | None = None


# =============================================================================
# Jobs
# =============================================================================


async def scheduled_backup_job() -> None:
    """Background job to create a full backup. Failures are logged only."""
    from backoffice_api.services.backup_service import get_backup_service

    logger.info("Starting scheduled backup")
    try:
        filename = await get_backup_service().create_full_backup()
        logger.info(f"Scheduled backup completed: {filename}")
    except Exception as e:
        logger.error(f"Scheduled backup failed: {e}")


async def purge_expired_sessions_job() -> None:
    """Background job to drop expired tokens from the session store."""
    from backoffice_api.services.token_service import get_token_service

    try:
        purged = await get_token_service().purge_expired()
        if purged:
            logger.info(f"Purged {purged} expired session(s)")
    except Exception as e:
        logger.error(f"Session purge failed: {e}")


# =============================================================================
# Scheduler lifecycle
# =============================================================================


def build_scheduler(settings: Settings | None = None) -> AsyncIOScheduler:
    """Create a scheduler with all jobs registered but not started.

    The daily backup uses ``coalesce`` and a misfire grace period so a
    tick missed while the process was down runs once when it comes back.

    Args:
        settings: Application settings (defaults to the cached settings)

    Returns:
        Configured AsyncIOScheduler
    """
    settings = settings or get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        scheduled_backup_job,
        trigger=CronTrigger(hour=settings.backup_schedule_hour, minute=0),
        id=BACKUP_JOB_ID,
        name="Daily full backup",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
        misfire_grace_time=settings.backup_misfire_grace_seconds,
    )

    if settings.backup_on_startup:
        # No trigger: runs once as soon as the scheduler starts
        scheduler.add_job(
            scheduled_backup_job,
            id=INITIAL_BACKUP_JOB_ID,
            name="Startup backup",
            replace_existing=True,
        )

    scheduler.add_job(
        purge_expired_sessions_job,
        trigger=IntervalTrigger(hours=1),
        id=SESSION_PURGE_JOB_ID,
        name="Purge expired sessions",
        replace_existing=True,
        coalesce=True,
    )

    return scheduler


async def start_scheduler() -> None:
    """Start the background task scheduler."""
    global _scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("Background scheduler disabled")
        return

    _scheduler = build_scheduler(settings)
    _scheduler.start()
    logger.info(
        f"Background scheduler started (daily backup at {settings.backup_schedule_hour:02d}:00)"
    )


async def stop_scheduler() -> None:
    """Stop the background task scheduler."""
    global _scheduler

    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    """Get the running scheduler, if any."""
    return _scheduler
