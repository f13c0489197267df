"""
APScheduler configuration.

Jobs:
- Weekly payout sweep (PAYOUT_CRON_DAY_OF_WEEK at PAYOUT_CRON_HOUR:MINUTE
  in TIMEZONE), guarded by the database payout lock
- Expired in-memory cache entry cleanup every 10 minutes
"""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.triggers.cron import CronTrigger

from bazaarmkt.config import settings
from bazaarmkt.services.cache_service import CacheBackend

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 3600,  # A payout run up to an hour late still runs
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.TIMEZONE
)


async def run_scheduled_payouts(cache: Optional[CacheBackend] = None):
    """Called by APScheduler; failures are logged, never raised into the scheduler."""
    from bazaarmkt.jobs.payout_jobs import run_payout_sweep

    try:
        await run_payout_sweep(cache)
    except Exception:
        logger.exception("Scheduled payout run failed")


def start_scheduler(cache: Optional[CacheBackend] = None):
    """Start the background job scheduler."""
    if scheduler.running:
        return

    from bazaarmkt.jobs.payout_jobs import cleanup_cache

    if settings.PAYOUT_SCHEDULER_ENABLED:
        scheduler.add_job(
            run_scheduled_payouts,
            CronTrigger(
                day_of_week=settings.PAYOUT_CRON_DAY_OF_WEEK,
                hour=settings.PAYOUT_CRON_HOUR,
                minute=settings.PAYOUT_CRON_MINUTE,
                timezone=settings.TIMEZONE,
            ),
            kwargs={'cache': cache},
            id='artisan_payouts',
            name='Artisan Payouts',
            replace_existing=True,
        )

    if cache is not None:
        scheduler.add_job(
            cleanup_cache,
            'interval',
            minutes=10,
            args=[cache],
            id='cache_cleanup',
            name='Expired Cache Cleanup',
            replace_existing=True,
        )

    scheduler.start()
    logger.info("Background job scheduler started")

    # Log all scheduled jobs
    for job in scheduler.get_jobs():
        logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
