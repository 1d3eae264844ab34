"""
Interval Scheduler Service using APScheduler.
Runs the execution queue dispatcher jobs inside the API process.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.base import JobLookupError
from typing import Callable, Dict, List, Optional

from core.logging import get_logger

logger = get_logger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the singleton scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone="UTC")
    return _scheduler


def start_scheduler():
    """Start the scheduler if not already running."""
    scheduler = get_scheduler()
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    global _scheduler
    scheduler = get_scheduler()
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shutdown")
    _scheduler = None


def register_interval_job(
    job_id: str,
    seconds: float,
    callback: Callable,
    **kwargs
) -> str:
    """
    Register a job that runs every ``seconds``.

    A run that is still in progress when the next one is due is not
    overlapped; missed runs are coalesced into one.

    Args:
        job_id: Unique identifier for the job
        seconds: Interval between runs
        callback: Async function to call when job fires
        **kwargs: Additional arguments passed to the callback

    Returns:
        The job_id
    """
    scheduler = get_scheduler()
    scheduler.add_job(
        callback,
        trigger=IntervalTrigger(seconds=seconds, timezone="UTC"),
        id=job_id,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs=kwargs
    )

    logger.info("Registered interval job", job_id=job_id, seconds=seconds)
    return job_id


def remove_job(job_id: str) -> bool:
    """
    Remove a job from the scheduler.

    Returns:
        True if job was removed, False if not found
    """
    scheduler = get_scheduler()
    try:
        scheduler.remove_job(job_id)
        logger.info("Removed job", job_id=job_id)
        return True
    except JobLookupError:
        logger.warning("Job not found", job_id=job_id)
        return False


def get_all_jobs() -> List[Dict]:
    """Get list of all scheduled jobs."""
    scheduler = get_scheduler()
    return [
        {
            "id": job.id,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger)
        }
        for job in scheduler.get_jobs()
    ]
