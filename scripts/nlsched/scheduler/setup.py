"""
APScheduler factory that creates the newsletter daemon scheduler.
"""

import logging

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from nlsched.config import config

logger = logging.getLogger(__name__)

JOB_ID = "send_newsletters"


def create_scheduler() -> AsyncIOScheduler:
    """Create an AsyncIOScheduler running the newsletter batch on an interval.

    Reads ``scheduler.interval_minutes``, ``scheduler.timezone`` and
    ``scheduler.misfire_grace_time`` from config. Runs never overlap and
    missed runs are coalesced into one.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    from nlsched.scheduler.error_handler import job_error_listener, job_missed_listener
    from nlsched.scheduler.jobs import send_newsletters_job

    timezone = config.get("scheduler.timezone", "UTC")
    interval = int(config.get("scheduler.interval_minutes", 5))
    grace = int(config.get("scheduler.misfire_grace_time", 300))

    scheduler = AsyncIOScheduler(timezone=timezone)
    scheduler.add_job(
        send_newsletters_job,
        IntervalTrigger(minutes=interval),
        id=JOB_ID,
        name="Send Due Newsletters",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=grace,
        replace_existing=True,
    )

    scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)
    scheduler.add_listener(job_missed_listener, EVENT_JOB_MISSED)

    logger.info(
        "Scheduler configured: newsletters every %d minutes (timezone=%s)", interval, timezone
    )
    return scheduler
