"""
APScheduler error handler for the newsletter daemon.
"""

import logging

logger = logging.getLogger(__name__)


def job_error_listener(event):
    """Handle APScheduler EVENT_JOB_ERROR events by logging the failure."""
    traceback_str = str(event.traceback) if event.traceback else ""

    logger.error(
        "Scheduled job '%s' failed: %s\n%s",
        event.job_id,
        event.exception,
        traceback_str,
    )


def job_missed_listener(event):
    """Handle APScheduler EVENT_JOB_MISSED events."""
    logger.warning(
        "Scheduled job '%s' missed its run time %s",
        event.job_id,
        event.scheduled_run_time,
    )
