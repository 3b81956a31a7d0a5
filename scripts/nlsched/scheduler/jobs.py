"""
Scheduled job definitions for the newsletter daemon.

Jobs are async functions that wrap the synchronous batch in asyncio.to_thread().
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


async def send_newsletters_job():
    """Process all due newsletters.

    Returns the RunSummary so callers (and tests) can inspect the outcome.
    Per-newsletter failures are part of the summary; only a failure to list
    candidates propagates and reaches the job error listener.
    """
    logger.info("Newsletter job started")

    def _run():
        from nlsched.services import get_newsletter_scheduler

        return get_newsletter_scheduler().run()

    summary = await asyncio.to_thread(_run)

    if summary is not None:
        logger.info("Newsletter job complete: %s", summary)
        for outcome in summary.outcomes:
            logger.info("  %s", outcome)
    return summary
