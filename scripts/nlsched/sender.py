"""
Processing of due newsletters.

One run captures "now" once, loads the started newsletters whose start time
has passed and, for each one independently, decides whether it is due,
finished or not yet due. Due newsletters are rendered and handed to the Mailer
as a template plus a job, then their sending state is saved in one write.

A newsletter that fails (Mailer error, lookup error, bad recurrence rule) is
left untouched so the next run retries it; the rest of the batch carries on.
"""

import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from .exceptions import ExternalServiceError
from .models import Newsletter, as_utc, utcnow
from .recurrence import Occurrence, RecurrenceEvaluator

logger = logging.getLogger(__name__)

SENT = "sent"
SKIPPED = "skipped"
FINISHED = "finished"
ERROR = "error"


@dataclass
class NewsletterOutcome:
    """What happened to one newsletter during a run."""

    newsletter_id: Optional[int]
    name: str
    status: str
    occurrence: Optional[datetime] = None
    finished: bool = False
    template_id: Optional[int] = None
    job_id: Optional[int] = None
    message: str = ""

    def __str__(self) -> str:
        label = f"#{self.newsletter_id} {self.name}"
        if self.status == SENT:
            suffix = " (finished)" if self.finished else ""
            return f"{label}: sent occurrence {self.occurrence:%Y-%m-%d %H:%M} as job {self.job_id}{suffix}"
        if self.status == SKIPPED:
            return f"{label}: skipped, next occurrence {self.occurrence:%Y-%m-%d %H:%M}"
        if self.status == FINISHED:
            return f"{label}: finished, no occurrences left"
        return f"{label}: error: {self.message}"


@dataclass
class RunSummary:
    """Results of one scheduler run."""

    now: datetime
    outcomes: List[NewsletterOutcome] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def processed(self) -> int:
        return self._count(SENT)

    @property
    def skipped(self) -> int:
        return self._count(SKIPPED)

    @property
    def finished(self) -> int:
        return sum(
            1 for outcome in self.outcomes if outcome.status == FINISHED or outcome.finished
        )

    @property
    def errored(self) -> int:
        return self._count(ERROR)

    def __str__(self) -> str:
        return (
            f"Processed {self.processed}, skipped {self.skipped}, "
            f"finished {self.finished}, errors {self.errored} "
            f"({len(self.outcomes)} candidates)"
        )


class NewsletterScheduler:
    """Evaluates due newsletters and dispatches the ones whose occurrence has come."""

    def __init__(
        self,
        store,
        selector,
        renderer,
        mailer,
        evaluator: Optional[RecurrenceEvaluator] = None,
        clock: Callable[[], datetime] = utcnow,
        layout_code: str = "beam_newsletter",
        template_description: str = "Newsletter generated by Beam",
        max_workers: int = 1,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            store: Provides ``list_due(now)`` and ``save(newsletter)``.
            selector: Provides ``select_articles(criteria, timespan, count, now)``.
            renderer: ContentRenderer producing the email bodies.
            mailer: Provides ``create_template(...)`` and ``create_job(...)``.
            evaluator: Recurrence evaluator; a default one is created if omitted.
            clock: Returns the current time; read once per run.
            layout_code: Mailer layout used for created templates.
            template_description: Description stored on created templates.
            max_workers: Newsletters processed in parallel.
        """
        self.store = store
        self.selector = selector
        self.renderer = renderer
        self.mailer = mailer
        self.evaluator = evaluator or RecurrenceEvaluator()
        self.clock = clock
        self.layout_code = layout_code
        self.template_description = template_description
        self.max_workers = max(1, int(max_workers))

    def run(self, now: Optional[datetime] = None) -> RunSummary:
        """
        Process every due newsletter once.

        Raises:
            Exception: Whatever the store raises when candidates cannot be listed.
        """
        now = as_utc(now) if now else as_utc(self.clock())
        candidates = self.store.list_due(now)
        summary = RunSummary(now=now)

        if not candidates:
            logger.info("No newsletters to process")
            return summary

        logger.info("Evaluating %d newsletter(s) at %s", len(candidates), now.isoformat())

        if self.max_workers > 1 and len(candidates) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                summary.outcomes.extend(pool.map(lambda n: self.process(n, now), candidates))
        else:
            summary.outcomes.extend(self.process(newsletter, now) for newsletter in candidates)

        logger.info("Run complete: %s", summary)
        return summary

    def process(self, newsletter: Newsletter, now: datetime) -> NewsletterOutcome:
        """Evaluate and, if due, send one newsletter. Never raises."""
        try:
            return self._process(newsletter, now)
        except ExternalServiceError as e:
            logger.error("Newsletter #%s (%s) failed: %s", newsletter.id, newsletter.name, e)
            return NewsletterOutcome(newsletter.id, newsletter.name, ERROR, message=str(e))
        except Exception as e:
            logger.exception("Unexpected error processing newsletter #%s (%s)", newsletter.id, newsletter.name)
            return NewsletterOutcome(
                newsletter.id, newsletter.name, ERROR, message=f"{type(e).__name__}: {e}"
            )

    def next_occurrence(self, newsletter: Newsletter) -> Occurrence:
        """Next occurrence for a newsletter given its send history."""
        return self.evaluator.next_occurrence(
            newsletter.recurrence_rule, newsletter.starts_at, newsletter.last_sent_at
        )

    def _process(self, newsletter: Newsletter, now: datetime) -> NewsletterOutcome:
        occurrence = self.next_occurrence(newsletter)

        if occurrence.at is None:
            updated = dataclasses.replace(newsletter)
            updated.finish()
            self.store.save(updated)
            logger.info("Newsletter #%s (%s) has no occurrences left, finished", newsletter.id, newsletter.name)
            return NewsletterOutcome(newsletter.id, newsletter.name, FINISHED, finished=True)

        if occurrence.at > now:
            logger.debug("Newsletter #%s not due until %s", newsletter.id, occurrence.at.isoformat())
            return NewsletterOutcome(newsletter.id, newsletter.name, SKIPPED, occurrence=occurrence.at)

        logger.info("Processing newsletter: %s (occurrence %s)", newsletter.name, occurrence.at.isoformat())
        template_id, job_id = self._send(newsletter, now)

        updated = dataclasses.replace(newsletter, last_sent_at=occurrence.at)
        if not occurrence.has_more:
            updated.finish()
        self.store.save(updated)

        return NewsletterOutcome(
            newsletter.id,
            newsletter.name,
            SENT,
            occurrence=occurrence.at,
            finished=updated.is_finished,
            template_id=template_id,
            job_id=job_id,
        )

    def _send(self, newsletter: Newsletter, now: datetime):
        articles = []
        if not newsletter.personalized_content:
            articles = self.selector.select_articles(
                newsletter.criteria, newsletter.timespan, newsletter.articles_count, now
            )

        email = self.renderer.render(newsletter, articles)

        template_id = self.mailer.create_template(
            newsletter.name,
            self.layout_code,
            self.template_description,
            newsletter.email_from,
            newsletter.email_subject,
            email.text_content,
            email.html_content,
            newsletter.mail_type_code,
        )
        job_id = self.mailer.create_job(newsletter.segment_code, newsletter.segment_provider, template_id)
        logger.info("Mailer job successfully created (id: %s, template: %s)", job_id, template_id)
        return template_id, job_id
