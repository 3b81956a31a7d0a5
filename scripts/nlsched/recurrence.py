"""
Recurrence evaluation for scheduled newsletters.

Recurrence rules are RFC 5545 RRULE text (``FREQ=WEEKLY;BYDAY=MO`` or a full
``RRULE:`` line) anchored at the newsletter's ``starts_at``. Only a bounded
lookahead is ever expanded, so unbounded rules are safe to evaluate.
"""

import logging
from datetime import datetime, timezone
from typing import List, NamedTuple, Optional

from dateutil.rrule import rrulebase, rrulestr

from .exceptions import MalformedRecurrenceRule
from .models import as_utc

logger = logging.getLogger(__name__)

# Two occurrences answer both "when is the next one" and "is there another after it"
LOOKAHEAD = 2


class Occurrence(NamedTuple):
    """A candidate send instant and whether the rule continues past it."""

    at: Optional[datetime]
    has_more: bool


def _naive_utc(value: datetime) -> datetime:
    return as_utc(value).replace(tzinfo=None)


def _aware(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc)


def parse_rule(rule: str, starts_at: datetime) -> rrulebase:
    """
    Parse recurrence rule text anchored at ``starts_at``.

    Any DTSTART in the text is dropped; the newsletter's start always anchors
    the series. Dates are evaluated as naive UTC.

    Raises:
        MalformedRecurrenceRule: If the text is not a valid rule.
    """
    lines = [
        line.strip()
        for line in (rule or "").strip().splitlines()
        if line.strip() and not line.strip().upper().startswith("DTSTART")
    ]
    if not lines:
        raise MalformedRecurrenceRule("Recurrence rule is empty")

    try:
        return rrulestr("\n".join(lines), dtstart=_naive_utc(starts_at), ignoretz=True)
    except (ValueError, KeyError, TypeError) as e:
        raise MalformedRecurrenceRule(f"Invalid recurrence rule {rule!r}: {e}") from e


def describe(rule: str, starts_at: datetime) -> str:
    """Return the normalized DTSTART/RRULE text for a rule."""
    return str(parse_rule(rule, starts_at))


class RecurrenceEvaluator:
    """Computes the next eligible send instant for a newsletter."""

    def __init__(self, lookahead: int = LOOKAHEAD) -> None:
        if lookahead < 2:
            raise ValueError("lookahead must be at least 2")
        self.lookahead = lookahead

    def next_occurrence(
        self,
        rule: Optional[str],
        starts_at: datetime,
        last_sent_at: Optional[datetime] = None,
    ) -> Occurrence:
        """
        Find the next occurrence after the newsletter's last send.

        Args:
            rule: RRULE text, or None for a one-shot newsletter.
            starts_at: First eligible instant.
            last_sent_at: Instant of the most recent successful send, if any.

        Returns:
            Occurrence with ``at`` None when nothing is left to send.
        """
        starts_at = as_utc(starts_at)
        last_sent_at = as_utc(last_sent_at)

        if not rule:
            if last_sent_at is None:
                return Occurrence(starts_at, False)
            return Occurrence(None, False)

        upcoming = self._expand(rule, starts_at, last_sent_at, self.lookahead)
        if not upcoming:
            logger.debug("Recurrence %r exhausted after %s", rule, last_sent_at or starts_at)
            return Occurrence(None, False)
        return Occurrence(upcoming[0], len(upcoming) > 1)

    def preview(
        self,
        rule: Optional[str],
        starts_at: datetime,
        last_sent_at: Optional[datetime] = None,
        count: int = 5,
    ) -> List[datetime]:
        """List up to ``count`` upcoming occurrences, for display."""
        if not rule:
            occurrence = self.next_occurrence(rule, starts_at, last_sent_at)
            return [occurrence.at] if occurrence.at else []
        return self._expand(rule, as_utc(starts_at), as_utc(last_sent_at), count)

    def _expand(
        self,
        rule: str,
        starts_at: datetime,
        last_sent_at: Optional[datetime],
        count: int,
    ) -> List[datetime]:
        recurrence = parse_rule(rule, starts_at)

        # Never sent: starts_at itself counts. Already sent: skip the instant we sent.
        if last_sent_at is None:
            # rrule truncates dtstart to whole seconds
            bound, inclusive = starts_at.replace(microsecond=0), True
        else:
            bound, inclusive = last_sent_at, False

        try:
            found = list(recurrence.xafter(_naive_utc(bound), count=count, inc=inclusive))
        except (ValueError, TypeError) as e:
            raise MalformedRecurrenceRule(f"Cannot expand recurrence rule {rule!r}: {e}") from e
        return [_aware(dt) for dt in found]
