"""
Data models for newsletters and the values computed while sending them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

STATE_STARTED = "started"
STATE_FINISHED = "finished"
STATES = (STATE_STARTED, STATE_FINISHED)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC. Naive values are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class Newsletter:
    """A newsletter definition and its sending state."""

    name: str
    starts_at: datetime
    mailer_generator_id: int
    segment_code: str
    mail_type_code: str
    email_from: str
    email_subject: str
    segment_provider: str = "crm-segment"
    state: str = STATE_STARTED
    last_sent_at: Optional[datetime] = None
    recurrence_rule: Optional[str] = None
    personalized_content: bool = False
    criteria: str = "pageviews_all"
    articles_count: int = 5
    timespan: int = 1440  # minutes of lookback for curated content
    id: Optional[int] = None

    def __post_init__(self):
        self.starts_at = as_utc(self.starts_at)
        self.last_sent_at = as_utc(self.last_sent_at)
        if self.recurrence_rule is not None and not self.recurrence_rule.strip():
            self.recurrence_rule = None

    @property
    def is_finished(self) -> bool:
        return self.state == STATE_FINISHED

    def finish(self) -> None:
        """Move the newsletter to its terminal state."""
        self.state = STATE_FINISHED


@dataclass
class Article:
    """An article candidate for a curated newsletter."""

    url: str
    title: Optional[str] = None
    published_at: Optional[datetime] = None
    metrics: Dict[str, float] = field(default_factory=dict)
    id: Optional[int] = None


@dataclass
class RenderedEmail:
    """HTML and plain-text bodies produced by one render call."""

    html_content: str
    text_content: str
