"""
Database management for the Newsletter Scheduler.

Stores newsletter definitions, their sending state and the article pool used
for curated newsletters in SQLite.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

from .config import config
from .models import STATE_FINISHED, STATE_STARTED, STATES, Article, Newsletter, as_utc, utcnow

# Fixed-width UTC timestamps compare correctly as text
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

METRIC_COLUMNS = (
    "pageviews_all",
    "pageviews_signed_in",
    "pageviews_subscribers",
    "timespent_all",
    "timespent_signed_in",
    "timespent_subscribers",
    "conversions",
    "average_payment",
)


def to_db(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as a fixed-width UTC string."""
    if value is None:
        return None
    return as_utc(value).strftime(TIMESTAMP_FORMAT)


def from_db(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


class NewsletterStore:
    """Database manager for newsletters and articles."""

    def __init__(self, db_path: Optional[Path] = None) -> None:
        """
        Initialize the database manager.

        Args:
            db_path: Optional path to the database file. Uses config default if not provided.
        """
        self.db_path = db_path or config.database_path
        self._ensure_directory()
        self._init_schema()

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success and rolls back on error, so each ``with`` block is
        one atomic write.

        Yields:
            SQLite connection with row factory set to sqlite3.Row.
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        """Initialize the database schema."""
        with self.connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS newsletters (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    state TEXT NOT NULL DEFAULT 'started',
                    starts_at TEXT NOT NULL,
                    last_sent_at TEXT,
                    recurrence_rule TEXT,
                    personalized_content BOOLEAN NOT NULL DEFAULT 0,
                    criteria TEXT NOT NULL DEFAULT 'pageviews_all',
                    articles_count INTEGER NOT NULL DEFAULT 5,
                    timespan INTEGER NOT NULL DEFAULT 1440,
                    mailer_generator_id INTEGER NOT NULL,
                    segment_code TEXT NOT NULL,
                    segment_provider TEXT NOT NULL,
                    mail_type_code TEXT NOT NULL,
                    email_from TEXT NOT NULL,
                    email_subject TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            metric_columns = ",\n".join(
                f"{column} REAL NOT NULL DEFAULT 0" for column in METRIC_COLUMNS
            )
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS articles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    url TEXT UNIQUE NOT NULL,
                    title TEXT,
                    published_at TEXT NOT NULL,
                    {metric_columns}
                )
            """)

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_newsletters_due ON newsletters(state, starts_at)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_articles_published ON articles(published_at)"
            )

    @staticmethod
    def _row_to_newsletter(row: sqlite3.Row) -> Newsletter:
        return Newsletter(
            id=row["id"],
            name=row["name"],
            state=row["state"],
            starts_at=from_db(row["starts_at"]),
            last_sent_at=from_db(row["last_sent_at"]),
            recurrence_rule=row["recurrence_rule"],
            personalized_content=bool(row["personalized_content"]),
            criteria=row["criteria"],
            articles_count=row["articles_count"],
            timespan=row["timespan"],
            mailer_generator_id=row["mailer_generator_id"],
            segment_code=row["segment_code"],
            segment_provider=row["segment_provider"],
            mail_type_code=row["mail_type_code"],
            email_from=row["email_from"],
            email_subject=row["email_subject"],
        )

    def add_newsletter(self, newsletter: Newsletter) -> int:
        """
        Insert a newsletter definition.

        Args:
            newsletter: Newsletter without an ID.

        Returns:
            The ID of the newly created newsletter, also set on the object.
        """
        if newsletter.state not in STATES:
            raise ValueError(f"Invalid newsletter state: {newsletter.state}")

        now = to_db(utcnow())
        with self.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO newsletters (
                    name, state, starts_at, last_sent_at, recurrence_rule,
                    personalized_content, criteria, articles_count, timespan,
                    mailer_generator_id, segment_code, segment_provider,
                    mail_type_code, email_from, email_subject, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    newsletter.name,
                    newsletter.state,
                    to_db(newsletter.starts_at),
                    to_db(newsletter.last_sent_at),
                    newsletter.recurrence_rule,
                    int(newsletter.personalized_content),
                    newsletter.criteria,
                    newsletter.articles_count,
                    newsletter.timespan,
                    newsletter.mailer_generator_id,
                    newsletter.segment_code,
                    newsletter.segment_provider,
                    newsletter.mail_type_code,
                    newsletter.email_from,
                    newsletter.email_subject,
                    now,
                    now,
                ),
            )
            newsletter.id = cursor.lastrowid
            return newsletter.id

    def get_newsletter(self, newsletter_id: int) -> Optional[Newsletter]:
        """Get a newsletter by ID."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM newsletters WHERE id = ?", (newsletter_id,)
            ).fetchone()
            return self._row_to_newsletter(row) if row else None

    def list_newsletters(self, state: Optional[str] = None) -> List[Newsletter]:
        """List newsletters, optionally filtered by state."""
        query = "SELECT * FROM newsletters"
        params: List[Any] = []
        if state:
            query += " WHERE state = ?"
            params.append(state)
        query += " ORDER BY starts_at, id"

        with self.connection() as conn:
            return [self._row_to_newsletter(row) for row in conn.execute(query, params)]

    def list_due(self, now: datetime) -> List[Newsletter]:
        """List started newsletters whose start time has been reached."""
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM newsletters
                WHERE state = ? AND starts_at <= ?
                ORDER BY starts_at, id
                """,
                (STATE_STARTED, to_db(now)),
            )
            return [self._row_to_newsletter(row) for row in rows]

    def save(self, newsletter: Newsletter) -> None:
        """
        Persist a newsletter's sending state in a single transaction.

        Raises:
            ValueError: If the newsletter is unknown, the state is invalid, or
                a finished newsletter would be restarted.
        """
        if newsletter.id is None:
            raise ValueError("Cannot save a newsletter without an ID")
        if newsletter.state not in STATES:
            raise ValueError(f"Invalid newsletter state: {newsletter.state}")

        with self.connection() as conn:
            # finished -> started is refused by the UPDATE itself
            cursor = conn.execute(
                """
                UPDATE newsletters
                SET state = ?, last_sent_at = ?, updated_at = ?
                WHERE id = ? AND NOT (state = ? AND ? != ?)
                """,
                (
                    newsletter.state,
                    to_db(newsletter.last_sent_at),
                    to_db(utcnow()),
                    newsletter.id,
                    STATE_FINISHED,
                    newsletter.state,
                    STATE_FINISHED,
                ),
            )
            if cursor.rowcount == 0:
                # same transaction as the UPDATE
                exists = conn.execute(
                    "SELECT 1 FROM newsletters WHERE id = ?", (newsletter.id,)
                ).fetchone()
                if exists is None:
                    raise ValueError(f"Newsletter {newsletter.id} does not exist")
                raise ValueError(f"Newsletter {newsletter.id} is finished and cannot be restarted")

    def add_article(self, article: Article) -> int:
        """
        Insert or update an article in the selection pool.

        Returns:
            The article ID.
        """
        metrics = {column: float(article.metrics.get(column, 0)) for column in METRIC_COLUMNS}
        published_at = to_db(article.published_at or utcnow())

        with self.connection() as conn:
            columns = ", ".join(METRIC_COLUMNS)
            placeholders = ", ".join("?" for _ in METRIC_COLUMNS)
            updates = ", ".join(f"{column} = excluded.{column}" for column in METRIC_COLUMNS)
            conn.execute(
                f"""
                INSERT INTO articles (url, title, published_at, {columns})
                VALUES (?, ?, ?, {placeholders})
                ON CONFLICT(url) DO UPDATE SET
                    title = excluded.title,
                    published_at = excluded.published_at,
                    {updates}
                """,
                (article.url, article.title, published_at, *metrics.values()),
            )
            row = conn.execute("SELECT id FROM articles WHERE url = ?", (article.url,)).fetchone()
            article.id = row["id"]
            return article.id

    def get_stats(self) -> Dict[str, int]:
        """Count newsletters by state and articles in the pool."""
        with self.connection() as conn:
            stats = {state: 0 for state in STATES}
            for row in conn.execute("SELECT state, COUNT(*) AS n FROM newsletters GROUP BY state"):
                stats[row["state"]] = row["n"]
            stats["articles"] = conn.execute("SELECT COUNT(*) FROM articles").fetchone()[0]
            return stats
