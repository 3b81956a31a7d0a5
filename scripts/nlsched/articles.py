"""
Article selection for curated newsletters.

Picks the best performing articles published within the newsletter's lookback
window, ranked by the metric named in its criteria. The pool is filled from
the command line, one article at a time or from a CSV export of article stats.
"""

import csv
import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, TextIO

from dateutil import parser as date_parser

from .database import METRIC_COLUMNS, NewsletterStore, from_db, to_db
from .models import Article, as_utc, utcnow

logger = logging.getLogger(__name__)

CRITERIA = METRIC_COLUMNS


class ArticleSelector:
    """Selects articles from the store's article pool."""

    def __init__(self, store: NewsletterStore) -> None:
        self.store = store

    def select_articles(
        self,
        criteria: str,
        timespan: int,
        count: int,
        now: Optional[datetime] = None,
    ) -> List[Article]:
        """
        Select the top articles for a criteria.

        Args:
            criteria: Metric to rank by, one of CRITERIA.
            timespan: Lookback window in minutes.
            count: Maximum number of articles.
            now: End of the lookback window; defaults to the current time.

        Returns:
            Articles ordered best first.

        Raises:
            ValueError: If the criteria is unknown.
        """
        if criteria not in CRITERIA:
            raise ValueError(f"Unknown criteria '{criteria}'. Valid criteria: {', '.join(CRITERIA)}")
        if count <= 0:
            return []

        now = now or utcnow()
        since = now - timedelta(minutes=timespan)

        with self.store.connection() as conn:
            # criteria is validated against the column whitelist above
            rows = conn.execute(
                f"""
                SELECT * FROM articles
                WHERE published_at >= ? AND published_at <= ?
                ORDER BY {criteria} DESC, published_at DESC, id
                LIMIT ?
                """,
                (to_db(since), to_db(now), count),
            ).fetchall()

        articles = [
            Article(
                id=row["id"],
                url=row["url"],
                title=row["title"],
                published_at=from_db(row["published_at"]),
                metrics={column: row[column] for column in METRIC_COLUMNS},
            )
            for row in rows
        ]
        logger.debug(
            "Selected %d/%d articles by %s over %d minutes", len(articles), count, criteria, timespan
        )
        return articles


def parse_metrics(pairs: Iterable[str]) -> Dict[str, float]:
    """
    Parse ``name=value`` metric pairs.

    Raises:
        ValueError: On an unknown metric name or a non-numeric value.
    """
    metrics = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        name = name.strip()
        if not sep or name not in METRIC_COLUMNS:
            raise ValueError(
                f"Invalid metric '{pair}'. Use NAME=VALUE with NAME one of: {', '.join(METRIC_COLUMNS)}"
            )
        try:
            metrics[name] = float(value)
        except ValueError as e:
            raise ValueError(f"Metric '{name}' needs a number, got '{value}'") from e
    return metrics


def parse_published_at(value: str) -> datetime:
    """Parse a publication date; naive values are UTC."""
    try:
        return as_utc(date_parser.parse(value))
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Invalid publication date '{value}'") from e


def read_articles_csv(handle: TextIO) -> List[Article]:
    """
    Read articles from CSV with a header row.

    ``url`` and ``published_at`` are required; ``title`` and any metric
    column are optional. Empty metric cells count as 0.

    Raises:
        ValueError: If a required column is missing or a row is invalid.
    """
    reader = csv.DictReader(handle)
    missing = {"url", "published_at"} - set(reader.fieldnames or [])
    if missing:
        raise ValueError(f"CSV is missing column(s): {', '.join(sorted(missing))}")

    articles = []
    # header is line 1
    for line, row in enumerate(reader, start=2):
        url = (row.get("url") or "").strip()
        if not url:
            raise ValueError(f"Line {line}: url is empty")
        try:
            metrics = parse_metrics(
                f"{column}={row[column]}" for column in METRIC_COLUMNS if (row.get(column) or "").strip()
            )
            published_at = parse_published_at((row.get("published_at") or "").strip())
        except ValueError as e:
            raise ValueError(f"Line {line}: {e}") from e
        articles.append(Article(
            url=url,
            title=(row.get("title") or "").strip() or None,
            published_at=published_at,
            metrics=metrics,
        ))
    logger.debug("Read %d articles from CSV", len(articles))
    return articles
