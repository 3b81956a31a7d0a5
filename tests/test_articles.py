"""Tests for curated article selection."""

import io
from datetime import datetime, timedelta, timezone

import pytest
from nlsched.articles import CRITERIA, ArticleSelector, parse_metrics, read_articles_csv
from nlsched.models import Article

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def populated_store(tmp_store):
    """Store with a handful of articles around NOW."""
    articles = [
        ("https://news.example.com/popular", 30, {"pageviews_all": 5000, "conversions": 1}),
        ("https://news.example.com/converting", 60, {"pageviews_all": 800, "conversions": 12}),
        ("https://news.example.com/quiet", 90, {"pageviews_all": 20}),
        ("https://news.example.com/stale", 60 * 48, {"pageviews_all": 90000, "conversions": 99}),
        ("https://news.example.com/future", -30, {"pageviews_all": 70000}),
    ]
    for url, minutes_ago, metrics in articles:
        tmp_store.add_article(Article(
            url=url,
            title=url.rsplit("/", 1)[-1].title(),
            published_at=NOW - timedelta(minutes=minutes_ago),
            metrics=metrics,
        ))
    return tmp_store


@pytest.fixture
def selector(populated_store):
    return ArticleSelector(populated_store)


class TestSelectArticles:
    def test_ranked_by_criteria(self, selector):
        result = selector.select_articles("pageviews_all", 1440, 5, NOW)
        assert [a.url.rsplit("/", 1)[-1] for a in result] == ["popular", "converting", "quiet"]

    def test_other_criteria(self, selector):
        result = selector.select_articles("conversions", 1440, 1, NOW)
        assert result[0].url == "https://news.example.com/converting"
        assert result[0].metrics["conversions"] == 12

    def test_count_limits_results(self, selector):
        assert len(selector.select_articles("pageviews_all", 1440, 2, NOW)) == 2

    def test_timespan_limits_window(self, selector):
        result = selector.select_articles("pageviews_all", 45, 5, NOW)
        assert [a.title for a in result] == ["Popular"]

    def test_zero_count(self, selector):
        assert selector.select_articles("pageviews_all", 1440, 0, NOW) == []

    def test_unknown_criteria(self, selector):
        with pytest.raises(ValueError, match="Unknown criteria"):
            selector.select_articles("pageviews_all; DROP TABLE articles", 1440, 5, NOW)

    def test_published_at_is_aware(self, selector):
        result = selector.select_articles("pageviews_all", 1440, 1, NOW)
        assert result[0].published_at == NOW - timedelta(minutes=30)

    def test_criteria_list(self):
        assert "pageviews_all" in CRITERIA
        assert "average_payment" in CRITERIA


class TestParseMetrics:
    def test_pairs(self):
        assert parse_metrics(["pageviews_all=900", "conversions=2.5"]) == {
            "pageviews_all": 900.0,
            "conversions": 2.5,
        }

    def test_unknown_metric(self):
        with pytest.raises(ValueError, match="Invalid metric"):
            parse_metrics(["likes=3"])

    def test_missing_value(self):
        with pytest.raises(ValueError, match="Invalid metric"):
            parse_metrics(["pageviews_all"])

    def test_non_numeric(self):
        with pytest.raises(ValueError, match="needs a number"):
            parse_metrics(["pageviews_all=lots"])


class TestReadArticlesCsv:
    def test_reads_rows(self):
        data = io.StringIO(
            "url,title,published_at,pageviews_all,conversions\n"
            "https://news.example.com/a,Story A,2024-05-10 11:00,900,\n"
            "https://news.example.com/b,,2024-05-10T10:00:00+02:00,100,3\n"
        )

        articles = read_articles_csv(data)

        assert [a.url for a in articles] == ["https://news.example.com/a", "https://news.example.com/b"]
        assert articles[0].title == "Story A"
        assert articles[0].metrics == {"pageviews_all": 900.0}
        assert articles[0].published_at == datetime(2024, 5, 10, 11, 0, tzinfo=timezone.utc)
        assert articles[1].title is None
        assert articles[1].published_at == datetime(2024, 5, 10, 8, 0, tzinfo=timezone.utc)
        assert articles[1].metrics == {"pageviews_all": 100.0, "conversions": 3.0}

    def test_missing_columns(self):
        with pytest.raises(ValueError, match="missing column"):
            read_articles_csv(io.StringIO("url,title\nhttps://news.example.com/a,A\n"))

    def test_bad_row_reports_line(self):
        data = io.StringIO(
            "url,published_at,pageviews_all\n"
            "https://news.example.com/a,2024-05-10,10\n"
            "https://news.example.com/b,someday,10\n"
        )
        with pytest.raises(ValueError, match="Line 3"):
            read_articles_csv(data)

    def test_imported_articles_are_selectable(self, tmp_store):
        data = io.StringIO(
            "url,published_at,pageviews_all\n"
            "https://news.example.com/low,2024-05-10 11:00,10\n"
            "https://news.example.com/high,2024-05-10 11:30,99\n"
        )
        for article in read_articles_csv(data):
            tmp_store.add_article(article)

        result = ArticleSelector(tmp_store).select_articles("pageviews_all", 60, 5, NOW)

        assert [a.url for a in result] == ["https://news.example.com/high", "https://news.example.com/low"]
