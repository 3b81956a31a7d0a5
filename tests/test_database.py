"""Integration tests with temp SQLite database."""

from datetime import datetime, timedelta, timezone

import pytest
from nlsched.database import from_db, to_db
from nlsched.models import STATE_FINISHED, STATE_STARTED, Article


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestTimestamps:
    def test_naive_values_are_utc(self):
        assert to_db(datetime(2024, 3, 1, 12, 30)) == "2024-03-01 12:30:00.000000"

    def test_aware_values_are_converted(self):
        value = datetime(2024, 3, 1, 14, 30, tzinfo=timezone(timedelta(hours=2)))
        assert to_db(value) == "2024-03-01 12:30:00.000000"

    def test_parsed_values_are_aware(self):
        assert from_db("2024-03-01 12:30:00.250000") == utc(2024, 3, 1, 12, 30, 0, 250000)

    def test_none(self):
        assert to_db(None) is None
        assert from_db(None) is None


class TestAddAndGetNewsletter:
    def test_round_trip(self, tmp_store, make_newsletter):
        newsletter = make_newsletter(
            recurrence_rule="FREQ=WEEKLY;BYDAY=MO",
            personalized_content=True,
            articles_count=3,
        )
        newsletter_id = tmp_store.add_newsletter(newsletter)

        loaded = tmp_store.get_newsletter(newsletter_id)
        assert loaded == newsletter
        assert loaded.id == newsletter_id
        assert loaded.starts_at.tzinfo is not None

    def test_unknown_id(self, tmp_store):
        assert tmp_store.get_newsletter(999) is None

    def test_invalid_state_rejected(self, tmp_store, make_newsletter):
        with pytest.raises(ValueError, match="Invalid newsletter state"):
            tmp_store.add_newsletter(make_newsletter(state="paused"))


class TestListDue:
    def test_only_started_and_started_before_now(self, tmp_store, make_newsletter):
        due = tmp_store.add_newsletter(make_newsletter(name="Due"))
        tmp_store.add_newsletter(make_newsletter(name="Later", starts_at=utc(2024, 6, 1)))
        tmp_store.add_newsletter(make_newsletter(name="Done", state=STATE_FINISHED))

        result = tmp_store.list_due(utc(2024, 1, 2))
        assert [n.id for n in result] == [due]

    def test_start_equal_to_now_is_due(self, tmp_store, make_newsletter):
        tmp_store.add_newsletter(make_newsletter())
        assert len(tmp_store.list_due(utc(2024, 1, 1, 8))) == 1

    def test_ordered_by_start(self, tmp_store, make_newsletter):
        tmp_store.add_newsletter(make_newsletter(name="Second", starts_at=utc(2024, 1, 2)))
        tmp_store.add_newsletter(make_newsletter(name="First", starts_at=utc(2024, 1, 1)))
        names = [n.name for n in tmp_store.list_due(utc(2024, 2, 1))]
        assert names == ["First", "Second"]


class TestListNewsletters:
    def test_filter_by_state(self, tmp_store, make_newsletter):
        tmp_store.add_newsletter(make_newsletter(name="Active"))
        tmp_store.add_newsletter(make_newsletter(name="Done", state=STATE_FINISHED))

        assert [n.name for n in tmp_store.list_newsletters(state=STATE_STARTED)] == ["Active"]
        assert [n.name for n in tmp_store.list_newsletters(state=STATE_FINISHED)] == ["Done"]
        assert len(tmp_store.list_newsletters()) == 2


class TestSave:
    def test_updates_sending_state(self, tmp_store, make_newsletter):
        newsletter = make_newsletter(recurrence_rule="FREQ=DAILY")
        tmp_store.add_newsletter(newsletter)

        newsletter.last_sent_at = utc(2024, 1, 3, 8)
        newsletter.finish()
        tmp_store.save(newsletter)

        loaded = tmp_store.get_newsletter(newsletter.id)
        assert loaded.state == STATE_FINISHED
        assert loaded.last_sent_at == utc(2024, 1, 3, 8)

    def test_only_sending_state_is_written(self, tmp_store, make_newsletter):
        newsletter = make_newsletter()
        tmp_store.add_newsletter(newsletter)

        newsletter.email_subject = "Changed in memory"
        tmp_store.save(newsletter)

        assert tmp_store.get_newsletter(newsletter.id).email_subject == "Your morning briefing"

    def test_requires_id(self, tmp_store, make_newsletter):
        with pytest.raises(ValueError, match="without an ID"):
            tmp_store.save(make_newsletter())

    def test_unknown_newsletter(self, tmp_store, make_newsletter):
        with pytest.raises(ValueError, match="does not exist"):
            tmp_store.save(make_newsletter(id=42))

    def test_invalid_state(self, tmp_store, make_newsletter):
        newsletter = make_newsletter()
        tmp_store.add_newsletter(newsletter)
        newsletter.state = "paused"
        with pytest.raises(ValueError, match="Invalid newsletter state"):
            tmp_store.save(newsletter)

    def test_finished_cannot_be_restarted(self, tmp_store, make_newsletter):
        newsletter = make_newsletter(state=STATE_FINISHED)
        tmp_store.add_newsletter(newsletter)
        newsletter.state = STATE_STARTED
        with pytest.raises(ValueError, match="cannot be restarted"):
            tmp_store.save(newsletter)
        assert tmp_store.get_newsletter(newsletter.id).state == STATE_FINISHED


class TestArticles:
    def test_upsert_by_url(self, tmp_store):
        first = tmp_store.add_article(Article(
            url="https://news.example.com/a", title="A", metrics={"pageviews_all": 10}
        ))
        second = tmp_store.add_article(Article(
            url="https://news.example.com/a", title="A (updated)", metrics={"pageviews_all": 50}
        ))

        assert first == second
        assert tmp_store.get_stats()["articles"] == 1


class TestGetStats:
    def test_counts(self, tmp_store, make_newsletter):
        tmp_store.add_newsletter(make_newsletter())
        tmp_store.add_newsletter(make_newsletter(state=STATE_FINISHED))
        tmp_store.add_article(Article(url="https://news.example.com/a"))

        assert tmp_store.get_stats() == {"started": 1, "finished": 1, "articles": 1}


class TestConcurrentSave:
    def test_finish_from_another_store_is_not_undone(self, tmp_store, make_newsletter):
        from nlsched.database import NewsletterStore

        tmp_store.add_newsletter(make_newsletter(recurrence_rule="FREQ=DAILY"))
        stale = tmp_store.get_newsletter(1)

        other = NewsletterStore(db_path=tmp_store.db_path)
        finished = other.get_newsletter(1)
        finished.finish()
        other.save(finished)

        stale.last_sent_at = utc(2024, 1, 2, 8)
        with pytest.raises(ValueError, match="cannot be restarted"):
            tmp_store.save(stale)

        saved = tmp_store.get_newsletter(1)
        assert saved.state == STATE_FINISHED
        assert saved.last_sent_at is None

    def test_finished_can_be_saved_again(self, tmp_store, make_newsletter):
        newsletter = make_newsletter(state=STATE_FINISHED)
        tmp_store.add_newsletter(newsletter)
        newsletter.last_sent_at = utc(2024, 1, 1, 8)

        tmp_store.save(newsletter)

        assert tmp_store.get_newsletter(newsletter.id).last_sent_at == utc(2024, 1, 1, 8)
