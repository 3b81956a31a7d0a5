"""Shared test fixtures for the Newsletter Scheduler test suite."""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from nlsched.config import Config
from nlsched.database import NewsletterStore
from nlsched.models import Newsletter


def utc(*args) -> datetime:
    """Shorthand for an aware UTC datetime."""
    return datetime(*args, tzinfo=timezone.utc)


class FakeMailer:
    """Records Mailer calls and returns canned responses."""

    def __init__(self, output=None, fail_for=None):
        self.output = output if output is not None else {
            "htmlContent": "<p>Hello</p>",
            "textContent": "Hello",
        }
        self.fail_for = fail_for or {}
        self.generated = []
        self.templates = []
        self.jobs = []

    def generate_email(self, generator_id, params):
        self.generated.append((generator_id, params))
        error = self.fail_for.get(generator_id)
        if error:
            raise error
        return dict(self.output)

    def create_template(self, name, layout_code, description, from_address, subject,
                        text_content, html_content, mail_type_code):
        self.templates.append({
            "name": name,
            "layout_code": layout_code,
            "description": description,
            "from": from_address,
            "subject": subject,
            "text": text_content,
            "html": html_content,
            "mail_type_code": mail_type_code,
        })
        return 100 + len(self.templates)

    def create_job(self, segment_code, segment_provider, template_id):
        self.jobs.append((segment_code, segment_provider, template_id))
        return 200 + len(self.jobs)


class FakeUrlMeta:
    """Metadata fetcher returning a fixed title."""

    def __init__(self, title="Fetched Title"):
        self.title = title
        self.requested = []

    def fetch_url_meta(self, url):
        self.requested.append(url)
        return SimpleNamespace(title=self.title)


class FakeEmbedParser:
    """Embed resolver returning a marker element."""

    def __init__(self):
        self.requested = []

    def parse(self, url):
        self.requested.append(url)
        return f'<div class="embed">{url}</div>'


@pytest.fixture
def fresh_config(tmp_path, monkeypatch):
    """Create a Config instance with reset singleton state pointed at a temp directory."""
    Config._instance = None
    monkeypatch.setenv("NLSCHED_BASE_DIR", str(tmp_path))
    monkeypatch.delenv("MAILER_API_TOKEN", raising=False)
    monkeypatch.delenv("MAILER_BASE_URL", raising=False)
    monkeypatch.delenv("NLSCHED_DATABASE", raising=False)
    cfg = Config()
    yield cfg
    Config._instance = None


@pytest.fixture
def tmp_store(tmp_path):
    """Create a NewsletterStore using a temp-dir SQLite file."""
    return NewsletterStore(db_path=tmp_path / "test.db")


@pytest.fixture
def make_newsletter():
    """Factory for newsletters with sensible delivery defaults."""

    def _make(**overrides) -> Newsletter:
        values = {
            "name": "Morning Briefing",
            "starts_at": utc(2024, 1, 1, 8, 0),
            "mailer_generator_id": 7,
            "segment_code": "all_users",
            "mail_type_code": "briefing",
            "email_from": "Newsroom <news@example.com>",
            "email_subject": "Your morning briefing",
        }
        values.update(overrides)
        return Newsletter(**values)

    return _make


@pytest.fixture
def fake_mailer():
    return FakeMailer()


@pytest.fixture
def fake_url_meta():
    return FakeUrlMeta()


@pytest.fixture
def fake_embed_parser():
    return FakeEmbedParser()


@pytest.fixture
def make_mailer():
    """Factory for fake mailers with custom output or failures."""
    return FakeMailer
