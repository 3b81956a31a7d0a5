"""Tests for newsletter content rendering."""

import pytest
from nlsched.exceptions import MailerError, MissingRenderOutput
from nlsched.models import Article
from nlsched.renderer import ContentRenderer


@pytest.fixture
def articles():
    return [
        Article(url="https://news.example.com/a"),
        Article(url="https://news.example.com/b"),
    ]


class TestGeneratorParams:
    def test_curated_passes_article_urls(self, fake_mailer, make_newsletter, articles):
        renderer = ContentRenderer(fake_mailer)
        params = renderer.generator_params(make_newsletter(), articles)
        assert params == {"articles": "https://news.example.com/a\nhttps://news.example.com/b"}

    def test_personalized_passes_dynamic_directive(self, fake_mailer, make_newsletter):
        renderer = ContentRenderer(fake_mailer)
        newsletter = make_newsletter(personalized_content=True, articles_count=3)
        assert renderer.generator_params(newsletter, []) == {"dynamic": True, "articles_count": 3}

    def test_curated_without_articles(self, fake_mailer, make_newsletter):
        renderer = ContentRenderer(fake_mailer)
        assert renderer.generator_params(make_newsletter(), []) == {"articles": ""}


class TestRender:
    def test_returns_both_bodies(self, fake_mailer, make_newsletter, articles):
        email = ContentRenderer(fake_mailer).render(make_newsletter(), articles)
        assert email.html_content == "<p>Hello</p>"
        assert email.text_content == "Hello"
        assert fake_mailer.generated == [
            (7, {"articles": "https://news.example.com/a\nhttps://news.example.com/b"})
        ]

    def test_empty_bodies_are_accepted(self, make_mailer, make_newsletter):
        mailer = make_mailer(output={"htmlContent": "", "textContent": ""})
        email = ContentRenderer(mailer).render(make_newsletter(), [])
        assert email.html_content == ""
        assert email.text_content == ""

    @pytest.mark.parametrize(
        "output, missing",
        [
            ({"textContent": "Hello"}, "htmlContent"),
            ({"htmlContent": "<p>Hello</p>"}, "textContent"),
            ({"htmlContent": None, "textContent": None}, "htmlContent, textContent"),
        ],
    )
    def test_missing_body_raises(self, make_mailer, make_newsletter, output, missing):
        renderer = ContentRenderer(make_mailer(output=output))
        with pytest.raises(MissingRenderOutput) as exc_info:
            renderer.render(make_newsletter(), [])
        assert missing in str(exc_info.value)
        assert isinstance(exc_info.value, MailerError)

    def test_generator_errors_propagate(self, make_mailer, make_newsletter):
        mailer = make_mailer(fail_for={7: MailerError("boom", status_code=500)})
        with pytest.raises(MailerError, match="boom"):
            ContentRenderer(mailer).render(make_newsletter(), [])


class TestTransform:
    def test_uses_rule_set(self, fake_mailer):
        renderer = ContentRenderer(fake_mailer)
        assert renderer.transform("<p>Hi</p>") == "Hi"

    def test_generator_rules_override(self, fake_mailer):
        renderer = ContentRenderer(fake_mailer)
        result = renderer.transform("<p>Hi</p>", {r"<p.*?>(.*?)<\/p>": r"<span>\1</span>"})
        assert result == "<span>Hi</span>"
