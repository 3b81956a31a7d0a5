"""Shared service accessors for newsletter components.

Provides a single place to build configured collaborators so that the CLI and
the daemon wire the scheduler the same way.
"""

from .config import config


def get_store():
    """Return the newsletter store for the configured database."""
    from .database import NewsletterStore

    return NewsletterStore(config.database_path)


def get_mailer():
    """Return a Mailer API client."""
    from .mailer import MailerClient

    return MailerClient(
        base_url=config.get("mailer.base_url"),
        api_token=config.get("mailer.api_token"),
        timeout=config.get("mailer.timeout", 30),
    )


def get_rule_set():
    """Return the transformation rule set with live lookups."""
    from .lookups import EmbedParser, UrlMetaFetcher
    from .rules import RuleContext, TransformRuleSet

    links_color = config.get("content.links_color", "#1F3F83")
    timeout = config.get("content.request_timeout", 15)
    context = RuleContext(
        links_color=links_color,
        article_base_url=config.get("content.article_base_url"),
        url_meta=UrlMetaFetcher(timeout=timeout),
        embed_parser=EmbedParser(links_color=links_color, timeout=timeout),
    )
    return TransformRuleSet(context)


def get_renderer(mailer=None):
    """Return a content renderer."""
    from .renderer import ContentRenderer

    return ContentRenderer(mailer or get_mailer(), get_rule_set())


def get_newsletter_scheduler(store=None, mailer=None, clock=None):
    """Return a fully wired NewsletterScheduler."""
    from .articles import ArticleSelector
    from .models import utcnow
    from .sender import NewsletterScheduler

    store = store or get_store()
    mailer = mailer or get_mailer()
    return NewsletterScheduler(
        store=store,
        selector=ArticleSelector(store),
        renderer=get_renderer(mailer),
        mailer=mailer,
        clock=clock or utcnow,
        layout_code=config.get("mailer.layout_code", "beam_newsletter"),
        template_description=config.get("mailer.template_description", "Newsletter generated by Beam"),
        max_workers=config.get("scheduler.max_workers", 1),
    )
