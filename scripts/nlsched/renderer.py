"""
Newsletter content rendering.

Curated newsletters pass the selected article URLs to the Mailer generator;
personalized newsletters pass only a dynamic-content directive and the article
count, leaving the per-recipient selection to the Mailer at send time.
"""

import logging
from typing import Any, Dict, Optional, Sequence

from .exceptions import MissingRenderOutput
from .models import Article, Newsletter, RenderedEmail
from .rules import RuleSource, TransformRuleSet

logger = logging.getLogger(__name__)


class ContentRenderer:
    """Turns a due newsletter into HTML and plain-text bodies."""

    def __init__(self, mailer, rule_set: Optional[TransformRuleSet] = None) -> None:
        """
        Initialize the renderer.

        Args:
            mailer: Object providing ``generate_email(generator_id, params)``.
            rule_set: Rules used for inline markup conversion.
        """
        self.mailer = mailer
        self.rule_set = rule_set or TransformRuleSet()

    def generator_params(
        self, newsletter: Newsletter, articles: Sequence[Article]
    ) -> Dict[str, Any]:
        """Build the generator parameters for a newsletter."""
        if newsletter.personalized_content:
            return {"dynamic": True, "articles_count": newsletter.articles_count}
        return {"articles": "\n".join(article.url for article in articles)}

    def render(self, newsletter: Newsletter, articles: Sequence[Article]) -> RenderedEmail:
        """
        Generate the email bodies for a newsletter.

        Raises:
            MissingRenderOutput: If the generator omits the HTML or text body.
        """
        params = self.generator_params(newsletter, articles)
        output = self.mailer.generate_email(newsletter.mailer_generator_id, params) or {}

        html_content = output.get("htmlContent")
        text_content = output.get("textContent")
        missing = [
            name
            for name, value in (("htmlContent", html_content), ("textContent", text_content))
            if value is None
        ]
        if missing:
            raise MissingRenderOutput(
                f"Generator {newsletter.mailer_generator_id} returned no {', '.join(missing)}"
            )

        logger.debug(
            "Rendered newsletter %s (%d html chars, %d text chars)",
            newsletter.name,
            len(html_content),
            len(text_content),
        )
        return RenderedEmail(html_content=html_content, text_content=text_content)

    def transform(self, markup: str, generator_rules: Optional[RuleSource] = None) -> str:
        """Convert raw editorial markup into email HTML."""
        return self.rule_set.apply(markup, generator_rules)
