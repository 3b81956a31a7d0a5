"""
Rule-based transformation of editorial markup into email-safe HTML.

A rule pairs a regular expression with a replacement of one of three kinds:

- literal: fixed text substituted for every match,
- templated: text with ``\\1`` / ``\\g<name>`` back-references expanded from the match,
- computed: a callable receiving the match and returning the replacement.

Rules are applied one after another, each to the output of the previous one,
so their order is part of the contract: shortcode and script stripping and
paragraph unwrapping first, then inline restyling (emphasis, captions, links,
headings, lists), then anchor clean-up, then container shortcodes.

Generator-specific rules override general ones by pattern key. The merged set
keeps generator rules first and adds general rules only for keys not already
present; an overridden general rule is dropped entirely.
"""

import html
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from functools import lru_cache
from re import Match, Pattern
from typing import Any, Callable, Iterable, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

LITERAL = "literal"
TEMPLATED = "templated"
COMPUTED = "computed"

DEFAULT_FLAGS = re.IGNORECASE | re.DOTALL
# Caption templates and bare-URL embeds are matched line by line
LINE_FLAGS = re.IGNORECASE | re.MULTILINE

LINK_STYLE = "padding:0;margin:0;line-height:1.3;color:{color};text-decoration:underline;"

Replacement = Union[str, Callable[[Match], str]]


@lru_cache(maxsize=256)
def _compile(pattern: str, flags: int) -> Pattern:
    return re.compile(pattern, flags)


@dataclass(frozen=True)
class Rule:
    """A single pattern -> replacement rule."""

    pattern: str
    kind: str
    replacement: Replacement
    flags: int = DEFAULT_FLAGS

    def __post_init__(self):
        if self.kind not in (LITERAL, TEMPLATED, COMPUTED):
            raise ValueError(f"Unknown rule kind: {self.kind}")
        if self.kind == COMPUTED and not callable(self.replacement):
            raise TypeError("Computed rules need a callable replacement")
        if self.kind != COMPUTED and not isinstance(self.replacement, str):
            raise TypeError(f"{self.kind.capitalize()} rules need a string replacement")

    @classmethod
    def literal(cls, pattern: str, text: str, flags: int = DEFAULT_FLAGS) -> "Rule":
        return cls(pattern, LITERAL, text, flags)

    @classmethod
    def templated(cls, pattern: str, template: str, flags: int = DEFAULT_FLAGS) -> "Rule":
        return cls(pattern, TEMPLATED, template, flags)

    @classmethod
    def computed(
        cls, pattern: str, func: Callable[[Match], str], flags: int = DEFAULT_FLAGS
    ) -> "Rule":
        return cls(pattern, COMPUTED, func, flags)

    @property
    def key(self) -> str:
        return self.pattern

    @property
    def regex(self) -> Pattern:
        return _compile(self.pattern, self.flags)

    def apply(self, text: str) -> str:
        """Replace every match of this rule in ``text``."""
        if self.kind == LITERAL:
            return self.regex.sub(lambda m: self.replacement, text)
        if self.kind == TEMPLATED:
            return self.regex.sub(lambda m: m.expand(self.replacement), text)
        return self.regex.sub(lambda m: str(self.replacement(m)), text)


RuleSource = Union[Mapping[str, Any], Iterable[Rule]]


def as_rule(pattern: str, value: Any) -> Rule:
    """
    Coerce a mapping entry into a Rule.

    Strings become templated rules and callables become computed rules.
    A Rule is used as-is.
    """
    if isinstance(value, Rule):
        return value
    if callable(value):
        return Rule.computed(pattern, value)
    if isinstance(value, str):
        return Rule.templated(pattern, value)
    raise TypeError(f"Unsupported replacement for {pattern!r}: {type(value).__name__}")


def _iter_rules(source: Optional[RuleSource]) -> Iterable[Tuple[str, Rule]]:
    if not source:
        return
    if isinstance(source, Mapping):
        for pattern, value in source.items():
            rule = as_rule(pattern, value)
            yield rule.key, rule
    else:
        for rule in source:
            yield rule.key, rule


def merge_rules(
    generator_rules: Optional[RuleSource], general_rules: RuleSource
) -> "OrderedDict[str, Rule]":
    """
    Build the effective rule set: generator rules, then general rules.

    The first rule seen for a pattern key wins, so a generator rule replaces
    the general rule with the same key outright.
    """
    merged: "OrderedDict[str, Rule]" = OrderedDict()
    for source in (generator_rules, general_rules):
        for key, rule in _iter_rules(source):
            if key not in merged:
                merged[key] = rule
            else:
                logger.debug("Rule %r overridden by generator rule", key)
    return merged


def apply_rules(rules: RuleSource, text: str) -> str:
    """Run ``text`` through every rule in order, each on the previous output."""
    for _, rule in _iter_rules(rules):
        text = rule.apply(text)
    return text


@dataclass(frozen=True)
class EmailTemplates:
    """Templated replacements for block elements. Groups are documented per field."""

    # 1 = image src, 2 = caption text
    caption: str = (
        r'<img src="\g<1>" alt="" style="outline:none;text-decoration:none;'
        r'-ms-interpolation-mode:bicubic;width:auto;max-width:100%;clear:both;display:block;'
        r'margin-bottom:10px;">'
        r'<p style="margin:0 0 26px 0;color:#888888;padding:0;font-size:14px;line-height:150%;'
        r'text-align:left;">\g<2></p>'
    )
    # 1 = link href, 2 = image src, 3 = caption text
    caption_with_link: str = (
        r'<a href="\g<1>" style="display:block;">'
        r'<img src="\g<2>" alt="" style="outline:none;text-decoration:none;'
        r'-ms-interpolation-mode:bicubic;width:auto;max-width:100%;clear:both;display:block;'
        r'margin-bottom:10px;border:none;"></a>'
        r'<p style="margin:0 0 26px 0;color:#888888;padding:0;font-size:14px;line-height:150%;'
        r'text-align:left;">\g<3></p>'
    )
    # 1 = item content
    li: str = (
        r'<tr><td style="padding:0 10px 10px 0;vertical-align:top;width:20px;color:#181818;'
        r'font-size:18px;line-height:160%;">&#8226;</td>'
        r'<td style="padding:0 0 10px 0;vertical-align:top;color:#181818;font-size:18px;'
        r'line-height:160%;text-align:left;">\g<1></td></tr>'
    )
    hr: str = (
        '<table style="border-spacing:0;border-collapse:collapse;vertical-align:top;'
        'padding:0;width:100%;"><tbody><tr>'
        '<td style="padding:0;margin:0;border-top:1px solid #e2e2e2;height:26px;'
        'line-height:26px;font-size:1px;">&nbsp;</td></tr></tbody></table>'
    )
    # 1 = image src
    image: str = (
        r'<img src="\g<1>" alt="" style="outline:none;text-decoration:none;'
        r'-ms-interpolation-mode:bicubic;width:auto;max-width:100%;clear:both;display:block;'
        r'margin-bottom:20px;">'
    )


@dataclass
class RuleContext:
    """
    Capabilities and settings the general rules depend on.

    ``url_meta`` must provide ``fetch_url_meta(url)`` returning an object with a
    ``title``; ``embed_parser`` must provide ``parse(url)`` returning markup.
    Without a metadata fetcher, article links use the URL as their text; without
    an embed parser, bare URL lines are left unchanged.
    """

    links_color: str = "#1F3F83"
    article_base_url: str = "https://dennikn.sk/"
    url_meta: Any = None
    embed_parser: Any = None
    templates: EmailTemplates = field(default_factory=EmailTemplates)


def link_anchor(url: str, text: str, color: str) -> str:
    """Render an email-styled anchor."""
    return (
        f'<a href="{html.escape(url)}" style="{LINK_STYLE.format(color=color)}">{text}</a>'
    )


def _collapse_newlines(match: Match) -> str:
    return match.group(0).replace("\n\r", "").replace("\n", "").replace("\r", "")


def _strip_anchor_breaks(match: Match) -> str:
    return match.group(0).replace("<br />", "")


def _article_link(context: RuleContext) -> Callable[[Match], str]:
    def replace(match: Match) -> str:
        url = f"{context.article_base_url.rstrip('/')}/{match.group(1)}"
        title = url
        if context.url_meta is not None:
            meta = context.url_meta.fetch_url_meta(url)
            title = html.escape(meta.title or url, quote=False)
        return link_anchor(url, title, context.links_color)

    return replace


def _embed(context: RuleContext) -> Callable[[Match], str]:
    def replace(match: Match) -> str:
        if context.embed_parser is None:
            return match.group(0)
        return context.embed_parser.parse(match.group(0).strip())

    return replace


TABLE_OPEN = (
    "<table style=\"border-spacing:0;border-collapse:collapse;vertical-align:top;color:#181818;"
    "padding:0;margin:0;line-height:1.3;text-align:left;font-family:'Helvetica Neue', Helvetica, "
    "Arial;width:100%;{extra}\"><tbody>"
)


def default_rules(context: Optional[RuleContext] = None) -> "OrderedDict[str, Rule]":
    """Build the general rule set, in application order."""
    context = context or RuleContext()
    templates = context.templates
    link_style = LINK_STYLE.format(color=context.links_color)

    rules = [
        # remove shortcodes
        Rule.literal(r"\[pullboth.*?\/pullboth\]", ""),
        Rule.literal(r"<script.*?\/script>", ""),
        Rule.literal(r"\[iframe.*?\]", ""),
        Rule.literal(r"\[\/?lock\]", ""),
        Rule.literal(r"\[lock newsletter\]", ""),
        Rule.literal(r"\[lock\]", ""),
        Rule.literal(r"\[lock e\]", ""),
        # remove block-editor wrappers
        Rule.literal(r'<div.*?class=".*?">', ""),
        Rule.literal(r"<\/div>", ""),
        # remove iframes
        Rule.literal(r"<iframe.*?\/iframe>", ""),
        # unwrap paragraphs
        Rule.templated(r"<p.*?>(.*?)<\/p>", r"\g<1>"),
        # emphasis
        Rule.templated(
            r"<em.*?>(.*?)<\/em>",
            r'<i style="margin:0 0 26px 0;color:#181818;padding:0;font-size:18px;'
            r"line-height:160%;text-align:left;font-weight:normal;word-wrap:break-word;"
            r"-webkit-hyphens:auto;-moz-hyphens:auto;hyphens:auto;"
            r'border-collapse:collapse !important;">\g<1></i><br>',
        ),
        # captions must sit on one line before the caption templates run
        Rule.computed(r"\[caption.*?\/caption\]", _collapse_newlines),
        Rule.templated(
            r'\[caption.*?\].*?href="(.*?)".*?src="(.*?)".*?\/a>(.*?)\[\/caption\]',
            templates.caption_with_link,
            LINE_FLAGS,
        ),
        Rule.templated(
            r'\[caption.*?\].*?src="(.*?)".*?\/>(.*?)\[\/caption\]',
            templates.caption,
            LINE_FLAGS,
        ),
        # article link shortcodes
        Rule.computed(r'\[articlelink.*?id="?(\d+)"?.*?\]', _article_link(context)),
        # links
        Rule.templated(
            r'<a.*?href="(.*?)".*?>(.*?)<\/a>',
            r'<a href="\g<1>" style="' + link_style + r'">\g<2></a>',
        ),
        # headings
        Rule.templated(
            r"<h2.*?>(.*?)<\/h2>",
            r'<h2 style="color:#181818;padding:0;line-height:1.3;font-weight:bold;'
            r'text-align:left;margin:0 0 30px 0;font-size:24px;">\g<1></h2>' + "\n",
        ),
        # images
        Rule.templated(r'<img.*?src="(.*?)".*?>', templates.image),
        # lists
        Rule.literal(r"<ul.*?>", TABLE_OPEN.format(extra="")),
        Rule.literal(r"<ol.*?>", TABLE_OPEN.format(extra=" font-weight: normal;")),
        Rule.literal(r"<\/ul>", "</tbody></table>\n"),
        Rule.literal(r"<\/ol>", "</tbody></table>\n"),
        Rule.templated(r"<li.*?>(.*?)<\/li>", templates.li),
        Rule.literal(r"(<hr>|<hr \/>)", templates.hr),
        # bare URL on its own line
        Rule.computed(
            r"^\s*(http|https)\:\/\/[a-zA-Z0-9\-\.]+\.[a-zA-Z]{2,3}(\/\S*)?\s*$",
            _embed(context),
            LINE_FLAGS,
        ),
        # no line breaks inside anchors
        Rule.computed(r"<a.*?\/a>", _strip_anchor_breaks),
        # container shortcodes
        Rule.templated(
            r"\[greybox\](.*?)\[\/greybox\]",
            r'<div class="t_greybox" style="padding: 16px; background: #f6f6f6;">\g<1></div>',
        ),
        Rule.templated(
            r"\[row\](.*?)\[\/row\]",
            r'<div class="t_row gutter_8" style="display: flex; flex-wrap: wrap; '
            r'margin: 0 -8px">\g<1></div>',
        ),
        Rule.templated(
            r"\[col\](.*?)\[\/col\]",
            r'<div class="t_col large_0 small_0" style="margin: 0 8px; flex: 1">\g<1></div>',
        ),
    ]
    return OrderedDict((rule.key, rule) for rule in rules)


class TransformRuleSet:
    """The general rules bound to a context, overridable per generator."""

    def __init__(self, context: Optional[RuleContext] = None) -> None:
        self.context = context or RuleContext()

    def rules(self, generator_rules: Optional[RuleSource] = None) -> "OrderedDict[str, Rule]":
        """Effective rules with generator rules taking precedence."""
        return merge_rules(generator_rules, default_rules(self.context))

    def apply(self, text: str, generator_rules: Optional[RuleSource] = None) -> str:
        """Transform markup with the effective rule set."""
        return apply_rules(self.rules(generator_rules), text)
