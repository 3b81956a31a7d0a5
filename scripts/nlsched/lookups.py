"""
External lookups used by computed transformation rules.

UrlMetaFetcher reads page metadata (Open Graph, then <title>) for article
links; EmbedParser turns a bare media URL into embeddable email markup via
oEmbed where the provider supports it.
"""

import html
import logging
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import parse_qs, urlparse

import requests
from bs4 import BeautifulSoup

from .exceptions import LookupFailed

logger = logging.getLogger(__name__)

# Request settings
REQUEST_TIMEOUT = 15
USER_AGENT = "Mozilla/5.0 (compatible; NewsletterScheduler/1.0)"

# oEmbed endpoints by domain
OEMBED_ENDPOINTS: Dict[str, str] = {
    "youtube.com": "https://www.youtube.com/oembed",
    "youtu.be": "https://www.youtube.com/oembed",
    "vimeo.com": "https://vimeo.com/api/oembed.json",
    "twitter.com": "https://publish.twitter.com/oembed",
    "x.com": "https://publish.twitter.com/oembed",
    "open.spotify.com": "https://open.spotify.com/oembed",
}


@dataclass
class UrlMeta:
    """Metadata scraped from a page."""

    url: str
    title: str
    description: Optional[str] = None
    image: Optional[str] = None


def _get_domain(url: str) -> str:
    domain = urlparse(url).netloc.lower()
    if domain.startswith("www."):
        domain = domain[4:]
    return domain


class UrlMetaFetcher:
    """Fetches title metadata for article URLs."""

    def __init__(self, timeout: int = REQUEST_TIMEOUT, session: Optional[requests.Session] = None) -> None:
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        })

    def fetch_url_meta(self, url: str) -> UrlMeta:
        """
        Fetch a page and read its metadata.

        Args:
            url: Page URL.

        Returns:
            UrlMeta; the title falls back to the URL when the page has none.

        Raises:
            LookupFailed: If the page cannot be fetched.
        """
        try:
            response = self.session.get(url, timeout=self.timeout, allow_redirects=True)
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise LookupFailed(f"Timeout fetching {url}") from e
        except requests.exceptions.HTTPError as e:
            raise LookupFailed(f"HTTP error {e.response.status_code} for {url}") from e
        except requests.exceptions.RequestException as e:
            raise LookupFailed(f"Request failed for {url}: {e}") from e

        return self.parse_meta(url, response.text)

    @staticmethod
    def parse_meta(url: str, page: str) -> UrlMeta:
        """Extract metadata from page HTML."""
        soup = BeautifulSoup(page, "html.parser")

        def og(prop: str) -> Optional[str]:
            tag = soup.find("meta", attrs={"property": f"og:{prop}"})
            if tag and tag.get("content"):
                return tag["content"].strip()
            return None

        title = og("title")
        if not title and soup.title and soup.title.string:
            title = soup.title.string.strip()

        description = og("description")
        if not description:
            tag = soup.find("meta", attrs={"name": "description"})
            if tag and tag.get("content"):
                description = tag["content"].strip()

        return UrlMeta(url=url, title=title or url, description=description, image=og("image"))


class EmbedParser:
    """Resolves bare media URLs into embed markup for emails."""

    def __init__(
        self,
        links_color: str = "#1F3F83",
        timeout: int = REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.links_color = links_color
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    def _endpoint(self, url: str) -> Optional[str]:
        domain = _get_domain(url)
        for known, endpoint in OEMBED_ENDPOINTS.items():
            if domain == known or domain.endswith("." + known):
                return endpoint
        return None

    def fetch_oembed(self, url: str) -> Optional[dict]:
        """
        Fetch oEmbed data for a URL.

        Returns:
            The oEmbed payload, or None when the provider is unknown.

        Raises:
            LookupFailed: If a known provider fails to answer.
        """
        endpoint = self._endpoint(url)
        if not endpoint:
            return None

        try:
            response = self.session.get(
                endpoint, params={"url": url, "format": "json"}, timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            raise LookupFailed(f"oEmbed lookup failed for {url}: {e}") from e
        except ValueError as e:
            raise LookupFailed(f"oEmbed response for {url} is not JSON") from e

    def parse(self, url: str) -> str:
        """
        Return email-safe markup for a media URL.

        Unknown providers get a plain link. A known provider that fails to
        answer raises LookupFailed.
        """
        url = url.strip()
        data = self.fetch_oembed(url)
        if not data:
            logger.debug("No oEmbed provider for %s", url)
            return self._link(url, url)

        thumbnail = data.get("thumbnail_url")
        title = data.get("title") or data.get("author_name") or url
        if thumbnail:
            return self._thumbnail(self._canonical(url), thumbnail, title)
        return self._link(url, title)

    def _canonical(self, url: str) -> str:
        """Normalize short YouTube links to watch URLs."""
        parsed = urlparse(url)
        if _get_domain(url) == "youtu.be":
            return f"https://www.youtube.com/watch?v={parsed.path.lstrip('/')}"
        if _get_domain(url) == "youtube.com" and "v" in parse_qs(parsed.query):
            return f"https://www.youtube.com/watch?v={parse_qs(parsed.query)['v'][0]}"
        return url

    def _link(self, url: str, text: str) -> str:
        return (
            f'<a href="{html.escape(url)}" style="padding:0;margin:0;line-height:1.3;'
            f'color:{self.links_color};text-decoration:underline;">{html.escape(text)}</a>'
        )

    def _thumbnail(self, url: str, thumbnail: str, title: str) -> str:
        return (
            f'<a href="{html.escape(url)}" style="display:block;margin:0 0 26px 0;">'
            f'<img src="{html.escape(thumbnail)}" alt="{html.escape(title)}" '
            f'style="outline:none;text-decoration:none;width:auto;max-width:100%;'
            f'clear:both;display:block;border:none;"></a>'
        )
