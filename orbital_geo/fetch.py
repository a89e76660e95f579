"""
Full-text fetcher for articles whose summary is too thin to place.

Paywalled domains are refused before any request is made. Everything else is
fetched once with browser-like headers; the HTML is reduced to visible text.
Failures never raise: the caller gets "" and carries on with what it had.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Union
from urllib.parse import urlparse

import httpx
from lxml import etree
from lxml import html as lxml_html

from orbital_geo.config import FetchConfig, get_settings

logger = logging.getLogger(__name__)

PAYWALL_DOMAINS = (
    "nytimes.com",
    "washingtonpost.com",
    "wsj.com",
    "ft.com",
    "bloomberg.com",
    "economist.com",
    "reuters.com",
    "newyorker.com",
    "latimes.com",
    "thetimes.co.uk",
    "telegraph.co.uk",
)

_INVISIBLE_TAGS = "//script|//style|//noscript|//template"
_WHITESPACE = re.compile(r"\s+")
_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")


def is_paywalled(url: Optional[str]) -> bool:
    """True when the URL's host is a deny-listed domain or a subdomain of one."""
    if not url:
        return False
    host = (urlparse(url).hostname or "").lower().rstrip(".")
    return any(host == d or host.endswith("." + d) for d in PAYWALL_DOMAINS)


def html_to_text(markup: Union[str, bytes]) -> str:
    """Visible text of an HTML page. Pass bytes so lxml honours a declared encoding."""
    if not markup or not markup.strip():
        return ""
    if isinstance(markup, str):
        # lxml rejects str input that carries an encoding declaration
        markup = _XML_DECLARATION.sub("", markup, count=1)
    try:
        tree = lxml_html.fromstring(markup)
    except (etree.ParserError, ValueError) as e:
        logger.debug("Unparseable HTML (%d chars): %s", len(markup), e)
        return ""
    for el in tree.xpath(_INVISIBLE_TAGS):
        el.drop_tree()
    return _WHITESPACE.sub(" ", tree.text_content()).strip()


class FullTextFetcher:
    def __init__(self, http_client: Optional[httpx.AsyncClient] = None,
                 config: Optional[FetchConfig] = None):
        self.config = config or get_settings().fetch
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(follow_redirects=True)

    @property
    def headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.config.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }

    async def fetch(self, url: Optional[str]) -> str:
        """Visible text of the page at url, or "" if it cannot be had."""
        if not url:
            return ""
        if is_paywalled(url):
            logger.debug("Not fetching paywalled %s", url)
            return ""

        try:
            resp = await self._http.get(url, headers=self.headers,
                                        timeout=self.config.timeout_seconds)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning("Full-text fetch for %s returned HTTP %d", url, e.response.status_code)
            return ""
        except httpx.HTTPError as e:
            logger.warning("Full-text fetch for %s failed: %s", url, e)
            return ""

        text = html_to_text(resp.content)
        logger.debug("Fetched %d chars of text from %s", len(text), url)
        return text

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
