"""Markup extraction shared by both fetch drivers.

Rules:
- ``<script>`` and ``<style>`` elements are removed before anything else.
- With a selector: the inner markup of the first match, or the combined text
  of all matches when that markup is empty.  Zero matches raise
  :class:`~scrape_gateway.core.exceptions.SelectorNotFoundError`.
- Without a selector: the ``<body>`` inner markup (the whole stripped document
  when the markup omits ``<body>``), or the raw document when that is empty.
- Title: ``<title>`` text, then the first ``<h1>``, then ``""``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import soupsieve
from bs4 import BeautifulSoup

from scrape_gateway.core.exceptions import InvalidRequestError, SelectorNotFoundError

logger = logging.getLogger(__name__)

_STRIP_TAGS: tuple[str, ...] = ("script", "style")


@dataclass
class ExtractedPage:
    """Content and title pulled out of one HTML document."""

    content: str
    title: str


def parse_html(html: str) -> BeautifulSoup:
    """Parse ``html`` and drop script/style elements."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(list(_STRIP_TAGS)):
        tag.decompose()
    return soup


def select_content(soup: BeautifulSoup, selector: str) -> str:
    """Return the content matched by ``selector``.

    Raises:
        SelectorNotFoundError: If nothing matches.
        InvalidRequestError: If the selector is not valid CSS.
    """
    try:
        matches = soup.select(selector)
    except soupsieve.SelectorSyntaxError as exc:
        raise InvalidRequestError(f'Invalid selector "{selector}"') from exc
    if not matches:
        raise SelectorNotFoundError(selector)
    inner = matches[0].decode_contents()
    if inner.strip():
        return inner
    return "".join(match.get_text() for match in matches)


def extract_title(soup: BeautifulSoup) -> str:
    if soup.title is not None:
        title = soup.title.get_text()
        if title.strip():
            return title.strip()
    heading = soup.find("h1")
    if heading is not None:
        return heading.get_text().strip()
    return ""


def extract_page(html: str, selector: Optional[str] = None) -> ExtractedPage:
    """Apply the extraction rules to a fetched document.

    Args:
        html: Raw response body.
        selector: Optional CSS selector.

    Returns:
        :class:`ExtractedPage` with whitespace-trimmed content and title.
    """
    soup = parse_html(html)
    if selector:
        content = select_content(soup, selector)
    else:
        body = soup.body
        content = body.decode_contents() if body is not None else soup.decode_contents()
        if not content.strip():
            content = html
    return ExtractedPage(content=content.strip(), title=extract_title(soup))
