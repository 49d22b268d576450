"""Light fetch driver: one httpx GET followed by BeautifulSoup extraction.

The whole fetch (connect, redirects, body) runs under one deadline taken
from the target's timeout; hitting it raises
:class:`~scrape_gateway.core.exceptions.ScrapeTimeoutError`.

The admission validator runs again here, and on every redirect hop through
an httpx ``request`` event hook, so a public page cannot bounce the fetch to
a private address.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from scrape_gateway.core.admission import ensure_admitted
from scrape_gateway.core.exceptions import ScrapeFailedError, ScrapeTimeoutError
from scrape_gateway.scraper.base import FetchResult, FetchTarget
from scrape_gateway.scraper.config import DEFAULT_HEADERS, MAX_REDIRECTS, USER_AGENT
from scrape_gateway.scraper.extraction import extract_page

logger = logging.getLogger(__name__)


async def _admit_request(request: httpx.Request) -> None:
    """httpx request hook: refuse any hop whose URL fails admission."""
    ensure_admitted(str(request.url))


class LightDriver:
    """Plain HTTP fetch and parse.

    The driver owns one :class:`httpx.AsyncClient`, created on first use and
    closed by :meth:`aclose`.

    Args:
        user_agent: User-agent header value.
    """

    render_mode = "light"

    def __init__(self, user_agent: str = USER_AGENT) -> None:
        self._user_agent = user_agent
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                max_redirects=MAX_REDIRECTS,
                headers={"User-Agent": self._user_agent, **DEFAULT_HEADERS},
                event_hooks={"request": [_admit_request]},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, target: FetchTarget) -> FetchResult:
        """Fetch ``target.url`` and extract its content.

        Raises:
            SSRFBlockedError: If the URL or any redirect hop fails admission.
            ScrapeTimeoutError: If the deadline passes.
            ScrapeFailedError: On a non-2xx response or a network error.
            SelectorNotFoundError: If the selector matches nothing.
        """
        url = ensure_admitted(target.url)
        try:
            response = await asyncio.wait_for(
                self._get(url, target.timeout_seconds),
                timeout=target.timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            logger.warning("scraper: timeout fetching %s after %d ms", url, target.timeout_ms)
            raise ScrapeTimeoutError() from exc
        except httpx.TooManyRedirects as exc:
            logger.warning("scraper: too many redirects for %s", url)
            raise ScrapeFailedError("Too many redirects") from exc
        except httpx.RequestError as exc:
            logger.warning("scraper: request error for %s: %s", url, exc)
            raise ScrapeFailedError("Failed to fetch the target URL") from exc

        if not response.is_success:
            logger.info("scraper: HTTP %d for %s", response.status_code, url)
            raise ScrapeFailedError(f"HTTP {response.status_code} {response.reason_phrase}".strip())

        page = extract_page(response.text, target.selector)
        return FetchResult(content=page.content, title=page.title, url=url)

    async def _get(self, url: str, timeout: float) -> httpx.Response:
        client = self._get_client()
        return await client.get(url, timeout=timeout)
