"""Heavy fetch driver: renders the page in headless Chromium via Playwright.

Both operations borrow a context from :class:`BrowserPool` and give it back on
every exit path.  Every request the page makes over http(s) passes through a
route handler that runs the admission validator, so neither a redirect nor a
script can steer the browser to a private address.

Timeouts
--------
  - Navigation waits for ``networkidle``, bounded by the target's timeout.
  - ``wait_for`` is bounded by half of whatever budget navigation left.
  - Any Playwright timeout surfaces as ``SCRAPE_TIMEOUT``.
"""

from __future__ import annotations

import asyncio
import io
import logging
from typing import Any, Optional

from PIL import Image
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Route
from playwright.async_api import TimeoutError as PlaywrightTimeout

from scrape_gateway.core.admission import ensure_admitted, validate_url
from scrape_gateway.core.exceptions import (
    ScrapeFailedError,
    ScrapeTimeoutError,
    SelectorNotFoundError,
    SSRFBlockedError,
)
from scrape_gateway.scraper.base import FetchResult, FetchTarget, ScreenshotTarget
from scrape_gateway.scraper.browser_pool import BrowserPool
from scrape_gateway.scraper.config import DEFAULT_VIEWPORT, JPEG_QUALITY, USER_AGENT
from scrape_gateway.scraper.extraction import extract_title, parse_html

logger = logging.getLogger(__name__)


class _AdmissionGuard:
    """Page route handler that aborts requests to inadmissible URLs."""

    def __init__(self) -> None:
        self.blocked: Optional[SSRFBlockedError] = None

    async def __call__(self, route: Route) -> None:
        url = route.request.url
        if url.startswith(("http://", "https://")):
            result = validate_url(url)
            if not result.accepted:
                logger.warning("scraper: browser request blocked: %s (%s)", url, result.reason)
                if route.request.is_navigation_request() and self.blocked is None:
                    self.blocked = SSRFBlockedError(
                        result.reason.value if result.reason else "BLOCKED_HOST",
                        result.message or "URL is not allowed",
                    )
                await route.abort("blockedbyclient")
                return
        await route.continue_()

    def raise_if_blocked(self) -> None:
        if self.blocked is not None:
            raise self.blocked


class HeavyDriver:
    """Browser-rendered fetch and screenshot.

    Args:
        pool: Session pool the driver borrows contexts from.
        user_agent: User-agent the browser presents.
    """

    render_mode = "heavy"

    def __init__(self, pool: BrowserPool, user_agent: str = USER_AGENT) -> None:
        self._pool = pool
        self._user_agent = user_agent

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch(self, target: FetchTarget) -> FetchResult:
        """Render ``target.url`` and extract its content.

        Raises:
            SSRFBlockedError: If the URL (or a navigation it triggers) fails
                admission.
            ScrapeTimeoutError: If navigation or ``wait_for`` times out.
            SelectorNotFoundError: If the selector matches nothing.
            BrowserUnavailableError: If no browser session is available.
            ScrapeFailedError: On any other navigation failure.
        """
        url = ensure_admitted(target.url)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + target.timeout_seconds

        async with self._pool.session(
            viewport=dict(DEFAULT_VIEWPORT),
            user_agent=self._user_agent,
            acquire_timeout=target.timeout_seconds,
        ) as context:
            guard = _AdmissionGuard()
            try:
                page = await context.new_page()
                await page.route("**/*", guard)
                await self._navigate(page, url, _remaining_ms(loop, deadline), guard)

                if target.wait_for:
                    wait_ms = _remaining_ms(loop, deadline) // 2
                    if wait_ms <= 0:
                        raise ScrapeTimeoutError()
                    await page.wait_for_selector(target.wait_for, timeout=wait_ms)

                if target.selector:
                    element = await page.query_selector(target.selector)
                    if element is None:
                        raise SelectorNotFoundError(target.selector)
                    content = await element.inner_html()
                else:
                    content = await page.content()
                title = (await page.title()).strip()
                if not title:
                    title = extract_title(parse_html(await page.content()))
            except PlaywrightTimeout as exc:
                logger.warning("scraper: browser timeout for %s", url)
                raise ScrapeTimeoutError() from exc
            except PlaywrightError as exc:
                guard.raise_if_blocked()
                logger.warning("scraper: browser error for %s: %s", url, exc)
                raise ScrapeFailedError("Failed to render the target URL") from exc

        return FetchResult(content=content.strip(), title=title.strip(), url=url)

    # ------------------------------------------------------------------
    # Screenshot
    # ------------------------------------------------------------------

    async def screenshot(self, target: ScreenshotTarget) -> bytes:
        """Render ``target.url`` and return the encoded image.

        PNG and JPEG come straight from Chromium; WEBP is re-encoded from a
        PNG capture with Pillow.

        Raises:
            SSRFBlockedError: If the URL fails admission.
            ScrapeTimeoutError: If navigation times out.
            BrowserUnavailableError: If no browser session is available.
            ScrapeFailedError: ``SCREENSHOT_FAILED`` on any other failure.
        """
        url = ensure_admitted(target.url)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + target.timeout_ms / 1000

        async with self._pool.session(
            viewport={"width": target.width, "height": target.height},
            user_agent=self._user_agent,
            acquire_timeout=target.timeout_ms / 1000,
        ) as context:
            guard = _AdmissionGuard()
            try:
                page = await context.new_page()
                await page.route("**/*", guard)
                await self._navigate(page, url, _remaining_ms(loop, deadline), guard)
                image = await page.screenshot(**_screenshot_options(target))
            except PlaywrightTimeout as exc:
                logger.warning("scraper: screenshot timeout for %s", url)
                raise ScrapeTimeoutError() from exc
            except PlaywrightError as exc:
                guard.raise_if_blocked()
                logger.warning("scraper: screenshot error for %s: %s", url, exc)
                raise ScrapeFailedError(
                    "Failed to capture screenshot", code="SCREENSHOT_FAILED"
                ) from exc

        if target.image_format == "webp":
            return _png_to_webp(image)
        return image

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _navigate(page: Page, url: str, timeout_ms: int, guard: _AdmissionGuard) -> None:
        if timeout_ms <= 0:
            raise ScrapeTimeoutError()
        await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
        guard.raise_if_blocked()


def _remaining_ms(loop: asyncio.AbstractEventLoop, deadline: float) -> int:
    return int((deadline - loop.time()) * 1000)


def _screenshot_options(target: ScreenshotTarget) -> dict[str, Any]:
    options: dict[str, Any] = {"full_page": target.full_page}
    if target.image_format == "jpeg":
        options.update(type="jpeg", quality=JPEG_QUALITY)
    else:
        options["type"] = "png"
    return options


def _png_to_webp(png_bytes: bytes) -> bytes:
    with Image.open(io.BytesIO(png_bytes)) as img:
        out = io.BytesIO()
        img.save(out, "WEBP")
    return out.getvalue()
