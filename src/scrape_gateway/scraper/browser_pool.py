"""Bounded pool of Playwright browser sessions.

One Chromium process is launched lazily and shared; every session is a fresh
:class:`~playwright.async_api.BrowserContext`.  A semaphore caps the number
of contexts open at once.

Sessions are only handed out through :meth:`BrowserPool.session`, an async
context manager that closes the context and frees its slot on every exit
path, including cancellation::

    async with pool.session(viewport=..., user_agent=..., acquire_timeout=5) as context:
        page = await context.new_page()
        ...

Launch failures, a pool that has been shut down and a slot that does not
free up within ``acquire_timeout`` all raise
:class:`~scrape_gateway.core.exceptions.BrowserUnavailableError`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, Optional

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from scrape_gateway.core.exceptions import BrowserUnavailableError
from scrape_gateway.scraper.config import BROWSER_ARGS

logger = logging.getLogger(__name__)

BrowserFactory = Callable[[], Awaitable[Any]]


class BrowserPool:
    """Hands out isolated browser contexts from one shared Chromium.

    Args:
        max_sessions: Upper bound on concurrently open contexts.
        headless: Launch Chromium headless.
        browser_factory: Optional coroutine function returning a launched
            browser.  Defaults to launching Chromium through Playwright;
            tests pass a fake.
    """

    def __init__(
        self,
        max_sessions: int = 4,
        headless: bool = True,
        browser_factory: Optional[BrowserFactory] = None,
    ) -> None:
        self.max_sessions = max_sessions
        self.headless = headless
        self._browser_factory = browser_factory or self._launch_chromium
        self._semaphore = asyncio.Semaphore(max_sessions)
        self._lock = asyncio.Lock()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._active_sessions = 0
        self._closed = False

    @property
    def active_sessions(self) -> int:
        """Number of contexts currently checked out."""
        return self._active_sessions

    @property
    def is_launched(self) -> bool:
        return self._browser is not None

    async def _launch_chromium(self) -> Browser:
        self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(
            headless=self.headless,
            args=list(BROWSER_ARGS),
        )

    async def _get_browser(self) -> Browser:
        async with self._lock:
            if self._closed:
                raise BrowserUnavailableError()
            if self._browser is not None and self._browser.is_connected():
                return self._browser

            logger.info("scraper: launching browser (max_sessions=%d)", self.max_sessions)
            try:
                self._browser = await self._browser_factory()
            except Exception as exc:
                logger.error("scraper: browser launch failed: %s", exc)
                await self._stop_playwright()
                raise BrowserUnavailableError() from exc
            return self._browser

    @asynccontextmanager
    async def session(
        self,
        *,
        viewport: dict[str, int],
        user_agent: str,
        acquire_timeout: float,
    ) -> AsyncIterator[BrowserContext]:
        """Check out one browser context for the duration of the block.

        Args:
            viewport: ``{"width": ..., "height": ...}`` for the context.
            user_agent: User-agent the context presents.
            acquire_timeout: Seconds to wait for a free slot.

        Raises:
            BrowserUnavailableError: If no session can be provided.
        """
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=acquire_timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("scraper: no browser session free after %.1fs", acquire_timeout)
            raise BrowserUnavailableError("No browser session became available.") from exc

        try:
            browser = await self._get_browser()
            try:
                context = await browser.new_context(viewport=viewport, user_agent=user_agent)
            except Exception as exc:
                logger.error("scraper: could not open browser context: %s", exc)
                raise BrowserUnavailableError() from exc

            self._active_sessions += 1
            try:
                yield context
            finally:
                self._active_sessions -= 1
                await self._release(context)
        finally:
            self._semaphore.release()

    async def _release(self, context: BrowserContext) -> None:
        try:
            await context.close()
        except Exception as exc:  # noqa: BLE001
            logger.warning("scraper: error closing browser context: %s", exc)

    async def shutdown(self) -> None:
        """Close the browser and refuse further sessions."""
        async with self._lock:
            self._closed = True
            if self._browser is not None:
                logger.info("scraper: shutting down browser")
                try:
                    await self._browser.close()
                finally:
                    self._browser = None
                    await self._stop_playwright()

    async def _stop_playwright(self) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
