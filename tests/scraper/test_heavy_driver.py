"""Unit tests for the heavy (Playwright) driver against a scripted fake browser."""

from __future__ import annotations

import io

import pytest
from PIL import Image
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from scrape_gateway.core.exceptions import (
    BrowserUnavailableError,
    ScrapeFailedError,
    ScrapeTimeoutError,
    SelectorNotFoundError,
    SSRFBlockedError,
)
from scrape_gateway.scraper.base import FetchTarget, ScreenshotTarget
from scrape_gateway.scraper.browser_pool import BrowserPool
from scrape_gateway.scraper.playwright_fetcher import HeavyDriver
from tests.factories.browser import FakeBrowser, FakePage, browser_factory, make_png


def _driver(page: FakePage) -> tuple[HeavyDriver, FakeBrowser]:
    browser = FakeBrowser(page)
    pool = BrowserPool(max_sessions=2, browser_factory=browser_factory(browser))
    return HeavyDriver(pool, user_agent="gateway-tests/1.0"), browser


def _target(**kwargs) -> FetchTarget:
    return FetchTarget(url="https://example.com/app", timeout_ms=kwargs.pop("timeout_ms", 10_000), **kwargs)


class TestHeavyFetch:
    async def test_renders_full_document(self) -> None:
        page = FakePage()
        driver, browser = _driver(page)

        result = await driver.fetch(_target())

        assert result.title == "Rendered"
        assert "<p>Rendered</p>" in result.content
        assert page.goto_calls[0]["wait_until"] == "networkidle"
        assert 0 < page.goto_calls[0]["timeout"] <= 10_000
        assert browser.contexts[0].options["user_agent"] == "gateway-tests/1.0"
        assert browser.contexts[0].closed is True

    async def test_selector_returns_inner_html(self) -> None:
        page = FakePage(elements={"#main": "  <b>inner</b>  "})
        driver, _ = _driver(page)

        result = await driver.fetch(_target(selector="#main"))

        assert result.content == "<b>inner</b>"

    async def test_title_falls_back_to_first_h1(self) -> None:
        page = FakePage(
            html="<html><head></head><body><h1> Heading </h1><h1>Second</h1></body></html>", title=""
        )
        driver, _ = _driver(page)

        result = await driver.fetch(_target())

        assert result.title == "Heading"

    async def test_title_is_empty_without_title_or_h1(self) -> None:
        driver, _ = _driver(FakePage(html="<html><body><p>x</p></body></html>", title=""))

        result = await driver.fetch(_target())

        assert result.title == ""

    async def test_missing_selector(self) -> None:
        driver, browser = _driver(FakePage())

        with pytest.raises(SelectorNotFoundError):
            await driver.fetch(_target(selector=".nonexistent"))
        assert browser.contexts[0].closed is True

    async def test_wait_for_gets_at_most_half_the_budget(self) -> None:
        page = FakePage()
        driver, _ = _driver(page)

        await driver.fetch(_target(wait_for="#ready", timeout_ms=10_000))

        call = page.wait_calls[0]
        assert call["selector"] == "#ready"
        assert 0 < call["timeout"] <= 5_000

    async def test_wait_for_timeout(self) -> None:
        driver, _ = _driver(FakePage(wait_error=PlaywrightTimeout("Timeout 5000ms exceeded.")))

        with pytest.raises(ScrapeTimeoutError):
            await driver.fetch(_target(wait_for="#never"))

    async def test_navigation_timeout(self) -> None:
        driver, _ = _driver(FakePage(goto_error=PlaywrightTimeout("Timeout 10000ms exceeded.")))

        with pytest.raises(ScrapeTimeoutError):
            await driver.fetch(_target())

    async def test_navigation_error_is_scrape_failed(self) -> None:
        driver, _ = _driver(FakePage(goto_error=PlaywrightError("net::ERR_NAME_NOT_RESOLVED")))

        with pytest.raises(ScrapeFailedError) as exc_info:
            await driver.fetch(_target())

        assert exc_info.value.code == "SCRAPE_FAILED"
        assert "ERR_NAME_NOT_RESOLVED" not in exc_info.value.message

    async def test_redirect_to_private_address_is_blocked(self) -> None:
        page = FakePage(redirects=["https://example.com/step", "http://10.1.2.3/admin"])
        driver, browser = _driver(page)

        with pytest.raises(SSRFBlockedError) as exc_info:
            await driver.fetch(_target())

        assert exc_info.value.reason == "PRIVATE_ADDRESS"
        assert [r.continued for r in page.routes] == [True, True, False]
        assert page.routes[-1].aborted == "blockedbyclient"
        assert browser.contexts[0].closed is True

    async def test_private_target_never_opens_a_session(self) -> None:
        driver, browser = _driver(FakePage())

        with pytest.raises(SSRFBlockedError):
            await driver.fetch(FetchTarget(url="http://192.168.0.1/", timeout_ms=5_000))
        assert browser.contexts == []

    async def test_browser_unavailable(self) -> None:
        async def broken():
            raise OSError("no chromium")

        driver = HeavyDriver(BrowserPool(max_sessions=1, browser_factory=broken))
        with pytest.raises(BrowserUnavailableError):
            await driver.fetch(_target())


class TestHeavyScreenshot:
    def _target(self, **kwargs) -> ScreenshotTarget:
        return ScreenshotTarget(url="https://example.com/", timeout_ms=10_000, **kwargs)

    async def test_png_with_viewport(self) -> None:
        png = make_png()
        page = FakePage(image=png)
        driver, browser = _driver(page)

        image = await driver.screenshot(self._target(width=800, height=600, full_page=True))

        assert image == png
        assert browser.contexts[0].options["viewport"] == {"width": 800, "height": 600}
        assert page.screenshot_calls[0] == {"full_page": True, "type": "png"}

    async def test_jpeg_options(self) -> None:
        page = FakePage()
        driver, _ = _driver(page)

        await driver.screenshot(self._target(image_format="jpeg"))

        assert page.screenshot_calls[0] == {"full_page": False, "type": "jpeg", "quality": 85}

    async def test_webp_is_reencoded(self) -> None:
        page = FakePage(image=make_png(8, 6))
        driver, _ = _driver(page)

        image = await driver.screenshot(self._target(image_format="webp"))

        assert image[:4] == b"RIFF" and image[8:12] == b"WEBP"
        with Image.open(io.BytesIO(image)) as decoded:
            assert decoded.size == (8, 6)
        assert page.screenshot_calls[0]["type"] == "png"

    async def test_failure_is_screenshot_failed(self) -> None:
        driver, _ = _driver(FakePage(goto_error=PlaywrightError("Target closed")))

        with pytest.raises(ScrapeFailedError) as exc_info:
            await driver.screenshot(self._target())

        assert exc_info.value.code == "SCREENSHOT_FAILED"

    async def test_blocked_navigation(self) -> None:
        driver, _ = _driver(FakePage(redirects=["http://[::1]/"]))

        with pytest.raises(SSRFBlockedError):
            await driver.screenshot(self._target())
