"""Unit tests for the light (httpx) fetch driver, with httpx mocked by respx."""

from __future__ import annotations

import httpx
import pytest
import respx

from scrape_gateway.core.exceptions import (
    ScrapeFailedError,
    ScrapeTimeoutError,
    SelectorNotFoundError,
    SSRFBlockedError,
)
from scrape_gateway.scraper.base import FetchTarget
from scrape_gateway.scraper.http_fetcher import LightDriver

_HTML = (
    "<html><head><title>Example Domain</title></head>"
    "<body><h1>Example</h1><p class='lead'>Hello</p></body></html>"
)


@pytest.fixture
async def driver():
    drv = LightDriver(user_agent="gateway-tests/1.0")
    yield drv
    await drv.aclose()


def _target(url: str = "https://example.com/page", **kwargs) -> FetchTarget:
    return FetchTarget(url=url, timeout_ms=kwargs.pop("timeout_ms", 5_000), **kwargs)


class TestLightDriver:
    async def test_successful_fetch(self, driver: LightDriver) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            route = mock.get("/page").mock(
                return_value=httpx.Response(
                    200, text=_HTML, headers={"content-type": "text/html; charset=utf-8"}
                )
            )
            result = await driver.fetch(_target())

        assert result.title == "Example Domain"
        assert "<p class=\"lead\">Hello</p>" in result.content
        assert result.url == "https://example.com/page"
        assert route.calls.last.request.headers["user-agent"] == "gateway-tests/1.0"

    async def test_selector(self, driver: LightDriver) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/page").mock(return_value=httpx.Response(200, text=_HTML))
            result = await driver.fetch(_target(selector="p.lead"))

        assert result.content == "Hello"

    async def test_selector_not_found(self, driver: LightDriver) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/page").mock(return_value=httpx.Response(200, text=_HTML))
            with pytest.raises(SelectorNotFoundError):
                await driver.fetch(_target(selector=".nonexistent"))

    async def test_http_404_is_scrape_failed(self, driver: LightDriver) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/page").mock(return_value=httpx.Response(404, text="gone"))
            with pytest.raises(ScrapeFailedError) as exc_info:
                await driver.fetch(_target())

        assert exc_info.value.message == "HTTP 404 Not Found"
        assert exc_info.value.status_code == 502

    async def test_timeout(self, driver: LightDriver) -> None:
        with respx.mock(base_url="https://slow.example.com") as mock:
            mock.get("/").mock(side_effect=httpx.ConnectTimeout("timed out"))
            with pytest.raises(ScrapeTimeoutError) as exc_info:
                await driver.fetch(_target("https://slow.example.com/"))

        assert exc_info.value.code == "SCRAPE_TIMEOUT"

    async def test_network_error_is_scrape_failed(self, driver: LightDriver) -> None:
        with respx.mock(base_url="https://down.example.com") as mock:
            mock.get("/").mock(side_effect=httpx.ConnectError("refused"))
            with pytest.raises(ScrapeFailedError) as exc_info:
                await driver.fetch(_target("https://down.example.com/"))

        assert "refused" not in exc_info.value.message

    async def test_redirect_is_followed(self, driver: LightDriver) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/old").mock(
                return_value=httpx.Response(301, headers={"location": "https://example.com/page"})
            )
            mock.get("/page").mock(return_value=httpx.Response(200, text=_HTML))
            result = await driver.fetch(_target("https://example.com/old"))

        assert result.title == "Example Domain"

    @pytest.mark.parametrize(
        ("location", "reason"),
        [
            ("http://169.254.169.254/latest/", "BLOCKED_HOST"),
            ("http://10.0.0.5/admin", "PRIVATE_ADDRESS"),
        ],
    )
    async def test_redirect_to_private_address_is_blocked(
        self, driver: LightDriver, location: str, reason: str
    ) -> None:
        with respx.mock(assert_all_called=False) as mock:
            mock.get("https://example.com/bounce").mock(
                return_value=httpx.Response(302, headers={"location": location})
            )
            internal = mock.get(location).mock(return_value=httpx.Response(200, text="secret"))
            with pytest.raises(SSRFBlockedError) as exc_info:
                await driver.fetch(_target("https://example.com/bounce"))

        assert exc_info.value.reason == reason
        assert not internal.called

    async def test_too_many_redirects(self, driver: LightDriver) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/loop").mock(
                return_value=httpx.Response(302, headers={"location": "https://example.com/loop"})
            )
            with pytest.raises(ScrapeFailedError) as exc_info:
                await driver.fetch(_target("https://example.com/loop"))

        assert exc_info.value.message == "Too many redirects"

    async def test_private_target_never_hits_network(self, driver: LightDriver) -> None:
        with respx.mock(assert_all_called=False) as mock:
            route = mock.get("http://127.0.0.1/")
            with pytest.raises(SSRFBlockedError):
                await driver.fetch(_target("http://127.0.0.1/"))

        assert not route.called
