"""Constants and tuning parameters for the fetch drivers."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Fetch timing
# ---------------------------------------------------------------------------

#: Lower and upper bound applied to a caller's timeout (milliseconds).
MIN_TIMEOUT_MS: int = 1_000
MAX_TIMEOUT_MS: int = 30_000

#: Timeout used when the caller does not send one (milliseconds).
DEFAULT_TIMEOUT_MS: int = 30_000

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

#: User-agent string sent by both drivers unless overridden in settings.
USER_AGENT: str = "ScraperAPI/1.0 (+https://scraper.dev)"

#: Headers sent with every light-driver request.
DEFAULT_HEADERS: dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

#: Redirect hops followed before the fetch fails.
MAX_REDIRECTS: int = 5

# ---------------------------------------------------------------------------
# Browser
# ---------------------------------------------------------------------------

#: Viewport used for rendered fetches (screenshots bring their own).
DEFAULT_VIEWPORT: dict[str, int] = {"width": 1280, "height": 720}

#: JPEG encoder quality for screenshots.
JPEG_QUALITY: int = 85

#: Chromium flags for running inside a container.
BROWSER_ARGS: tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
)

# ---------------------------------------------------------------------------
# Screenshot bounds
# ---------------------------------------------------------------------------

MIN_SCREENSHOT_WIDTH: int = 320
MAX_SCREENSHOT_WIDTH: int = 1920
MIN_SCREENSHOT_HEIGHT: int = 240
MAX_SCREENSHOT_HEIGHT: int = 1080

IMAGE_CONTENT_TYPES: dict[str, str] = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
}
