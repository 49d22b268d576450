"""Request schemas for the public scrape and screenshot operations.

``url`` is only checked for URL syntax here.  Whether the target may be
fetched at all is decided by :mod:`scrape_gateway.core.admission`, which
runs before authentication and reports ``SSRF_BLOCKED`` rather than
``INVALID_REQUEST``.

``timeout`` is clamped into 1000-30000 ms instead of being rejected.
"""

from __future__ import annotations

from typing import Literal, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from scrape_gateway.scraper.config import (
    DEFAULT_TIMEOUT_MS,
    MAX_SCREENSHOT_HEIGHT,
    MAX_SCREENSHOT_WIDTH,
    MAX_TIMEOUT_MS,
    MIN_SCREENSHOT_HEIGHT,
    MIN_SCREENSHOT_WIDTH,
    MIN_TIMEOUT_MS,
)

ImageFormat = Literal["png", "jpeg", "webp"]


def clamp_timeout(value: Optional[int]) -> int:
    """Clamp a caller-supplied timeout (ms) into the supported range."""
    if value is None:
        return DEFAULT_TIMEOUT_MS
    return max(MIN_TIMEOUT_MS, min(int(value), MAX_TIMEOUT_MS))


def _check_url_syntax(value: str) -> str:
    value = value.strip()
    try:
        parsed = httpx.URL(value)
    except (httpx.InvalidURL, ValueError, TypeError) as exc:
        raise ValueError("Invalid URL format") from exc
    if not parsed.scheme or not parsed.host:
        raise ValueError("Invalid URL format")
    return value


class _TargetRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str = Field(..., min_length=1, description="Absolute URL of the page to fetch.")
    timeout: int = Field(
        default=DEFAULT_TIMEOUT_MS,
        description="Fetch timeout in milliseconds, clamped to 1000-30000.",
    )

    @field_validator("url")
    @classmethod
    def url_must_parse(cls, value: str) -> str:
        return _check_url_syntax(value)

    @field_validator("timeout", mode="before")
    @classmethod
    def timeout_not_bool(cls, value: object) -> object:
        if value is None:
            return DEFAULT_TIMEOUT_MS
        if isinstance(value, bool):
            raise ValueError("timeout must be an integer")
        if isinstance(value, float):
            return int(value)
        return value

    @field_validator("timeout")
    @classmethod
    def clamp_timeout_ms(cls, value: int) -> int:
        return clamp_timeout(value)


class ScrapeRequest(_TargetRequest):
    """Body of ``POST /api/v1/scrape``."""

    render: bool = Field(
        default=False,
        description="Render the page in a headless browser before extraction.",
    )
    selector: Optional[str] = Field(
        default=None,
        max_length=1000,
        description="CSS selector; only matching elements are returned.",
    )
    wait_for: Optional[str] = Field(
        default=None,
        max_length=1000,
        description="CSS selector to wait for before extraction (render mode only).",
    )

    @field_validator("selector", "wait_for")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def render_mode(self) -> str:
        return "heavy" if self.render else "light"


class ScreenshotRequest(_TargetRequest):
    """Body of ``POST /api/v1/screenshot``."""

    width: int = Field(default=1280, ge=MIN_SCREENSHOT_WIDTH, le=MAX_SCREENSHOT_WIDTH)
    height: int = Field(default=720, ge=MIN_SCREENSHOT_HEIGHT, le=MAX_SCREENSHOT_HEIGHT)
    full_page: bool = False
    format: ImageFormat = "png"
