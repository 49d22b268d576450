"""Value types shared by the fetch drivers.

Both drivers implement :class:`FetchDriver`: given a :class:`FetchTarget`
they return a :class:`FetchResult` or raise one of the
:class:`~scrape_gateway.core.exceptions.FetchError` subclasses.  The heavy
driver additionally implements :class:`ScreenshotDriver`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional, Protocol, runtime_checkable

RenderMode = Literal["light", "heavy"]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FetchTarget:
    """One page to fetch.

    Attributes:
        url: Canonical URL returned by the admission validator.
        timeout_ms: Overall budget for the fetch, already clamped.
        selector: Optional CSS selector limiting the extracted content.
        wait_for: Optional CSS selector to wait for (heavy driver only).
    """

    url: str
    timeout_ms: int
    selector: Optional[str] = None
    wait_for: Optional[str] = None

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


@dataclass(frozen=True)
class ScreenshotTarget:
    """One page to capture as an image."""

    url: str
    timeout_ms: int
    width: int = 1280
    height: int = 720
    full_page: bool = False
    image_format: Literal["png", "jpeg", "webp"] = "png"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class FetchResult:
    """Successful fetch.

    Attributes:
        content: Extracted markup (or text), whitespace-trimmed.
        title: Page title, or ``""``.
        url: Canonical URL that was fetched.
        timestamp: Completion instant (UTC).
    """

    content: str
    title: str
    url: str
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, str]:
        return {
            "content": self.content,
            "title": self.title,
            "url": self.url,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
        }

    @property
    def size(self) -> int:
        return len(self.content)


# ---------------------------------------------------------------------------
# Driver protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class FetchDriver(Protocol):
    """Retrieve one page's content."""

    render_mode: RenderMode

    async def fetch(self, target: FetchTarget) -> FetchResult: ...


@runtime_checkable
class ScreenshotDriver(Protocol):
    """Capture one page as image bytes."""

    async def screenshot(self, target: ScreenshotTarget) -> bytes: ...
