"""Application-wide exception hierarchy for Scrape Gateway.

Every failure a caller can observe is one of these classes.  Each carries a
stable ``code`` and an HTTP ``status_code``; the FastAPI exception handlers in
``api/main.py`` render them into the failure envelope, so no route or service
ever formats an error body by hand.

Hierarchy::

    GatewayError                       INTERNAL_ERROR       500
    ├── InternalError                  INTERNAL_ERROR       500
    ├── InvalidRequestError            INVALID_REQUEST      400
    ├── UnauthorizedError              UNAUTHORIZED         401
    ├── ForbiddenError                 FORBIDDEN            403
    ├── NotFoundError                  NOT_FOUND            404
    ├── ApiKeyNameTakenError           API_KEY_NAME_TAKEN   409
    ├── SSRFBlockedError               SSRF_BLOCKED         400
    ├── QuotaExceededError             QUOTA_EXCEEDED       429
    └── FetchError                     (driver failures)
        ├── SelectorNotFoundError      SELECTOR_NOT_FOUND   400
        ├── ScrapeTimeoutError         SCRAPE_TIMEOUT       504
        ├── BrowserUnavailableError    BROWSER_UNAVAILABLE  503
        └── ScrapeFailedError          SCRAPE_FAILED        502
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional


class GatewayError(Exception):
    """Base class for all gateway exceptions.

    Args:
        message: Caller-safe, human-readable description.  Never include raw
            upstream error text or stack traces here.
        details: Optional structured payload rendered under ``error.details``.
        headers: Extra response headers (e.g. rate-limit headers).
    """

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str = "Internal server error",
        *,
        details: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        self.headers: dict[str, str] = dict(headers or {})


class InvalidRequestError(GatewayError):
    """Malformed request body or query string."""

    code = "INVALID_REQUEST"
    status_code = 400


class UnauthorizedError(GatewayError):
    """Missing, malformed, unknown, revoked or expired API key.

    The message is intentionally the same for every cause.
    """

    code = "UNAUTHORIZED"
    status_code = 401

    def __init__(self, message: str = "Invalid or expired API key.", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ForbiddenError(GatewayError):
    """Internal endpoint called without the shared secret."""

    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(GatewayError):
    code = "NOT_FOUND"
    status_code = 404


class ApiKeyNameTakenError(GatewayError):
    """The principal already owns an API key with the requested name."""

    code = "API_KEY_NAME_TAKEN"
    status_code = 409

    def __init__(
        self, message: str = "An API key with this name already exists.", **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)


# ---------------------------------------------------------------------------
# Admission and quota
# ---------------------------------------------------------------------------


class SSRFBlockedError(GatewayError):
    """Raised when a target URL fails the admission validator.

    Args:
        reason: Admission reason code (``"PRIVATE_ADDRESS"``, ``"PORT_NOT_ALLOWED"``...).
        message: Human-readable reason.
    """

    code = "SSRF_BLOCKED"
    status_code = 400

    def __init__(self, reason: str, message: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.reason = reason


class QuotaExceededError(GatewayError):
    """Raised when a principal has used its whole daily allowance.

    Args:
        limit: Daily request limit.
        current: Requests counted in the current window.
        reset_at: UTC instant at which the window resets.
    """

    code = "QUOTA_EXCEEDED"
    status_code = 429

    def __init__(self, limit: int, current: int, reset_at: datetime, **kwargs: Any) -> None:
        super().__init__(
            f"Daily quota of {limit} requests exceeded. "
            f"Resets at {reset_at.isoformat().replace('+00:00', 'Z')}.",
            details={
                "limit": limit,
                "current": current,
                "reset_at": reset_at.isoformat().replace("+00:00", "Z"),
            },
            **kwargs,
        )
        self.limit = limit
        self.current = current
        self.reset_at = reset_at


# ---------------------------------------------------------------------------
# Fetch driver failures
# ---------------------------------------------------------------------------


class FetchError(GatewayError):
    """Base class for failures raised by a fetch driver."""

    code = "SCRAPE_FAILED"
    status_code = 502


class SelectorNotFoundError(FetchError):
    code = "SELECTOR_NOT_FOUND"
    status_code = 400

    def __init__(self, selector: str, **kwargs: Any) -> None:
        super().__init__(f'No elements match "{selector}"', **kwargs)
        self.selector = selector


class ScrapeTimeoutError(FetchError):
    code = "SCRAPE_TIMEOUT"
    status_code = 504

    def __init__(self, message: str = "Request timed out", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class BrowserUnavailableError(FetchError):
    """No browser session could be acquired (launch failure or pool closed)."""

    code = "BROWSER_UNAVAILABLE"
    status_code = 503

    def __init__(self, message: str = "Browser rendering unavailable.", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ScrapeFailedError(FetchError):
    """Generic upstream failure: non-2xx response, network error, navigation error.

    Args:
        message: Caller-safe description.
        code: Overrides the default ``SCRAPE_FAILED`` code; the screenshot
            path reports ``SCREENSHOT_FAILED``.
    """

    def __init__(self, message: str, *, code: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        if code is not None:
            self.code = code


class InternalError(GatewayError):
    """Unexpected fault.  The caller only ever sees the generic message."""
