"""Scrape and screenshot orchestration.

Every call runs the same stages, and the first one that fails ends the call::

    admission  ->  authentication  ->  quota  ->  driver  ->  classification

Each failure is one :class:`~scrape_gateway.core.exceptions.GatewayError`
subclass, so the error code and HTTP status are fixed by the exception type.
Anything else escaping a driver becomes the generic upstream failure.

Whatever the outcome, exactly one :class:`~scrape_gateway.core.audit.AuditRecord`
is scheduled, carrying the duration measured from the start of the call.
``render_mode`` is only recorded once a driver has actually been invoked.

Rate-limit headers are computed by the quota stage and attached to the
outcome, or to the raised error, for every call that got that far.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from typing import Optional, TypeVar

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scrape_gateway.core.admission import validate_url
from scrape_gateway.core.audit import AuditLogWriter, AuditRecord
from scrape_gateway.core.exceptions import (
    GatewayError,
    QuotaExceededError,
    ScrapeFailedError,
    UnauthorizedError,
)
from scrape_gateway.core.principal_service import AuthenticatedPrincipal, PrincipalService
from scrape_gateway.core.quota_service import QuotaService
from scrape_gateway.core.schemas.scrape import ScrapeRequest, ScreenshotRequest
from scrape_gateway.scraper.base import (
    FetchDriver,
    FetchResult,
    FetchTarget,
    ScreenshotDriver,
    ScreenshotTarget,
)
from scrape_gateway.scraper.config import IMAGE_CONTENT_TYPES

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class CallContext:
    """Provenance of one inbound call.

    Attributes:
        request_id: Gateway request id (``req_<ms>_<hex>``).
        method: HTTP method.
        path: Logical route path, e.g. ``/api/v1/scrape``.
        raw_api_key: Key as presented, or ``None`` when absent.
        ip_address: Caller address.
        user_agent: Caller user-agent.
    """

    request_id: str
    method: str
    path: str
    raw_api_key: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class ScrapeOutcome:
    result: FetchResult
    render_mode: str
    duration_ms: int
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class ScreenshotOutcome:
    image: bytes
    content_type: str
    duration_ms: int
    headers: dict[str, str] = field(default_factory=dict)


class ScrapeOrchestrator:
    """Composes admission, the credential/quota ledger and the fetch drivers.

    Args:
        session_factory: Opens the session used for authentication and quota.
        audit: Writer for the detached audit and auth-log writes.
        drivers: Fetch drivers keyed by render mode (``"light"``, ``"heavy"``).
        screenshot_driver: Driver used for screenshots.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        audit: AuditLogWriter,
        drivers: Mapping[str, FetchDriver],
        screenshot_driver: ScreenshotDriver,
    ) -> None:
        self._session_factory = session_factory
        self._audit = audit
        self._drivers = dict(drivers)
        self._screenshot_driver = screenshot_driver

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def scrape(self, request: ScrapeRequest, ctx: CallContext) -> ScrapeOutcome:
        """Fetch one page for an authenticated caller.

        Raises:
            GatewayError: The classified failure, with rate-limit headers
                attached once the quota stage has run.
        """
        started = time.perf_counter()
        record = self._new_record(ctx, request.url)
        headers: dict[str, str] = {}
        try:
            canonical_url = validate_url(request.url).raise_if_rejected()
            headers = await self._authorize(ctx, record)

            driver = self._drivers[request.render_mode]
            record.render_mode = driver.render_mode
            target = FetchTarget(
                url=canonical_url,
                timeout_ms=request.timeout,
                selector=request.selector,
                wait_for=request.wait_for if request.render else None,
            )
            result = await self._run_driver(driver.fetch(target), failure_code="SCRAPE_FAILED")
            record.status_code = 200
            record.response_size = result.size
        except GatewayError as exc:
            self._fail(record, exc, headers)
            raise
        except Exception:
            record.status_code, record.error_code = 500, "INTERNAL_ERROR"
            raise
        finally:
            record.duration_ms = _elapsed_ms(started)
            self._audit.record_request(record)

        logger.info(
            "scrape_complete",
            render_mode=record.render_mode,
            duration_ms=record.duration_ms,
            response_size=record.response_size,
        )
        return ScrapeOutcome(
            result=result,
            render_mode=driver.render_mode,
            duration_ms=record.duration_ms,
            headers=headers,
        )

    async def screenshot(self, request: ScreenshotRequest, ctx: CallContext) -> ScreenshotOutcome:
        """Capture one page as an image for an authenticated caller.

        Raises:
            GatewayError: The classified failure; generic failures carry
                ``SCREENSHOT_FAILED``.
        """
        started = time.perf_counter()
        record = self._new_record(ctx, request.url)
        headers: dict[str, str] = {}
        try:
            canonical_url = validate_url(request.url).raise_if_rejected()
            headers = await self._authorize(ctx, record)

            record.render_mode = "heavy"
            target = ScreenshotTarget(
                url=canonical_url,
                timeout_ms=request.timeout,
                width=request.width,
                height=request.height,
                full_page=request.full_page,
                image_format=request.format,
            )
            image = await self._run_driver(
                self._screenshot_driver.screenshot(target),
                failure_code="SCREENSHOT_FAILED",
            )
            record.status_code = 200
            record.response_size = len(image)
        except GatewayError as exc:
            self._fail(record, exc, headers)
            raise
        except Exception:
            record.status_code, record.error_code = 500, "INTERNAL_ERROR"
            raise
        finally:
            record.duration_ms = _elapsed_ms(started)
            self._audit.record_request(record)

        logger.info(
            "screenshot_complete",
            image_format=request.format,
            duration_ms=record.duration_ms,
            response_size=record.response_size,
        )
        return ScreenshotOutcome(
            image=image,
            content_type=IMAGE_CONTENT_TYPES[request.format],
            duration_ms=record.duration_ms,
            headers=headers,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _authorize(self, ctx: CallContext, record: AuditRecord) -> dict[str, str]:
        """Authenticate the caller and count the request against its quota.

        Returns:
            The ``X-RateLimit-*`` headers for the caller's window.

        Raises:
            UnauthorizedError: For any credential problem.
            QuotaExceededError: When the window is exhausted.  The error
                already carries the rate-limit headers.
        """
        async with self._session_factory() as session:
            principal = await PrincipalService(session).authenticate(ctx.raw_api_key)
            if principal is None:
                raise UnauthorizedError()
            self._note_principal(ctx, record, principal)
            decision = await QuotaService(session).check_and_consume(
                principal.principal_id, principal.quota_limit
            )

        headers = decision.rate_limit_headers()
        if not decision.allowed:
            raise QuotaExceededError(
                decision.limit,
                decision.current,
                decision.reset_at,
                headers=headers,
            )
        return headers

    def _note_principal(
        self,
        ctx: CallContext,
        record: AuditRecord,
        principal: AuthenticatedPrincipal,
    ) -> None:
        record.principal_id = principal.principal_id
        record.api_key_id = principal.api_key_id
        structlog.contextvars.bind_contextvars(
            principal_id=str(principal.principal_id),
            key_prefix=principal.key_prefix,
        )
        self._audit.record_key_used(
            principal.principal_id,
            principal.api_key_id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            path=ctx.path,
        )

    async def _run_driver(self, call: Awaitable[T], *, failure_code: str) -> T:
        """Await a driver call, reclassifying unexpected errors as upstream failures."""
        try:
            return await call
        except GatewayError:
            raise
        except Exception as exc:
            logger.exception("driver_failed", error_type=type(exc).__name__)
            message = "Screenshot failed" if failure_code == "SCREENSHOT_FAILED" else "Scrape failed"
            raise ScrapeFailedError(message, code=failure_code) from exc

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _new_record(ctx: CallContext, target_url: str) -> AuditRecord:
        return AuditRecord(
            request_id=ctx.request_id,
            method=ctx.method,
            path=ctx.path,
            status_code=500,
            duration_ms=0,
            target_url=target_url,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )

    @staticmethod
    def _fail(record: AuditRecord, exc: GatewayError, headers: dict[str, str]) -> None:
        for name, value in headers.items():
            exc.headers.setdefault(name, value)
        record.status_code = exc.status_code
        record.error_code = exc.code
        logger.info("request_rejected", error_code=exc.code, status_code=exc.status_code)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
