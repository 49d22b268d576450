"""FastAPI application factory and entry point.

Creates the application instance, registers middleware and exception
handlers, wires the fetch drivers into a :class:`ScrapeOrchestrator` on
``app.state`` and mounts the route routers.

Usage::

    # Development server (from project root)
    uvicorn scrape_gateway.api.main:app --reload

    # Production
    gunicorn scrape_gateway.api.main:app -k uvicorn.workers.UvicornWorker
"""

from __future__ import annotations

import time
from typing import Callable, Optional

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from scrape_gateway.api.responses import error_response, gateway_error_response
from scrape_gateway.api.routes import health, internal, scrape, usage
from scrape_gateway.config.settings import get_settings
from scrape_gateway.core.audit import AuditLogWriter
from scrape_gateway.core.database import AsyncSessionLocal
from scrape_gateway.core.exceptions import GatewayError, InternalError
from scrape_gateway.core.logging_config import configure_logging, request_id_var
from scrape_gateway.core.orchestrator import ScrapeOrchestrator
from scrape_gateway.core.security import generate_request_id
from scrape_gateway.scraper.browser_pool import BrowserPool
from scrape_gateway.scraper.http_fetcher import LightDriver
from scrape_gateway.scraper.playwright_fetcher import HeavyDriver

# ---------------------------------------------------------------------------
# Logging configuration: applied once at import time so records emitted
# during app construction are captured.  The level is re-applied inside
# create_app() once settings are loaded.
# ---------------------------------------------------------------------------

configure_logging("INFO")

logger = structlog.get_logger(__name__)

# Headers browsers may read from cross-origin responses.
_EXPOSED_HEADERS = [
    "X-Request-ID",
    "X-RateLimit-Limit",
    "X-RateLimit-Remaining",
    "X-RateLimit-Reset",
]


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or generate_request_id()


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    return gateway_error_response(exc, _request_id(request))


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render body/query validation failures as ``INVALID_REQUEST``.

    Only ``loc``, ``msg`` and ``type`` are kept from each pydantic error;
    ``input`` and ``ctx`` may echo caller data or hold non-JSON values.
    """
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return error_response(
        "INVALID_REQUEST",
        "Request validation failed",
        _request_id(request),
        status_code=400,
        details={"errors": errors},
    )


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    request_id = _request_id(request)
    if exc.status_code in (404, 405):
        return error_response(
            "NOT_FOUND",
            f"Endpoint {request.method} {request.url.path} not found",
            request_id,
            status_code=404,
        )
    code = "UNAUTHORIZED" if exc.status_code == 401 else "INVALID_REQUEST"
    return error_response(
        code,
        str(exc.detail),
        request_id,
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(*, browser_pool: Optional[BrowserPool] = None) -> FastAPI:
    """Build and configure the FastAPI application.

    Separated from the module-level ``app`` singleton so that tests can
    build an app against a patched settings environment.

    Args:
        browser_pool: Session pool for the heavy driver.  Defaults to a pool
            sized by ``browser_max_sessions``; tests inject one backed by a
            fake browser.

    Returns:
        A fully configured ``FastAPI`` instance.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    application = FastAPI(
        title=settings.app_name,
        description="Authenticated, quota-metered gateway for fetching and screenshotting web pages.",
        version=health.API_VERSION,
        debug=settings.debug,
        redirect_slashes=False,
    )

    # ---- Fetch pipeline ----------------------------------------------------

    pool = browser_pool or BrowserPool(
        max_sessions=settings.browser_max_sessions,
        headless=settings.browser_headless,
    )
    light = LightDriver(user_agent=settings.scraper_user_agent)
    heavy = HeavyDriver(pool, user_agent=settings.scraper_user_agent)
    audit = AuditLogWriter(AsyncSessionLocal)

    application.state.browser_pool = pool
    application.state.light_driver = light
    application.state.audit = audit
    application.state.orchestrator = ScrapeOrchestrator(
        session_factory=AsyncSessionLocal,
        audit=audit,
        drivers={light.render_mode: light, heavy.render_mode: heavy},
        screenshot_driver=heavy,
    )

    # ---- Middleware --------------------------------------------------------

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-API-Key", "Authorization", "Cookie"],
        expose_headers=_EXPOSED_HEADERS,
        max_age=86400,
    )

    @application.middleware("http")
    async def request_logging_middleware(
        request: Request, call_next: Callable
    ) -> Response:
        """Assign the request id, log the outcome and contain stray faults.

        Any exception that escapes the routers and the registered handlers
        is logged with its traceback and answered with the generic
        ``INTERNAL_ERROR`` envelope.
        """
        request_id = generate_request_id()
        request.state.request_id = request_id
        request_id_var.set(request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("unhandled_exception", exc_info=exc)
            response = gateway_error_response(InternalError(), request_id)

        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
        log_fn = logger.warning if response.status_code >= 400 else logger.info
        log_fn(
            "request_complete",
            status_code=response.status_code,
            elapsed_ms=elapsed_ms,
        )

        response.headers["X-Request-ID"] = request_id
        return response

    # ---- Exception handlers ------------------------------------------------

    application.add_exception_handler(GatewayError, _gateway_error_handler)
    application.add_exception_handler(RequestValidationError, _validation_error_handler)
    application.add_exception_handler(StarletteHTTPException, _http_error_handler)

    # ---- Routers -----------------------------------------------------------

    application.include_router(health.router)
    application.include_router(scrape.router, prefix="/api/v1")
    application.include_router(usage.router, prefix="/api/v1")
    application.include_router(internal.router, prefix="/internal")

    # ---- Lifecycle events --------------------------------------------------

    @application.on_event("startup")
    async def on_startup() -> None:
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            environment=settings.environment,
            log_level=settings.log_level,
        )

    @application.on_event("shutdown")
    async def on_shutdown() -> None:
        """Flush detached writes, then release network and browser resources."""
        await audit.drain()
        await light.aclose()
        await pool.shutdown()
        logger.info("application_shutdown")

    return application


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

app = create_app()
"""The FastAPI application instance.

This is the ASGI callable passed to Uvicorn / Gunicorn.
"""
