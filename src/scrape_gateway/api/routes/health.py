"""Health check route.

``GET /health`` runs ``SELECT 1`` against the database and reports::

    {"status": "ok" | "degraded", "timestamp": "...", "checks": {"database": "ok"},
     "version": "1.0.0"}

HTTP 200 when every check passes, 503 otherwise.  The check itself never
raises.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import sqlalchemy as sa
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from scrape_gateway.core.database import AsyncSessionLocal

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])

API_VERSION = "1.0.0"


async def _check_database() -> str:
    """Run ``SELECT 1`` against the configured database.

    Returns:
        ``"ok"`` if the query succeeds, ``"error"`` otherwise.
    """
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(sa.text("SELECT 1"))
        return "ok"
    except Exception:
        logger.exception("Health check: database unreachable")
        return "error"


@router.get("/health")
async def health() -> JSONResponse:
    checks = {"database": await _check_database()}
    healthy = all(value == "ok" for value in checks.values())
    return JSONResponse(
        {
            "status": "ok" if healthy else "degraded",
            "timestamp": datetime.now(tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "checks": checks,
            "version": API_VERSION,
        },
        status_code=200 if healthy else 503,
        headers={"Cache-Control": "no-store"},
    )
