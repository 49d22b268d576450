"""Response envelope helpers.

Success::

    {"success": true, "data": ..., "meta": {"request_id": "req_...", ...}}

Failure::

    {"success": false, "error": {"code": "...", "message": "...",
                                 "request_id": "req_...", "details": {...}}}

JSON envelopes are never cached; screenshot bytes may be cached for an hour.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from scrape_gateway.core.exceptions import GatewayError

NO_STORE = "no-store"
IMAGE_CACHE_CONTROL = "public, max-age=3600"


def _headers(request_id: str, cache_control: str, extra: Optional[dict[str, str]]) -> dict[str, str]:
    headers = dict(extra or {})
    headers["X-Request-ID"] = request_id
    headers["Cache-Control"] = cache_control
    return headers


def success_response(
    data: Any,
    request_id: str,
    *,
    status_code: int = 200,
    meta: Optional[dict[str, Any]] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    body = {
        "success": True,
        "data": jsonable_encoder(data),
        "meta": {"request_id": request_id, **(meta or {})},
    }
    return JSONResponse(
        body,
        status_code=status_code,
        headers=_headers(request_id, NO_STORE, headers),
    )


def error_response(
    code: str,
    message: str,
    request_id: str,
    *,
    status_code: int,
    details: Optional[dict[str, Any]] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    error: dict[str, Any] = {"code": code, "message": message, "request_id": request_id}
    if details:
        error["details"] = jsonable_encoder(details)
    return JSONResponse(
        {"success": False, "error": error},
        status_code=status_code,
        headers=_headers(request_id, NO_STORE, headers),
    )


def gateway_error_response(exc: GatewayError, request_id: str) -> JSONResponse:
    """Render a :class:`GatewayError` into the failure envelope."""
    return error_response(
        exc.code,
        exc.message,
        request_id,
        status_code=exc.status_code,
        details=exc.details,
        headers=exc.headers,
    )


def image_response(
    image: bytes,
    content_type: str,
    request_id: str,
    *,
    headers: Optional[dict[str, str]] = None,
) -> Response:
    return Response(
        content=image,
        media_type=content_type,
        headers=_headers(request_id, IMAGE_CACHE_CONTROL, headers),
    )
