"""FastAPI dependency injection providers.

Dependency hierarchy::

    get_request_id              : gateway request id set by the middleware
    get_call_context            : request id + raw API key + caller provenance
    get_authenticated_principal : requires a valid API key (does not consume quota)
    require_internal_secret     : guards the /internal router
    get_orchestrator            : the app's ScrapeOrchestrator

The API key is read from ``X-API-Key`` or, failing that, from an
``Authorization: Bearer <key>`` header.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from scrape_gateway.config.settings import get_settings
from scrape_gateway.core.database import get_db
from scrape_gateway.core.exceptions import ForbiddenError, UnauthorizedError
from scrape_gateway.core.orchestrator import CallContext, ScrapeOrchestrator
from scrape_gateway.core.principal_service import AuthenticatedPrincipal, PrincipalService
from scrape_gateway.core.security import generate_request_id, secrets_match


def extract_api_key(x_api_key: Optional[str], authorization: Optional[str]) -> Optional[str]:
    """Return the raw key from the dedicated header or a bearer authorization value."""
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


def client_ip(request: Request) -> Optional[str]:
    """Caller address: first ``X-Forwarded-For`` hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


def get_request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None)
    if rid is None:
        rid = generate_request_id()
        request.state.request_id = rid
    return rid


def get_call_context(
    request: Request,
    request_id: Annotated[str, Depends(get_request_id)],
    x_api_key: Annotated[Optional[str], Header(alias="X-API-Key")] = None,
    authorization: Annotated[Optional[str], Header()] = None,
) -> CallContext:
    return CallContext(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
        raw_api_key=extract_api_key(x_api_key, authorization),
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


async def get_authenticated_principal(
    ctx: Annotated[CallContext, Depends(get_call_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AuthenticatedPrincipal:
    """Require a valid API key.

    Raises:
        UnauthorizedError: For any credential problem, with one generic
            message.
    """
    principal = await PrincipalService(db).authenticate(ctx.raw_api_key)
    if principal is None:
        raise UnauthorizedError()
    return principal


def require_internal_secret(
    x_internal_secret: Annotated[Optional[str], Header(alias="X-Internal-Secret")] = None,
) -> None:
    """Reject calls to the internal surface that lack the shared secret.

    Raises:
        ForbiddenError: If the header is missing or does not match.
    """
    if not secrets_match(get_settings().internal_api_secret, x_internal_secret):
        raise ForbiddenError("Internal endpoint access denied.")


def get_orchestrator(request: Request) -> ScrapeOrchestrator:
    return request.app.state.orchestrator
