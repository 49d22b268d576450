"""Caller-facing usage route: ``GET /api/v1/user/usage``.

Reports the caller's quota window without counting a request against it.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from scrape_gateway.api.dependencies import get_authenticated_principal, get_request_id
from scrape_gateway.api.responses import success_response
from scrape_gateway.core.database import get_db
from scrape_gateway.core.principal_service import AuthenticatedPrincipal
from scrape_gateway.core.quota_service import QuotaService

router = APIRouter(tags=["usage"])


@router.get("/user/usage")
async def get_usage(
    principal: Annotated[AuthenticatedPrincipal, Depends(get_authenticated_principal)],
    request_id: Annotated[str, Depends(get_request_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> JSONResponse:
    info = await QuotaService(db).get_quota_info(principal.principal_id)
    return success_response(info.to_dict(), request_id)
