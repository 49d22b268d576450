"""Internal routes called by the dashboard backend (``/internal``).

Every route requires the ``X-Internal-Secret`` header.  Principals are
addressed by ``user_id`` (query string or body) because the dashboard has
already authenticated the human user on its side.

Routes:
    POST   /internal/auth/sync
    GET    /internal/user/api-keys?user_id=
    POST   /internal/user/api-keys
    DELETE /internal/user/api-keys/{key_id}?user_id=
    GET    /internal/user/requests?user_id=&limit=
    GET    /internal/user/usage?user_id=
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from scrape_gateway.api.dependencies import client_ip, get_request_id, require_internal_secret
from scrape_gateway.api.responses import success_response
from scrape_gateway.core.database import get_db
from scrape_gateway.core.models import Principal, RequestLog
from scrape_gateway.core.principal_service import PrincipalService, serialize_api_key
from scrape_gateway.core.quota_service import QuotaService
from scrape_gateway.core.schemas.internal import AuthSyncRequest, CreateApiKeyRequest

router = APIRouter(tags=["internal"], dependencies=[Depends(require_internal_secret)])

DbSession = Annotated[AsyncSession, Depends(get_db)]
RequestId = Annotated[str, Depends(get_request_id)]


def _iso(value: Any) -> Optional[str]:
    return value.isoformat().replace("+00:00", "Z") if value is not None else None


def _serialize_principal(principal: Principal) -> dict[str, Any]:
    return {
        "id": str(principal.id),
        "email": principal.email,
        "name": principal.display_name,
        "avatar_url": principal.avatar_url,
        "plan": principal.plan,
    }


def _serialize_request_log(entry: RequestLog) -> dict[str, Any]:
    return {
        "request_id": entry.request_id,
        "method": entry.method,
        "path": entry.path,
        "target_url": entry.target_url,
        "status_code": entry.status_code,
        "duration_ms": entry.duration_ms,
        "created_at": _iso(entry.created_at),
    }


@router.post("/auth/sync")
async def sync_identity(
    body: AuthSyncRequest,
    request: Request,
    request_id: RequestId,
    db: DbSession,
) -> JSONResponse:
    """Create or refresh the principal behind an OAuth identity."""
    principal = await PrincipalService(db).upsert_from_identity(
        provider_id=body.provider_id,
        email=body.email,
        display_name=body.display_name,
        avatar_url=body.avatar_url,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return success_response({"user": _serialize_principal(principal)}, request_id)


@router.get("/user/api-keys")
async def list_api_keys(
    request_id: RequestId,
    db: DbSession,
    user_id: uuid.UUID = Query(...),
) -> JSONResponse:
    service = PrincipalService(db)
    await service.get_principal(user_id)
    keys = await service.list_api_keys(user_id)
    return success_response({"keys": [serialize_api_key(k) for k in keys]}, request_id)


@router.post("/user/api-keys", status_code=201)
async def create_api_key(
    body: CreateApiKeyRequest,
    request: Request,
    request_id: RequestId,
    db: DbSession,
) -> JSONResponse:
    """Issue a key.  The raw ``key`` is in this response and nowhere else."""
    issued = await PrincipalService(db).issue_api_key(
        body.user_id,
        body.name,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return success_response(
        {
            "id": str(issued.id),
            "key": issued.raw_key,
            "key_prefix": issued.key_prefix,
            "name": issued.name,
            "created_at": _iso(issued.created_at),
        },
        request_id,
        status_code=201,
    )


@router.delete("/user/api-keys/{key_id}")
async def revoke_api_key(
    key_id: uuid.UUID,
    request: Request,
    request_id: RequestId,
    db: DbSession,
    user_id: uuid.UUID = Query(...),
) -> JSONResponse:
    await PrincipalService(db).revoke_api_key(
        user_id,
        key_id,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return success_response({"revoked": True}, request_id)


@router.get("/user/requests")
async def list_requests(
    request_id: RequestId,
    db: DbSession,
    user_id: uuid.UUID = Query(...),
    limit: Optional[int] = Query(default=None),
) -> JSONResponse:
    """Recent audit records for a principal; ``limit`` is clamped to 1-50."""
    service = PrincipalService(db)
    await service.get_principal(user_id)
    entries = await service.list_request_logs(user_id, limit)
    return success_response(
        {"requests": [_serialize_request_log(e) for e in entries]},
        request_id,
    )


@router.get("/user/usage")
async def get_usage(
    request_id: RequestId,
    db: DbSession,
    user_id: uuid.UUID = Query(...),
) -> JSONResponse:
    info = await QuotaService(db).get_quota_info(user_id)
    return success_response(info.to_dict(), request_id)
