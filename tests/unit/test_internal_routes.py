"""Tests for the ``/internal`` routes used by the dashboard backend."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from scrape_gateway.core.models import Principal, RequestLog
from scrape_gateway.core.principal_service import IssuedApiKey


class TestSecretGuard:
    @pytest.mark.parametrize("headers", [{}, {"X-Internal-Secret": "wrong"}])
    async def test_missing_or_wrong_secret_is_403(
        self, client: AsyncClient, principal: Principal, headers: dict
    ) -> None:
        resp = await client.get(f"/internal/user/api-keys?user_id={principal.id}", headers=headers)

        assert resp.status_code == 403
        error = resp.json()["error"]
        assert error["code"] == "FORBIDDEN"
        assert error["message"] == "Internal endpoint access denied."

    async def test_api_key_does_not_open_internal_routes(
        self, client: AsyncClient, principal: Principal, issued_key: IssuedApiKey
    ) -> None:
        resp = await client.get(
            f"/internal/user/usage?user_id={principal.id}",
            headers={"X-API-Key": issued_key.raw_key},
        )
        assert resp.status_code == 403


class TestAuthSync:
    async def test_creates_then_updates(
        self, client: AsyncClient, database, internal_headers: dict[str, str]
    ) -> None:
        payload = {"provider_id": "github|314", "email": "grace@example.com", "display_name": "Grace"}
        first = await client.post("/internal/auth/sync", json=payload, headers=internal_headers)

        assert first.status_code == 200
        user = first.json()["data"]["user"]
        assert user["email"] == "grace@example.com"
        assert user["name"] == "Grace"
        assert user["plan"] == "free"
        uuid.UUID(user["id"])

        payload["email"] = "hopper@example.com"
        second = await client.post("/internal/auth/sync", json=payload, headers=internal_headers)
        assert second.json()["data"]["user"]["id"] == user["id"]
        assert second.json()["data"]["user"]["email"] == "hopper@example.com"

    async def test_sync_succeeds_with_info_logging(
        self,
        client: AsyncClient,
        database,
        internal_headers: dict[str, str],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        caplog.set_level(logging.INFO)

        resp = await client.post(
            "/internal/auth/sync",
            json={"provider_id": "gh-1", "email": "a@example.com"},
            headers=internal_headers,
        )

        assert resp.status_code == 200
        assert resp.json()["success"] is True

    async def test_invalid_email_is_400(
        self, client: AsyncClient, database, internal_headers: dict[str, str]
    ) -> None:
        resp = await client.post(
            "/internal/auth/sync",
            json={"provider_id": "github|1", "email": "not-an-email"},
            headers=internal_headers,
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_REQUEST"


class TestApiKeyRoutes:
    async def test_create_returns_raw_key_once(
        self, client: AsyncClient, principal: Principal, internal_headers: dict[str, str]
    ) -> None:
        resp = await client.post(
            "/internal/user/api-keys",
            json={"user_id": str(principal.id), "name": "ci"},
            headers=internal_headers,
        )

        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["key"].startswith("sk_")
        assert data["key_prefix"] == data["key"][:11]
        assert data["name"] == "ci"

        listed = await client.get(f"/internal/user/api-keys?user_id={principal.id}", headers=internal_headers)
        keys = listed.json()["data"]["keys"]
        assert [k["id"] for k in keys] == [data["id"]]
        assert "key" not in keys[0]
        assert "key_hash" not in keys[0]

    async def test_duplicate_name_is_409(
        self, client: AsyncClient, principal: Principal, internal_headers: dict[str, str]
    ) -> None:
        body = {"user_id": str(principal.id), "name": "ci"}
        await client.post("/internal/user/api-keys", json=body, headers=internal_headers)
        resp = await client.post("/internal/user/api-keys", json=body, headers=internal_headers)

        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "API_KEY_NAME_TAKEN"

    async def test_blank_name_is_400(
        self, client: AsyncClient, principal: Principal, internal_headers: dict[str, str]
    ) -> None:
        resp = await client.post(
            "/internal/user/api-keys",
            json={"user_id": str(principal.id), "name": "   "},
            headers=internal_headers,
        )
        assert resp.status_code == 400

    async def test_unknown_principal_is_404(
        self, client: AsyncClient, database, internal_headers: dict[str, str]
    ) -> None:
        resp = await client.get(f"/internal/user/api-keys?user_id={uuid.uuid4()}", headers=internal_headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    async def test_revoke_then_revoke_again(
        self,
        client: AsyncClient,
        principal: Principal,
        issued_key: IssuedApiKey,
        internal_headers: dict[str, str],
    ) -> None:
        url = f"/internal/user/api-keys/{issued_key.id}?user_id={principal.id}"
        first = await client.delete(url, headers=internal_headers)
        second = await client.delete(url, headers=internal_headers)

        assert first.status_code == 200
        assert first.json()["data"] == {"revoked": True}
        assert second.status_code == 404

        scrape = await client.post(
            "/api/v1/scrape",
            json={"url": "https://example.com"},
            headers={"X-API-Key": issued_key.raw_key},
        )
        assert scrape.status_code == 401


class TestRequestsAndUsage:
    async def test_requests_newest_first_with_limit(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        principal: Principal,
        internal_headers: dict[str, str],
    ) -> None:
        base = datetime(2026, 6, 1, tzinfo=timezone.utc)
        for i in range(4):
            db_session.add(
                RequestLog(
                    request_id=f"req_{i}",
                    principal_id=principal.id,
                    method="POST",
                    path="/api/v1/scrape",
                    target_url="https://example.com/",
                    status_code=200,
                    duration_ms=5 + i,
                    created_at=base + timedelta(seconds=i),
                )
            )
        await db_session.commit()

        resp = await client.get(
            f"/internal/user/requests?user_id={principal.id}&limit=2", headers=internal_headers
        )

        assert resp.status_code == 200
        entries = resp.json()["data"]["requests"]
        assert [e["request_id"] for e in entries] == ["req_3", "req_2"]
        assert entries[0]["created_at"].endswith("Z")
        assert set(entries[0]) == {
            "request_id", "method", "path", "target_url", "status_code", "duration_ms", "created_at"
        }

    async def test_usage_for_principal(
        self, client: AsyncClient, principal: Principal, internal_headers: dict[str, str]
    ) -> None:
        resp = await client.get(f"/internal/user/usage?user_id={principal.id}", headers=internal_headers)

        assert resp.status_code == 200
        assert resp.json()["data"]["limit"] == 100
        assert resp.json()["data"]["used"] == 0

    async def test_malformed_user_id_is_400(
        self, client: AsyncClient, database, internal_headers: dict[str, str]
    ) -> None:
        resp = await client.get("/internal/user/usage?user_id=not-a-uuid", headers=internal_headers)
        assert resp.status_code == 400
