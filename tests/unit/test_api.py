"""HTTP-level tests for the public routes.

The app is built by ``create_app()`` with its orchestrator swapped for one
that drives scripted fakes, so no network or browser is touched.
"""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from scrape_gateway.core.exceptions import SelectorNotFoundError
from scrape_gateway.core.principal_service import IssuedApiKey, PrincipalService
from tests.factories.drivers import PNG_BYTES, FakeFetchDriver, FakeScreenshotDriver
from tests.factories.principals import create_principal


def _key_header(issued: IssuedApiKey) -> dict[str, str]:
    return {"X-API-Key": issued.raw_key}


class TestScrapeRoute:
    async def test_success_envelope(self, client: AsyncClient, issued_key: IssuedApiKey) -> None:
        resp = await client.post(
            "/api/v1/scrape", json={"url": "https://example.com"}, headers=_key_header(issued_key)
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["title"] == "Example Domain"
        assert body["data"]["content"] == "<p>Hello</p>"
        assert body["data"]["url"].startswith("https://example.com")
        assert body["data"]["timestamp"].endswith("Z")
        assert body["meta"]["render_mode"] == "light"
        assert isinstance(body["meta"]["duration_ms"], int)

        request_id = resp.headers["X-Request-ID"]
        assert request_id.startswith("req_")
        assert body["meta"]["request_id"] == request_id
        assert resp.headers["Cache-Control"] == "no-store"
        assert resp.headers["X-RateLimit-Limit"] == "100"
        assert resp.headers["X-RateLimit-Remaining"] == "99"
        assert int(resp.headers["X-RateLimit-Reset"]) > 0

    async def test_bearer_authorization_is_accepted(
        self, client: AsyncClient, issued_key: IssuedApiKey
    ) -> None:
        resp = await client.post(
            "/api/v1/scrape",
            json={"url": "https://example.com"},
            headers={"Authorization": f"Bearer {issued_key.raw_key}"},
        )
        assert resp.status_code == 200

    async def test_render_true_reports_heavy(
        self, client: AsyncClient, issued_key: IssuedApiKey, heavy_driver: FakeFetchDriver
    ) -> None:
        resp = await client.post(
            "/api/v1/scrape",
            json={"url": "https://example.com", "render": True, "wait_for": "#root"},
            headers=_key_header(issued_key),
        )
        assert resp.json()["meta"]["render_mode"] == "heavy"
        assert heavy_driver.calls[0].wait_for == "#root"

    @pytest.mark.parametrize("headers", [{}, {"X-API-Key": "sk_nope"}, {"Authorization": "Basic abc"}])
    async def test_missing_or_bad_key_is_401(self, client: AsyncClient, database, headers) -> None:
        resp = await client.post("/api/v1/scrape", json={"url": "https://example.com"}, headers=headers)

        assert resp.status_code == 401
        error = resp.json()["error"]
        assert error["code"] == "UNAUTHORIZED"
        assert error["message"] == "Invalid or expired API key."
        assert error["request_id"] == resp.headers["X-Request-ID"]

    @pytest.mark.parametrize(
        "payload",
        [{}, {"url": ""}, {"url": "https://example.com", "timeout": True}, {"url": "https://example.com", "render": "yes please"}],
    )
    async def test_invalid_body_is_400(
        self, client: AsyncClient, issued_key: IssuedApiKey, payload: dict
    ) -> None:
        resp = await client.post("/api/v1/scrape", json=payload, headers=_key_header(issued_key))

        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "INVALID_REQUEST"
        assert error["details"]["errors"]
        assert set(error["details"]["errors"][0]) == {"loc", "msg", "type"}

    async def test_private_target_is_400_ssrf(
        self, client: AsyncClient, issued_key: IssuedApiKey, light_driver: FakeFetchDriver
    ) -> None:
        resp = await client.post(
            "/api/v1/scrape", json={"url": "http://10.0.0.5/"}, headers=_key_header(issued_key)
        )

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "SSRF_BLOCKED"
        assert light_driver.calls == []

    async def test_selector_not_found_is_400(
        self, client: AsyncClient, issued_key: IssuedApiKey, light_driver: FakeFetchDriver
    ) -> None:
        light_driver.error = SelectorNotFoundError(".nonexistent")
        resp = await client.post(
            "/api/v1/scrape",
            json={"url": "https://example.com", "selector": ".nonexistent"},
            headers=_key_header(issued_key),
        )

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "SELECTOR_NOT_FOUND"
        assert resp.headers["X-RateLimit-Remaining"] == "99"

    async def test_exhausted_quota_is_429(self, client: AsyncClient, db_session) -> None:
        principal = await create_principal(db_session, quota_limit=2, quota_count=2)
        issued = await PrincipalService(db_session).issue_api_key(principal.id, "default")

        resp = await client.post(
            "/api/v1/scrape", json={"url": "https://example.com"}, headers=_key_header(issued)
        )

        assert resp.status_code == 429
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        error = resp.json()["error"]
        assert error["code"] == "QUOTA_EXCEEDED"
        assert error["details"]["limit"] == 2
        assert error["details"]["reset_at"].endswith("Z")

    async def test_unexpected_fault_is_generic_500(self, app, client: AsyncClient, database) -> None:
        class Exploding:
            async def scrape(self, request, ctx):
                raise RuntimeError("connection string postgres://secret@db")

        app.state.orchestrator = Exploding()
        resp = await client.post(
            "/api/v1/scrape", json={"url": "https://example.com"}, headers={"X-API-Key": "sk_x"}
        )

        assert resp.status_code == 500
        error = resp.json()["error"]
        assert error["code"] == "INTERNAL_ERROR"
        assert "secret" not in error["message"]
        assert resp.headers["X-Request-ID"] == error["request_id"]


class TestScreenshotRoute:
    async def test_returns_image_bytes(
        self,
        client: AsyncClient,
        issued_key: IssuedApiKey,
        screenshot_driver: FakeScreenshotDriver,
    ) -> None:
        resp = await client.post(
            "/api/v1/screenshot",
            json={"url": "https://example.com", "full_page": True},
            headers=_key_header(issued_key),
        )

        assert resp.status_code == 200
        assert resp.content == PNG_BYTES
        assert resp.headers["Content-Type"] == "image/png"
        assert resp.headers["Cache-Control"] == "public, max-age=3600"
        assert resp.headers["X-RateLimit-Remaining"] == "99"
        assert screenshot_driver.calls[0].full_page is True

    async def test_out_of_range_viewport_is_400(
        self, client: AsyncClient, issued_key: IssuedApiKey
    ) -> None:
        resp = await client.post(
            "/api/v1/screenshot",
            json={"url": "https://example.com", "width": 10},
            headers=_key_header(issued_key),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_REQUEST"

    async def test_unknown_format_is_400(self, client: AsyncClient, issued_key: IssuedApiKey) -> None:
        resp = await client.post(
            "/api/v1/screenshot",
            json={"url": "https://example.com", "format": "gif"},
            headers=_key_header(issued_key),
        )
        assert resp.status_code == 400


class TestUsageRoute:
    async def test_reports_without_consuming(
        self, client: AsyncClient, issued_key: IssuedApiKey
    ) -> None:
        await client.post(
            "/api/v1/scrape", json={"url": "https://example.com"}, headers=_key_header(issued_key)
        )
        first = await client.get("/api/v1/user/usage", headers=_key_header(issued_key))
        second = await client.get("/api/v1/user/usage", headers=_key_header(issued_key))

        assert first.status_code == 200
        data = first.json()["data"]
        assert (data["used"], data["limit"], data["remaining"]) == (1, 100, 99)
        assert data["reset_at"].endswith("Z")
        assert second.json()["data"]["used"] == 1

    async def test_requires_key(self, client: AsyncClient, database) -> None:
        resp = await client.get("/api/v1/user/usage")
        assert resp.status_code == 401


class TestSystemRoutes:
    async def test_health_ok(self, client: AsyncClient) -> None:
        resp = await client.get("/health")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["checks"] == {"database": "ok"}
        assert body["version"] == "1.0.0"
        assert body["timestamp"].endswith("Z")
        assert resp.headers["Cache-Control"] == "no-store"

    async def test_unknown_route_is_not_found_envelope(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/does-not-exist")

        assert resp.status_code == 404
        error = resp.json()["error"]
        assert error["code"] == "NOT_FOUND"
        assert error["message"] == "Endpoint GET /api/v1/does-not-exist not found"

    async def test_wrong_method_is_not_found_envelope(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/scrape")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    async def test_cors_preflight(self, client: AsyncClient) -> None:
        resp = await client.options(
            "/api/v1/scrape",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "X-API-Key",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["Access-Control-Max-Age"] == "86400"
