"""Shared pytest fixtures for Scrape Gateway tests.

Fixture summary
---------------
database        : creates every table on a throwaway SQLite file, drops them after.
db_session      : AsyncSession on that database.
principal       : a free-plan Principal row (limit 100).
issued_key      : an active API key for ``principal`` (raw key included).
audit_writer    : AuditLogWriter over the test database, drained on teardown.
app / client    : FastAPI app with fake drivers and an httpx.AsyncClient on it.

Everything runs against ``sqlite+aiosqlite``; no external services are
needed.  The engine is disposed after every test because pytest-asyncio
gives each test its own event loop.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Set before any application module is imported so that Settings() and the
# module-level engine pick them up during collection.

_TEST_DB_DIR = tempfile.mkdtemp(prefix="scrape-gateway-tests-")

INTERNAL_SECRET = "test-internal-secret"

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'gateway.db')}"
os.environ["INTERNAL_API_SECRET"] = INTERNAL_SECRET
os.environ.setdefault("LOG_LEVEL", "WARNING")

# ---------------------------------------------------------------------------
# Application imports (after env bootstrap)
# ---------------------------------------------------------------------------

from scrape_gateway.config.settings import get_settings  # noqa: E402

get_settings.cache_clear()

from scrape_gateway.core.audit import AuditLogWriter  # noqa: E402
from scrape_gateway.core.database import AsyncSessionLocal, Base, async_engine  # noqa: E402
from scrape_gateway.core.models import Principal  # noqa: E402
from scrape_gateway.core.orchestrator import ScrapeOrchestrator  # noqa: E402
from scrape_gateway.core.principal_service import IssuedApiKey, PrincipalService  # noqa: E402
from tests.factories.drivers import FakeFetchDriver, FakeScreenshotDriver  # noqa: E402
from tests.factories.principals import create_principal  # noqa: E402


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Create all tables for one test and drop them afterwards."""
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await async_engine.dispose()


@pytest_asyncio.fixture
async def db_session(database: None) -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def principal(db_session: AsyncSession) -> Principal:
    return await create_principal(db_session)


@pytest_asyncio.fixture
async def issued_key(db_session: AsyncSession, principal: Principal) -> IssuedApiKey:
    return await PrincipalService(db_session).issue_api_key(principal.id, "default")


@pytest_asyncio.fixture
async def audit_writer(database: None) -> AsyncGenerator[AuditLogWriter, None]:
    writer = AuditLogWriter(AsyncSessionLocal)
    yield writer
    await writer.drain()


# ---------------------------------------------------------------------------
# Fake drivers and orchestrator
# ---------------------------------------------------------------------------


@pytest.fixture
def light_driver() -> FakeFetchDriver:
    return FakeFetchDriver("light")


@pytest.fixture
def heavy_driver() -> FakeFetchDriver:
    return FakeFetchDriver("heavy")


@pytest.fixture
def screenshot_driver() -> FakeScreenshotDriver:
    return FakeScreenshotDriver()


@pytest.fixture
def orchestrator(
    audit_writer: AuditLogWriter,
    light_driver: FakeFetchDriver,
    heavy_driver: FakeFetchDriver,
    screenshot_driver: FakeScreenshotDriver,
) -> ScrapeOrchestrator:
    return ScrapeOrchestrator(
        session_factory=AsyncSessionLocal,
        audit=audit_writer,
        drivers={"light": light_driver, "heavy": heavy_driver},
        screenshot_driver=screenshot_driver,
    )


# ---------------------------------------------------------------------------
# FastAPI test client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def app(database: None, orchestrator: ScrapeOrchestrator, audit_writer: AuditLogWriter):
    """Application whose orchestrator uses the fake drivers."""
    from scrape_gateway.api.main import create_app  # noqa: PLC0415

    application = create_app()
    application.state.audit = audit_writer
    application.state.orchestrator = orchestrator
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Yield an httpx.AsyncClient against the test app.

    Detached audit writes are drained before the tables are dropped.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
    await app.state.audit.drain()


@pytest.fixture
def internal_headers() -> dict[str, str]:
    return {"X-Internal-Secret": INTERNAL_SECRET}
