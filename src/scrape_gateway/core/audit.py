"""Detached writes to the request and auth logs.

The request path never waits on these writes.  Each one is started with
``asyncio.create_task()`` after the response value is known, runs in its own
session, and logs a warning on failure instead of raising.

Usage::

    writer = AuditLogWriter(AsyncSessionLocal)
    writer.record_request(AuditRecord(request_id=rid, method="POST", ...))
    writer.record_key_used(principal_id, api_key_id, ip_address=ip)

    # On shutdown (and in tests) wait for in-flight writes:
    await writer.drain()
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Coroutine
from dataclasses import asdict, dataclass
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scrape_gateway.core.models import ApiKey, AuthLog, RequestLog
from scrape_gateway.core.models.base import utcnow

logger = logging.getLogger(__name__)


@dataclass
class AuditRecord:
    """One gateway decision, as appended to ``request_logs``.

    ``principal_id`` and ``api_key_id`` stay ``None`` when the request was
    refused before authentication finished.  ``render_mode`` is only set
    once a fetch driver has been invoked.
    """

    request_id: str
    method: str
    path: str
    status_code: int
    duration_ms: int
    principal_id: Optional[uuid.UUID] = None
    api_key_id: Optional[uuid.UUID] = None
    target_url: Optional[str] = None
    render_mode: Optional[str] = None
    error_code: Optional[str] = None
    response_size: Optional[int] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class AuditLogWriter:
    """Runs append-only log writes as detached tasks.

    Args:
        session_factory: Factory used to open one session per write.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of writes still in flight."""
        return len(self._tasks)

    def record_request(self, record: AuditRecord) -> None:
        """Schedule one ``request_logs`` row."""
        self._spawn(self._write_request(record), "request_log")

    def record_key_used(
        self,
        principal_id: uuid.UUID,
        api_key_id: uuid.UUID,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        path: Optional[str] = None,
    ) -> None:
        """Schedule the ``last_used_at`` bump and a ``key_used`` auth event."""
        self._spawn(
            self._write_key_used(principal_id, api_key_id, ip_address, user_agent, path),
            "key_used",
        )

    async def drain(self) -> None:
        """Wait until every scheduled write has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None], kind: str) -> None:
        task = asyncio.create_task(self._guarded(coro, kind))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _guarded(coro: Coroutine[Any, Any, None], kind: str) -> None:
        try:
            await coro
        except Exception as exc:  # noqa: BLE001
            logger.warning("audit: %s write failed: %s", kind, exc, exc_info=True)

    async def _write_request(self, record: AuditRecord) -> None:
        async with self._session_factory() as session:
            session.add(RequestLog(**asdict(record)))
            await session.commit()

    async def _write_key_used(
        self,
        principal_id: uuid.UUID,
        api_key_id: uuid.UUID,
        ip_address: Optional[str],
        user_agent: Optional[str],
        path: Optional[str],
    ) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(ApiKey)
                .where(ApiKey.id == api_key_id)
                .values(last_used_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            session.add(
                AuthLog(
                    principal_id=principal_id,
                    event_type="key_used",
                    ip_address=ip_address,
                    user_agent=user_agent,
                    metadata_={"key_id": str(api_key_id), "path": path},
                )
            )
            await session.commit()
