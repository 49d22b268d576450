"""Daily request quota: atomic test-and-increment and read-only status.

Every principal owns one quota window stored on its own row::

    (quota_count, quota_limit, quota_reset_at)

Window rules
------------
  - If ``quota_reset_at <= now`` the window is stale and is treated as
    ``quota_count = 0`` before any decision is made.
  - ``check_and_consume()`` succeeds only if the (possibly reset) count is
    still below the limit, and then increments it by exactly one.
  - A reset moves ``quota_reset_at`` to the next UTC midnight in the same
    statement that counts the request.

The test-and-increment is one ``UPDATE ... RETURNING`` whose ``WHERE`` clause
carries the quota condition, so two concurrent calls can never both observe
the last free slot.  Within a process the statement additionally runs under a
per-principal :class:`asyncio.Lock`; locks for different principals are
independent, so cross-principal calls never wait on each other.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import case, false, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from scrape_gateway.core.exceptions import NotFoundError
from scrape_gateway.core.models import Principal
from scrape_gateway.core.models.base import UTCDateTime, utcnow
from scrape_gateway.core.models.principals import next_utc_midnight

logger = logging.getLogger(__name__)

_principal_locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = (
    weakref.WeakValueDictionary()
)


def _lock_for(principal_id: uuid.UUID) -> asyncio.Lock:
    """Return the process-wide lock serialising quota writes for one principal."""
    lock = _principal_locks.get(principal_id)
    if lock is None:
        lock = asyncio.Lock()
        _principal_locks[principal_id] = lock
    return lock


@dataclass(frozen=True)
class QuotaDecision:
    """Result of a quota check.

    Attributes:
        allowed: ``True`` when the request was counted.
        current: Requests counted in the window after this decision.
        limit: Daily request limit.
        reset_at: UTC instant at which the window resets.
    """

    allowed: bool
    current: int
    limit: int
    reset_at: datetime

    @property
    def remaining(self) -> int:
        return max(self.limit - self.current, 0)

    def rate_limit_headers(self) -> dict[str, str]:
        """Render the ``X-RateLimit-*`` response headers for this decision."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at.timestamp())),
        }


@dataclass(frozen=True)
class QuotaInfo:
    """Read-only view of a quota window, as shown on the usage endpoints."""

    used: int
    limit: int
    remaining: int
    reset_at: datetime

    def to_dict(self) -> dict:
        return {
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_at.isoformat().replace("+00:00", "Z"),
        }


class QuotaService:
    """Reads and advances principals' daily quota windows.

    ``check_and_consume`` commits immediately so the counted request is
    visible to every other session before the response is produced.

    Args:
        session: An open :class:`sqlalchemy.ext.asyncio.AsyncSession`.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def check_and_consume(
        self,
        principal_id: uuid.UUID,
        quota_limit: int,
        now: Optional[datetime] = None,
    ) -> QuotaDecision:
        """Atomically count one request against the principal's window.

        Args:
            principal_id: Principal to charge.
            quota_limit: Daily limit to enforce.
            now: Override for the current instant (tests).

        Returns:
            :class:`QuotaDecision` with ``allowed=False`` and the unchanged
            window when the limit has already been reached.

        Raises:
            NotFoundError: If the principal row does not exist.
        """
        now = now or utcnow()
        next_reset = next_utc_midnight(now)
        is_stale = Principal.quota_reset_at <= now
        # A zero limit admits nothing, not even after a reset.
        if quota_limit > 0:
            admissible = is_stale | (Principal.quota_count < quota_limit)
        else:
            admissible = false()

        stmt = (
            update(Principal)
            .where(Principal.id == principal_id)
            .where(admissible)
            .values(
                quota_count=case((is_stale, 1), else_=Principal.quota_count + 1),
                quota_reset_at=case(
                    (is_stale, literal(next_reset, UTCDateTime())),
                    else_=Principal.quota_reset_at,
                ),
            )
            .returning(Principal.quota_count, Principal.quota_reset_at)
            .execution_options(synchronize_session=False)
        )

        async with _lock_for(principal_id):
            result = await self.session.execute(stmt)
            row = result.one_or_none()
            await self.session.commit()

        if row is not None:
            count, reset_at = row
            return QuotaDecision(allowed=True, current=count, limit=quota_limit, reset_at=reset_at)

        current = await self._read_window(principal_id)
        if current is None:
            raise NotFoundError("Principal not found")
        count, reset_at = current
        logger.info(
            "quota_exceeded",
            extra={"principal_id": str(principal_id), "limit": quota_limit, "current": count},
        )
        return QuotaDecision(allowed=False, current=count, limit=quota_limit, reset_at=reset_at)

    async def get_quota_info(
        self,
        principal_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> QuotaInfo:
        """Return the principal's window without counting a request.

        A stale window is reported as empty with the next UTC midnight as its
        reset instant; the reset itself is not persisted.

        Raises:
            NotFoundError: If the principal does not exist or is soft-deleted.
        """
        now = now or utcnow()
        stmt = select(
            Principal.quota_count,
            Principal.quota_limit,
            Principal.quota_reset_at,
        ).where(Principal.id == principal_id, Principal.deleted_at.is_(None))
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            raise NotFoundError("User not found")

        count, limit, reset_at = row
        if reset_at <= now:
            count, reset_at = 0, next_utc_midnight(now)
        return QuotaInfo(
            used=count,
            limit=limit,
            remaining=max(limit - count, 0),
            reset_at=reset_at,
        )

    async def _read_window(self, principal_id: uuid.UUID) -> Optional[tuple[int, datetime]]:
        stmt = select(Principal.quota_count, Principal.quota_reset_at).where(
            Principal.id == principal_id
        )
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return row[0], row[1]
