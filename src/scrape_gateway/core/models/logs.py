"""Append-only log tables.

- RequestLog: one row per scrape/screenshot decision (the audit record).
- AuthLog: identity and credential lifecycle events.

The gateway only ever inserts into these tables; the dashboard reads them
back through the internal routes.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from scrape_gateway.core.models.base import Base, BigIntPK, JSONType, UTCDateTime, utcnow


class RequestLog(Base):
    """Audit record of one gateway decision.

    ``principal_id`` and ``api_key_id`` are NULL when the request was refused
    before authentication completed.  ``render_mode`` is ``"light"`` or
    ``"heavy"``; ``error_code`` is NULL on success.
    """

    __tablename__ = "request_logs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    request_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    principal_id: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True, index=True)
    api_key_id: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)
    method: Mapped[str] = mapped_column(sa.String(10), nullable=False)
    path: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    target_url: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    render_mode: Mapped[Optional[str]] = mapped_column(sa.String(10), nullable=True)
    status_code: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    error_code: Mapped[Optional[str]] = mapped_column(sa.String(40), nullable=True)
    duration_ms: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    response_size: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        server_default=sa.func.now(),
        index=True,
    )

    def __repr__(self) -> str:
        return (
            f"<RequestLog request_id={self.request_id!r} status={self.status_code} "
            f"error={self.error_code!r}>"
        )


class AuthLog(Base):
    """Identity/credential event: ``login``, ``key_used``, ``key_created``, ``key_revoked``."""

    __tablename__ = "auth_logs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    principal_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(sa.String(30), nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        server_default=sa.func.now(),
    )
