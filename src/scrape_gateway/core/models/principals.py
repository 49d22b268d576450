"""Principal and API key ORM models.

Covers:
- Principal: an authenticated caller with its own daily quota window.
- ApiKey: a long-lived credential bound to exactly one principal.

Neither table is ever hard-deleted by the gateway: principals are
soft-deleted via ``deleted_at`` and keys are revoked via ``is_active``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from scrape_gateway.core.models.base import Base, TimestampMixin, UTCDateTime, utcnow


def next_utc_midnight(now: Optional[datetime] = None) -> datetime:
    """Return the first UTC midnight strictly after ``now``."""
    current = now or utcnow()
    midnight = current.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(days=1)


class Principal(TimestampMixin, Base):
    """A caller of the gateway, created by the identity-sync collaborator.

    ``provider_id`` is the external OAuth provider's user id and is the
    upsert key.  ``quota_count`` counts requests since the window opened;
    once ``quota_reset_at`` has passed the window is stale and the count is
    treated as zero.
    """

    __tablename__ = "principals"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[str] = mapped_column(
        sa.String(64),
        unique=True,
        nullable=False,
        index=True,
    )
    email: Mapped[str] = mapped_column(sa.String(320), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(sa.String(200), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(sa.String(2048), nullable=True)
    plan: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default="free",
        server_default=sa.text("'free'"),
    )
    quota_limit: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        default=100,
        server_default=sa.text("100"),
    )
    quota_count: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        default=0,
        server_default=sa.text("0"),
    )
    quota_reset_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=next_utc_midnight,
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    api_keys: Mapped[list[ApiKey]] = relationship(
        "ApiKey",
        back_populates="principal",
    )

    def __repr__(self) -> str:
        return f"<Principal id={self.id} provider_id={self.provider_id!r} plan={self.plan!r}>"


class ApiKey(Base):
    """An API key.  Only the SHA-256 digest of the raw key is stored.

    ``key_prefix`` (``sk_`` plus 8 hex characters) is safe to display.
    Names are unique per principal, including revoked keys.
    """

    __tablename__ = "api_keys"
    __table_args__ = (
        sa.UniqueConstraint("principal_id", "name", name="uq_api_keys_principal_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    principal_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("principals.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    key_hash: Mapped[str] = mapped_column(
        sa.String(64),
        nullable=False,
        unique=True,
        index=True,
    )
    key_prefix: Mapped[str] = mapped_column(sa.String(11), nullable=False)
    name: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        default=True,
        server_default=sa.true(),
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        server_default=sa.func.now(),
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    principal: Mapped[Principal] = relationship("Principal", back_populates="api_keys")

    def __repr__(self) -> str:
        return f"<ApiKey id={self.id} prefix={self.key_prefix!r} active={self.is_active}>"
