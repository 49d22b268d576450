"""SQLAlchemy declarative base and shared column types for all ORM models.

Provides:
- Base: the DeclarativeBase subclass all models inherit from
- UTCDateTime: timezone-aware timestamp column that always round-trips UTC
- TimestampMixin: created_at / updated_at columns
- JSONType: JSONB on PostgreSQL, plain JSON elsewhere

Models are written against generic types so that the same metadata creates
the PostgreSQL schema in production and an SQLite schema in tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class UTCDateTime(sa.types.TypeDecorator):
    """``TIMESTAMP WITH TIME ZONE`` that never hands back a naive datetime.

    SQLite has no timezone support, so values are stored as naive UTC there
    and re-tagged as UTC on the way out.
    """

    impl = sa.DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


JSONType = sa.JSON().with_variant(JSONB(), "postgresql")

#: Auto-incrementing 64-bit key on PostgreSQL; SQLite only autoincrements INTEGER.
BigIntPK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


class Base(DeclarativeBase):
    """Shared declarative base for all Scrape Gateway models."""

    type_annotation_map = {
        uuid.UUID: sa.Uuid(as_uuid=True),
        datetime: UTCDateTime(),
    }


class TimestampMixin:
    """Adds created_at and updated_at columns.

    Both carry a Python-side default as well as a server default so that
    freshly flushed objects can be read without a refresh round-trip.
    """

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        server_default=sa.func.now(),
        onupdate=utcnow,
    )
