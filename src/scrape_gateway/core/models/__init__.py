"""SQLAlchemy ORM models for Scrape Gateway.

All models are imported here so that:
1. Alembic autogenerate can discover them via Base.metadata.
2. Application code can do ``from scrape_gateway.core.models import Principal``
   without knowing which sub-module a model lives in.
"""

from __future__ import annotations

from scrape_gateway.core.models.base import Base, TimestampMixin, UTCDateTime
from scrape_gateway.core.models.logs import AuthLog, RequestLog
from scrape_gateway.core.models.principals import ApiKey, Principal, next_utc_midnight

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UTCDateTime",
    # Principals
    "Principal",
    "ApiKey",
    "next_utc_midnight",
    # Logs
    "RequestLog",
    "AuthLog",
]
