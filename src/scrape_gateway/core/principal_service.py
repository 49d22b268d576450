"""Principals and their API keys: authentication, identity sync, key lifecycle.

Authentication
--------------
  1. Surface check: ``sk_`` + 64 hex characters, before any lookup.
  2. SHA-256 digest of the raw key.
  3. One query joining an active, unexpired key to a non-deleted principal.

Every failure resolves to ``None``; callers raise the same
:class:`~scrape_gateway.core.exceptions.UnauthorizedError` for every cause so
that nothing reveals which check failed.  Last-used and ``key_used`` writes
are not done here: the orchestrator schedules them as detached tasks.

Key lifecycle
-------------
  - ``issue_api_key()`` returns the raw key exactly once; only its digest and
    11-character display prefix are stored.
  - ``revoke_api_key()`` flips ``is_active``; keys are never deleted.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from scrape_gateway.config.plans import Plan, default_quota_for
from scrape_gateway.core.exceptions import (
    ApiKeyNameTakenError,
    InternalError,
    NotFoundError,
)
from scrape_gateway.core.models import ApiKey, AuthLog, Principal, RequestLog
from scrape_gateway.core.models.base import utcnow
from scrape_gateway.core.security import (
    generate_api_key,
    get_key_prefix,
    hash_api_key,
    is_well_formed_api_key,
)

logger = logging.getLogger(__name__)

#: Attempts at drawing a key whose digest is not already stored.
_MAX_ISSUE_ATTEMPTS = 3

REQUEST_LOG_DEFAULT_LIMIT = 10
REQUEST_LOG_MAX_LIMIT = 50


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    """The caller behind a valid API key."""

    principal_id: uuid.UUID
    api_key_id: uuid.UUID
    key_prefix: str
    plan: str
    quota_limit: int


@dataclass(frozen=True)
class IssuedApiKey:
    """A freshly issued key.  ``raw_key`` is never retrievable again."""

    id: uuid.UUID
    name: str
    key_prefix: str
    raw_key: str
    created_at: datetime


def clamp_request_log_limit(limit: Optional[int]) -> int:
    if limit is None:
        return REQUEST_LOG_DEFAULT_LIMIT
    return max(1, min(int(limit), REQUEST_LOG_MAX_LIMIT))


class PrincipalService:
    """Database operations on principals, API keys and their auth log.

    Args:
        session: An open :class:`sqlalchemy.ext.asyncio.AsyncSession`.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(
        self,
        raw_key: Optional[str],
        now: Optional[datetime] = None,
    ) -> Optional[AuthenticatedPrincipal]:
        """Resolve a raw API key to its principal.

        Args:
            raw_key: Key as presented by the caller; may be ``None``.
            now: Override for the current instant (tests).

        Returns:
            The authenticated principal, or ``None`` for a missing, malformed,
            unknown, revoked or expired key, or a deleted principal.
        """
        if not raw_key or not is_well_formed_api_key(raw_key):
            return None

        now = now or utcnow()
        stmt = (
            select(ApiKey.id, ApiKey.key_prefix, Principal.id, Principal.plan, Principal.quota_limit)
            .join(Principal, ApiKey.principal_id == Principal.id)
            .where(
                ApiKey.key_hash == hash_api_key(raw_key),
                ApiKey.is_active.is_(True),
                or_(ApiKey.expires_at.is_(None), ApiKey.expires_at > now),
                Principal.deleted_at.is_(None),
            )
        )
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            return None

        key_id, key_prefix, principal_id, plan, quota_limit = row
        return AuthenticatedPrincipal(
            principal_id=principal_id,
            api_key_id=key_id,
            key_prefix=key_prefix,
            plan=plan,
            quota_limit=quota_limit,
        )

    # ------------------------------------------------------------------
    # Principals
    # ------------------------------------------------------------------

    async def get_principal(self, principal_id: uuid.UUID) -> Principal:
        """Return a non-deleted principal.

        Raises:
            NotFoundError: If no such principal exists.
        """
        stmt = select(Principal).where(
            Principal.id == principal_id,
            Principal.deleted_at.is_(None),
        )
        principal = (await self.session.execute(stmt)).scalar_one_or_none()
        if principal is None:
            raise NotFoundError("User not found")
        return principal

    async def upsert_from_identity(
        self,
        *,
        provider_id: str,
        email: str,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Principal:
        """Create or refresh the principal keyed by ``provider_id``.

        Idempotent.  A soft-deleted principal is restored.  New principals
        start on the free plan with that plan's daily limit.  A ``login``
        auth event is recorded in the same transaction.

        Returns:
            The current principal row.
        """
        now = utcnow()
        for attempt in range(2):
            stmt = select(Principal).where(Principal.provider_id == provider_id)
            principal = (await self.session.execute(stmt)).scalar_one_or_none()
            if principal is None:
                principal = Principal(
                    id=uuid.uuid4(),
                    provider_id=provider_id,
                    email=email,
                    display_name=display_name,
                    avatar_url=avatar_url,
                    plan=Plan.FREE.value,
                    quota_limit=default_quota_for(Plan.FREE.value),
                    last_login_at=now,
                )
                self.session.add(principal)
                created = True
            else:
                principal.email = email
                principal.display_name = display_name
                principal.avatar_url = avatar_url
                principal.last_login_at = now
                principal.deleted_at = None
                created = False

            self.session.add(
                AuthLog(
                    principal_id=principal.id,
                    event_type="login",
                    ip_address=ip_address,
                    user_agent=user_agent,
                    metadata_={"provider_id": provider_id, "created": created},
                )
            )
            try:
                await self.session.commit()
            except IntegrityError:
                # A concurrent sync inserted the same provider id first.
                await self.session.rollback()
                if attempt == 1:
                    raise
                continue

            logger.info(
                "principal_synced",
                extra={"principal_id": str(principal.id), "was_created": created},
            )
            return principal

        raise InternalError()  # pragma: no cover

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    async def issue_api_key(
        self,
        principal_id: uuid.UUID,
        name: str,
        *,
        expires_at: Optional[datetime] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> IssuedApiKey:
        """Issue a new key for a principal and return the raw secret once.

        Raises:
            NotFoundError: If the principal does not exist.
            ApiKeyNameTakenError: If the principal already has a key with
                this name (revoked keys included).
            InternalError: If no unused digest was drawn after three tries.
        """
        await self.get_principal(principal_id)
        if await self._name_taken(principal_id, name):
            raise ApiKeyNameTakenError()

        for _ in range(_MAX_ISSUE_ATTEMPTS):
            raw_key = generate_api_key()
            api_key = ApiKey(
                id=uuid.uuid4(),
                principal_id=principal_id,
                key_hash=hash_api_key(raw_key),
                key_prefix=get_key_prefix(raw_key),
                name=name,
                is_active=True,
                created_at=utcnow(),
                expires_at=expires_at,
            )
            self.session.add(api_key)
            self.session.add(
                AuthLog(
                    principal_id=principal_id,
                    event_type="key_created",
                    ip_address=ip_address,
                    user_agent=user_agent,
                    metadata_={"key_id": str(api_key.id), "key_prefix": api_key.key_prefix},
                )
            )
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                if await self._name_taken(principal_id, name):
                    raise ApiKeyNameTakenError() from None
                logger.warning("api_key_digest_collision", extra={"principal_id": str(principal_id)})
                continue

            logger.info(
                "api_key_issued",
                extra={"principal_id": str(principal_id), "key_prefix": api_key.key_prefix},
            )
            return IssuedApiKey(
                id=api_key.id,
                name=api_key.name,
                key_prefix=api_key.key_prefix,
                raw_key=raw_key,
                created_at=api_key.created_at,
            )

        raise InternalError("Failed to generate a unique API key")

    async def revoke_api_key(
        self,
        principal_id: uuid.UUID,
        key_id: uuid.UUID,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        """Deactivate one of the principal's keys.

        Raises:
            NotFoundError: If the key does not exist, belongs to another
                principal, or is already revoked.
        """
        stmt = (
            update(ApiKey)
            .where(
                ApiKey.id == key_id,
                ApiKey.principal_id == principal_id,
                ApiKey.is_active.is_(True),
            )
            .values(is_active=False)
            .returning(ApiKey.key_prefix)
            .execution_options(synchronize_session=False)
        )
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            await self.session.rollback()
            raise NotFoundError("API key not found")

        self.session.add(
            AuthLog(
                principal_id=principal_id,
                event_type="key_revoked",
                ip_address=ip_address,
                user_agent=user_agent,
                metadata_={"key_id": str(key_id), "key_prefix": row[0]},
            )
        )
        await self.session.commit()
        logger.info(
            "api_key_revoked",
            extra={"principal_id": str(principal_id), "key_prefix": row[0]},
        )

    async def list_api_keys(self, principal_id: uuid.UUID) -> list[ApiKey]:
        """Return the principal's active keys, newest first."""
        stmt = (
            select(ApiKey)
            .where(ApiKey.principal_id == principal_id, ApiKey.is_active.is_(True))
            .order_by(ApiKey.created_at.desc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def list_request_logs(
        self,
        principal_id: uuid.UUID,
        limit: Optional[int] = None,
    ) -> list[RequestLog]:
        """Return the principal's most recent audit records, newest first.

        ``limit`` is clamped to 1-50 and defaults to 10.
        """
        stmt = (
            select(RequestLog)
            .where(RequestLog.principal_id == principal_id)
            .order_by(RequestLog.created_at.desc(), RequestLog.id.desc())
            .limit(clamp_request_log_limit(limit))
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def _name_taken(self, principal_id: uuid.UUID, name: str) -> bool:
        stmt = select(ApiKey.id).where(ApiKey.principal_id == principal_id, ApiKey.name == name)
        return (await self.session.execute(stmt)).first() is not None


def serialize_api_key(api_key: ApiKey) -> dict[str, Any]:
    """Public view of a stored key (never includes the digest)."""
    return {
        "id": str(api_key.id),
        "name": api_key.name,
        "key_prefix": api_key.key_prefix,
        "created_at": _iso(api_key.created_at),
        "last_used_at": _iso(api_key.last_used_at),
        "expires_at": _iso(api_key.expires_at),
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat().replace("+00:00", "Z") if value is not None else None
