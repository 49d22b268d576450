"""Initial schema: principals, API keys and the two append-only log tables.

Creates the Scrape Gateway schema in FK-dependency order:

1. principals    : callers and their daily quota window
2. api_keys      : hashed credentials (FK principals, RESTRICT)
3. request_logs  : one audit record per scrape/screenshot decision
4. auth_logs     : login / key_used / key_created / key_revoked events

The log tables carry no foreign keys: they are append-only and must accept
rows for requests refused before a principal was known.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_JSON = sa.JSON().with_variant(JSONB(), "postgresql")
_BIGINT_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    """Create all tables and indexes."""

    # ------------------------------------------------------------------
    # 1. principals
    # ------------------------------------------------------------------
    op.create_table(
        "principals",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("display_name", sa.String(200), nullable=True),
        sa.Column("avatar_url", sa.String(2048), nullable=True),
        sa.Column("plan", sa.String(20), nullable=False, server_default=sa.text("'free'")),
        sa.Column("quota_limit", sa.Integer, nullable=False, server_default=sa.text("100")),
        sa.Column("quota_count", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("quota_reset_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_principals_provider_id", "principals", ["provider_id"], unique=True)

    # ------------------------------------------------------------------
    # 2. api_keys
    # ------------------------------------------------------------------
    op.create_table(
        "api_keys",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "principal_id",
            sa.Uuid(),
            sa.ForeignKey("principals.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("key_hash", sa.String(64), nullable=False),
        sa.Column("key_prefix", sa.String(11), nullable=False),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("principal_id", "name", name="uq_api_keys_principal_name"),
    )
    op.create_index("ix_api_keys_principal_id", "api_keys", ["principal_id"])
    op.create_index("ix_api_keys_key_hash", "api_keys", ["key_hash"], unique=True)

    # ------------------------------------------------------------------
    # 3. request_logs
    # ------------------------------------------------------------------
    op.create_table(
        "request_logs",
        sa.Column("id", _BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column("request_id", sa.String(64), nullable=False),
        sa.Column("principal_id", sa.Uuid(), nullable=True),
        sa.Column("api_key_id", sa.Uuid(), nullable=True),
        sa.Column("method", sa.String(10), nullable=False),
        sa.Column("path", sa.String(200), nullable=False),
        sa.Column("target_url", sa.Text, nullable=True),
        sa.Column("render_mode", sa.String(10), nullable=True),
        sa.Column("status_code", sa.Integer, nullable=False),
        sa.Column("error_code", sa.String(40), nullable=True),
        sa.Column("duration_ms", sa.Integer, nullable=False),
        sa.Column("response_size", sa.Integer, nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_request_logs_request_id", "request_logs", ["request_id"])
    op.create_index("ix_request_logs_principal_id", "request_logs", ["principal_id"])
    op.create_index("ix_request_logs_created_at", "request_logs", ["created_at"])

    # ------------------------------------------------------------------
    # 4. auth_logs
    # ------------------------------------------------------------------
    op.create_table(
        "auth_logs",
        sa.Column("id", _BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column("principal_id", sa.Uuid(), nullable=False),
        sa.Column("event_type", sa.String(30), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column("metadata", _JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_auth_logs_principal_id", "auth_logs", ["principal_id"])


def downgrade() -> None:
    """Drop all tables in reverse FK order."""
    op.drop_index("ix_auth_logs_principal_id", table_name="auth_logs")
    op.drop_table("auth_logs")

    op.drop_index("ix_request_logs_created_at", table_name="request_logs")
    op.drop_index("ix_request_logs_principal_id", table_name="request_logs")
    op.drop_index("ix_request_logs_request_id", table_name="request_logs")
    op.drop_table("request_logs")

    op.drop_index("ix_api_keys_key_hash", table_name="api_keys")
    op.drop_index("ix_api_keys_principal_id", table_name="api_keys")
    op.drop_table("api_keys")

    op.drop_index("ix_principals_provider_id", table_name="principals")
    op.drop_table("principals")
