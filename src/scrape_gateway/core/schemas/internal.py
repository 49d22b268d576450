"""Request schemas for the ``/internal`` routes used by the dashboard backend."""

from __future__ import annotations

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class AuthSyncRequest(BaseModel):
    """Identity upsert sent after the dashboard completes an OAuth login.

    Attributes:
        provider_id: The OAuth provider's stable user id.
        email: Primary e-mail address reported by the provider.
        display_name: Optional display name.
        avatar_url: Optional avatar image URL.
    """

    model_config = ConfigDict(extra="ignore")

    provider_id: str = Field(..., min_length=1, max_length=64)
    email: EmailStr
    display_name: Optional[str] = Field(default=None, max_length=200)
    avatar_url: Optional[str] = Field(default=None, max_length=2048)


class CreateApiKeyRequest(BaseModel):
    """Body of ``POST /internal/user/api-keys``."""

    model_config = ConfigDict(extra="ignore")

    user_id: uuid.UUID
    name: str = Field(..., min_length=1, max_length=64)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value
