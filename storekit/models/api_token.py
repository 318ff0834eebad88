"""Store API keys: opaque bearer tokens for storefront integrations."""

import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

from storekit.models.base import TimestampMixin, new_uuid


class ApiToken(TimestampMixin, SQLModel, table=True):
    __tablename__ = "api_tokens"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    # Requests made with the key act as this user
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    label: str = Field(default="default", max_length=100)

    token_hash: str = Field(nullable=False, unique=True, index=True)
    token_prefix: str = Field(max_length=12, nullable=False)

    revoked_at: datetime | None = Field(default=None)
    expires_at: datetime | None = Field(default=None)
    last_used_at: datetime | None = Field(default=None)
