"""Store staff accounts."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlmodel import Field, SQLModel

from storekit.models.base import TimestampMixin, new_uuid


class UserRole(StrEnum):
    OWNER = "owner"
    ADMIN = "admin"
    STAFF = "staff"


# Roles allowed to buy, renew or cancel the store's subscription
BILLING_ROLES = frozenset({UserRole.OWNER, UserRole.ADMIN})


class User(TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    email: str = Field(max_length=320, nullable=False, index=True)
    password_hash: str = Field(nullable=False)
    display_name: str = Field(default="", max_length=255)
    role: UserRole = Field(default=UserRole.STAFF)
    is_active: bool = Field(default=True)
    last_login_at: datetime | None = Field(default=None)


class UserRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    email: str
    display_name: str
    role: UserRole
    is_active: bool
    last_login_at: datetime | None
