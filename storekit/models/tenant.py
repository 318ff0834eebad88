"""Store (tenant) model: the isolation boundary for every catalog row."""

import uuid

from sqlmodel import Field, SQLModel

from storekit.models.base import TimestampMixin, new_uuid


class Tenant(TimestampMixin, SQLModel, table=True):
    __tablename__ = "tenants"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=255, nullable=False)
    slug: str = Field(max_length=100, unique=True, nullable=False, index=True)

    contact_email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=32)
    currency: str = Field(default="USD", max_length=3)
    # Only plans with the custom_domain feature may set this
    custom_domain: str | None = Field(default=None, max_length=255, unique=True)

    is_active: bool = Field(default=True)


class TenantRead(SQLModel):
    id: uuid.UUID
    name: str
    slug: str
    contact_email: str | None
    phone: str | None
    currency: str
    custom_domain: str | None
    is_active: bool
