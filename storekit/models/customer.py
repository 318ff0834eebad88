"""Customer model — a shopper known to one tenant."""

import uuid
from datetime import datetime

from pydantic import EmailStr
from sqlmodel import Field, SQLModel

from storekit.models.base import TimestampMixin, new_uuid


class Customer(TimestampMixin, SQLModel, table=True):
    __tablename__ = "customers"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)

    name: str = Field(max_length=255, nullable=False, index=True)
    email: str | None = Field(default=None, max_length=320, index=True)
    phone: str | None = Field(default=None, max_length=32)
    city: str | None = Field(default=None, max_length=100)

    is_deleted: bool = Field(default=False, index=True)


# ── Pydantic schemas ─────────────────────────────────────────

class CustomerCreate(SQLModel):
    name: str = Field(max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=32)
    city: str | None = Field(default=None, max_length=100)


class CustomerRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    name: str
    email: str | None
    phone: str | None
    city: str | None
    created_at: datetime
