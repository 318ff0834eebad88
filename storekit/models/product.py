"""Product model — an item in a tenant's catalog."""

import uuid
from datetime import datetime

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from storekit.models.base import TimestampMixin, new_uuid


class Product(TimestampMixin, SQLModel, table=True):
    __tablename__ = "products"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)

    name: str = Field(max_length=255, nullable=False, index=True)
    sku: str | None = Field(default=None, max_length=100, index=True)
    description: str | None = Field(default=None, sa_column=Column(Text))
    category: str | None = Field(default=None, max_length=100, index=True)
    price: float = Field(nullable=False)
    stock: int = Field(default=0)

    is_active: bool = Field(default=True)
    is_deleted: bool = Field(default=False, index=True)


# ── Pydantic schemas ─────────────────────────────────────────

class ProductCreate(SQLModel):
    name: str = Field(max_length=255)
    sku: str | None = Field(default=None, max_length=100)
    description: str | None = None
    category: str | None = Field(default=None, max_length=100)
    price: float = Field(ge=0)
    stock: int = Field(default=0, ge=0)
    is_active: bool = True


class ProductRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    name: str
    sku: str | None
    description: str | None
    category: str | None
    price: float
    stock: int
    is_active: bool
    created_at: datetime
    updated_at: datetime
