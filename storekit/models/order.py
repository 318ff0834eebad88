"""Order model — a customer's purchase from one tenant."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlmodel import Field, Relationship, SQLModel

from storekit.models.base import TimestampMixin, new_uuid
from storekit.models.customer import Customer, CustomerRead


class OrderStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Order(TimestampMixin, SQLModel, table=True):
    __tablename__ = "orders"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    customer_id: uuid.UUID | None = Field(
        default=None, foreign_key="customers.id", nullable=True, index=True,
    )

    order_number: str = Field(max_length=32, unique=True, nullable=False, index=True)
    status: OrderStatus = Field(default=OrderStatus.PENDING, index=True)
    total: float = Field(nullable=False)
    currency: str = Field(default="USD", max_length=3)
    notes: str | None = Field(default=None, max_length=2000)

    is_deleted: bool = Field(default=False, index=True)

    customer: Customer | None = Relationship()


# ── Pydantic schemas ─────────────────────────────────────────

class OrderCreate(SQLModel):
    customer_id: uuid.UUID | None = None
    status: OrderStatus = OrderStatus.PENDING
    total: float = Field(ge=0)
    currency: str | None = Field(default=None, max_length=3)
    notes: str | None = Field(default=None, max_length=2000)


class OrderRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    customer_id: uuid.UUID | None
    order_number: str
    status: OrderStatus
    total: float
    currency: str
    notes: str | None
    created_at: datetime
    customer: CustomerRead | None = None
