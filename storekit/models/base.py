"""Shared base fields for all models."""

import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

from storekit.core.subscription import utcnow

__all__ = ["TimestampMixin", "new_uuid", "utcnow"]


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class TimestampMixin(SQLModel):
    """Created / updated timestamps injected into every table."""

    created_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)
