"""Shared list-endpoint plumbing: query string -> tenant-scoped page."""

import uuid
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from storekit.core.query_builder import PaginationMeta, TenantScopedQueryBuilder
from storekit.core.repository import SQLModelRepository


class ListResponse(BaseModel):
    data: list[dict[str, Any]]
    meta: PaginationMeta


async def list_for_tenant(
    session: AsyncSession,
    model: type[SQLModel],
    query: Mapping[str, Any],
    tenant_id: uuid.UUID,
    *,
    serialize: Callable[[Any], BaseModel],
    search_fields: Sequence[str] = (),
    base_where: Mapping[str, Any] | None = None,
    include: Mapping[str, Any] | None = None,
) -> ListResponse:
    """Run search, filter, sort, pagination and projection for one tenant.

    Full rows go through ``serialize``; projected rows are returned as-is.
    """
    builder = TenantScopedQueryBuilder(
        SQLModelRepository(session, model),
        query,
        tenant_id=tenant_id,
        search_fields=search_fields,
    )
    if base_where:
        builder.add_base_where(base_where)
    builder.search().filter().sort().paginate().fields()
    if include:
        builder.include(include)

    result = await builder.execute()
    data = [
        row if isinstance(row, dict) else serialize(row).model_dump(mode="json")
        for row in result.data
    ]
    return ListResponse(data=data, meta=result.meta)
