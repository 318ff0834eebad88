"""Product catalog — all queries scoped to tenant_id."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from storekit.api.deps import Auth, Session, require_paid_subscription
from storekit.api.listing import ListResponse, list_for_tenant
from storekit.models.base import utcnow
from storekit.models.product import Product, ProductCreate, ProductRead
from storekit.services import billing

router = APIRouter(prefix="/products", tags=["products"])

SEARCH_FIELDS = ["name", "sku", "category", "description"]


async def _get_or_404(session: AsyncSession, product_id: uuid.UUID, tenant_id: uuid.UUID) -> Product:
    product = await session.get(Product, product_id)
    if product is None or product.tenant_id != tenant_id or product.is_deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return product


@router.post(
    "",
    response_model=ProductRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_paid_subscription)],
)
async def create_product(body: ProductCreate, auth: Auth, session: Session) -> ProductRead:
    in_use = await session.scalar(
        select(func.count())
        .select_from(Product)
        .where(Product.tenant_id == auth.tenant_id, Product.is_deleted.is_(False))  # type: ignore[attr-defined]
    )
    await billing.ensure_feature_available(session, auth.tenant_id, "max_products", in_use or 0)

    product = Product(tenant_id=auth.tenant_id, **body.model_dump())
    session.add(product)
    await session.commit()
    await session.refresh(product)
    return ProductRead.model_validate(product)


@router.get("", response_model=ListResponse)
async def list_products(request: Request, auth: Auth, session: Session) -> ListResponse:
    return await list_for_tenant(
        session,
        Product,
        dict(request.query_params),
        auth.tenant_id,
        serialize=ProductRead.model_validate,
        search_fields=SEARCH_FIELDS,
        base_where={"is_deleted": False},
    )


@router.get("/{product_id}", response_model=ProductRead)
async def get_product(product_id: uuid.UUID, auth: Auth, session: Session) -> ProductRead:
    return ProductRead.model_validate(await _get_or_404(session, product_id, auth.tenant_id))


@router.delete(
    "/{product_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_paid_subscription)],
)
async def delete_product(product_id: uuid.UUID, auth: Auth, session: Session) -> None:
    """Soft-delete: the row stays but disappears from every listing."""
    product = await _get_or_404(session, product_id, auth.tenant_id)
    product.is_deleted = True
    product.updated_at = utcnow()
    session.add(product)
    await session.commit()
