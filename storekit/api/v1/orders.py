"""Orders — all queries scoped to tenant_id, customer embedded."""

import secrets
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlmodel import select

from storekit.api.deps import Auth, Session, require_paid_subscription
from storekit.api.listing import ListResponse, list_for_tenant
from storekit.models.base import utcnow
from storekit.models.customer import Customer
from storekit.models.order import Order, OrderCreate, OrderRead
from storekit.models.tenant import Tenant

router = APIRouter(prefix="/orders", tags=["orders"])

# customer.name / customer.phone are matched through the relation
SEARCH_FIELDS = ["order_number", "notes", "customer.name", "customer.phone"]


def _order_number() -> str:
    return f"ORD-{utcnow():%Y%m%d}-{secrets.token_hex(3).upper()}"


async def _get_or_404(session: AsyncSession, order_id: uuid.UUID, tenant_id: uuid.UUID) -> Order:
    result = await session.execute(
        select(Order)
        .where(
            Order.id == order_id,
            Order.tenant_id == tenant_id,
            Order.is_deleted.is_(False),  # type: ignore[attr-defined]
        )
        .options(selectinload(Order.customer))  # type: ignore[arg-type]
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order


@router.post(
    "",
    response_model=OrderRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_paid_subscription)],
)
async def create_order(body: OrderCreate, auth: Auth, session: Session) -> OrderRead:
    if body.customer_id is not None:
        customer = await session.get(Customer, body.customer_id)
        if customer is None or customer.tenant_id != auth.tenant_id or customer.is_deleted:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")

    store = await session.get(Tenant, auth.tenant_id)
    order = Order(
        tenant_id=auth.tenant_id,
        customer_id=body.customer_id,
        order_number=_order_number(),
        status=body.status,
        total=body.total,
        currency=(body.currency or store.currency).upper(),
        notes=body.notes,
    )
    session.add(order)
    await session.commit()
    return OrderRead.model_validate(await _get_or_404(session, order.id, auth.tenant_id))


@router.get("", response_model=ListResponse)
async def list_orders(request: Request, auth: Auth, session: Session) -> ListResponse:
    return await list_for_tenant(
        session,
        Order,
        dict(request.query_params),
        auth.tenant_id,
        serialize=OrderRead.model_validate,
        search_fields=SEARCH_FIELDS,
        base_where={"is_deleted": False},
        include={"customer": True},
    )


@router.get("/{order_id}", response_model=OrderRead)
async def get_order(order_id: uuid.UUID, auth: Auth, session: Session) -> OrderRead:
    return OrderRead.model_validate(await _get_or_404(session, order_id, auth.tenant_id))
