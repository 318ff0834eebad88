"""Customers — all queries scoped to tenant_id."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from storekit.api.deps import Auth, Session, require_paid_subscription
from storekit.api.listing import ListResponse, list_for_tenant
from storekit.models.base import utcnow
from storekit.models.customer import Customer, CustomerCreate, CustomerRead

router = APIRouter(prefix="/customers", tags=["customers"])


async def _get_or_404(session: AsyncSession, customer_id: uuid.UUID, tenant_id: uuid.UUID) -> Customer:
    customer = await session.get(Customer, customer_id)
    if customer is None or customer.tenant_id != tenant_id or customer.is_deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return customer


@router.post(
    "",
    response_model=CustomerRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_paid_subscription)],
)
async def create_customer(body: CustomerCreate, auth: Auth, session: Session) -> CustomerRead:
    customer = Customer(tenant_id=auth.tenant_id, **body.model_dump())
    session.add(customer)
    await session.commit()
    await session.refresh(customer)
    return CustomerRead.model_validate(customer)


@router.get("", response_model=ListResponse)
async def list_customers(request: Request, auth: Auth, session: Session) -> ListResponse:
    return await list_for_tenant(
        session,
        Customer,
        dict(request.query_params),
        auth.tenant_id,
        serialize=CustomerRead.model_validate,
        search_fields=["name", "email", "phone"],
        base_where={"is_deleted": False},
    )


@router.get("/{customer_id}", response_model=CustomerRead)
async def get_customer(customer_id: uuid.UUID, auth: Auth, session: Session) -> CustomerRead:
    return CustomerRead.model_validate(await _get_or_404(session, customer_id, auth.tenant_id))


@router.delete(
    "/{customer_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_paid_subscription)],
)
async def delete_customer(customer_id: uuid.UUID, auth: Auth, session: Session) -> None:
    customer = await _get_or_404(session, customer_id, auth.tenant_id)
    customer.is_deleted = True
    customer.updated_at = utcnow()
    session.add(customer)
    await session.commit()
