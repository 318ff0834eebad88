"""Subscription endpoints — plan catalog, status, checkout and cancellation."""

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from storekit.api.deps import Auth, BillingAuth, Session
from storekit.core.subscription import (
    BillingCycleMonths,
    SubscriptionPlan,
    generate_all_plans,
)
from storekit.models.invoice import SubscriptionInvoiceRead
from storekit.models.subscription import SubscriptionOverview, TenantSubscriptionRead
from storekit.services import billing

router = APIRouter(prefix="/subscription", tags=["subscription"])


# ── Schemas ──────────────────────────────────────────────────

class CheckoutRequest(BaseModel):
    plan_id: str = Field(max_length=100)


class CancelRequest(BaseModel):
    at_period_end: bool = True


# ── Routes ───────────────────────────────────────────────────

@router.get("", response_model=SubscriptionOverview)
async def get_subscription(auth: Auth, session: Session) -> SubscriptionOverview:
    """Current subscription, its derived status and the invoice to pay, if any."""
    return await billing.get_subscription_with_status(session, auth.tenant_id)


@router.get("/plans", response_model=list[SubscriptionPlan])
async def list_plans(
    cycle_months: int | None = Query(default=None),
) -> list[SubscriptionPlan]:
    if cycle_months is not None and cycle_months not in set(BillingCycleMonths):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="cycle_months must be one of 1, 6, 12",
        )
    plans = generate_all_plans()
    if cycle_months is not None:
        plans = [p for p in plans if p.billing_cycle_months == cycle_months]
    return sorted(plans, key=lambda p: p.sort_order)


@router.post(
    "/checkout",
    response_model=SubscriptionInvoiceRead,
    status_code=status.HTTP_201_CREATED,
)
async def checkout(body: CheckoutRequest, auth: BillingAuth, session: Session) -> SubscriptionInvoiceRead:
    invoice = await billing.create_checkout_invoice(session, auth.tenant_id, body.plan_id)
    return SubscriptionInvoiceRead.from_invoice(invoice)


@router.post("/renew", response_model=SubscriptionInvoiceRead)
async def renew(auth: BillingAuth, session: Session) -> SubscriptionInvoiceRead:
    invoice = await billing.create_renewal_invoice(session, auth.tenant_id)
    return SubscriptionInvoiceRead.from_invoice(invoice)


@router.post("/cancel", response_model=TenantSubscriptionRead)
async def cancel(
    auth: BillingAuth,
    session: Session,
    body: CancelRequest | None = None,
) -> TenantSubscriptionRead:
    at_period_end = body.at_period_end if body is not None else True
    subscription = await billing.cancel_subscription(session, auth.tenant_id, at_period_end)
    return TenantSubscriptionRead.model_validate(subscription)


@router.post("/reactivate", response_model=TenantSubscriptionRead)
async def reactivate(auth: BillingAuth, session: Session) -> TenantSubscriptionRead:
    subscription = await billing.reactivate_subscription(session, auth.tenant_id)
    return TenantSubscriptionRead.model_validate(subscription)
