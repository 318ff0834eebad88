"""Subscription invoices — list, inspect and settle."""

import uuid

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from storekit.api.deps import Auth, BillingAuth, Session
from storekit.api.listing import ListResponse, list_for_tenant
from storekit.models.invoice import SubscriptionInvoice, SubscriptionInvoiceRead
from storekit.services import billing

router = APIRouter(prefix="/invoices", tags=["invoices"])


class PayRequest(BaseModel):
    transaction_id: str | None = Field(default=None, max_length=255)


@router.get("", response_model=ListResponse)
async def list_invoices(request: Request, auth: Auth, session: Session) -> ListResponse:
    """Paginated invoices; supports ``searchTerm``, ``sort``, ``fields`` and filters."""
    return await list_for_tenant(
        session,
        SubscriptionInvoice,
        dict(request.query_params),
        auth.tenant_id,
        serialize=SubscriptionInvoiceRead.from_invoice,
        search_fields=["invoice_number", "plan_name"],
    )


@router.get("/{invoice_id}", response_model=SubscriptionInvoiceRead)
async def get_invoice(invoice_id: uuid.UUID, auth: Auth, session: Session) -> SubscriptionInvoiceRead:
    invoice = await billing.get_invoice(session, auth.tenant_id, invoice_id)
    return SubscriptionInvoiceRead.from_invoice(invoice)


@router.post("/{invoice_id}/pay", response_model=SubscriptionInvoiceRead)
async def pay_invoice(
    invoice_id: uuid.UUID,
    auth: BillingAuth,
    session: Session,
    body: PayRequest | None = None,
) -> SubscriptionInvoiceRead:
    """Record a successful payment and apply it to the subscription."""
    invoice = await billing.mark_invoice_paid(
        session,
        auth.tenant_id,
        invoice_id,
        transaction_id=body.transaction_id if body is not None else None,
    )
    return SubscriptionInvoiceRead.from_invoice(invoice)


@router.post("/{invoice_id}/cancel", response_model=SubscriptionInvoiceRead)
async def cancel_invoice(invoice_id: uuid.UUID, auth: BillingAuth, session: Session) -> SubscriptionInvoiceRead:
    invoice = await billing.cancel_invoice(session, auth.tenant_id, invoice_id)
    return SubscriptionInvoiceRead.from_invoice(invoice)
