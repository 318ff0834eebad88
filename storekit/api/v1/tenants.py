"""Store sign-up and store settings."""

import logging

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlmodel import select

from storekit.api.deps import Auth, BillingAuth, Session
from storekit.core.security import (
    generate_api_token,
    hash_api_token,
    hash_password,
    token_display_prefix,
)
from storekit.core.subscription import get_plan
from storekit.models.api_token import ApiToken
from storekit.models.base import utcnow
from storekit.models.subscription import TenantSubscriptionRead
from storekit.models.tenant import Tenant, TenantRead
from storekit.models.user import User, UserRole
from storekit.services import billing

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tenants", tags=["tenants"])


class StoreSignupRequest(BaseModel):
    store_name: str = Field(max_length=255)
    store_slug: str = Field(min_length=2, max_length=100, pattern=r"^[a-z0-9][a-z0-9\-]*$")
    currency: str = Field(default="USD", min_length=3, max_length=3)
    phone: str | None = Field(default=None, max_length=32)
    owner_email: EmailStr
    owner_password: str = Field(min_length=8, max_length=128)
    owner_name: str = Field(default="", max_length=255)
    plan_id: str | None = Field(default=None, description="Plan to trial; defaults to the starter plan")


class StoreSignupResponse(BaseModel):
    tenant: TenantRead
    subscription: TenantSubscriptionRead
    api_token: str = Field(description="Returned once; only its hash is kept")
    token_prefix: str


class StoreUpdateRequest(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    contact_email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=32)
    custom_domain: str | None = Field(default=None, max_length=255, description="Empty or null clears it")

    @field_validator("name")
    @classmethod
    def require_name(cls, value: str | None) -> str:
        # Omit the field to keep the current name
        name = (value or "").strip()
        if not name:
            raise ValueError("Store name cannot be empty")
        return name

    @field_validator("custom_domain")
    @classmethod
    def normalize_domain(cls, value: str | None) -> str | None:
        domain = (value or "").strip().lower()
        return domain or None


@router.post(
    "",
    response_model=StoreSignupResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a store with its owner account and a trial",
)
async def sign_up(body: StoreSignupRequest, session: Session) -> StoreSignupResponse:
    """The only unauthenticated write: store, owner, first API key and trial."""
    if body.plan_id is not None and get_plan(body.plan_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown plan '{body.plan_id}'")

    taken = await session.execute(select(Tenant.id).where(Tenant.slug == body.store_slug))
    if taken.first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Store slug '{body.store_slug}' is already taken",
        )

    currency = body.currency.upper()
    tenant = Tenant(
        name=body.store_name,
        slug=body.store_slug,
        contact_email=body.owner_email,
        phone=body.phone,
        currency=currency,
    )
    session.add(tenant)
    await session.flush()

    owner = User(
        tenant_id=tenant.id,
        email=body.owner_email,
        password_hash=hash_password(body.owner_password),
        display_name=body.owner_name,
        role=UserRole.OWNER,
    )
    session.add(owner)
    await session.flush()

    raw_token = generate_api_token()
    token = ApiToken(
        tenant_id=tenant.id,
        user_id=owner.id,
        token_hash=hash_api_token(raw_token),
        token_prefix=token_display_prefix(raw_token),
    )
    session.add(token)
    await session.commit()

    subscription = await billing.start_trial(session, tenant.id, body.plan_id, currency=currency)
    await session.refresh(tenant)
    logger.info("Opened store %s (%s) on %s trial", tenant.slug, tenant.id, subscription.plan_id)

    return StoreSignupResponse(
        tenant=TenantRead.model_validate(tenant),
        subscription=TenantSubscriptionRead.model_validate(subscription),
        api_token=raw_token,
        token_prefix=token.token_prefix,
    )


async def _current_store(auth: Auth, session: Session) -> Tenant:
    tenant = await session.get(Tenant, auth.tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    return tenant


@router.get("/me", response_model=TenantRead)
async def get_store(auth: Auth, session: Session) -> TenantRead:
    return TenantRead.model_validate(await _current_store(auth, session))


@router.patch("/me", response_model=TenantRead)
async def update_store(body: StoreUpdateRequest, auth: BillingAuth, session: Session) -> TenantRead:
    """Edit store details. A custom domain needs a plan that includes one."""
    tenant = await _current_store(auth, session)
    changes = body.model_dump(exclude_unset=True)

    domain = changes.get("custom_domain")
    if domain:
        await billing.ensure_plan_includes(session, tenant.id, "custom_domain")
        clash = await session.execute(
            select(Tenant.id).where(Tenant.custom_domain == domain, Tenant.id != tenant.id)
        )
        if clash.first() is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Domain '{domain}' is used by another store",
            )

    for key, value in changes.items():
        setattr(tenant, key, value)
    tenant.updated_at = utcnow()
    session.add(tenant)
    await session.commit()
    await session.refresh(tenant)
    return TenantRead.model_validate(tenant)
