"""Staff login and the caller's own profile."""

import logging

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, EmailStr
from sqlmodel import select

from storekit.api.deps import Auth, Session
from storekit.core.security import create_jwt, verify_password
from storekit.models.base import utcnow
from storekit.models.tenant import Tenant, TenantRead
from storekit.models.user import User, UserRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    store_slug: str | None = None


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead
    tenant: TenantRead


class MeResponse(BaseModel):
    user: UserRead
    tenant: TenantRead


@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest, session: Session) -> LoginResponse:
    """Exchange email and password for a session JWT.

    One email can staff several stores; ``store_slug`` picks which one.
    Without it the oldest account wins.
    """
    stmt = (
        select(User, Tenant)
        .join(Tenant, Tenant.id == User.tenant_id)
        .where(User.email == body.email)
        .order_by(User.created_at)
    )
    if body.store_slug:
        stmt = stmt.where(Tenant.slug == body.store_slug)
    row = (await session.execute(stmt)).first()

    if row is None or not verify_password(body.password, row[0].password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    user, tenant = row
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")
    if not tenant.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Store is suspended")

    user.last_login_at = utcnow()
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.info("User %s logged in to store %s", user.id, tenant.slug)

    return LoginResponse(
        access_token=create_jwt(subject=str(user.id), tenant_id=str(tenant.id), role=user.role),
        user=UserRead.model_validate(user),
        tenant=TenantRead.model_validate(tenant),
    )


@router.get("/me", response_model=MeResponse)
async def get_me(auth: Auth, session: Session) -> MeResponse:
    user = await session.get(User, auth.user_id)
    tenant = await session.get(Tenant, auth.tenant_id)
    if user is None or tenant is None or user.tenant_id != tenant.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return MeResponse(user=UserRead.model_validate(user), tenant=TenantRead.model_validate(tenant))
