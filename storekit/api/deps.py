"""Request dependencies: who is calling, for which store, and may they write."""

import uuid
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from storekit.core.database import get_session
from storekit.core.security import API_TOKEN_PREFIX, decode_jwt, hash_api_token
from storekit.core.subscription import SubscriptionStatusDetails, utcnow
from storekit.models.api_token import ApiToken
from storekit.models.tenant import Tenant
from storekit.models.user import BILLING_ROLES, User, UserRole
from storekit.services import billing

bearer_scheme = HTTPBearer()

Session = Annotated[AsyncSession, Depends(get_session)]


class AuthContext:
    """The store and staff member a request acts for."""

    __slots__ = ("tenant_id", "user_id", "user_role", "api_token_id")

    def __init__(
        self,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
        user_role: str,
        api_token_id: uuid.UUID | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.user_role = user_role
        self.api_token_id = api_token_id


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def _ensure_store_open(session: AsyncSession, tenant_id: uuid.UUID) -> None:
    tenant = await session.get(Tenant, tenant_id)
    if tenant is None or not tenant.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Store is suspended")


async def _from_api_token(raw_token: str, session: AsyncSession) -> AuthContext:
    result = await session.execute(
        select(ApiToken).where(ApiToken.token_hash == hash_api_token(raw_token))
    )
    api_token = result.scalar_one_or_none()
    now = utcnow()

    if api_token is None or api_token.revoked_at is not None:
        raise _unauthorized("Unknown or revoked API key")
    if api_token.expires_at is not None and api_token.expires_at <= now:
        raise _unauthorized("API key has expired")

    user = await session.get(User, api_token.user_id)
    if user is None or not user.is_active:
        raise _unauthorized("API key owner is disabled")
    await _ensure_store_open(session, api_token.tenant_id)

    api_token.last_used_at = now
    session.add(api_token)
    await session.commit()

    return AuthContext(api_token.tenant_id, user.id, user.role, api_token.id)


async def _from_jwt(token: str, session: AsyncSession) -> AuthContext:
    try:
        claims = decode_jwt(token)
        context = AuthContext(
            tenant_id=uuid.UUID(claims["tid"]),
            user_id=uuid.UUID(claims["sub"]),
            user_role=claims.get("role", UserRole.STAFF),
        )
    except JWTError as exc:
        raise _unauthorized("Invalid or expired session token") from exc
    except (KeyError, ValueError) as exc:
        raise _unauthorized("Malformed session token") from exc

    await _ensure_store_open(session, context.tenant_id)
    return context


async def get_auth_context(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    session: Session,
) -> AuthContext:
    """Accept either a store API key (``sk_...``) or a login JWT."""
    raw = credentials.credentials
    if raw.startswith(API_TOKEN_PREFIX):
        return await _from_api_token(raw, session)
    return await _from_jwt(raw, session)


Auth = Annotated[AuthContext, Depends(get_auth_context)]


async def require_billing_role(auth: Auth) -> AuthContext:
    """Only owners and admins may change what the store pays for."""
    if auth.user_role not in BILLING_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only store owners and admins can manage billing",
        )
    return auth


BillingAuth = Annotated[AuthContext, Depends(require_billing_role)]


async def require_paid_subscription(auth: Auth, session: Session) -> SubscriptionStatusDetails:
    """Block catalog writes for stores whose subscription needs payment."""
    overview = await billing.get_subscription_with_status(session, auth.tenant_id)
    if overview.status.requires_payment:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail="Subscription payment required",
        )
    return overview.status
