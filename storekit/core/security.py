"""Credentials: staff passwords, store API keys and session JWTs."""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone

from jose import jwt
from passlib.context import CryptContext

from storekit.core.config import get_settings

settings = get_settings()

# Store API keys look like ``sk_<43 urlsafe chars>``; JWTs never start with it
API_TOKEN_PREFIX = "sk_"
TOKEN_PREFIX_LENGTH = 8

_passwords = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    return _passwords.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return _passwords.verify(plain, hashed)


def generate_api_token() -> str:
    return API_TOKEN_PREFIX + secrets.token_urlsafe(32)


def token_display_prefix(raw_token: str) -> str:
    """The part of a key that is safe to show back in dashboards."""
    return raw_token[:TOKEN_PREFIX_LENGTH]


def hash_api_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode()).hexdigest()


def create_jwt(
    subject: str,
    tenant_id: str,
    role: str = "staff",
    expires_delta: timedelta | None = None,
) -> str:
    """Session token for a staff member of one store."""
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": subject,
        "tid": tenant_id,
        "role": role,
        "iat": issued,
        "exp": issued + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes)),
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_jwt(token: str) -> dict:
    """Verify signature and expiry. Raises ``jose.JWTError`` when either fails."""
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
