"""JWT verification and role claims.

Tokens are issued by the upstream identity provider; this service only
verifies them and reads the role claims that drive authorization and the
role-filtered order projection.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum

from fastapi import HTTPException, status
from jose import JWTError, jwt
from pydantic import BaseModel

from src.logistics.config import get_settings


class Role(str, Enum):
    admin = "admin"
    dispatcher = "dispatcher"
    driver = "driver"
    recipient = "recipient"


class Principal(BaseModel):
    """Authenticated caller extracted from a verified access token."""

    subject: str
    role: Role
    driver_id: str | None = None
    customer_id: str | None = None


# ── JWT Token Creation ────────────────────────────────────────────────────────


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a signed access token.

    The data dict should contain at minimum:
    - sub: user identifier (str)
    - role: one of admin, dispatcher, driver, recipient
    Drivers carry driver_id, recipients carry customer_id.
    """
    settings = get_settings()
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({
        "exp": expire,
        "iat": now,
        "type": "access",
    })
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# ── JWT Token Verification ────────────────────────────────────────────────────


def verify_token(token: str, token_type: str = "access") -> dict:
    """Decode and validate a JWT token.

    Raises:
        HTTPException(401): If the token is invalid, expired, or wrong type.
    """
    settings = get_settings()
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        if payload.get("type") != token_type:
            raise credentials_exception
        if not payload.get("sub"):
            raise credentials_exception
        return payload
    except JWTError:
        raise credentials_exception


def principal_from_token(token: str) -> Principal:
    """Verify a token and build the Principal, 401 on an unknown role."""
    payload = verify_token(token)
    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token carries no recognised role",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Principal(
        subject=payload["sub"],
        role=role,
        driver_id=payload.get("driver_id"),
        customer_id=payload.get("customer_id"),
    )
