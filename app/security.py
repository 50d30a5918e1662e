"""
Security utilities: bearer token verification.

Login and registration belong to the external authentication service. The
ledger only needs to verify the JWTs that service issues, using the shared
SECRET_KEY and HS256 (HMAC-SHA256).

Token claims consumed by the ledger:
  - "sub":  the client UUID that owns accounts
  - "role": "member" (default) or "admin"
  - "exp":  expiration timestamp — expired tokens are rejected

create_access_token() mints tokens with the same secret. The service never
calls it on a request path; it exists for the test suite and demo scripts,
which have no authentication service to talk to.
"""

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import jwt

from app.config import settings


class Role(str, enum.Enum):
    ADMIN = "admin"
    MEMBER = "member"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, decoded from the bearer token."""

    client_id: uuid.UUID
    role: Role = Role.MEMBER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Create a signed JWT access token.

    Args:
        data: Dictionary of claims to encode (must include "sub").
        expires_delta: Optional custom expiration time. Defaults to
                       ACCESS_TOKEN_EXPIRE_MINUTES from settings. A negative
                       delta produces an already-expired token.

    Returns:
        An encoded JWT string.
    """
    to_encode = data.copy()

    if expires_delta is not None:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.

    Raises:
        JWTError: If the token is expired, tampered with, or invalid.

    Returns:
        The decoded payload dictionary (contains "sub", "exp", etc.).
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
