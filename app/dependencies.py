"""
FastAPI dependencies for authentication and authorization.

The dependency chain:

  get_current_principal (JWT -> Principal)
      ├── get_current_member (Principal -> Principal)  [MEMBER role]
      └── require_admin (Principal -> Principal)       [ADMIN role]

Role-based access control:
  - MEMBER: Can only access and move money in their own accounts. The
    destination of a transfer may belong to anyone.
  - ADMIN: Can read any account, balance, transaction or notification, and
    is the only role allowed to post administrative balance adjustments.
    Admins CANNOT deposit, withdraw, transfer, or open/modify accounts.

There is no user table: the ledger trusts the signed claims of the external
authentication service, so resolving the caller never touches the database.
"""

import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from app.config import settings
from app.security import Principal, Role, decode_access_token


# OAuth2PasswordBearer reads "Authorization: Bearer <token>" and answers 401
# when the header is missing. tokenUrl only feeds the Swagger UI.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=settings.TOKEN_URL)


async def get_current_principal(token: str = Depends(oauth2_scheme)) -> Principal:
    """
    Validate the bearer token and return the caller.

    Raises:
        HTTPException 401: If the token is missing, expired, tampered with,
                           or carries an unusable subject/role. The front end
                           discards its stored credential on any 401.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
        subject: str | None = payload.get("sub")
        if subject is None:
            raise credentials_exception
        client_id = uuid.UUID(subject)
        role = Role(payload.get("role", Role.MEMBER.value))
    except (JWTError, ValueError):
        raise credentials_exception

    return Principal(client_id=client_id, role=role)


async def get_current_member(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """
    Require a MEMBER caller; used by every money-moving and account-changing endpoint.

    Raises:
        HTTPException 403: If the caller is an admin.
    """
    if principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin accounts cannot move money or modify member accounts.",
        )
    return principal


async def require_admin(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """
    Require the ADMIN role.

    Raises:
        HTTPException 403: If the caller is not an admin.
    """
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return principal
