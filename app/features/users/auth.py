"""
Bearer token verification.

Tokens are issued by the external auth service and signed with JWT_SECRET.
The payload carries ``userId`` and ``organizationId``; role and permissions
are always re-read from the database, never trusted from the token.
"""
import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import HTTPException, status

from app.core import config


def verify_jwt_token(token: str) -> dict:
    """
    Verify a JWT and return its payload.

    Raises:
        HTTPException: 401 if token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


def create_access_token(
    user_id: str,
    organization_id: str,
    expires_in: Optional[timedelta] = None,
) -> str:
    """
    Mint a token in the auth service's format.

    Only used by the seed script and the test suite; production tokens come
    from the auth service.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user_id,
        "organizationId": organization_id,
        "iat": now,
        "exp": now + (expires_in or timedelta(hours=12)),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
