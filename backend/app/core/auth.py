from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request

from app.core.config import settings

ADMIN_ROLE = "admin"


def create_access_token(user_id: UUID, role: str = "user", expires_in_minutes: int = 60) -> str:
    """Issue a signed access token for a user."""
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=expires_in_minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def get_token_claims(request: Request) -> dict[str, Any]:
    """Decode the bearer token in the Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=401, detail="Authorization header is required")

    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = auth_header[7:]
    if not token:
        raise HTTPException(status_code=401, detail="Access token is required")

    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Access token has expired") from None
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid access token") from None


def get_current_user_id(claims: dict[str, Any] = Depends(get_token_claims)) -> UUID:
    """Return the authenticated user's ID from the ``sub`` claim."""
    try:
        return UUID(str(claims["sub"]))
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid access token") from None


def require_admin(
    claims: dict[str, Any] = Depends(get_token_claims),
    user_id: UUID = Depends(get_current_user_id),
) -> UUID:
    """Allow only administrators; returns the admin's user ID."""
    if claims.get("role") != ADMIN_ROLE:
        raise HTTPException(status_code=403, detail="Administrator access required")
    return user_id
