from typing import Optional

import jwt
from fastapi import Header, HTTPException, status

from household_analytics.core.config import settings


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def create_access_token(data: dict) -> str:
    """Used by tests and local tooling; production tokens come from the auth service."""
    return jwt.encode(dict(data), settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def get_current_family_id(authorization: Optional[str] = Header(None)) -> str:
    """Extract the family scope from the bearer token."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token required")

    token = authorization.replace("Bearer ", "")
    payload = decode_access_token(token)
    family_id = payload.get("family_id")
    if not family_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has no family scope")
    return family_id
