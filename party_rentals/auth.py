from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader
from jose import JWTError, jwt

from .config import settings

api_key_header = APIKeyHeader(name="Authorization")


def _decode_bearer(token: str) -> dict:
    scheme, jwt_token = token.split()
    if scheme.lower() != "bearer":
        raise ValueError("Not a bearer token")
    return jwt.decode(jwt_token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


async def get_key_by_subject_or_ip(request: Request) -> str:
    """
    Rate limit key for public endpoints. Uses the admin subject when a valid token
    is present, otherwise the client's IP.
    """
    try:
        payload = _decode_bearer(request.headers.get("Authorization"))
        subject = payload.get("sub")
        if subject:
            return str(subject)
    except (JWTError, ValueError, AttributeError, TypeError):
        pass
    return request.client.host


async def get_current_admin(
        token: Annotated[str, Depends(api_key_header)]
) -> str:
    """
    Decodes the JWT from the 'Authorization: Bearer ...' header and requires the admin role.
    Tokens are issued by the identity provider; this service only verifies them.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = _decode_bearer(token)
    except (JWTError, ValueError, AttributeError):
        raise credentials_exception

    subject = payload.get("sub")
    if not subject:
        raise credentials_exception
    if payload.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return str(subject)
