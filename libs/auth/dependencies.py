import time
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import ValidationError

from libs.auth.models import AuthUser
from libs.common.config import get_settings

settings = get_settings()
security = HTTPBearer()

SERVICE_TOKEN_TTL_SECONDS = 300


def create_service_role_token(calling_service: str) -> str:
    """Mint a short-lived service-role token for service-to-service calls."""
    now = int(time.time())
    payload = {
        "sub": f"service:{calling_service}",
        "role": "service_role",
        "iat": now,
        "exp": now + SERVICE_TOKEN_TTL_SECONDS,
    }
    return jwt.encode(payload, settings.SERVICE_ROLE_JWT_SECRET, algorithm="HS256")


def _decode(token: str) -> dict:
    # Service tokens are signed with their own secret; user tokens by Supabase.
    for secret in (settings.SUPABASE_JWT_SECRET, settings.SERVICE_ROLE_JWT_SECRET):
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=["HS256"],
                options={"verify_aud": False},
            )
        except JWTError:
            continue
    raise JWTError("Signature verification failed")


async def get_current_user(
    token: Annotated[HTTPAuthorizationCredentials, Depends(security)]
) -> AuthUser:
    """
    Validate the bearer JWT and return the authenticated user.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = _decode(token.credentials)
        return AuthUser(**payload)
    except (JWTError, ValidationError):
        raise credentials_exception


async def require_admin(
    current_user: Annotated[AuthUser, Depends(get_current_user)]
) -> AuthUser:
    """
    Ensure the caller is an admin (``app_metadata.roles`` contains ``admin``)
    or a trusted service.
    """
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return current_user


async def require_service_role(
    current_user: Annotated[AuthUser, Depends(get_current_user)]
) -> AuthUser:
    """
    Ensure the caller is another Pawtraits service (service-role JWT).
    """
    if not current_user.is_service:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Service role required",
        )
    return current_user


async def require_service_or_admin(
    current_user: Annotated[AuthUser, Depends(get_current_user)]
) -> AuthUser:
    if not (current_user.is_service or current_user.is_admin):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Service role or admin privileges required",
        )
    return current_user
