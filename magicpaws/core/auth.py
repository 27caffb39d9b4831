"""
Auth utilities for the Magic Paws API.

The identity provider issues HS256 session tokens carrying sub, email and
name claims. Verified tokens are turned into a Principal through
users.sign_in, which also applies the admin-email rule.
"""
from typing import Optional
import logging

import jwt
from fastapi import Depends, Header, Request

from magicpaws.core.config import settings
from magicpaws.core.errors import PermissionError, UnauthenticatedError
from magicpaws.features.users.service import sign_in
from magicpaws.models.principal import Principal, Role

logger = logging.getLogger("magicpaws")


def verify_session_token(token: str) -> dict:
    """
    Verify a session JWT and return its claims.

    Raises:
        UnauthenticatedError: token invalid, expired, or missing claims
    """
    if not settings.AUTH_SECRET:
        logger.warning("auth.secret_missing")
        raise UnauthenticatedError("Authentication is not configured")

    try:
        claims = jwt.decode(
            token,
            settings.AUTH_SECRET,
            algorithms=["HS256"],
            leeway=settings.AUTH_TOKEN_LEEWAY_SECONDS,
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthenticatedError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug("auth.invalid_token", extra={"error": str(e)})
        raise UnauthenticatedError("Invalid token")

    if not claims.get("email"):
        raise UnauthenticatedError("Token has no email claim")
    return claims


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthenticatedError("Authorization header must be 'Bearer <token>'")
    return token.strip()


async def get_optional_principal(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Optional[Principal]:
    """
    Resolve the caller, or None for anonymous requests.

    A present but invalid token is an error, never silently anonymous.
    """
    token = _bearer_token(authorization)
    if token is None:
        return None

    claims = verify_session_token(token)
    principal = sign_in(claims["sub"], claims["email"], claims.get("name"))
    request.state.user_id = principal.id
    return principal


async def get_current_principal(
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> Principal:
    if principal is None:
        raise UnauthenticatedError("Authentication required")
    return principal


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != Role.ADMIN:
        logger.warning("auth.admin_required", extra={"user_id": principal.id})
        raise PermissionError("Administrator access required")
    return principal
