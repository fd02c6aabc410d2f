"""
Caller identity for the Hodos API.

Validates Supabase-issued JWTs and extracts user_id from request context.
Falls back to X-User-Id header outside production (tests, local tooling).
"""
from dataclasses import dataclass
from fastapi import Depends, Header, Request
from typing import Optional
import jwt
import logging

from hodos.core.config import settings
from hodos.core.errors import UnauthenticatedError

logger = logging.getLogger(__name__)

JWT_AUDIENCE = "authenticated"


@dataclass
class Caller:
    """Authenticated caller. email/full_name are only known for JWT callers."""
    user_id: str
    email: Optional[str] = None
    full_name: Optional[str] = None


def _caller_from_claims(claims: dict) -> Caller:
    metadata = claims.get("user_metadata") or {}
    return Caller(
        user_id=claims["sub"],
        email=claims.get("email") or None,
        full_name=metadata.get("full_name") or metadata.get("name") or None,
    )


def verify_supabase_jwt(token: str) -> Optional[dict]:
    """
    Verify a Supabase JWT and return its claims.

    Returns None when no SUPABASE_JWT_SECRET is configured.

    Raises:
        UnauthenticatedError: Invalid or expired token
    """
    if not settings.SUPABASE_JWT_SECRET:
        logger.debug("No SUPABASE_JWT_SECRET configured, skipping JWT validation")
        return None

    try:
        payload = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience=JWT_AUDIENCE,
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthenticatedError("Token expired", code="token_expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise UnauthenticatedError("Invalid token", code="invalid_token")

    if not payload.get("sub"):
        raise UnauthenticatedError("Token has no subject", code="invalid_token")
    return payload


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    return token or None


def header_identity_allowed() -> bool:
    """X-User-Id is a development/test convenience and never trusted in prod."""
    return settings.ENVIRONMENT.lower() != "prod"


async def get_current_caller(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Development/test caller ID"),
) -> Caller:
    """
    Resolve the caller from request context.

    Priority:
    1. Supabase JWT from Authorization header
    2. X-User-Id header (non-production only)
    3. Raise UnauthenticatedError
    """
    token = _bearer_token(request)
    if token:
        claims = verify_supabase_jwt(token)
        if claims:
            return _caller_from_claims(claims)

    if x_user_id and header_identity_allowed():
        return Caller(user_id=x_user_id)

    raise UnauthenticatedError("Missing Authorization (Bearer JWT) or X-User-Id header")


async def get_current_user_id(caller: Caller = Depends(get_current_caller)) -> str:
    """Caller user ID only; see get_current_caller."""
    return caller.user_id
