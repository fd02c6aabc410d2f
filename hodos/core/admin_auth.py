"""
Reviewer authentication for payment and subscription administration.

Supports hybrid authentication:
- Supabase JWT (preferred): Bearer token whose user holds the super_admin role
- Legacy X-Admin-Key: Shared secret plus X-Reviewer-Id naming the human reviewer

Auth modes (ADMIN_AUTH_MODE):
- "jwt": Only JWT allowed
- "legacy": Only X-Admin-Key allowed
- "hybrid": Both allowed (legacy blocked when ENVIRONMENT=prod)

Every decision a reviewer makes is audited with the actor identity returned here.
"""
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional, Literal

from fastapi import Request, HTTPException
from sqlalchemy import select

from hodos.core.config import settings
from hodos.core.database import get_db_session, user_roles
from hodos.core.errors import UnauthenticatedError

logger = logging.getLogger("hodos.admin_auth")

SUPER_ADMIN_ROLE = "super_admin"


@dataclass
class AdminActor:
    """Represents an authenticated reviewer."""
    actor_type: Literal["jwt", "legacy_key"]
    actor_id: str  # Reviewer user ID
    actor_email: Optional[str] = None
    auth_mechanism: Literal["supabase_jwt", "x_admin_key"] = "supabase_jwt"


def is_super_admin(user_id: str) -> bool:
    with get_db_session() as session:
        row = session.execute(
            select(user_roles.c.id).where(
                user_roles.c.user_id == user_id,
                user_roles.c.role == SUPER_ADMIN_ROLE,
            )
        ).first()
    return row is not None


def verify_legacy_key(request: Request) -> Optional[AdminActor]:
    """
    Verify legacy X-Admin-Key header.
    Returns AdminActor if valid, None if not present/invalid.
    """
    expected_key = settings.ADMIN_KEY
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or header_key != expected_key:
        return None

    reviewer_id = request.headers.get("X-Reviewer-Id", "").strip()
    if not reviewer_id:
        # Decisions must be attributable to a person
        key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
        reviewer_id = f"legacy:{key_hash}"

    return AdminActor(
        actor_type="legacy_key",
        actor_id=reviewer_id,
        auth_mechanism="x_admin_key",
    )


def verify_admin_jwt(request: Request) -> Optional[AdminActor]:
    """
    Verify a Supabase JWT from the Authorization header and check the
    super_admin role grant. Returns None if absent, invalid or not an admin.
    """
    from hodos.core.auth import verify_supabase_jwt, _bearer_token

    token = _bearer_token(request)
    if not token:
        return None

    try:
        claims = verify_supabase_jwt(token)
    except UnauthenticatedError:
        return None
    if not claims:
        return None

    user_id = claims["sub"]
    if not is_super_admin(user_id):
        return None

    return AdminActor(
        actor_type="jwt",
        actor_id=user_id,
        actor_email=claims.get("email"),
        auth_mechanism="supabase_jwt",
    )


def get_admin_actor(request: Request) -> Optional[AdminActor]:
    """
    Attempt to authenticate a reviewer from request.
    Returns AdminActor or None (does not raise).
    """
    mode = settings.ADMIN_AUTH_MODE.lower()
    env = settings.ENVIRONMENT.lower()

    if mode in {"jwt", "hybrid"}:
        actor = verify_admin_jwt(request)
        if actor:
            return actor

    if mode in {"legacy", "hybrid"}:
        # In production, block legacy unless explicitly selected
        if env == "prod" and mode != "legacy":
            return None
        return verify_legacy_key(request)

    return None


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: Require reviewer authentication.

    Usage:
        @router.post("/v1/admin/payments/{payment_id}/approve")
        def approve(payment_id: str, actor: AdminActor = Depends(require_admin)):
            ...
    """
    actor = get_admin_actor(request)

    if not actor:
        mode = settings.ADMIN_AUTH_MODE.lower()
        has_jwt = bool(settings.SUPABASE_JWT_SECRET)
        has_legacy = bool(settings.ADMIN_KEY)

        if not has_jwt and not has_legacy:
            raise HTTPException(
                status_code=503,
                detail={
                    "error": "Admin authentication not configured",
                    "code": "admin_auth_unconfigured",
                },
            )

        logger.warning(f"[admin] rejected admin request (mode={mode})")
        raise HTTPException(
            status_code=401,
            detail={
                "error": "Unauthorized: invalid or missing admin credentials",
                "code": "admin_unauthorized",
            },
        )

    return actor
