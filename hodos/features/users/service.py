"""
Profile service.
- ensure_profile(session, user_id, full_name=..., email=...)
- get_or_create_profile(user_id, ...)
- is_church_admin(session, user_id, church_id)
"""

from typing import Optional, Dict, Any
from sqlalchemy import select, insert, update
from sqlalchemy.orm import Session

from hodos.core.database import get_db_session, profiles, user_roles
from hodos.models.subscription import utc_now


CHURCH_ADMIN_ROLE = "admin"


def _row_to_dict(row) -> Dict[str, Any]:
    return {
        "user_id": row.user_id,
        "full_name": row.full_name,
        "email": row.email,
        "church_id": row.church_id,
        "subscription_id": row.subscription_id,
    }


def ensure_profile(session: Session, user_id: str, *, full_name: Optional[str] = None, email: Optional[str] = None):
    """
    Return the profile row for user_id, inserting it if missing.

    Blank name/email on an existing profile are filled from the arguments;
    values already stored are never overwritten.
    """
    row = session.execute(select(profiles).where(profiles.c.user_id == user_id)).first()
    if row:
        changes = {}
        if full_name and not row.full_name:
            changes["full_name"] = full_name
        if email and not row.email:
            changes["email"] = email
        if not changes:
            return row
        session.execute(
            update(profiles)
            .where(profiles.c.user_id == user_id)
            .values(**changes, updated_at=utc_now())
        )
        return session.execute(select(profiles).where(profiles.c.user_id == user_id)).first()

    now = utc_now()
    session.execute(
        insert(profiles).values(
            user_id=user_id,
            full_name=full_name,
            email=email,
            created_at=now,
            updated_at=now,
        )
    )
    return session.execute(select(profiles).where(profiles.c.user_id == user_id)).first()


def get_or_create_profile(user_id: str, *, full_name: Optional[str] = None, email: Optional[str] = None) -> Dict[str, Any]:
    """Upsert-lite: create when missing, fill blank name/email when provided."""
    with get_db_session() as session:
        row = ensure_profile(session, user_id, full_name=full_name, email=email)
        return _row_to_dict(row)


def is_church_admin(session: Session, user_id: str, church_id: str) -> bool:
    return session.execute(
        select(user_roles.c.id).where(
            user_roles.c.user_id == user_id,
            user_roles.c.role == CHURCH_ADMIN_ROLE,
            user_roles.c.church_id == church_id,
        )
    ).first() is not None


def administered_church_id(session: Session, user_id: str) -> Optional[str]:
    """The church the user is affiliated with AND administers, if any."""
    row = session.execute(
        select(profiles.c.church_id).where(profiles.c.user_id == user_id)
    ).first()
    if not row or not row.church_id:
        return None
    return row.church_id if is_church_admin(session, user_id, row.church_id) else None
