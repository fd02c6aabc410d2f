"""
Effective access for a user.

Precedence:
1. the subscription of the church the user belongs to
2. the user's own individual subscription
3. the free plan, always active

A linked subscription that was cancelled counts as no subscription. An
expired one is still reported (status "expired") so callers can show the
grace-period renewal prompt. Read-only.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from hodos.core.database import get_db_session, profiles, churches
from hodos.features.plans.service import FREE_PLAN, require_plan
from hodos.features.subscriptions.service import load_subscription_row
from hodos.models.subscription import (
    AccessResult,
    AccessSource,
    SubscriptionStatus,
    ensure_utc,
    utc_now,
)


def _default_access() -> AccessResult:
    return AccessResult(
        plan_type=FREE_PLAN.plan_type,
        status=SubscriptionStatus.ACTIVE,
        plan_name=FREE_PLAN.name,
        source=AccessSource.DEFAULT,
        features=dict(FREE_PLAN.features),
    )


def _from_subscription(session: Session, row, source: AccessSource, now: datetime) -> AccessResult:
    plan = require_plan(row.plan_type, session=session)
    expires_at = ensure_utc(row.expires_at)
    status = SubscriptionStatus(row.status)
    # Past its term but not yet swept
    if status == SubscriptionStatus.ACTIVE and expires_at <= now:
        status = SubscriptionStatus.EXPIRED
    return AccessResult(
        plan_type=plan.plan_type,
        status=status,
        plan_name=plan.name,
        source=source,
        expires_at=expires_at,
        church_id=row.church_id,
        subscription_id=row.id,
        max_members=plan.max_members,
        max_admins=plan.max_admins,
        features=dict(plan.features),
    )


def _live(row) -> bool:
    return row is not None and row.status != SubscriptionStatus.CANCELLED.value


def resolve_access(user_id: Optional[str], now: Optional[datetime] = None) -> AccessResult:
    """Resolve the single effective plan and status for user_id."""
    if not user_id:
        return _default_access()
    ts = now or utc_now()

    with get_db_session() as session:
        profile = session.execute(
            select(profiles.c.church_id, profiles.c.subscription_id).where(profiles.c.user_id == user_id)
        ).first()
        if profile is None:
            return _default_access()

        if profile.church_id:
            church = session.execute(
                select(churches.c.subscription_id).where(churches.c.id == profile.church_id)
            ).first()
            row = load_subscription_row(session, church.subscription_id if church else None)
            if _live(row):
                return _from_subscription(session, row, AccessSource.CHURCH, ts)

        row = load_subscription_row(session, profile.subscription_id)
        if _live(row):
            return _from_subscription(session, row, AccessSource.INDIVIDUAL, ts)

    return _default_access()


def has_feature(access: AccessResult, key: str) -> bool:
    """Paid features apply only while the subscription is active."""
    if access.status == SubscriptionStatus.ACTIVE:
        return bool(access.features.get(key, False))
    return bool(FREE_PLAN.features.get(key, False))
