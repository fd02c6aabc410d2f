"""
Read-only consistency report for operators.

Approvals are transactional, so the checks below only find rows written by
older tooling or by hand. Nothing is fixed automatically.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select, and_, or_

from hodos.core.database import get_db_session, churches, profiles, subscriptions, pending_payments
from hodos.core.logging import log_event
from hodos.models.payment import PaymentStatus
from hodos.models.subscription import HolderType, SubscriptionStatus, utc_now


STALE_PENDING_DAYS = 7


def find_orphans(now: Optional[datetime] = None, *, stale_pending_days: int = STALE_PENDING_DAYS) -> Dict[str, Any]:
    ts = now or utc_now()
    issues = []

    with get_db_session() as session:
        # Churches that never got a subscription linked
        for row in session.execute(
            select(churches.c.id, churches.c.slug).where(churches.c.subscription_id.is_(None))
        ).fetchall():
            issues.append({"type": "church_without_subscription", "church_id": row.id, "slug": row.slug})

        # Active subscriptions their holder does not point at
        unreferenced = session.execute(
            select(subscriptions.c.id, subscriptions.c.holder_type, subscriptions.c.user_id, subscriptions.c.church_id)
            .select_from(
                subscriptions
                .outerjoin(
                    churches,
                    and_(
                        subscriptions.c.holder_type == HolderType.CHURCH.value,
                        churches.c.id == subscriptions.c.church_id,
                    ),
                )
                .outerjoin(
                    profiles,
                    and_(
                        subscriptions.c.holder_type == HolderType.USER.value,
                        profiles.c.user_id == subscriptions.c.user_id,
                    ),
                )
            )
            .where(
                subscriptions.c.status == SubscriptionStatus.ACTIVE.value,
                or_(
                    and_(
                        subscriptions.c.holder_type == HolderType.CHURCH.value,
                        or_(churches.c.subscription_id.is_(None), churches.c.subscription_id != subscriptions.c.id),
                    ),
                    and_(
                        subscriptions.c.holder_type == HolderType.USER.value,
                        or_(profiles.c.subscription_id.is_(None), profiles.c.subscription_id != subscriptions.c.id),
                    ),
                ),
            )
        ).fetchall()
        for row in unreferenced:
            issues.append({
                "type": "unreferenced_subscription",
                "subscription_id": row.id,
                "holder_type": row.holder_type,
                "user_id": row.user_id,
                "church_id": row.church_id,
            })

        # Claims nobody has reviewed
        cutoff = ts - timedelta(days=stale_pending_days)
        for row in session.execute(
            select(pending_payments.c.id, pending_payments.c.user_id, pending_payments.c.confirmation_code)
            .where(
                pending_payments.c.status == PaymentStatus.PENDING.value,
                pending_payments.c.created_at <= cutoff,
            )
        ).fetchall():
            issues.append({
                "type": "stale_pending_payment",
                "payment_id": row.id,
                "user_id": row.user_id,
                "confirmation_code": row.confirmation_code,
            })

    log_event("info", "subscription.orphan_report", event_type="reconcile", extra={"issues_found": len(issues)})
    return {
        "issues_found": len(issues),
        "issues": issues,
        "timestamp": ts.isoformat(),
    }
