"""
Scheduled expiration sweep.

Three passes, each a per-row status-guarded transition so overlapping or
repeated runs converge on the same end state:

- cancel:  active|expired, expires_at <= now - grace_days -> cancelled
           (individual holders fall back to the free plan; churches
           are not touched)
- expire:  active, expires_at <= now                       -> expired
- warn:    active, now < expires_at <= now + warning_days  -> email only

Stale rows are cancelled before the expire pass runs, so a row takes at
most one transition per run and a second run right after changes nothing.
Every run records a job_runs row with actor "system_job".
"""
from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, update, insert
from sqlalchemy.orm import Session

from hodos.core.config import settings
from hodos.core.database import get_db_session, subscriptions, job_runs
from hodos.core.logging import log_event
from hodos.features.audit.service import SYSTEM_ACTOR, record_admin_audit
from hodos.features.notifications import service as notifications
from hodos.features.subscriptions.service import release_individual_holder, row_to_subscription
from hodos.models.subscription import Subscription, SubscriptionStatus, SweepResult, utc_now


JOB_NAME = "subscriptions.sweep"


def _transition(session: Session, row, from_status: SubscriptionStatus, values: dict) -> bool:
    result = session.execute(
        update(subscriptions)
        .where(subscriptions.c.id == row.id, subscriptions.c.status == from_status.value)
        .values(**values)
    )
    return result.rowcount > 0


def _expire_pass(session: Session, now: datetime) -> List[Subscription]:
    candidates = session.execute(
        select(subscriptions).where(
            subscriptions.c.status == SubscriptionStatus.ACTIVE.value,
            subscriptions.c.expires_at <= now,
        )
    ).fetchall()

    expired = []
    for row in candidates:
        if _transition(session, row, SubscriptionStatus.ACTIVE, {"status": SubscriptionStatus.EXPIRED.value}):
            record_admin_audit(
                session,
                actor=SYSTEM_ACTOR,
                action="subscription.expire",
                target_user_id=row.user_id,
                target_resource=row.id,
                payload={"plan_type": row.plan_type, "holder_type": row.holder_type},
            )
            expired.append(row_to_subscription(row).model_copy(update={"status": SubscriptionStatus.EXPIRED}))
    return expired


def _cancel_pass(session: Session, now: datetime, cutoff: datetime) -> List[Subscription]:
    candidates = session.execute(
        select(subscriptions).where(
            subscriptions.c.status.in_(
                [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.EXPIRED.value]
            ),
            subscriptions.c.expires_at <= cutoff,
        )
    ).fetchall()

    cancelled = []
    for row in candidates:
        values = {"status": SubscriptionStatus.CANCELLED.value, "cancelled_at": now}
        if not _transition(session, row, SubscriptionStatus(row.status), values):
            continue
        downgraded = release_individual_holder(session, row)
        record_admin_audit(
            session,
            actor=SYSTEM_ACTOR,
            action="subscription.cancel_stale",
            target_user_id=row.user_id,
            target_resource=row.id,
            payload={
                "plan_type": row.plan_type,
                "holder_type": row.holder_type,
                "from_status": row.status,
                "downgraded": downgraded,
            },
        )
        cancelled.append(
            row_to_subscription(row).model_copy(update={"status": SubscriptionStatus.CANCELLED, "cancelled_at": now})
        )
    return cancelled


def _expiring_soon(session: Session, now: datetime, horizon: datetime) -> List[Subscription]:
    rows = session.execute(
        select(subscriptions).where(
            subscriptions.c.status == SubscriptionStatus.ACTIVE.value,
            subscriptions.c.expires_at > now,
            subscriptions.c.expires_at <= horizon,
        )
    ).fetchall()
    return [row_to_subscription(r) for r in rows]


def _record_run(session: Session, started_at: datetime, status: str, stats: dict) -> None:
    session.execute(
        insert(job_runs).values(
            job_name=JOB_NAME,
            started_at=started_at,
            finished_at=utc_now(),
            status=status,
            stats_json=json.dumps(stats, default=str),
        )
    )


def run_expiration_sweep(
    now: Optional[datetime] = None,
    *,
    grace_days: Optional[int] = None,
    warning_days: Optional[int] = None,
) -> SweepResult:
    ts = now or utc_now()
    grace = grace_days if grace_days is not None else settings.SUBSCRIPTION_GRACE_DAYS
    warn = warning_days if warning_days is not None else settings.EXPIRY_WARNING_DAYS

    try:
        with get_db_session() as session:
            cancelled = _cancel_pass(session, ts, ts - timedelta(days=grace))
            expired = _expire_pass(session, ts)
            expiring = _expiring_soon(session, ts, ts + timedelta(days=warn))
            stats = {
                "expired": len(expired),
                "cancelled": len(cancelled),
                "expiring_soon": len(expiring),
                "grace_days": grace,
                "warning_days": warn,
            }
            _record_run(session, ts, "success", stats)
    except Exception as e:
        log_event("error", "subscription.sweep_failed", event_type=JOB_NAME, error_code="sweep_failed", extra={"error": e})
        try:
            with get_db_session() as session:
                _record_run(session, ts, "failed", {"error": str(e)[:500]})
        except Exception as record_error:
            log_event(
                "error",
                "subscription.sweep_record_failed",
                event_type=JOB_NAME,
                error_code="job_run_not_recorded",
                extra={"error": record_error},
            )
        raise

    log_event("info", "subscription.sweep", event_type=JOB_NAME, extra=stats)

    for sub in expired:
        log_event("info", "subscription.expired", user_id=sub.user_id, event_type="subscription.expired",
                  extra={"subscription_id": sub.id, "church_id": sub.church_id})
        notifications.notify(
            "subscription-expired",
            sub.user_id,
            {"plan_type": sub.plan_type.value, "expires_at": sub.expires_at.strftime("%d/%m/%Y"), "grace_days": grace},
        )
    for sub in cancelled:
        log_event("info", "subscription.cancelled", user_id=sub.user_id, event_type="subscription.cancelled",
                  extra={"subscription_id": sub.id, "church_id": sub.church_id, "actor": SYSTEM_ACTOR})
        notifications.notify("subscription-downgraded", sub.user_id, {"plan_type": sub.plan_type.value})
    for sub in expiring:
        notifications.notify(
            "subscription-expiring",
            sub.user_id,
            {"plan_type": sub.plan_type.value, "expires_at": sub.expires_at.strftime("%d/%m/%Y")},
        )

    return SweepResult(
        expired=len(expired),
        cancelled=len(cancelled),
        expiring_soon=len(expiring),
        ran_at=ts,
    )
