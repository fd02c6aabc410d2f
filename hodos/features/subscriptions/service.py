"""
Subscription records: lookup, listing, holder pointers, and reviewer cancel.

Handles:
- Row -> Subscription conversion shared by approval, access and sweep
- "Current subscription" pointers (churches.subscription_id for church
  holders, profiles.subscription_id for individual holders)
- Guarded cancellation by a reviewer
"""
from datetime import datetime
from typing import Optional, List, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from hodos.core.database import get_db_session, subscriptions, churches, profiles
from hodos.core.errors import (
    AlreadyProcessedError,
    SubscriptionNotFoundError,
    UnauthenticatedError,
    ValidationError,
)
from hodos.core.logging import log_event
from hodos.features.audit.service import record_admin_audit
from hodos.features.notifications import service as notifications
from hodos.models.plan import PlanType
from hodos.models.subscription import (
    HolderType,
    Subscription,
    SubscriptionStatus,
    ensure_utc,
    utc_now,
)


def row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row.id,
        plan_type=PlanType(row.plan_type),
        holder_type=HolderType(row.holder_type),
        user_id=row.user_id,
        church_id=row.church_id,
        status=SubscriptionStatus(row.status),
        started_at=ensure_utc(row.started_at),
        expires_at=ensure_utc(row.expires_at),
        cancelled_at=ensure_utc(row.cancelled_at),
        superseded_by=row.superseded_by,
        payment_id=row.payment_id,
    )


def load_subscription_row(session: Session, subscription_id: Optional[str]):
    if not subscription_id:
        return None
    return session.execute(
        select(subscriptions).where(subscriptions.c.id == subscription_id)
    ).first()


def current_subscription_id(
    session: Session,
    holder_type: HolderType,
    *,
    user_id: Optional[str] = None,
    church_id: Optional[str] = None,
) -> Optional[str]:
    """The subscription the holder currently points at, if any."""
    if holder_type == HolderType.CHURCH:
        row = session.execute(
            select(churches.c.subscription_id).where(churches.c.id == church_id)
        ).first()
    else:
        row = session.execute(
            select(profiles.c.subscription_id).where(profiles.c.user_id == user_id)
        ).first()
    return row.subscription_id if row else None


def point_holder_at(
    session: Session,
    holder_type: HolderType,
    subscription_id: str,
    *,
    user_id: Optional[str] = None,
    church_id: Optional[str] = None,
) -> None:
    if holder_type == HolderType.CHURCH:
        session.execute(
            update(churches).where(churches.c.id == church_id).values(subscription_id=subscription_id)
        )
    else:
        session.execute(
            update(profiles)
            .where(profiles.c.user_id == user_id)
            .values(subscription_id=subscription_id, updated_at=utc_now())
        )


def release_individual_holder(session: Session, row) -> bool:
    """
    Clear the profile pointer of an individual holder, but only while it still
    points at this subscription. Church pointers are left as they are.
    """
    if row.holder_type != HolderType.USER.value:
        return False
    result = session.execute(
        update(profiles)
        .where(profiles.c.user_id == row.user_id, profiles.c.subscription_id == row.id)
        .values(subscription_id=None, updated_at=utc_now())
    )
    return result.rowcount > 0


def get_subscription(subscription_id: str) -> Optional[Subscription]:
    with get_db_session() as session:
        row = load_subscription_row(session, subscription_id)
    return row_to_subscription(row) if row else None


def list_subscriptions(
    *,
    status: Union[str, SubscriptionStatus, None] = None,
    church_id: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Subscription]:
    limit = min(limit, 500)
    query = select(subscriptions)
    if status:
        try:
            query = query.where(subscriptions.c.status == SubscriptionStatus(status).value)
        except ValueError:
            raise ValidationError(f"Invalid subscription status: {status}")
    if church_id:
        query = query.where(subscriptions.c.church_id == church_id)
    if user_id:
        query = query.where(subscriptions.c.user_id == user_id)
    query = query.order_by(subscriptions.c.created_at.desc(), subscriptions.c.id).limit(limit).offset(offset)

    with get_db_session() as session:
        rows = session.execute(query).fetchall()
    return [row_to_subscription(r) for r in rows]


def cancel_subscription(
    subscription_id: str,
    actor_id: str,
    *,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Subscription:
    """
    Cancel an active or expired subscription on a reviewer's behalf.

    Raises:
        SubscriptionNotFoundError: unknown id
        AlreadyProcessedError: the subscription is already cancelled
    """
    if not actor_id:
        raise UnauthenticatedError("Reviewer identity required")
    ts = now or utc_now()

    with get_db_session() as session:
        result = session.execute(
            update(subscriptions)
            .where(
                subscriptions.c.id == subscription_id,
                subscriptions.c.status.in_(
                    [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.EXPIRED.value]
                ),
            )
            .values(status=SubscriptionStatus.CANCELLED.value, cancelled_at=ts)
        )
        if result.rowcount == 0:
            if load_subscription_row(session, subscription_id) is None:
                raise SubscriptionNotFoundError(f"Subscription not found: {subscription_id}")
            raise AlreadyProcessedError(f"Subscription {subscription_id} is already cancelled")

        row = load_subscription_row(session, subscription_id)
        release_individual_holder(session, row)
        record_admin_audit(
            session,
            actor=actor_id,
            action="subscription.cancel",
            target_user_id=row.user_id,
            target_resource=subscription_id,
            payload={"plan_type": row.plan_type, "holder_type": row.holder_type, "reason": reason},
        )
        subscription = row_to_subscription(row)

    log_event(
        "info",
        "subscription.cancelled",
        user_id=subscription.user_id,
        event_type="subscription.cancelled",
        extra={"subscription_id": subscription_id, "actor": actor_id},
    )
    notifications.notify(
        "subscription-downgraded",
        subscription.user_id,
        {"plan_type": subscription.plan_type.value},
    )
    return subscription
