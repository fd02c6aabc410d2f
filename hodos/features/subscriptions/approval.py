"""
Reviewer decisions on pending payments.

approve_payment() provisions everything a payment buys in ONE database
transaction:

    claim payment (pending -> approved, status-guarded)
    -> church tier: new church + admin role + profile affiliation,
       or renewal of the church the requester administers
    -> new active subscription (expires after the fixed term)
    -> previous current subscription superseded
    -> holder pointer moved to the new subscription
    -> audit row

If anything after the claim fails the whole unit rolls back: the payment is
still pending, no church/role/subscription is left behind, and the reviewer
gets a ProvisioningError. Welcome/rejection emails are enqueued only after
commit.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, insert, update
from sqlalchemy.orm import Session

from hodos.core.config import settings
from hodos.core.database import get_db_session, pending_payments, subscriptions, user_roles, profiles
from hodos.core.errors import (
    AppError,
    AlreadyProcessedError,
    PaymentNotFoundError,
    ProvisioningError,
    UnauthenticatedError,
    ValidationError,
)
from hodos.core.logging import log_event
from hodos.features.audit.service import record_admin_audit
from hodos.features.churches.slugs import create_church_with_unique_slug
from hodos.features.notifications import service as notifications
from hodos.features.payments.service import row_to_payment
from hodos.features.plans.service import require_plan
from hodos.features.subscriptions.service import (
    current_subscription_id,
    point_holder_at,
    row_to_subscription,
    load_subscription_row,
)
from hodos.features.users.service import CHURCH_ADMIN_ROLE, ensure_profile, administered_church_id
from hodos.models.church import Church
from hodos.models.payment import PaymentStatus, PendingPayment
from hodos.models.subscription import (
    ApprovalResult,
    HolderType,
    SubscriptionStatus,
    utc_now,
)


def _term(now: datetime) -> datetime:
    return now + timedelta(days=settings.SUBSCRIPTION_TERM_DAYS)


def _raise_unclaimable(session: Session, payment_id: str) -> None:
    row = session.execute(
        select(pending_payments.c.status).where(pending_payments.c.id == payment_id)
    ).first()
    if row is None:
        raise PaymentNotFoundError(f"Payment not found: {payment_id}")
    raise AlreadyProcessedError(f"Payment {payment_id} already {row.status}")


def _claim(session: Session, payment_id: str, values: dict) -> None:
    """Move the payment out of pending, or fail if someone else already did."""
    result = session.execute(
        update(pending_payments)
        .where(
            pending_payments.c.id == payment_id,
            pending_payments.c.status == PaymentStatus.PENDING.value,
        )
        .values(**values)
    )
    if result.rowcount == 0:
        _raise_unclaimable(session, payment_id)


def _load_payment(session: Session, payment_id: str) -> PendingPayment:
    row = session.execute(
        select(pending_payments).where(pending_payments.c.id == payment_id)
    ).first()
    if row is None:
        raise PaymentNotFoundError(f"Payment not found: {payment_id}")
    return row_to_payment(row)


def _grant_church_admin(session: Session, user_id: str, church_id: str) -> None:
    session.execute(
        insert(user_roles).values(user_id=user_id, role=CHURCH_ADMIN_ROLE, church_id=church_id)
    )
    session.execute(
        update(profiles)
        .where(profiles.c.user_id == user_id)
        .values(church_id=church_id, updated_at=utc_now())
    )


def _supersede(session: Session, previous_id: Optional[str], new_id: str, now: datetime) -> Optional[str]:
    if not previous_id:
        return None
    result = session.execute(
        update(subscriptions)
        .where(
            subscriptions.c.id == previous_id,
            subscriptions.c.status != SubscriptionStatus.CANCELLED.value,
        )
        .values(status=SubscriptionStatus.CANCELLED.value, cancelled_at=now, superseded_by=new_id)
    )
    return previous_id if result.rowcount else None


def _provision(payment: PendingPayment, reviewer_id: str, now: datetime) -> ApprovalResult:
    with get_db_session() as session:
        # Validation and referential checks first; nothing written yet
        plan = require_plan(payment.plan_type, session=session)
        church_target: Optional[str] = None
        if plan.is_church and payment.church_data is None:
            church_target = administered_church_id(session, payment.user_id)
            if church_target is None:
                raise ValidationError(
                    "Payment has no church data and the requester administers no church"
                )

        _claim(
            session,
            payment.id,
            {
                "status": PaymentStatus.APPROVED.value,
                "reviewed_by": reviewer_id,
                "reviewed_at": now,
            },
        )

        ensure_profile(
            session,
            payment.user_id,
            full_name=payment.church_data.responsible_name if payment.church_data else None,
            email=str(payment.church_data.responsible_email) if payment.church_data else None,
        )

        church: Optional[Church] = None
        if plan.is_church:
            holder = HolderType.CHURCH
            if payment.church_data is not None:
                church = create_church_with_unique_slug(session, payment.church_data)
                _grant_church_admin(session, payment.user_id, church.id)
                church_target = church.id
            previous_id = current_subscription_id(session, holder, church_id=church_target)
        else:
            holder = HolderType.USER
            previous_id = current_subscription_id(session, holder, user_id=payment.user_id)

        subscription_id = str(uuid.uuid4())
        session.execute(
            insert(subscriptions).values(
                id=subscription_id,
                plan_type=plan.plan_type.value,
                holder_type=holder.value,
                user_id=payment.user_id,
                church_id=church_target,
                status=SubscriptionStatus.ACTIVE.value,
                started_at=now,
                expires_at=_term(now),
                payment_id=payment.id,
                created_at=now,
            )
        )
        superseded_id = _supersede(session, previous_id, subscription_id, now)
        point_holder_at(session, holder, subscription_id, user_id=payment.user_id, church_id=church_target)
        if church is not None:
            church = church.model_copy(update={"subscription_id": subscription_id})

        record_admin_audit(
            session,
            actor=reviewer_id,
            action="payment.approve",
            target_user_id=payment.user_id,
            target_resource=payment.id,
            payload={
                "plan_type": plan.plan_type.value,
                "amount": str(payment.amount),
                "subscription_id": subscription_id,
                "church_id": church_target,
                "church_slug": church.slug if church else None,
                "superseded_id": superseded_id,
            },
        )

        row = load_subscription_row(session, subscription_id)
        return ApprovalResult(
            payment_id=payment.id,
            subscription=row_to_subscription(row),
            church=church,
            plan_name=plan.name,
            renewed=plan.is_church and church is None,
            superseded_id=superseded_id,
        )


def approve_payment(payment_id: str, reviewer_id: str, *, now: Optional[datetime] = None) -> ApprovalResult:
    """
    Approve a pending payment and provision what it paid for.

    Raises:
        PaymentNotFoundError: unknown payment
        AlreadyProcessedError: payment is no longer pending
        PlanNotFoundError / ValidationError: bad data, nothing written
        ProvisioningError: provisioning failed and was rolled back; the
            payment is still pending and may be approved again
    """
    if not reviewer_id:
        raise UnauthenticatedError("Reviewer identity required")
    ts = now or utc_now()

    with get_db_session() as session:
        payment = _load_payment(session, payment_id)
    if not payment.is_open:
        raise AlreadyProcessedError(f"Payment {payment_id} already {payment.status.value}")

    try:
        result = _provision(payment, reviewer_id, ts)
    except AppError:
        raise
    except Exception as e:
        log_event(
            "error",
            "payment.approve_failed",
            user_id=payment.user_id,
            event_type="payment.approved",
            error_code=ProvisioningError.code,
            extra={"payment_id": payment_id, "reviewer": reviewer_id, "error": e},
        )
        raise ProvisioningError(
            "Falha ao processar aprovação. O pagamento continua pendente; verifique manualmente."
        ) from e

    log_event(
        "info",
        "payment.approved",
        user_id=payment.user_id,
        event_type="payment.approved",
        extra={
            "payment_id": payment_id,
            "subscription_id": result.subscription.id,
            "church_id": result.subscription.church_id,
            "reviewer": reviewer_id,
        },
    )
    _send_welcome(payment, result)
    return result


def _send_welcome(payment: PendingPayment, result: ApprovalResult) -> None:
    """Best effort: the approval is committed, so nothing here may raise."""
    try:
        variables = {
            "plan_type": result.subscription.plan_type.value,
            "plan_name": result.plan_name,
            "expires_at": result.subscription.expires_at.strftime("%d/%m/%Y"),
        }
        email = None
        if payment.church_data is not None:
            variables["user_name"] = payment.church_data.responsible_name
            email = str(payment.church_data.responsible_email)

        if result.subscription.holder_type == HolderType.CHURCH:
            if result.church is not None:
                variables["church_slug"] = result.church.slug
            notifications.notify("welcome-church", payment.user_id, variables, email=email)
        else:
            notifications.notify("welcome-individual", payment.user_id, variables, email=email)
    except Exception as e:
        log_event(
            "warning",
            "payment.welcome_failed",
            user_id=payment.user_id,
            event_type="payment.approved",
            error_code="welcome_failed",
            extra={"payment_id": payment.id, "error": e},
        )


def reject_payment(
    payment_id: str,
    reviewer_id: str,
    reason: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> PendingPayment:
    """
    Reject a pending payment with a reason. No church or subscription changes.

    Raises:
        ValidationError: blank reason
        PaymentNotFoundError: unknown payment
        AlreadyProcessedError: payment is no longer pending
    """
    if not reviewer_id:
        raise UnauthenticatedError("Reviewer identity required")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Rejection reason is required")
    ts = now or utc_now()

    with get_db_session() as session:
        _claim(
            session,
            payment_id,
            {
                "status": PaymentStatus.REJECTED.value,
                "rejection_reason": reason,
                "reviewed_by": reviewer_id,
                "reviewed_at": ts,
            },
        )
        payment = _load_payment(session, payment_id)
        record_admin_audit(
            session,
            actor=reviewer_id,
            action="payment.reject",
            target_user_id=payment.user_id,
            target_resource=payment_id,
            payload={"plan_type": payment.plan_type.value, "reason": reason},
        )

    log_event(
        "info",
        "payment.rejected",
        user_id=payment.user_id,
        event_type="payment.rejected",
        extra={"payment_id": payment_id, "reviewer": reviewer_id},
    )
    notifications.notify(
        "rejection",
        payment.user_id,
        {
            "user_name": payment.church_data.responsible_name if payment.church_data else None,
            "plan_type": payment.plan_type.value,
            "confirmation_code": payment.confirmation_code,
            "rejection_reason": reason,
        },
        email=str(payment.church_data.responsible_email) if payment.church_data else None,
    )
    return payment
