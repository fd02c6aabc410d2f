"""
Pending payment store.

Records a user's declared intent to pay for a plan (manual PIX transfer)
together with a human-shareable confirmation code. At most one claim per
(user, plan_type) may be open; re-requesting returns the open claim
unchanged.
"""
from __future__ import annotations

import secrets
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Union, Dict, Any, Tuple

import pydantic
from sqlalchemy import select, insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hodos.core.database import get_db_session, pending_payments
from hodos.core.errors import (
    ConflictError,
    InvalidPlanError,
    UnauthenticatedError,
    ValidationError,
)
from hodos.core.logging import log_event
from hodos.features.notifications import service as notifications
from hodos.features.plans.service import get_plan, is_purchasable
from hodos.features.users.service import ensure_profile, administered_church_id
from hodos.models.payment import ChurchRegistration, PaymentStatus, PendingPayment
from hodos.models.plan import PlanType
from hodos.models.subscription import utc_now, ensure_utc


# Unambiguous characters only (no 0/O, 1/I)
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_PREFIX = "HOD-"
CODE_LENGTH = 8
MAX_CODE_ATTEMPTS = 5


def generate_confirmation_code() -> str:
    return CODE_PREFIX + "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def row_to_payment(row) -> PendingPayment:
    church = ChurchRegistration.model_validate(row.church_data) if row.church_data else None
    return PendingPayment(
        id=row.id,
        user_id=row.user_id,
        plan_type=PlanType(row.plan_type),
        amount=Decimal(str(row.amount)),
        payment_method=row.payment_method or "pix",
        church_data=church,
        confirmation_code=row.confirmation_code,
        status=PaymentStatus(row.status),
        rejection_reason=row.rejection_reason,
        reviewed_by=row.reviewed_by,
        reviewed_at=ensure_utc(row.reviewed_at),
        created_at=ensure_utc(row.created_at),
    )


def _find_open_claim(session: Session, user_id: str, plan_type: PlanType):
    return session.execute(
        select(pending_payments).where(
            pending_payments.c.user_id == user_id,
            pending_payments.c.plan_type == plan_type.value,
            pending_payments.c.status == PaymentStatus.PENDING.value,
        )
    ).first()


def _coerce_amount(amount: Union[Decimal, float, int, str]) -> Decimal:
    try:
        value = Decimal(str(amount)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {amount!r}")
    if value <= 0:
        raise ValidationError("Amount must be positive")
    return value


def _coerce_registration(
    church_data: Union[ChurchRegistration, Dict[str, Any], None],
) -> Optional[ChurchRegistration]:
    if church_data is None or isinstance(church_data, ChurchRegistration):
        return church_data
    try:
        return ChurchRegistration.model_validate(church_data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid church data: {e.errors()[0].get('msg', 'invalid')}")


def request_payment(
    user_id: Optional[str],
    plan_type: Union[str, PlanType],
    amount: Union[Decimal, float, int, str],
    church_data: Union[ChurchRegistration, Dict[str, Any], None] = None,
    *,
    email: Optional[str] = None,
    full_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PendingPayment:
    """
    Record a payment claim, or return the open claim for (user, plan_type).

    email / full_name come from the caller's identity and fill a blank
    profile, which is where lifecycle emails are addressed.

    Raises:
        UnauthenticatedError: no caller identity
        InvalidPlanError: plan_type unknown, free, or missing from the catalog
        ValidationError: bad amount or church data
    """
    if not user_id:
        raise UnauthenticatedError("Usuário não autenticado")
    if not is_purchasable(plan_type):
        raise InvalidPlanError(f"Invalid plan: {plan_type}")

    pt = PlanType(plan_type)
    value = _coerce_amount(amount)
    registration = _coerce_registration(church_data)
    if registration and not pt.is_church:
        raise ValidationError("Church data is only accepted for church plans")

    ts = now or utc_now()
    payment, created = _insert_or_get_open_claim(
        user_id, pt, value, registration, ts, email=email, full_name=full_name
    )

    if created:
        log_event(
            "info",
            "payment.requested",
            user_id=user_id,
            event_type="payment.requested",
            extra={"payment_id": payment.id, "plan_type": pt.value, "amount": value},
        )
        notifications.notify(
            "payment-pending",
            user_id,
            {
                "user_name": registration.responsible_name if registration else None,
                "plan_type": pt.value,
                "amount": f"{value:.2f}",
                "confirmation_code": payment.confirmation_code,
            },
            email=str(registration.responsible_email) if registration else None,
        )
    else:
        log_event(
            "info",
            "payment.request_reused",
            user_id=user_id,
            event_type="payment.requested",
            extra={"payment_id": payment.id, "plan_type": pt.value},
        )

    return payment


def _insert_or_get_open_claim(
    user_id: str,
    plan_type: PlanType,
    amount: Decimal,
    registration: Optional[ChurchRegistration],
    ts: datetime,
    *,
    email: Optional[str] = None,
    full_name: Optional[str] = None,
) -> Tuple[PendingPayment, bool]:
    with get_db_session() as session:
        if get_plan(plan_type, session=session) is None:
            raise InvalidPlanError(f"Plan not available: {plan_type.value}")

        if plan_type.is_church and registration is None and administered_church_id(session, user_id) is None:
            raise ValidationError("Church data is required for a new church subscription")

        ensure_profile(session, user_id, full_name=full_name, email=email)

        existing = _find_open_claim(session, user_id, plan_type)
        if existing:
            return row_to_payment(existing), False

        for _ in range(MAX_CODE_ATTEMPTS):
            payment_id = str(uuid.uuid4())
            try:
                with session.begin_nested():
                    session.execute(
                        insert(pending_payments).values(
                            id=payment_id,
                            user_id=user_id,
                            plan_type=plan_type.value,
                            amount=amount,
                            payment_method="pix",
                            church_data=registration.model_dump(mode="json") if registration else None,
                            confirmation_code=generate_confirmation_code(),
                            status=PaymentStatus.PENDING.value,
                            created_at=ts,
                        )
                    )
            except IntegrityError:
                # Either a concurrent request opened the same claim, or the code collided
                existing = _find_open_claim(session, user_id, plan_type)
                if existing:
                    return row_to_payment(existing), False
                continue

            row = session.execute(
                select(pending_payments).where(pending_payments.c.id == payment_id)
            ).first()
            return row_to_payment(row), True

    raise ConflictError("Could not generate a unique confirmation code")


def get_payment(payment_id: str) -> Optional[PendingPayment]:
    with get_db_session() as session:
        row = session.execute(
            select(pending_payments).where(pending_payments.c.id == payment_id)
        ).first()
    return row_to_payment(row) if row else None


def list_payments(
    *,
    status: Union[str, PaymentStatus, None] = None,
    user_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[PendingPayment]:
    """Payments newest first, optionally filtered by status and/or user."""
    query = select(pending_payments)
    if status:
        try:
            status_value = PaymentStatus(status).value
        except ValueError:
            raise ValidationError(f"Invalid payment status: {status}")
        query = query.where(pending_payments.c.status == status_value)
    if user_id:
        query = query.where(pending_payments.c.user_id == user_id)
    query = query.order_by(pending_payments.c.created_at.desc()).limit(limit).offset(offset)

    with get_db_session() as session:
        rows = session.execute(query).fetchall()
    return [row_to_payment(r) for r in rows]
