"""
Caller payment routes.

- POST /api/payments: Declare a PIX payment for a plan (idempotent while pending)
- GET  /api/payments/mine: The caller's payment claims
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from hodos.core.auth import Caller, get_current_caller, get_current_user_id
from hodos.features.payments.service import request_payment, list_payments
from hodos.models.payment import PendingPayment


router = APIRouter(prefix="/payments", tags=["payments"])


class PaymentRequest(BaseModel):
    """Payment intent submitted by the checkout form."""
    plan_type: str
    amount: Decimal = Field(..., description="Amount transferred, in BRL")
    church_data: Optional[Dict[str, Any]] = Field(
        None, description="Church registration; required for a first church-plan purchase"
    )


class PaymentResponse(BaseModel):
    id: str
    plan_type: str
    amount: str
    payment_method: str
    status: str
    confirmation_code: str
    church_name: Optional[str] = None
    rejection_reason: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime


def to_response(payment: PendingPayment) -> PaymentResponse:
    return PaymentResponse(
        id=payment.id,
        plan_type=payment.plan_type.value,
        amount=f"{payment.amount:.2f}",
        payment_method=payment.payment_method,
        status=payment.status.value,
        confirmation_code=payment.confirmation_code,
        church_name=payment.church_data.church_name if payment.church_data else None,
        rejection_reason=payment.rejection_reason,
        reviewed_at=payment.reviewed_at,
        created_at=payment.created_at,
    )


@router.post("", response_model=PaymentResponse)
def create_payment(body: PaymentRequest, caller: Caller = Depends(get_current_caller)):
    """
    Record the payment claim and return its confirmation code.

    Re-submitting the same plan while a claim is pending returns that claim.
    """
    payment = request_payment(
        caller.user_id,
        body.plan_type,
        body.amount,
        body.church_data,
        email=caller.email,
        full_name=caller.full_name,
    )
    return to_response(payment)


@router.get("/mine", response_model=List[PaymentResponse])
def my_payments(
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
):
    return [to_response(p) for p in list_payments(user_id=user_id, limit=limit)]
