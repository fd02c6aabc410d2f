"""
Reviewer payment routes.
Requires reviewer auth (super_admin JWT or X-Admin-Key) on every endpoint.

- GET  /v1/admin/payments?status=pending
- POST /v1/admin/payments/{payment_id}/approve
- POST /v1/admin/payments/{payment_id}/reject
- GET  /v1/admin/audit
"""
import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from hodos.core.admin_auth import require_admin, AdminActor
from hodos.features.audit.service import list_admin_audit
from hodos.features.payments.service import list_payments
from hodos.features.subscriptions.approval import approve_payment, reject_payment
from hodos.models.payment import PendingPayment

logger = logging.getLogger("hodos.admin_payments")

router = APIRouter()


# ============================================================================
# Pydantic Models
# ============================================================================

class AdminPaymentItem(BaseModel):
    """Payment claim as shown in the review queue."""
    id: str
    user_id: str
    plan_type: str
    amount: str
    status: str
    confirmation_code: str
    church_data: Optional[Dict[str, Any]] = None
    rejection_reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime


class ApproveResponse(BaseModel):
    success: bool
    payment_id: str
    subscription_id: str
    plan_type: str
    expires_at: datetime
    church_id: Optional[str] = None
    church_slug: Optional[str] = None
    renewed: bool = False
    superseded_id: Optional[str] = None


class RejectRequest(BaseModel):
    reason: str = Field("", description="Shown to the requester in the rejection email")


class RejectResponse(BaseModel):
    success: bool
    payment_id: str
    status: str
    rejection_reason: str


class AuditItem(BaseModel):
    id: int
    actor: str
    action: str
    target_user_id: Optional[str] = None
    target_resource: Optional[str] = None
    payload: Dict[str, Any] = {}
    created_at: Optional[datetime] = None


def _to_item(payment: PendingPayment) -> AdminPaymentItem:
    return AdminPaymentItem(
        id=payment.id,
        user_id=payment.user_id,
        plan_type=payment.plan_type.value,
        amount=f"{payment.amount:.2f}",
        status=payment.status.value,
        confirmation_code=payment.confirmation_code,
        church_data=payment.church_data.model_dump(mode="json") if payment.church_data else None,
        rejection_reason=payment.rejection_reason,
        reviewed_by=payment.reviewed_by,
        reviewed_at=payment.reviewed_at,
        created_at=payment.created_at,
    )


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/v1/admin/payments", response_model=List[AdminPaymentItem])
def admin_list_payments(
    status: Optional[str] = Query("pending", description="pending | approved | rejected"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: AdminActor = Depends(require_admin),
):
    return [_to_item(p) for p in list_payments(status=status, limit=limit, offset=offset)]


@router.post("/v1/admin/payments/{payment_id}/approve", response_model=ApproveResponse)
def admin_approve_payment(payment_id: str, actor: AdminActor = Depends(require_admin)):
    """
    Approve and provision. 409 if already processed; 500 provisioning_failed
    means nothing was committed and the payment is still pending.
    """
    logger.info(f"[admin] approve payment={payment_id} actor={actor.actor_id}")
    result = approve_payment(payment_id, actor.actor_id)
    return ApproveResponse(
        success=True,
        payment_id=result.payment_id,
        subscription_id=result.subscription.id,
        plan_type=result.subscription.plan_type.value,
        expires_at=result.subscription.expires_at,
        church_id=result.subscription.church_id,
        church_slug=result.church.slug if result.church else None,
        renewed=result.renewed,
        superseded_id=result.superseded_id,
    )


@router.post("/v1/admin/payments/{payment_id}/reject", response_model=RejectResponse)
def admin_reject_payment(
    payment_id: str,
    body: RejectRequest,
    actor: AdminActor = Depends(require_admin),
):
    logger.info(f"[admin] reject payment={payment_id} actor={actor.actor_id}")
    payment = reject_payment(payment_id, actor.actor_id, body.reason)
    return RejectResponse(
        success=True,
        payment_id=payment.id,
        status=payment.status.value,
        rejection_reason=payment.rejection_reason or "",
    )


@router.get("/v1/admin/audit", response_model=List[AuditItem])
def admin_audit_log(
    action: Optional[str] = Query(None),
    target_resource: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    actor: AdminActor = Depends(require_admin),
):
    return [AuditItem(**row) for row in list_admin_audit(action=action, target_resource=target_resource, limit=limit)]
