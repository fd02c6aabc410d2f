"""
Reviewer subscription routes.

- GET  /v1/admin/subscriptions
- POST /v1/admin/subscriptions/{subscription_id}/cancel
- POST /v1/admin/subscriptions/sweep: run the expiration sweep now
- GET  /v1/admin/subscriptions/orphans: read-only consistency report
"""
import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from hodos.core.admin_auth import require_admin, AdminActor
from hodos.features.subscriptions.reconcile import find_orphans
from hodos.features.subscriptions.service import cancel_subscription, list_subscriptions
from hodos.features.subscriptions.sweeper import run_expiration_sweep
from hodos.models.subscription import Subscription

logger = logging.getLogger("hodos.admin_subscriptions")

router = APIRouter()


class SubscriptionItem(BaseModel):
    id: str
    plan_type: str
    holder_type: str
    user_id: str
    church_id: Optional[str] = None
    status: str
    started_at: datetime
    expires_at: datetime
    cancelled_at: Optional[datetime] = None
    superseded_by: Optional[str] = None
    payment_id: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class SweepResponse(BaseModel):
    expired: int
    cancelled: int
    expiring_soon: int
    ran_at: datetime


class OrphanReport(BaseModel):
    issues_found: int
    issues: List[Dict[str, Any]]
    timestamp: str


def _to_item(sub: Subscription) -> SubscriptionItem:
    return SubscriptionItem(**sub.model_dump(mode="json"))


@router.get("/v1/admin/subscriptions", response_model=List[SubscriptionItem])
def admin_list_subscriptions(
    status: Optional[str] = Query(None),
    church_id: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    actor: AdminActor = Depends(require_admin),
):
    subs = list_subscriptions(status=status, church_id=church_id, user_id=user_id, limit=limit)
    return [_to_item(s) for s in subs]


@router.post("/v1/admin/subscriptions/sweep", response_model=SweepResponse)
def admin_run_sweep(actor: AdminActor = Depends(require_admin)):
    logger.info(f"[admin] manual sweep actor={actor.actor_id}")
    result = run_expiration_sweep()
    return SweepResponse(**result.model_dump())


@router.get("/v1/admin/subscriptions/orphans", response_model=OrphanReport)
def admin_orphan_report(
    stale_pending_days: int = Query(7, ge=1, le=365),
    actor: AdminActor = Depends(require_admin),
):
    return OrphanReport(**find_orphans(stale_pending_days=stale_pending_days))


@router.post("/v1/admin/subscriptions/{subscription_id}/cancel", response_model=SubscriptionItem)
def admin_cancel_subscription(
    subscription_id: str,
    body: Optional[CancelRequest] = None,
    actor: AdminActor = Depends(require_admin),
):
    logger.info(f"[admin] cancel subscription={subscription_id} actor={actor.actor_id}")
    sub = cancel_subscription(subscription_id, actor.actor_id, reason=body.reason if body else None)
    return _to_item(sub)
