"""Effective plan for the caller, used by the frontend to gate features."""
from datetime import datetime
from typing import Optional, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from hodos.core.auth import get_current_user_id
from hodos.features.subscriptions.access import resolve_access


router = APIRouter(prefix="/access", tags=["access"])


class AccessResponse(BaseModel):
    plan_type: str
    plan_name: str
    status: str
    source: str
    expires_at: Optional[datetime] = None
    church_id: Optional[str] = None
    subscription_id: Optional[str] = None
    max_members: Optional[int] = None
    max_admins: Optional[int] = None
    features: Dict[str, bool] = {}


@router.get("", response_model=AccessResponse)
def get_access(user_id: str = Depends(get_current_user_id)):
    access = resolve_access(user_id)
    return AccessResponse(
        plan_type=access.plan_type.value,
        plan_name=access.plan_name,
        status=access.status.value,
        source=access.source.value,
        expires_at=access.expires_at,
        church_id=access.church_id,
        subscription_id=access.subscription_id,
        max_members=access.max_members,
        max_admins=access.max_admins,
        features=access.features,
    )
