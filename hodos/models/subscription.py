"""
hodos/models/subscription.py

Subscriptions (the unit of access grant) and the resolved access view.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict
from pydantic import BaseModel, ConfigDict, Field

from hodos.models.church import Church
from hodos.models.plan import PlanType


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from drivers that drop tzinfo."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class HolderType(str, Enum):
    CHURCH = "church"
    USER = "user"


class Subscription(BaseModel):
    """
    A fixed-term access grant held by either a church or an individual user.

    holder_type never changes after creation. user_id is the requester
    (billing contact) for both holder types; church_id is set only for
    church holders.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    plan_type: PlanType
    holder_type: HolderType
    user_id: str
    church_id: Optional[str] = None
    status: SubscriptionStatus
    started_at: datetime
    expires_at: datetime
    cancelled_at: Optional[datetime] = None
    superseded_by: Optional[str] = None
    payment_id: Optional[str] = None


class AccessSource(str, Enum):
    CHURCH = "church"
    INDIVIDUAL = "individual"
    DEFAULT = "default"


class AccessResult(BaseModel):
    """Effective plan and status for a user."""
    model_config = ConfigDict(frozen=True)

    plan_type: PlanType
    status: SubscriptionStatus
    plan_name: str
    source: AccessSource
    expires_at: Optional[datetime] = None
    church_id: Optional[str] = None
    subscription_id: Optional[str] = None
    max_members: Optional[int] = None
    max_admins: Optional[int] = None
    features: Dict[str, bool] = Field(default_factory=dict)


class SweepResult(BaseModel):
    """Counts from one expiration sweep."""
    expired: int = 0
    cancelled: int = 0
    expiring_soon: int = 0
    ran_at: datetime


class ApprovalResult(BaseModel):
    """What an approval provisioned."""
    model_config = ConfigDict(frozen=True)

    payment_id: str
    subscription: Subscription
    church: Optional[Church] = None
    plan_name: Optional[str] = None
    renewed: bool = False
    superseded_id: Optional[str] = None
