"""
hodos/models/plan.py

Subscription plan catalog entries.

A plan is identified by its plan_type and is immutable while any
subscription refers to it.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional, Dict
from pydantic import BaseModel, ConfigDict, Field


class PlanType(str, Enum):
    FREE = "free"
    INDIVIDUAL = "individual"
    CHURCH_SIMPLE = "church_simple"
    CHURCH_PLUS = "church_plus"
    CHURCH_PREMIUM = "church_premium"

    @property
    def is_church(self) -> bool:
        return self.value.startswith("church_")


class Plan(BaseModel):
    """
    Plan represents a purchasable tier (plus the implicit free tier).

    max_members / max_admins of None mean unlimited (or not applicable for
    individual plans). Features are boolean flags consumed by access checks.
    """
    model_config = ConfigDict(frozen=True)

    plan_type: PlanType
    name: str
    price_monthly: Decimal
    max_members: Optional[int] = None
    max_admins: Optional[int] = None
    features: Dict[str, bool] = Field(default_factory=dict)

    @property
    def is_church(self) -> bool:
        return self.plan_type.is_church
