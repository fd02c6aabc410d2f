from typing import Optional, Dict, List

from fastapi import APIRouter
from pydantic import BaseModel

from hodos.features.plans.service import FREE_PLAN, list_plans
from hodos.models.plan import Plan


router = APIRouter(prefix="/plans", tags=["plans"])


class PlanResponse(BaseModel):
    plan_type: str
    name: str
    price_monthly: str
    max_members: Optional[int] = None
    max_admins: Optional[int] = None
    is_church: bool
    features: Dict[str, bool]


def _to_response(plan: Plan) -> PlanResponse:
    return PlanResponse(
        plan_type=plan.plan_type.value,
        name=plan.name,
        price_monthly=f"{plan.price_monthly:.2f}",
        max_members=plan.max_members,
        max_admins=plan.max_admins,
        is_church=plan.is_church,
        features=plan.features,
    )


@router.get("", response_model=List[PlanResponse])
def get_plans():
    """Catalog, free tier first."""
    return [_to_response(FREE_PLAN)] + [_to_response(p) for p in list_plans()]
