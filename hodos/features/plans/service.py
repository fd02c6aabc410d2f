"""
hodos/features/plans/service.py

Plan catalog.

Handles:
- Plan seeding (individual + three church tiers)
- Lookup by plan_type
- The implicit free plan (a constant, never stored)
"""

from decimal import Decimal
from typing import Optional, List, Union
from sqlalchemy import select, insert
from sqlalchemy.orm import Session

from hodos.core.database import get_db_session, plans
from hodos.core.errors import PlanNotFoundError
from hodos.models.plan import Plan, PlanType


_BASE_FEATURES = {
    "public_content": True,
    "personal_devotionals": True,
    "tracks": True,
    "progress": True,
    "join_groups": True,
}

_CHURCH_FEATURES = {
    **_BASE_FEATURES,
    "create_own_tracks": True,
    "share_tracks": True,
    "manage_group_progress": True,
    "groups": True,
    "church_admin": True,
}

_MISSION_FEATURES = {
    **_CHURCH_FEATURES,
    "discipleship_tracks": True,
    "cells": True,
    "church_customization": True,
    "basic_reports": True,
}

# Default plan configurations
DEFAULT_PLANS = {
    PlanType.INDIVIDUAL: {
        "name": "Hodos Discípulo",
        "price_monthly": Decimal("9.90"),
        "max_members": None,
        "max_admins": None,
        "features": dict(_BASE_FEATURES),
    },
    PlanType.CHURCH_SIMPLE: {
        "name": "Hodos Comunidade",
        "price_monthly": Decimal("79.90"),
        "max_members": 100,
        "max_admins": 2,
        "features": dict(_CHURCH_FEATURES),
    },
    PlanType.CHURCH_PLUS: {
        "name": "Hodos Missão",
        "price_monthly": Decimal("149.90"),
        "max_members": 300,
        "max_admins": 5,
        "features": dict(_MISSION_FEATURES),
    },
    PlanType.CHURCH_PREMIUM: {
        "name": "Hodos Farol",
        "price_monthly": Decimal("299.90"),
        "max_members": None,  # unlimited
        "max_admins": None,
        "features": {
            **_MISSION_FEATURES,
            "advanced_reports": True,
            "multiple_campuses": True,
            "finances": True,
            "priority_support": True,
        },
    },
}

FREE_PLAN = Plan(
    plan_type=PlanType.FREE,
    name="Hodos Peregrino",
    price_monthly=Decimal("0"),
    features={"public_content": True},
)


def _coerce_plan_type(plan_type: Union[str, PlanType]) -> Optional[PlanType]:
    try:
        return PlanType(plan_type)
    except ValueError:
        return None


def is_church_plan(plan_type: Union[str, PlanType]) -> bool:
    pt = _coerce_plan_type(plan_type)
    return bool(pt and pt.is_church)


def is_purchasable(plan_type: Union[str, PlanType]) -> bool:
    """True for catalog plans a user can pay for (everything but free)."""
    pt = _coerce_plan_type(plan_type)
    return pt is not None and pt != PlanType.FREE


def seed_plans() -> None:
    """
    Seed default plans into database (idempotent).

    Existing rows are left untouched so a running subscription never
    sees its plan change underneath it.
    """
    with get_db_session() as session:
        for plan_type, config in DEFAULT_PLANS.items():
            existing = session.execute(
                select(plans.c.plan_type).where(plans.c.plan_type == plan_type.value)
            ).first()

            if not existing:
                session.execute(
                    insert(plans).values(
                        plan_type=plan_type.value,
                        name=config["name"],
                        price_monthly=config["price_monthly"],
                        max_members=config["max_members"],
                        max_admins=config["max_admins"],
                        features=config["features"],
                    )
                )


def _row_to_plan(row) -> Plan:
    return Plan(
        plan_type=PlanType(row.plan_type),
        name=row.name,
        price_monthly=Decimal(str(row.price_monthly)),
        max_members=row.max_members,
        max_admins=row.max_admins,
        features=dict(row.features or {}),
    )


def get_plan(plan_type: Union[str, PlanType], session: Optional[Session] = None) -> Optional[Plan]:
    """Get plan by plan_type. Returns FREE_PLAN for 'free', None if unknown."""
    pt = _coerce_plan_type(plan_type)
    if pt is None:
        return None
    if pt == PlanType.FREE:
        return FREE_PLAN

    query = select(plans).where(plans.c.plan_type == pt.value)
    if session is not None:
        row = session.execute(query).first()
    else:
        with get_db_session() as own_session:
            row = own_session.execute(query).first()

    if not row:
        return None
    return _row_to_plan(row)


def require_plan(plan_type: Union[str, PlanType], session: Optional[Session] = None) -> Plan:
    """Like get_plan, but a missing plan is a data integrity error."""
    plan = get_plan(plan_type, session=session)
    if plan is None:
        raise PlanNotFoundError(f"Plan not found: {plan_type}")
    return plan


def list_plans() -> List[Plan]:
    """All stored plans ordered by price."""
    with get_db_session() as session:
        rows = session.execute(
            select(plans).order_by(plans.c.price_monthly.asc())
        ).fetchall()
    return [_row_to_plan(r) for r in rows]
