"""Plan catalog: seeding, lookup, and the implicit free plan."""
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from hodos.core.database import get_db_session, plans
from hodos.core.errors import PlanNotFoundError
from hodos.features.plans.service import (
    FREE_PLAN,
    get_plan,
    require_plan,
    list_plans,
    seed_plans,
    is_church_plan,
    is_purchasable,
)
from hodos.models.plan import PlanType


def test_seeded_catalog_prices_and_limits():
    catalog = {p.plan_type: p for p in list_plans()}

    assert set(catalog) == {
        PlanType.INDIVIDUAL,
        PlanType.CHURCH_SIMPLE,
        PlanType.CHURCH_PLUS,
        PlanType.CHURCH_PREMIUM,
    }
    assert catalog[PlanType.INDIVIDUAL].price_monthly == Decimal("9.90")
    assert catalog[PlanType.CHURCH_PLUS].price_monthly == Decimal("149.90")
    assert catalog[PlanType.CHURCH_PLUS].max_members == 300
    assert catalog[PlanType.CHURCH_PLUS].max_admins == 5
    assert catalog[PlanType.CHURCH_PREMIUM].max_members is None


def test_list_plans_ordered_by_price():
    prices = [p.price_monthly for p in list_plans()]
    assert prices == sorted(prices)


def test_seed_plans_is_idempotent():
    seed_plans()
    seed_plans()
    with get_db_session() as session:
        count = session.execute(select(func.count()).select_from(plans)).scalar()
    assert count == 4


def test_free_plan_is_a_constant_not_a_row():
    assert get_plan("free") is FREE_PLAN
    assert FREE_PLAN.price_monthly == Decimal("0")
    with get_db_session() as session:
        row = session.execute(select(plans).where(plans.c.plan_type == "free")).first()
    assert row is None


def test_unknown_plan_returns_none():
    assert get_plan("gold") is None


def test_require_plan_raises_for_missing_row():
    with get_db_session() as session:
        session.execute(plans.delete().where(plans.c.plan_type == "church_simple"))

    with pytest.raises(PlanNotFoundError):
        require_plan("church_simple")


def test_plan_classification():
    assert is_church_plan("church_premium")
    assert not is_church_plan("individual")
    assert not is_church_plan("nonsense")
    assert is_purchasable("individual")
    assert not is_purchasable("free")
    assert not is_purchasable("nonsense")
