"""
Reviewer subscription administration and the orphan report.

Tests:
- cancel is guarded and audited
- individual holders downgrade on cancel, church pointers stay
- listing filters
- orphan report is read-only and finds each issue type
"""
import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import insert, select, update

from hodos.core.database import get_db_session, admin_audit, churches, profiles
from hodos.core.errors import AlreadyProcessedError, SubscriptionNotFoundError, ValidationError
from hodos.features.payments.service import request_payment
from hodos.features.subscriptions.approval import approve_payment
from hodos.features.subscriptions.reconcile import find_orphans
from hodos.features.subscriptions.service import (
    cancel_subscription,
    get_subscription,
    list_subscriptions,
)
from hodos.features.subscriptions.sweeper import run_expiration_sweep
from hodos.features.users.service import get_or_create_profile
from hodos.models.subscription import HolderType, SubscriptionStatus

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _approve(user_id, plan_type, amount, church_data=None, now=NOW):
    payment = request_payment(user_id, plan_type, amount, church_data)
    return approve_payment(payment.id, "reviewer-1", now=now)


def test_cancel_individual_subscription(outbox):
    get_or_create_profile("user-1", email="ana@example.com")
    sub = _approve("user-1", "individual", "9.90").subscription

    cancelled = cancel_subscription(sub.id, "reviewer-2", reason="Chargeback", now=NOW + timedelta(days=2))

    assert cancelled.status == SubscriptionStatus.CANCELLED
    assert cancelled.cancelled_at == NOW + timedelta(days=2)
    with get_db_session() as session:
        profile = session.execute(select(profiles).where(profiles.c.user_id == "user-1")).first()
        audit = session.execute(
            select(admin_audit).where(admin_audit.c.action == "subscription.cancel")
        ).first()
    assert profile.subscription_id is None
    assert audit.actor == "reviewer-2"
    assert json.loads(audit.payload_json)["reason"] == "Chargeback"
    assert outbox.templates[-1] == "subscription-downgraded"


def test_cancel_church_subscription_keeps_church_pointer(church_data):
    result = _approve("pastor", "church_plus", "149.90", church_data)

    cancel_subscription(result.subscription.id, "reviewer-1")

    with get_db_session() as session:
        church = session.execute(select(churches).where(churches.c.id == result.church.id)).first()
    assert church.subscription_id == result.subscription.id
    assert church.is_active


def test_cancel_expired_subscription():
    sub = _approve("user-1", "individual", "9.90").subscription
    run_expiration_sweep(now=NOW + timedelta(days=31))

    cancelled = cancel_subscription(sub.id, "reviewer-1")

    assert cancelled.status == SubscriptionStatus.CANCELLED


def test_cancel_twice_is_already_processed():
    sub = _approve("user-1", "individual", "9.90").subscription
    cancel_subscription(sub.id, "reviewer-1")

    with pytest.raises(AlreadyProcessedError):
        cancel_subscription(sub.id, "reviewer-1")


def test_cancel_unknown_subscription():
    with pytest.raises(SubscriptionNotFoundError):
        cancel_subscription("missing", "reviewer-1")


def test_list_and_get_subscriptions(church_data):
    church = _approve("pastor", "church_simple", "79.90", church_data)
    individual = _approve("user-1", "individual", "9.90")
    cancel_subscription(individual.subscription.id, "reviewer-1")

    active = list_subscriptions(status="active")
    assert [s.id for s in active] == [church.subscription.id]
    assert active[0].holder_type == HolderType.CHURCH

    by_church = list_subscriptions(church_id=church.church.id)
    assert [s.id for s in by_church] == [church.subscription.id]

    mine = list_subscriptions(user_id="user-1")
    assert [s.status for s in mine] == [SubscriptionStatus.CANCELLED]

    assert get_subscription(individual.subscription.id).status == SubscriptionStatus.CANCELLED
    assert get_subscription("missing") is None

    with pytest.raises(ValidationError):
        list_subscriptions(status="paused")


def test_orphan_report_on_clean_data(church_data):
    _approve("pastor", "church_plus", "149.90", church_data)
    _approve("user-1", "individual", "9.90")

    report = find_orphans(now=NOW)

    assert report["issues_found"] == 0
    assert report["issues"] == []


def test_orphan_report_finds_each_issue_type():
    with get_db_session() as session:
        session.execute(
            insert(churches).values(id=str(uuid.uuid4()), slug="igreja-sem-plano", name="Igreja Sem Plano")
        )
    sub = _approve("user-1", "individual", "9.90").subscription
    with get_db_session() as session:
        session.execute(
            update(profiles).where(profiles.c.user_id == "user-1").values(subscription_id=None)
        )
    stale = request_payment("user-2", "individual", "9.90", now=NOW - timedelta(days=10))
    request_payment("user-3", "individual", "9.90", now=NOW - timedelta(days=1))

    report = find_orphans(now=NOW, stale_pending_days=7)

    by_type = {issue["type"]: issue for issue in report["issues"]}
    assert report["issues_found"] == 3
    assert by_type["church_without_subscription"]["slug"] == "igreja-sem-plano"
    assert by_type["unreferenced_subscription"]["subscription_id"] == sub.id
    assert by_type["stale_pending_payment"]["payment_id"] == stale.id

    # Report only: nothing was repaired
    assert find_orphans(now=NOW)["issues_found"] == 3
