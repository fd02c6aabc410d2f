"""
Pending payment store.

Tests:
- Idempotent request while a claim is pending
- Confirmation codes (format, collision retry)
- Validation before any write
- Best-effort payment-pending notification
"""
from decimal import Decimal

import pytest
from sqlalchemy import select, func, update

from hodos.core.database import get_db_session, pending_payments
from hodos.core.errors import InvalidPlanError, UnauthenticatedError, ValidationError
from hodos.features.payments import service as payments
from hodos.features.payments.service import (
    CODE_ALPHABET,
    generate_confirmation_code,
    get_payment,
    list_payments,
    request_payment,
)
from hodos.features.subscriptions.approval import approve_payment, reject_payment
from hodos.features.users.service import get_or_create_profile
from hodos.models.payment import PaymentStatus
from hodos.models.plan import PlanType


def _count_payments() -> int:
    with get_db_session() as session:
        return session.execute(select(func.count()).select_from(pending_payments)).scalar()


def test_confirmation_code_format():
    code = generate_confirmation_code()
    assert code.startswith("HOD-")
    assert len(code) == 12
    assert all(ch in CODE_ALPHABET for ch in code[4:])


def test_request_creates_pending_claim(church_data):
    payment = request_payment("user-1", "church_plus", Decimal("149.90"), church_data)

    assert payment.status == PaymentStatus.PENDING
    assert payment.plan_type == PlanType.CHURCH_PLUS
    assert payment.amount == Decimal("149.90")
    assert payment.payment_method == "pix"
    assert payment.confirmation_code.startswith("HOD-")
    assert payment.church_data.church_name == "Comunidade Luz"
    assert payment.reviewed_by is None


def test_repeated_request_returns_same_claim():
    first = request_payment("user-1", "individual", "9.90")
    second = request_payment("user-1", "individual", "9.90")

    assert second.id == first.id
    assert second.confirmation_code == first.confirmation_code
    assert _count_payments() == 1


def test_repeated_request_ignores_changed_amount():
    first = request_payment("user-1", "individual", "9.90")
    second = request_payment("user-1", "individual", "12.00")

    assert second.id == first.id
    assert second.amount == Decimal("9.90")


def test_different_plans_get_separate_claims(church_data):
    individual = request_payment("user-1", "individual", "9.90")
    church = request_payment("user-1", "church_simple", "79.90", church_data)

    assert individual.id != church.id
    assert individual.confirmation_code != church.confirmation_code


def test_new_claim_allowed_after_previous_is_resolved():
    first = request_payment("user-1", "individual", "9.90")
    reject_payment(first.id, "reviewer-1", "Comprovante ilegível")

    second = request_payment("user-1", "individual", "9.90")

    assert second.id != first.id
    assert second.status == PaymentStatus.PENDING


def test_open_claim_reread_when_insert_races(monkeypatch):
    """A concurrent request inserted first: return its row instead of failing."""
    winner = request_payment("user-1", "individual", "9.90")

    calls = {"n": 0}
    real_find = payments._find_open_claim

    def stale_then_real(session, user_id, plan_type):
        calls["n"] += 1
        if calls["n"] == 1:
            return None  # the pre-insert check missed the concurrent row
        return real_find(session, user_id, plan_type)

    monkeypatch.setattr(payments, "_find_open_claim", stale_then_real)

    again = request_payment("user-1", "individual", "9.90")

    assert again.id == winner.id
    assert _count_payments() == 1


def test_code_collision_regenerates(monkeypatch):
    taken = request_payment("user-1", "individual", "9.90").confirmation_code
    codes = iter([taken, "HOD-NEWCODE2"])
    monkeypatch.setattr(payments, "generate_confirmation_code", lambda: next(codes))

    payment = request_payment("user-2", "individual", "9.90")

    assert payment.confirmation_code == "HOD-NEWCODE2"
    assert _count_payments() == 2


def test_missing_identity_is_unauthenticated():
    with pytest.raises(UnauthenticatedError):
        request_payment(None, "individual", "9.90")
    with pytest.raises(UnauthenticatedError):
        request_payment("", "individual", "9.90")


@pytest.mark.parametrize("plan_type", ["free", "gold", ""])
def test_invalid_plan_rejected(plan_type):
    with pytest.raises(InvalidPlanError):
        request_payment("user-1", plan_type, "9.90")
    assert _count_payments() == 0


@pytest.mark.parametrize("amount", ["0", "-9.90", "abc"])
def test_invalid_amount_rejected(amount):
    with pytest.raises(ValidationError):
        request_payment("user-1", "individual", amount)


def test_church_plan_requires_church_data_for_first_purchase():
    with pytest.raises(ValidationError):
        request_payment("user-1", "church_simple", "79.90")
    assert _count_payments() == 0


def test_church_admin_can_renew_without_church_data(church_data):
    first = request_payment("user-1", "church_simple", "79.90", church_data)
    approve_payment(first.id, "reviewer-1")

    renewal = request_payment("user-1", "church_plus", "149.90")

    assert renewal.status == PaymentStatus.PENDING
    assert renewal.church_data is None


def test_invalid_church_data_rejected(church_data):
    bad = dict(church_data, cnpj=None, cpf=None)
    with pytest.raises(ValidationError):
        request_payment("user-1", "church_simple", "79.90", bad)

    bad = dict(church_data, responsible_email="not-an-email")
    with pytest.raises(ValidationError):
        request_payment("user-1", "church_simple", "79.90", bad)


def test_church_data_not_accepted_for_individual_plan(church_data):
    with pytest.raises(ValidationError):
        request_payment("user-1", "individual", "9.90", church_data)


def test_payment_pending_notification_carries_code(outbox, church_data):
    payment = request_payment("user-1", "church_plus", "149.90", church_data)

    assert outbox.templates == ["payment-pending"]
    job = outbox.jobs[0]
    template, to, variables = job.args
    assert to == "joao@comunidadeluz.org"
    assert variables["confirmation_code"] == payment.confirmation_code
    assert variables["amount"] == "149.90"


def test_repeated_request_does_not_notify_twice(outbox):
    get_or_create_profile("user-1", email="ana@example.com")
    request_payment("user-1", "individual", "9.90")
    request_payment("user-1", "individual", "9.90")

    assert outbox.templates == ["payment-pending"]


def test_notification_failure_does_not_fail_request(outbox, church_data):
    outbox.fail = True

    payment = request_payment("user-1", "church_plus", "149.90", church_data)

    assert payment.status == PaymentStatus.PENDING
    assert get_payment(payment.id) is not None


def test_list_payments_filters_and_orders(church_data):
    a = request_payment("user-1", "individual", "9.90")
    b = request_payment("user-2", "church_simple", "79.90", church_data)
    with get_db_session() as session:
        session.execute(
            update(pending_payments).where(pending_payments.c.id == a.id).values(status="rejected")
        )

    pending = list_payments(status="pending")
    assert [p.id for p in pending] == [b.id]

    mine = list_payments(user_id="user-1")
    assert [p.id for p in mine] == [a.id]

    with pytest.raises(ValidationError):
        list_payments(status="paid")


def test_get_payment_unknown_returns_none():
    assert get_payment("does-not-exist") is None
