"""
HTTP surface.

Tests:
- Caller identity (JWT, X-User-Id outside prod, 401 otherwise)
- Payment request / plans / access / profile endpoints
- Reviewer auth (legacy key, super_admin JWT, 401/503)
- Normalized error contract with request id
- Sweep, orphan report, audit endpoints
- Health probes
"""
import time

import jwt
from fastapi.testclient import TestClient
from sqlalchemy import insert

from hodos.api import health
from hodos.core.config import settings
from hodos.core.database import get_db_session, user_roles
from hodos.main import app

client = TestClient(app)


def _token(secret, sub, **claims):
    payload = {"sub": sub, "aud": "authenticated", "exp": int(time.time()) + 300, **claims}
    return jwt.encode(payload, secret, algorithm="HS256")


def _request(user_id, plan_type="individual", amount="9.90", church_data=None):
    body = {"plan_type": plan_type, "amount": amount}
    if church_data:
        body["church_data"] = church_data
    return client.post("/api/payments", json=body, headers={"X-User-Id": user_id})


# ---------------------------------------------------------------------------
# Caller routes
# ---------------------------------------------------------------------------

def test_plans_catalog_lists_free_first():
    resp = client.get("/api/plans")

    assert resp.status_code == 200
    body = resp.json()
    assert body[0]["plan_type"] == "free"
    assert body[0]["price_monthly"] == "0.00"
    assert {p["plan_type"] for p in body[1:]} == {
        "individual",
        "church_simple",
        "church_plus",
        "church_premium",
    }


def test_request_payment_requires_identity():
    resp = client.post("/api/payments", json={"plan_type": "individual", "amount": "9.90"})

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthenticated"


def test_request_payment_returns_confirmation_code(church_data):
    resp = _request("user-1", "church_plus", "149.90", church_data)

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "pending"
    assert body["amount"] == "149.90"
    assert body["payment_method"] == "pix"
    assert body["church_name"] == "Comunidade Luz"
    assert body["confirmation_code"].startswith("HOD-")

    again = _request("user-1", "church_plus", "149.90", church_data)
    assert again.json()["id"] == body["id"]


def test_request_payment_invalid_plan():
    resp = _request("user-1", plan_type="gold")

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"]["code"] == "invalid_plan"
    assert body["error"]["request_id"] == resp.headers["x-request-id"]


def test_my_payments_only_lists_caller_claims():
    _request("user-1")
    _request("user-2")

    resp = client.get("/api/payments/mine", headers={"X-User-Id": "user-1"})

    assert resp.status_code == 200
    assert len(resp.json()) == 1


def test_access_defaults_to_free():
    resp = client.get("/api/access", headers={"X-User-Id": "user-1"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["plan_type"] == "free"
    assert body["source"] == "default"
    assert body["features"]["public_content"] is True


def test_caller_jwt_identity(jwt_secret):
    headers = {"Authorization": f"Bearer {_token(jwt_secret, 'user-jwt')}"}

    resp = client.post("/api/payments", json={"plan_type": "individual", "amount": "9.90"}, headers=headers)
    assert resp.status_code == 200

    mine = client.get("/api/payments/mine", headers=headers)
    assert [p["id"] for p in mine.json()] == [resp.json()["id"]]


def test_token_email_reaches_lifecycle_emails(jwt_secret, admin_headers, outbox):
    token = _token(jwt_secret, "user-jwt", email="ana@example.com", user_metadata={"full_name": "Ana Souza"})
    headers = {"Authorization": f"Bearer {token}"}

    payment_id = client.post(
        "/api/payments", json={"plan_type": "individual", "amount": "9.90"}, headers=headers
    ).json()["id"]
    client.post(f"/v1/admin/payments/{payment_id}/approve", headers=admin_headers)

    assert outbox.sent_to("payment-pending") == ["ana@example.com"]
    assert outbox.sent_to("welcome-individual") == ["ana@example.com"]
    assert outbox.jobs[-1].args[2]["user_name"] == "Ana Souza"


def test_expired_jwt_is_rejected(jwt_secret):
    token = _token(jwt_secret, "user-jwt", exp=int(time.time()) - 10)

    resp = client.get("/api/access", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "token_expired"


def test_header_identity_ignored_in_prod(monkeypatch):
    monkeypatch.setattr(settings, "ENVIRONMENT", "prod")

    resp = client.get("/api/access", headers={"X-User-Id": "user-1"})

    assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Reviewer routes
# ---------------------------------------------------------------------------

def test_admin_routes_require_credentials(admin_headers):
    resp = client.get("/v1/admin/payments")

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "admin_unauthorized"

    wrong = client.get("/v1/admin/payments", headers={"X-Admin-Key": "nope"})
    assert wrong.status_code == 401


def test_admin_auth_unconfigured_returns_503(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_KEY", None)
    monkeypatch.setattr(settings, "SUPABASE_JWT_SECRET", None)

    resp = client.get("/v1/admin/payments", headers={"X-Admin-Key": "anything"})

    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "admin_auth_unconfigured"


def test_legacy_key_blocked_in_prod(admin_headers, monkeypatch):
    monkeypatch.setattr(settings, "ENVIRONMENT", "prod")

    assert client.get("/v1/admin/payments", headers=admin_headers).status_code == 401

    monkeypatch.setattr(settings, "ADMIN_AUTH_MODE", "legacy")
    assert client.get("/v1/admin/payments", headers=admin_headers).status_code == 200


def test_review_queue_and_approve(admin_headers, church_data):
    payment_id = _request("user-1", "church_plus", "149.90", church_data).json()["id"]

    queue = client.get("/v1/admin/payments", headers=admin_headers)
    assert queue.status_code == 200
    assert [p["id"] for p in queue.json()] == [payment_id]
    assert queue.json()[0]["church_data"]["church_name"] == "Comunidade Luz"

    resp = client.post(f"/v1/admin/payments/{payment_id}/approve", headers=admin_headers)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["plan_type"] == "church_plus"
    assert body["church_slug"] == "comunidade-luz"
    assert body["renewed"] is False

    assert client.get("/v1/admin/payments", headers=admin_headers).json() == []
    approved = client.get("/v1/admin/payments", params={"status": "approved"}, headers=admin_headers).json()
    assert approved[0]["reviewed_by"] == "reviewer-1"

    access = client.get("/api/access", headers={"X-User-Id": "user-1"}).json()
    assert access["plan_type"] == "church_plus"
    assert access["source"] == "church"


def test_approve_twice_returns_409_with_error_contract(admin_headers):
    payment_id = _request("user-1").json()["id"]
    client.post(f"/v1/admin/payments/{payment_id}/approve", headers=admin_headers)

    resp = client.post(f"/v1/admin/payments/{payment_id}/approve", headers=admin_headers)

    assert resp.status_code == 409
    body = resp.json()
    assert body["error"]["code"] == "already_processed"
    assert body["error"]["request_id"] == resp.headers["x-request-id"]


def test_approve_unknown_payment_is_404(admin_headers):
    resp = client.post("/v1/admin/payments/missing/approve", headers=admin_headers)

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "payment_not_found"


def test_reject_requires_reason(admin_headers):
    payment_id = _request("user-1").json()["id"]

    missing = client.post(f"/v1/admin/payments/{payment_id}/reject", json={}, headers=admin_headers)
    assert missing.status_code == 400
    assert missing.json()["error"]["code"] == "validation_error"

    resp = client.post(
        f"/v1/admin/payments/{payment_id}/reject",
        json={"reason": "Comprovante ilegível"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "rejected"
    assert resp.json()["rejection_reason"] == "Comprovante ilegível"


def test_super_admin_jwt_reviewer(jwt_secret):
    with get_db_session() as session:
        session.execute(insert(user_roles).values(user_id="boss", role="super_admin"))
    payment_id = _request("user-1").json()["id"]

    headers = {"Authorization": f"Bearer {_token(jwt_secret, 'boss', email='boss@hodos.app')}"}
    resp = client.post(f"/v1/admin/payments/{payment_id}/approve", headers=headers)

    assert resp.status_code == 200
    audit = client.get("/v1/admin/audit", headers=headers).json()
    assert audit[0]["actor"] == "boss"
    assert audit[0]["action"] == "payment.approve"


def test_caller_jwt_is_not_a_reviewer(jwt_secret):
    payment_id = _request("user-1").json()["id"]
    headers = {"Authorization": f"Bearer {_token(jwt_secret, 'user-1')}"}

    resp = client.post(f"/v1/admin/payments/{payment_id}/approve", headers=headers)

    assert resp.status_code == 401


def test_cancel_and_list_subscriptions(admin_headers):
    payment_id = _request("user-1").json()["id"]
    sub_id = client.post(f"/v1/admin/payments/{payment_id}/approve", headers=admin_headers).json()["subscription_id"]

    listed = client.get("/v1/admin/subscriptions", params={"status": "active"}, headers=admin_headers)
    assert [s["id"] for s in listed.json()] == [sub_id]

    resp = client.post(
        f"/v1/admin/subscriptions/{sub_id}/cancel",
        json={"reason": "Solicitado pelo usuário"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"

    again = client.post(f"/v1/admin/subscriptions/{sub_id}/cancel", headers=admin_headers)
    assert again.status_code == 409


def test_manual_sweep_and_orphan_report(admin_headers):
    sweep = client.post("/v1/admin/subscriptions/sweep", headers=admin_headers)
    assert sweep.status_code == 200
    assert sweep.json()["expired"] == 0
    assert sweep.json()["cancelled"] == 0

    orphans = client.get("/v1/admin/subscriptions/orphans", headers=admin_headers)
    assert orphans.status_code == 200
    assert orphans.json()["issues_found"] == 0


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

def test_healthz():
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_readyz_checks_tables():
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_readyz_reports_unreachable_database(monkeypatch):
    monkeypatch.setattr(health, "check_connection", lambda: False)

    resp = client.get("/readyz")

    assert resp.status_code == 503
    assert resp.json()["detail"] == "database unreachable"


def test_profile_is_filled_from_token_contact(jwt_secret):
    token = _token(jwt_secret, "user-jwt", email="ana@example.com", user_metadata={"name": "Ana"})

    resp = client.get("/api/profile", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 200
    assert resp.json()["email"] == "ana@example.com"
    assert resp.json()["full_name"] == "Ana"

    by_header = client.get("/api/profile", headers={"X-User-Id": "user-jwt"})
    assert by_header.json()["email"] == "ana@example.com"
