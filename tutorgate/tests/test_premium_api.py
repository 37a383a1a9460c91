"""Premium subscription API: plans, plan changes, cancellation, promo codes, auth."""

from datetime import datetime, timedelta, timezone

import jwt

from tutorgate.models.subscription import BillingCycle, PlanTier


def _headers(user_id="user-1"):
    return {"X-User-Id": user_id}


def test_plans_are_public(client):
    resp = client.get("/api/premium/plans")
    assert resp.status_code == 200
    plans = resp.json()["data"]
    assert [p["id"] for p in plans] == ["free", "premium", "pro"]
    assert plans[1]["price"] == 9.99
    assert plans[2]["price_yearly"] == 199.99


def test_subscription_defaults_to_free(client):
    resp = client.get("/api/premium/subscription", headers=_headers())
    assert resp.status_code == 200
    assert resp.json()["data"] == {"plan": "free", "status": "active"}


def test_missing_auth_is_unauthorized(client):
    resp = client.get("/api/premium/subscription")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_bearer_token_identifies_user(client, test_settings):
    token = jwt.encode({"sub": "jwt-user"}, test_settings.JWT_SECRET, algorithm="HS256")
    client.post(
        "/api/premium/upgrade",
        json={"plan_id": "pro", "billing_cycle": "monthly"},
        headers={"Authorization": f"Bearer {token}"},
    )
    resp = client.get("/api/premium/subscription", headers={"Authorization": f"Bearer {token}"})
    assert resp.json()["data"]["plan"] == "pro"


def test_legacy_user_id_claim_is_accepted(client, test_settings):
    token = jwt.encode({"userId": 42}, test_settings.JWT_SECRET, algorithm="HS256")
    resp = client.get("/api/premium/subscription", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200


def test_invalid_and_expired_tokens_rejected(client, test_settings):
    bad = jwt.encode({"sub": "u"}, "wrong-secret", algorithm="HS256")
    resp = client.get("/api/premium/subscription", headers={"Authorization": f"Bearer {bad}", **_headers()})
    assert resp.status_code == 401

    expired = jwt.encode(
        {"sub": "u", "exp": datetime.now(timezone.utc) - timedelta(minutes=5)},
        test_settings.JWT_SECRET,
        algorithm="HS256",
    )
    resp = client.get("/api/premium/subscription", headers={"Authorization": f"Bearer {expired}"})
    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "Token expired"


def test_header_auth_can_be_disabled(app, client):
    app.state.settings = app.state.settings.model_copy(update={"ALLOW_HEADER_AUTH": False})
    resp = client.get("/api/premium/subscription", headers=_headers())
    assert resp.status_code == 401


def test_upgrade_flow(client):
    created = client.post("/api/premium/upgrade", json={"plan_id": "premium", "billing_cycle": "monthly"}, headers=_headers())
    assert created.status_code == 200
    body = created.json()
    assert body["data"]["outcome"] == "created"
    assert body["data"]["subscription"]["plan"] == "premium"
    assert body["data"]["subscription"]["end_date"].startswith("2026-02-15")

    upgraded = client.post("/api/premium/upgrade", json={"plan_id": "pro", "billing_cycle": "yearly"}, headers=_headers())
    assert upgraded.json()["data"]["outcome"] == "upgraded"
    assert upgraded.json()["data"]["subscription"]["billing_cycle"] == "yearly"

    scheduled = client.post("/api/premium/upgrade", json={"plan_id": "premium"}, headers=_headers())
    data = scheduled.json()["data"]
    assert data["outcome"] == "scheduled"
    assert data["subscription"]["plan"] == "pro"
    assert data["subscription"]["scheduled_plan"] == "premium"
    assert "2026-02-15" in scheduled.json()["message"]


def test_upgrade_rejects_same_and_unknown_plan(client):
    client.post("/api/premium/upgrade", json={"plan_id": "pro"}, headers=_headers())

    same = client.post("/api/premium/upgrade", json={"plan_id": "pro"}, headers=_headers())
    assert same.status_code == 400
    assert same.json()["error"]["code"] == "invalid_transition"

    unknown = client.post("/api/premium/upgrade", json={"plan_id": "platinum"}, headers=_headers())
    assert unknown.status_code == 400
    assert unknown.json()["error"]["message"] == "Invalid plan selected"

    missing = client.post("/api/premium/upgrade", json={}, headers=_headers())
    assert missing.status_code == 400


def test_free_request_without_subscription(client):
    resp = client.post("/api/premium/upgrade", json={"plan_id": "free"}, headers=_headers())
    assert resp.status_code == 200
    assert resp.json()["data"]["outcome"] == "already_free"


def test_cancel_returns_access_until(client):
    client.post("/api/premium/upgrade", json={"plan_id": "premium"}, headers=_headers())

    resp = client.post("/api/premium/cancel", headers=_headers())
    assert resp.status_code == 200
    assert resp.json()["data"]["access_until"].startswith("2026-02-15")
    assert resp.json()["data"]["status"] == "cancelled"

    again = client.post("/api/premium/cancel", headers=_headers())
    assert again.status_code == 400
    assert "already cancelled" in again.json()["error"]["message"]


def test_cancel_on_free_plan(client):
    resp = client.post("/api/premium/cancel", headers=_headers())
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "You are on the free plan, nothing to cancel"


def test_cancel_scheduled_change(client):
    client.post("/api/premium/upgrade", json={"plan_id": "pro"}, headers=_headers())
    client.post("/api/premium/upgrade", json={"plan_id": "premium"}, headers=_headers())

    first = client.post("/api/premium/cancel-scheduled-change", headers=_headers())
    assert first.status_code == 200
    assert first.json()["data"]["scheduled_plan"] is None
    assert first.json()["data"]["plan"] == "pro"

    second = client.post("/api/premium/cancel-scheduled-change", headers=_headers())
    assert second.status_code == 404
    assert second.json()["error"]["code"] == "not_found"


def test_scheduled_downgrade_takes_effect_after_period(client, clock):
    client.post("/api/premium/upgrade", json={"plan_id": "pro"}, headers=_headers())
    client.post("/api/premium/upgrade", json={"plan_id": "premium"}, headers=_headers())

    clock.advance(days=32)
    data = client.get("/api/premium/subscription", headers=_headers()).json()["data"]
    assert data["plan"] == "premium"
    assert data["scheduled_plan"] is None
    assert data["start_date"].startswith("2026-02-15")


def test_check_access(client, app, clock):
    assert client.get("/api/premium/check-access", headers=_headers()).json()["data"]["is_premium"] is False

    app.state.lifecycle.create("user-1", PlanTier.PREMIUM, BillingCycle.MONTHLY)
    data = client.get("/api/premium/check-access", headers=_headers()).json()["data"]
    assert data["is_premium"] is True
    assert data["plan"] == "premium"

    client.post("/api/premium/cancel", headers=_headers())
    assert client.get("/api/premium/check-access", headers=_headers()).json()["data"]["is_premium"] is False


def test_promo_code_redemption(client, app):
    app.state.promotions.create("WELCOME10", 10, description="Welcome discount", max_uses=1)

    resp = client.post("/api/premium/promo", json={"code": "welcome10"}, headers=_headers())
    assert resp.status_code == 200
    assert resp.json()["data"] == {"code": "WELCOME10", "discount": 10, "description": "Welcome discount"}

    exhausted = client.post("/api/premium/promo", json={"code": "WELCOME10"}, headers=_headers("user-2"))
    assert exhausted.status_code == 400
    assert exhausted.json()["error"]["message"] == "Invalid or expired promo code"

    missing = client.post("/api/premium/promo", json={}, headers=_headers())
    assert missing.status_code == 400
    assert missing.json()["error"]["message"] == "Promo code is required"
