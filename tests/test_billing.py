from datetime import timedelta

from wellness.models import Subscription, db, utcnow


def test_plans_are_public(client):
    plans = client.get("/api/billing/plans").get_json()["plans"]
    assert [plan["id"] for plan in plans] == ["basic_monthly", "pro_monthly", "pro_yearly"]
    assert plans[0]["price"] == 999


def test_subscribe_and_cancel(client, auth):
    assert client.get("/api/billing/subscription", headers=auth).get_json()["has_subscription"] is False

    response = client.post("/api/billing/subscribe", headers=auth, json={"plan_id": "pro_monthly"})
    assert response.status_code == 201
    subscription = response.get_json()["subscription"]
    assert subscription["status"] == "active"
    assert subscription["amount"] == 1999

    current = client.get("/api/billing/subscription", headers=auth).get_json()
    assert current["has_subscription"] is True
    assert current["plan"] == "premium"
    assert client.get("/api/auth/me", headers=auth).get_json()["user"]["plan"] == "premium"

    assert client.post("/api/billing/subscribe", headers=auth,
                       json={"plan_id": "basic_monthly"}).status_code == 409

    canceled = client.post("/api/billing/cancel", headers=auth)
    assert canceled.status_code == 200
    assert canceled.get_json()["subscription"]["cancel_at_period_end"] is True
    assert client.get("/api/billing/subscription", headers=auth).get_json()["plan"] == "free"
    assert client.post("/api/billing/cancel", headers=auth).status_code == 404

    history = client.get("/api/billing/history", headers=auth).get_json()["history"]
    assert [entry["status"] for entry in history] == ["canceled"]


def test_unknown_plan(client, auth):
    assert client.post("/api/billing/subscribe", headers=auth, json={"plan_id": "gold"}).status_code == 400


def test_yearly_period(client, auth):
    subscription = client.post("/api/billing/subscribe", headers=auth,
                               json={"plan_id": "pro_yearly"}).get_json()["subscription"]
    start = subscription["current_period_start"][:10]
    end = subscription["current_period_end"][:10]
    assert int(end[:4]) - int(start[:4]) in (0, 1)
    assert end > start


def test_usage_counts_period_activity(client, auth):
    client.post("/api/tasks", headers=auth, json={"title": "One"})
    client.post("/api/health/logs", headers=auth, json={"type": "hydration", "payload": {"amount_ml": 250}})
    usage = client.get("/api/billing/usage", headers=auth).get_json()
    assert usage["has_subscription"] is False
    assert usage["usage"] == {"tasks": 1, "health_logs": 1}
    assert usage["limits"] == {"tasks": 100, "health_logs": -1}

    client.post("/api/billing/subscribe", headers=auth, json={"plan_id": "pro_monthly"})
    usage = client.get("/api/billing/usage", headers=auth).get_json()
    assert usage["plan_id"] == "pro_monthly"
    assert usage["limits"]["tasks"] == -1
    assert usage["usage"]["tasks"] == 0


def test_subscribe_writes_audit_entry(client, auth):
    client.post("/api/billing/subscribe", headers=auth, json={"plan_id": "basic_monthly"})
    logs = client.get("/api/security/audit?action=subscribe", headers=auth).get_json()["logs"]
    assert len(logs) == 1
    assert logs[0]["details"] == {"plan_id": "basic_monthly"}


def test_lapsed_subscription_resets_plan(app, client, register):
    headers, user = register()
    client.post("/api/billing/subscribe", headers=headers, json={"plan_id": "pro_monthly"})
    with app.app_context():
        subscription = Subscription.query.filter_by(user_id=user["id"]).first()
        subscription.current_period_end = utcnow() - timedelta(minutes=1)
        db.session.commit()

    assert client.get("/api/auth/me", headers=headers).get_json()["user"]["plan"] == "free"
    current = client.get("/api/billing/subscription", headers=headers).get_json()
    assert current["has_subscription"] is False
    assert current["plan"] == "free"
    assert client.post("/api/billing/subscribe", headers=headers,
                       json={"plan_id": "basic_monthly"}).status_code == 201
