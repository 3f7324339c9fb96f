from wellness.models import User, db


def _register(client, n):
    return client.post("/api/auth/register", json={"email": f"rl{n}@example.com", "password": "password123"})


def test_auth_endpoints_are_rate_limited(app, client, monkeypatch):
    monkeypatch.setitem(app.config, "AUTH_RATE_LIMIT", 2)
    first = _register(client, 1)
    assert first.status_code == 201
    assert first.headers["X-RateLimit-Limit"] == "2"
    assert first.headers["X-RateLimit-Remaining"] == "1"
    assert _register(client, 2).status_code == 201

    blocked = _register(client, 3)
    assert blocked.status_code == 429
    assert int(blocked.headers["Retry-After"]) >= 1
    assert blocked.headers["X-RateLimit-Remaining"] == "0"
    assert client.post("/api/auth/login", json={"email": "rl1@example.com",
                                                "password": "password123"}).status_code == 429


def test_security_headers(client):
    response = client.get("/api/billing/plans")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert "max-age" in response.headers["Strict-Transport-Security"]


def test_unknown_api_route_returns_json(client):
    response = client.get("/api/does-not-exist")
    assert response.status_code == 404
    assert "message" in response.get_json()


def test_create_and_list_audit_entries(client, auth):
    response = client.post("/api/security/audit", headers=auth, json={
        "action": "export", "resource": "tasks", "severity": "high", "details": {"rows": 3},
    })
    assert response.status_code == 201
    assert response.get_json()["severity"] == "high"

    assert client.post("/api/security/audit", headers=auth, json={
        "action": "export", "resource": "tasks", "severity": "catastrophic",
    }).status_code == 400
    assert client.post("/api/security/audit", headers=auth, json={"resource": "tasks"}).status_code == 400

    logs = client.get("/api/security/audit?severity=high", headers=auth).get_json()
    assert logs["total"] == 1
    assert logs["logs"][0]["details"] == {"rows": 3}


def test_login_failures_are_audited(client, register):
    headers, user = register()
    client.post("/api/auth/login", json={"email": user["email"], "password": "wrong-password"})
    logs = client.get("/api/security/audit?action=login", headers=headers).get_json()["logs"]
    assert any(entry["success"] is False for entry in logs)


def test_only_admins_read_other_users_audit_logs(app, client, register):
    headers, _ = register()
    _, other = register()
    assert client.get(f"/api/security/audit?user_id={other['id']}", headers=headers).status_code == 403

    admin, admin_user = register()
    with app.app_context():
        db.session.get(User, admin_user["id"]).role = "admin"
        db.session.commit()
    response = client.get(f"/api/security/audit?user_id={other['id']}", headers=admin)
    assert response.status_code == 200
    assert [entry["action"] for entry in response.get_json()["logs"]] == ["register"]
