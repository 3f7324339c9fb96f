from datetime import datetime, timedelta, timezone

import jwt

from wellness.models import AuditLog, Task, User, db


def test_register_returns_user_and_tokens(client):
    response = client.post("/api/auth/register", json={
        "email": "Ada@Example.com", "password": "password123", "first_name": "Ada",
    })
    assert response.status_code == 201
    body = response.get_json()
    assert body["user"]["email"] == "ada@example.com"
    assert body["user"]["id"]
    assert body["user"]["created_at"]
    assert body["tokens"]["access_token"]
    assert body["tokens"]["refresh_token"]


def test_register_rejects_duplicate_email(client, register):
    register(email="dup@example.com")
    response = client.post("/api/auth/register", json={"email": "dup@example.com", "password": "password123"})
    assert response.status_code == 409
    assert response.get_json()["message"] == "Email already exists"


def test_register_validates_input(client):
    assert client.post("/api/auth/register", json={"email": "nope", "password": "password123"}).status_code == 400
    assert client.post("/api/auth/register", json={"email": "a@b.co", "password": "short"}).status_code == 400
    response = client.post("/api/auth/register", json={
        "email": "a@b.co", "password": "password123", "preferred_language": "fr",
    })
    assert response.status_code == 400


def test_login_and_me(client, register):
    register(email="me@example.com")
    response = client.post("/api/auth/login", json={"email": "me@example.com", "password": "password123"})
    assert response.status_code == 200
    token = response.get_json()["tokens"]["access_token"]
    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.get_json()["user"]["email"] == "me@example.com"


def test_login_bad_credentials_is_audited(app, client, register):
    register(email="me@example.com")
    response = client.post("/api/auth/login", json={"email": "me@example.com", "password": "wrong-password"})
    assert response.status_code == 401
    with app.app_context():
        failed = AuditLog.query.filter_by(action="login", success=False).all()
        assert len(failed) == 1


def test_missing_and_invalid_tokens(client):
    assert client.get("/api/auth/me").status_code == 401
    response = client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401
    assert response.get_json()["message"] == "Invalid token"


def test_expired_token(app, client, register):
    _, user = register()
    now = datetime.now(timezone.utc)
    token = jwt.encode({
        "user_id": user["id"], "type": "access",
        "iat": now - timedelta(hours=2), "exp": now - timedelta(hours=1),
    }, app.config["JWT_SECRET_KEY"], algorithm="HS256")
    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.get_json()["message"] == "Token expired"


def test_refresh_issues_new_tokens(client):
    body = client.post("/api/auth/register", json={"email": "r@example.com", "password": "password123"}).get_json()
    refresh_token = body["tokens"]["refresh_token"]
    response = client.post("/api/auth/refresh", json={"refresh_token": refresh_token})
    assert response.status_code == 200
    assert response.get_json()["tokens"]["access_token"]
    # an access token is not accepted as a refresh token
    response = client.post("/api/auth/refresh", json={"refresh_token": body["tokens"]["access_token"]})
    assert response.status_code == 401


def test_refresh_token_cannot_be_used_as_access_token(client):
    body = client.post("/api/auth/register", json={"email": "r@example.com", "password": "password123"}).get_json()
    headers = {"Authorization": f"Bearer {body['tokens']['refresh_token']}"}
    assert client.get("/api/auth/me", headers=headers).status_code == 401


def test_update_profile_advances_updated_at(app, client, register):
    headers, user = register()
    with app.app_context():
        row = db.session.get(User, user["id"])
        row.updated_at = datetime(2020, 1, 1)
        db.session.commit()
    response = client.put("/api/users/profile", headers=headers,
                          json={"first_name": "Grace", "preferred_language": "de"})
    assert response.status_code == 200
    body = response.get_json()["user"]
    assert body["first_name"] == "Grace"
    assert body["preferred_language"] == "de"
    assert body["updated_at"] > "2020-01-01T00:00:00Z"


def test_change_password(client, register):
    headers, _ = register(email="pw@example.com")
    wrong = client.put("/api/users/password", headers=headers,
                       json={"current_password": "nope-nope", "new_password": "newpassword1"})
    assert wrong.status_code == 401
    ok = client.put("/api/users/password", headers=headers,
                    json={"current_password": "password123", "new_password": "newpassword1"})
    assert ok.status_code == 200
    login = client.post("/api/auth/login", json={"email": "pw@example.com", "password": "newpassword1"})
    assert login.status_code == 200


def test_delete_account_cascades(app, client, register):
    headers, user = register()
    client.post("/api/tasks", headers=headers, json={"title": "Write report"})
    response = client.delete("/api/users/account", headers=headers)
    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(User, user["id"]) is None
        assert Task.query.filter_by(user_id=user["id"]).count() == 0
    assert client.get("/api/auth/me", headers=headers).status_code == 401


def test_logout(client, auth):
    assert client.post("/api/auth/logout", headers=auth).status_code == 200
