import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

from wellness import app as flask_app  # noqa: E402
from wellness.badges import ensure_default_badges  # noqa: E402
from wellness.localization import cache  # noqa: E402
from wellness.models import db  # noqa: E402
from wellness.realtime import hub  # noqa: E402
from wellness.security import limiter  # noqa: E402


@pytest.fixture
def app():
    flask_app.config["TESTING"] = True
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        ensure_default_badges()
    limiter.reset()
    hub.reset()
    cache.clear()
    yield flask_app
    hub.reset()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def register(client):
    """Register a user and return (auth headers, user dict)."""
    counter = {"n": 0}

    def _register(email=None, password="password123", **extra):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        response = client.post("/api/auth/register", json=dict(extra, email=email, password=password))
        assert response.status_code == 201, response.get_json()
        body = response.get_json()
        headers = {"Authorization": f"Bearer {body['tokens']['access_token']}"}
        return headers, body["user"]

    return _register


@pytest.fixture
def auth(register):
    headers, _ = register()
    return headers
