from sqlalchemy.exc import OperationalError

from wellness import status


def test_status_ok(client):
    response = client.get("/api/status")
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "ok"
    assert body["database"] == "ok"
    assert body["timestamp"].endswith("Z")


def test_status_degraded_when_database_fails(client, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("down"))

    monkeypatch.setattr(status.db.session, "execute", broken)
    response = client.get("/api/status")
    assert response.status_code == 503
    body = response.get_json()
    assert body["status"] == "degraded"
    assert body["database"] == "unavailable"
