from datetime import timedelta

from wellness.models import HabitLog, db, utcnow


def _habit(client, headers, **fields):
    fields.setdefault("name", "Read")
    fields.setdefault("frequency", "daily")
    response = client.post("/api/habits", headers=headers, json=fields)
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def test_habit_crud(client, auth):
    habit = _habit(client, auth, name="Stretch", frequency="Daily")
    assert habit["frequency"] == "daily"
    assert habit["streak"] == 0

    response = client.put(f"/api/habits/{habit['id']}", headers=auth, json={"frequency": "weekly"})
    assert response.status_code == 200
    habits = client.get("/api/habits", headers=auth).get_json()
    assert [h["frequency"] for h in habits] == ["weekly"]

    assert client.delete(f"/api/habits/{habit['id']}", headers=auth).status_code == 200
    assert client.get("/api/habits", headers=auth).get_json() == []


def test_habit_frequency_validation(client, auth):
    response = client.post("/api/habits", headers=auth, json={"name": "x", "frequency": "hourly"})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Frequency must be 'daily' or 'weekly'"


def test_habit_ownership(client, register):
    owner, _ = register()
    other, _ = register()
    habit = _habit(client, owner)
    assert client.put(f"/api/habits/{habit['id']}", headers=other, json={"name": "x"}).status_code == 403
    assert client.post(f"/api/habits/{habit['id']}/log", headers=other).status_code == 403
    assert client.get("/api/habits/999/history", headers=owner).status_code == 404


def test_log_returns_streak_and_history(client, auth):
    habit = _habit(client, auth)
    response = client.post(f"/api/habits/{habit['id']}/log", headers=auth)
    assert response.status_code == 201
    assert response.get_json()["streak"] == 1
    history = client.get(f"/api/habits/{habit['id']}/history", headers=auth).get_json()
    assert len(history) == 1
    assert history[0]["completed_at"].endswith("Z")


def test_streak_counts_consecutive_days(app, client, register):
    headers, user = register()
    habit = _habit(client, headers)
    now = utcnow()
    with app.app_context():
        for days_ago in (1, 2, 3, 5):
            db.session.add(HabitLog(habit_id=habit["id"], user_id=user["id"],
                                    completed_at=now - timedelta(days=days_ago)))
        db.session.commit()
    habits = client.get("/api/habits", headers=headers).get_json()
    assert habits[0]["streak"] == 3


def test_analysis(client, auth):
    daily = _habit(client, auth, name="Walk", frequency="daily")
    _habit(client, auth, name="Review", frequency="weekly")
    client.post(f"/api/habits/{daily['id']}/log", headers=auth)
    client.post(f"/api/habits/{daily['id']}/log", headers=auth)
    body = client.get("/api/habits/analysis", headers=auth).get_json()
    assert len(body["trends"]["labels"]) == 31
    walk = next(h for h in body["habits"] if h["name"] == "Walk")
    assert walk["total_activities"] == 2
    assert walk["completion_rate"] == round(1 / 30, 3)
    assert sum(body["trends"]["data"][str(daily["id"])]) == 2


def test_habit_checkin_unlocks_badge(client, auth):
    habit = _habit(client, auth)
    client.post(f"/api/habits/{habit['id']}/log", headers=auth)
    keys = [b["key"] for b in client.get("/api/badges/user", headers=auth).get_json()["badges"]]
    assert "habit_starter" in keys
