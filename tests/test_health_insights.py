from datetime import timedelta

from wellness.models import iso, utcnow


def _days_ago(days):
    return iso(utcnow() - timedelta(days=days))


def _log(client, headers, log_type, payload, days_ago=None):
    body = {"type": log_type, "payload": payload}
    if days_ago is not None:
        body["recorded_at"] = _days_ago(days_ago)
    response = client.post("/api/health/logs", headers=headers, json=body)
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def _hydration_week(client, headers, amount_ml=250):
    for day in range(7):
        _log(client, headers, "hydration", {"amount_ml": amount_ml}, days_ago=day)


def test_stats_over_period(client, auth):
    _log(client, auth, "exercise", {"activity": "Run", "duration_minutes": 30, "intensity": 6})
    _log(client, auth, "exercise", {"activity": "Bike", "duration_minutes": 60, "intensity": 8})
    _log(client, auth, "exercise", {"activity": "Walk", "duration_minutes": 15}, days_ago=45)
    _log(client, auth, "nutrition", {"meal_type": "lunch", "total_calories": 600})
    _log(client, auth, "hydration", {"amount_ml": 900})
    _log(client, auth, "mood", {"score": 7, "energy": 5})

    body = client.get("/api/health/stats?period=30", headers=auth).get_json()
    stats = body["stats"]
    assert stats["exercise"] == {"total_sessions": 2, "total_duration": 90, "average_intensity": 7.0}
    assert stats["nutrition"]["average_calories_per_day"] == 20.0
    assert stats["hydration"]["total_water_ml"] == 900
    assert stats["hydration"]["average_daily_water_ml"] == 30.0
    assert stats["mood"]["average_mood_score"] == 7.0
    assert stats["mood"]["average_energy_level"] == 5.0
    assert body["period"]["days"] == 30

    assert client.get("/api/health/stats?period=0", headers=auth).status_code == 400
    assert client.get("/api/health/stats?period=366", headers=auth).status_code == 400


def test_nutrition_macros_validated(client, auth):
    response = client.post("/api/health/nutrition", headers=auth, json={"meal_type": "lunch", "protein_g": -1})
    assert response.status_code == 400


def test_balanced_day_scores_ten(client, auth):
    client.post("/api/health/logs", headers=auth, json={
        "type": "nutrition", "recorded_at": "2024-03-05T08:00:00Z",
        "payload": {"meal_type": "breakfast", "total_calories": 500,
                    "protein_g": 30, "carbs_g": 60, "fat_g": 15, "fiber_g": 10},
    })
    client.post("/api/health/logs", headers=auth, json={
        "type": "nutrition", "recorded_at": "2024-03-05T13:00:00Z",
        "payload": {"meal_type": "lunch",
                    "foods": [{"name": "Rice bowl", "calories": 700}, {"name": "Salmon", "calories": 800}],
                    "protein_g": 70, "carbs_g": 190, "fat_g": 45, "fiber_g": 20},
    })

    analysis = client.get("/api/health/nutrition/analysis?date=2024-03-05", headers=auth).get_json()["analysis"]
    assert analysis["analysis_date"] == "2024-03-05"
    assert analysis["entries"] == 2
    assert analysis["total_calories"] == 2000
    assert analysis["meal_distribution"]["breakfast_calories"] == 500
    assert analysis["meal_distribution"]["lunch_calories"] == 1500
    assert analysis["macros"]["protein_g"] == 100
    assert analysis["nutritional_score"] == 10
    assert analysis["recommendations"] == []
    assert analysis["deficiencies"] == []


def test_light_day_lists_deficiencies(client, auth):
    client.post("/api/health/logs", headers=auth, json={
        "type": "nutrition", "recorded_at": "2024-03-06T15:00:00Z",
        "payload": {"meal_type": "snack", "total_calories": 300, "protein_g": 5},
    })
    analysis = client.get("/api/health/nutrition/analysis?date=2024-03-06", headers=auth).get_json()["analysis"]
    assert analysis["nutritional_score"] == 5
    assert analysis["deficiencies"] == ["calories", "protein", "fiber"]
    assert len(analysis["recommendations"]) == 3

    empty = client.get("/api/health/nutrition/analysis?date=2024-03-07", headers=auth).get_json()["analysis"]
    assert empty["entries"] == 0
    assert empty["total_calories"] == 0
    assert empty["nutritional_score"] == 5

    assert client.get("/api/health/nutrition/analysis?date=March", headers=auth).status_code == 400


def test_generate_without_data(client, auth):
    response = client.post("/api/health/insights/generate", headers=auth)
    assert response.status_code == 200
    assert response.get_json()["count"] == 0
    assert response.get_json()["insights"] == []


def test_hydration_recommendation(client, auth):
    _hydration_week(client, auth)
    body = client.post("/api/health/insights/generate", headers=auth).get_json()
    assert body["count"] == 1
    insight = body["insights"][0]
    assert insight["category"] == "hydration"
    assert insight["insight_type"] == "recommendation"
    assert "250ml" in insight["description"]
    assert insight["data_points"] == [{"current_avg": 250.0, "recommended": 2000}]
    assert insight["is_read"] is False


def test_well_hydrated_gets_no_recommendation(client, auth):
    _hydration_week(client, auth, amount_ml=2500)
    assert client.post("/api/health/insights/generate", headers=auth).get_json()["count"] == 0


def test_exercise_trend(client, auth):
    for day in range(8, 15):
        _log(client, auth, "exercise", {"activity": "Run", "duration_minutes": 20}, days_ago=day)
    for day in range(7):
        _log(client, auth, "exercise", {"activity": "Run", "duration_minutes": 40}, days_ago=day)

    body = client.post("/api/health/insights/generate", headers=auth).get_json()
    assert body["count"] == 1
    insight = body["insights"][0]
    assert insight["insight_type"] == "trend"
    assert "100%" in insight["description"]
    assert insight["data_points"] == [{"recent_avg": 40.0, "previous_avg": 20.0}]


def test_steady_exercise_has_no_trend(client, auth):
    for day in range(14):
        _log(client, auth, "exercise", {"activity": "Run", "duration_minutes": 30}, days_ago=day)
    assert client.post("/api/health/insights/generate", headers=auth).get_json()["count"] == 0


def test_mood_exercise_correlation(client, auth):
    for day in range(1, 6):
        _log(client, auth, "exercise", {"activity": "Yoga", "duration_minutes": 30}, days_ago=day)
        _log(client, auth, "mood", {"score": 8}, days_ago=day)
    for day in range(6, 11):
        _log(client, auth, "mood", {"score": 4}, days_ago=day)

    body = client.post("/api/health/insights/generate", headers=auth).get_json()
    assert body["count"] == 1
    insight = body["insights"][0]
    assert insight["insight_type"] == "correlation"
    assert insight["category"] == "mood"
    assert "100% better" in insight["description"]


def test_list_and_read_insights(client, register):
    owner, _ = register()
    other, _ = register()
    for day in range(8, 15):
        _log(client, owner, "exercise", {"activity": "Run", "duration_minutes": 20}, days_ago=day)
    for day in range(7):
        _log(client, owner, "exercise", {"activity": "Run", "duration_minutes": 40}, days_ago=day)
    _hydration_week(client, owner)
    assert client.post("/api/health/insights/generate", headers=owner).get_json()["count"] == 2

    insights = client.get("/api/health/insights", headers=owner).get_json()["insights"]
    assert [insight["category"] for insight in insights] == ["exercise", "hydration"]
    hydration = client.get("/api/health/insights?category=hydration", headers=owner).get_json()["insights"]
    assert len(hydration) == 1
    assert client.get("/api/health/insights?category=sleepy", headers=owner).status_code == 400
    assert client.get("/api/health/insights?limit=1", headers=owner).get_json()["insights"][0]["category"] == "exercise"
    assert client.get("/api/health/insights", headers=other).get_json()["insights"] == []

    insight_id = hydration[0]["id"]
    assert client.put(f"/api/health/insights/{insight_id}/read", headers=other).status_code == 403
    response = client.put(f"/api/health/insights/{insight_id}/read", headers=owner)
    assert response.status_code == 200
    assert response.get_json()["is_read"] is True
    assert client.put("/api/health/insights/9999/read", headers=owner).status_code == 404

    unread = client.get("/api/health/insights?unread=true", headers=owner).get_json()["insights"]
    assert [insight["category"] for insight in unread] == ["exercise"]


def test_dashboard_widgets(client, auth):
    client.post("/api/health/goals", headers=auth, json={
        "goal_type": "hydration", "title": "Drink more", "target_value": 2000, "target_unit": "ml",
    })
    _hydration_week(client, auth)
    client.post("/api/health/insights/generate", headers=auth)
    client.post("/api/health/nutrition", headers=auth, json={"meal_type": "lunch", "total_calories": 700})

    dashboard = client.get("/api/health/dashboard", headers=auth).get_json()["dashboard"]
    assert dashboard["layout"] == "grid"
    widgets = {widget["type"]: widget for widget in dashboard["widgets"]}
    assert set(widgets) == {"goal_progress", "insights", "streak", "metric"}
    assert widgets["goal_progress"]["data"][0]["title"] == "Drink more"
    assert widgets["insights"]["data"][0]["category"] == "hydration"
    assert widgets["streak"]["data"] == {"streak_days": 7, "logged_days": 7}
    assert widgets["metric"]["data"]["max_score"] == 10


def test_empty_dashboard_has_streak_only(client, auth):
    dashboard = client.get("/api/health/dashboard", headers=auth).get_json()["dashboard"]
    assert [widget["type"] for widget in dashboard["widgets"]] == ["streak"]
    assert dashboard["widgets"][0]["data"]["streak_days"] == 0
