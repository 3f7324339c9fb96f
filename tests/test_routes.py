import pytest

ROUTES = [
    ("POST", "/api/auth/login"),
    ("POST", "/api/auth/logout"),
    ("GET", "/api/auth/me"),
    ("POST", "/api/auth/refresh"),
    ("POST", "/api/auth/register"),
    ("POST", "/api/badges/<key>/share"),
    ("GET", "/api/badges/available"),
    ("POST", "/api/badges/check"),
    ("GET", "/api/badges/leaderboard"),
    ("GET", "/api/badges/progress"),
    ("GET", "/api/badges/user"),
    ("POST", "/api/billing/cancel"),
    ("GET", "/api/billing/history"),
    ("GET", "/api/billing/plans"),
    ("POST", "/api/billing/subscribe"),
    ("GET", "/api/billing/subscription"),
    ("GET", "/api/billing/usage"),
    ("GET", "/api/calendar/events"),
    ("POST", "/api/calendar/events"),
    ("DELETE", "/api/calendar/events/<int:id>"),
    ("PUT", "/api/calendar/events/<int:id>"),
    ("GET", "/api/focus/dashboard"),
    ("GET", "/api/focus/sessions"),
    ("POST", "/api/focus/sessions"),
    ("GET", "/api/focus/sessions/<int:id>"),
    ("PATCH", "/api/focus/sessions/<int:id>/cancel"),
    ("PATCH", "/api/focus/sessions/<int:id>/complete"),
    ("POST", "/api/focus/sessions/<int:id>/distractions"),
    ("GET", "/api/focus/templates"),
    ("GET", "/api/habits"),
    ("POST", "/api/habits"),
    ("DELETE", "/api/habits/<int:id>"),
    ("PUT", "/api/habits/<int:id>"),
    ("GET", "/api/habits/<int:id>/history"),
    ("POST", "/api/habits/<int:id>/log"),
    ("GET", "/api/habits/analysis"),
    ("GET", "/api/health/dashboard"),
    ("GET", "/api/health/goals"),
    ("POST", "/api/health/goals"),
    ("DELETE", "/api/health/goals/<int:id>"),
    ("PUT", "/api/health/goals/<int:id>/progress"),
    ("GET", "/api/health/insights"),
    ("PUT", "/api/health/insights/<int:id>/read"),
    ("POST", "/api/health/insights/generate"),
    ("GET", "/api/health/logs"),
    ("POST", "/api/health/logs"),
    ("DELETE", "/api/health/logs/<int:id>"),
    ("GET", "/api/health/nutrition/analysis"),
    ("GET", "/api/health/stats"),
    ("GET", "/api/health/summary"),
    ("GET", "/api/localization/content"),
    ("GET", "/api/localization/content/<key>"),
    ("PUT", "/api/localization/content/<key>"),
    ("GET", "/api/localization/languages"),
    ("GET", "/api/notifications"),
    ("DELETE", "/api/notifications/<int:id>"),
    ("POST", "/api/notifications/<int:id>/read"),
    ("GET", "/api/notifications/preferences"),
    ("PUT", "/api/notifications/preferences"),
    ("POST", "/api/notifications/read-all"),
    ("GET", "/api/realtime/sse"),
    ("GET", "/api/realtime/stats"),
    ("POST", "/api/realtime/subscribe"),
    ("POST", "/api/realtime/unsubscribe"),
    ("GET", "/api/security/audit"),
    ("POST", "/api/security/audit"),
    ("POST", "/api/social/challenges"),
    ("GET", "/api/social/challenges/<int:id>"),
    ("POST", "/api/social/challenges/<int:id>/join"),
    ("GET", "/api/social/challenges/<int:id>/leaderboard"),
    ("POST", "/api/social/challenges/<int:id>/leave"),
    ("PUT", "/api/social/challenges/<int:id>/progress"),
    ("GET", "/api/social/challenges/my"),
    ("GET", "/api/social/challenges/public"),
    ("GET", "/api/social/connections"),
    ("POST", "/api/social/connections"),
    ("DELETE", "/api/social/connections/<int:id>"),
    ("POST", "/api/social/connections/<int:id>/accept"),
    ("POST", "/api/social/connections/<int:id>/block"),
    ("POST", "/api/social/connections/<int:id>/reject"),
    ("GET", "/api/social/feed"),
    ("GET", "/api/status"),
    ("GET", "/api/tasks"),
    ("POST", "/api/tasks"),
    ("DELETE", "/api/tasks/<int:id>"),
    ("GET", "/api/tasks/<int:id>"),
    ("PUT", "/api/tasks/<int:id>"),
    ("PATCH", "/api/tasks/<int:id>/complete"),
    ("GET", "/api/tasks/matrix"),
    ("GET", "/api/tasks/stats"),
    ("DELETE", "/api/users/account"),
    ("PUT", "/api/users/password"),
    ("PUT", "/api/users/profile"),
]


@pytest.fixture
def registered(app):
    return {(method, rule.rule) for rule in app.url_map.iter_rules() for method in rule.methods}


@pytest.mark.parametrize("method,path", ROUTES)
def test_route_registered(registered, method, path):
    assert (method, path) in registered


def test_subscribe_endpoints_are_distinct(app):
    assert app.view_functions["create_subscription"].__module__ == "wellness.billing"
    assert app.view_functions["subscribe"].__module__ == "wellness.realtime"


def test_no_websocket_routes(app):
    assert not [rule.rule for rule in app.url_map.iter_rules() if rule.rule.endswith("/ws")]
