import logging
from datetime import timedelta

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from . import app, db
from .auth import token_required
from .errors import ForbiddenError, NotFoundError
from .models import HealthGoal, HealthInsight, HealthLog, iso, utcnow
from .realtime import publish_event
from .streaks import consecutive_days
from .validation import choice, int_in_range, parse_datetime

logger = logging.getLogger(__name__)

INSIGHT_CATEGORIES = ["exercise", "nutrition", "mood", "sleep", "hydration", "overall"]
INSIGHT_WINDOW_DAYS = 30
CALORIE_TARGET = 2000
WATER_TARGET_ML = 2000
MACROS = ["protein_g", "carbs_g", "fat_g", "fiber_g"]


def _payloads(logs, log_type):
    return [log.payload or {} for log in logs if log.type == log_type]


def _mean(values):
    return round(sum(values) / len(values), 2) if values else 0


def health_stats(logs, days):
    exercise = _payloads(logs, "exercise")
    nutrition = _payloads(logs, "nutrition")
    mood = _payloads(logs, "mood")
    hydration = _payloads(logs, "hydration")
    water = sum(entry.get("amount_ml", 0) for entry in hydration)
    return {
        "exercise": {
            "total_sessions": len(exercise),
            "total_duration": sum(entry.get("duration_minutes", 0) for entry in exercise),
            "average_intensity": _mean([entry["intensity"] for entry in exercise if "intensity" in entry]),
        },
        "nutrition": {
            "total_entries": len(nutrition),
            "average_calories_per_day": round(sum(meal_calories(entry) for entry in nutrition) / days, 2),
        },
        "mood": {
            "total_entries": len(mood),
            "average_mood_score": _mean([entry.get("score", 0) for entry in mood]),
            "average_energy_level": _mean([entry["energy"] for entry in mood if "energy" in entry]),
        },
        "hydration": {
            "total_entries": len(hydration),
            "total_water_ml": water,
            "average_daily_water_ml": round(water / days, 2),
        },
    }


def meal_calories(payload):
    if payload.get("total_calories") is not None:
        return payload["total_calories"]
    return sum(food.get("calories") or 0 for food in payload.get("foods") or [])


def analyze_nutrition(entries):
    """Score one day of nutrition payloads from 0 to 10 and list what is lacking."""
    total = sum(meal_calories(entry) for entry in entries)
    macros = {key: round(sum(entry.get(key) or 0 for entry in entries), 1) for key in MACROS}
    distribution = {f"{meal}_calories": 0 for meal in ("breakfast", "lunch", "dinner", "snack")}
    for entry in entries:
        key = f"{entry.get('meal_type')}_calories"
        if key in distribution:
            distribution[key] += meal_calories(entry)

    score = 5
    if 0.8 <= total / CALORIE_TARGET <= 1.2:
        score += 1
    if total:
        if 0.15 <= macros["protein_g"] * 4 / total <= 0.35:
            score += 1
        if 0.45 <= macros["carbs_g"] * 4 / total <= 0.65:
            score += 1
        if 0.2 <= macros["fat_g"] * 9 / total <= 0.35:
            score += 1
    if macros["fiber_g"] >= 25:
        score += 1

    recommendations = []
    deficiencies = []
    if total < 1200:
        recommendations.append("Consider increasing your calorie intake for better energy levels")
        deficiencies.append("calories")
    if macros["protein_g"] < 50:
        recommendations.append("Add more protein-rich foods to support muscle health")
        deficiencies.append("protein")
    if macros["fiber_g"] < 25:
        recommendations.append("Include more fruits, vegetables, and whole grains for fiber")
        deficiencies.append("fiber")

    return {
        "total_calories": total,
        "macros": macros,
        "meal_distribution": distribution,
        "nutritional_score": min(10, score),
        "recommendations": recommendations,
        "deficiencies": deficiencies,
    }


def _exercise_trend(logs):
    durations = [(log.payload or {}).get("duration_minutes", 0)
                 for log in sorted(logs, key=lambda log: log.recorded_at, reverse=True)
                 if log.type == "exercise"]
    if len(durations) < 7:
        return None
    recent = sum(durations[:7]) / 7
    previous = durations[7:14]
    previous = sum(previous) / len(previous) if previous else 0
    if not previous or recent <= previous * 1.2:
        return None
    increase = round((recent - previous) / previous * 100)
    return {
        "insight_type": "trend",
        "category": "exercise",
        "title": "Exercise Duration Increasing",
        "description": f"Your average exercise duration has increased by {increase}% this week!",
        "confidence_score": 0.8,
        "data_points": [{"recent_avg": round(recent, 1), "previous_avg": round(previous, 1)}],
        "action_items": ["Keep up the great momentum", "Consider setting a new fitness goal"],
        "priority": 4,
    }


def _mood_exercise_correlation(logs):
    exercise_days = {log.recorded_at.date() for log in logs if log.type == "exercise"}
    moods = [log for log in logs if log.type == "mood"]
    if len(moods) < 10 or sum(1 for log in logs if log.type == "exercise") < 5:
        return None
    with_exercise = [(log.payload or {}).get("score", 0) for log in moods if log.recorded_at.date() in exercise_days]
    without = [(log.payload or {}).get("score", 0) for log in moods if log.recorded_at.date() not in exercise_days]
    if not with_exercise or not without:
        return None
    mood_with = sum(with_exercise) / len(with_exercise)
    mood_without = sum(without) / len(without)
    if mood_with <= mood_without + 1:
        return None
    better = round((mood_with - mood_without) / mood_without * 100)
    return {
        "insight_type": "correlation",
        "category": "mood",
        "title": "Exercise Boosts Your Mood",
        "description": f"Your mood is {better}% better on days when you exercise.",
        "confidence_score": 0.7,
        "data_points": [{"mood_with_exercise": round(mood_with, 2),
                         "mood_without_exercise": round(mood_without, 2)}],
        "action_items": ["Try to exercise regularly for better mood",
                         "Consider morning workouts for all-day benefits"],
        "priority": 4,
    }


def _hydration_recommendation(logs):
    hydration = [log for log in logs if log.type == "hydration"]
    if len(hydration) < 7:
        return None
    days = len({log.recorded_at.date() for log in hydration})
    average = sum((log.payload or {}).get("amount_ml", 0) for log in hydration) / days
    if average >= WATER_TARGET_ML:
        return None
    return {
        "insight_type": "recommendation",
        "category": "hydration",
        "title": "Increase Water Intake",
        "description": f"You're averaging {round(average)}ml of water daily. "
                       f"Consider increasing to {WATER_TARGET_ML}ml for optimal hydration.",
        "confidence_score": 0.8,
        "data_points": [{"current_avg": round(average, 1), "recommended": WATER_TARGET_ML}],
        "action_items": ["Set hourly water reminders", "Keep a water bottle nearby",
                         "Track water intake more consistently"],
        "priority": 3,
    }


INSIGHT_RULES = [_exercise_trend, _mood_exercise_correlation, _hydration_recommendation]


def generate_insights(user):
    since = utcnow() - timedelta(days=INSIGHT_WINDOW_DAYS)
    logs = HealthLog.query.filter(HealthLog.user_id == user.id, HealthLog.recorded_at >= since).all()
    insights = []
    for rule in INSIGHT_RULES:
        found = rule(logs)
        if found is not None:
            insights.append(HealthInsight(user_id=user.id, **found))
    if not insights:
        return []
    try:
        db.session.add_all(insights)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error saving health insights for user {user.id}: {str(e)}")
        db.session.rollback()
        return None
    logger.info(f"Generated {len(insights)} health insight(s) for user {user.id}")
    return insights


@app.route("/api/health/stats", methods=["GET"])
@token_required
def health_statistics(user):
    days = int_in_range(request.args.get("period", 30), "period", 1, 365)
    end = utcnow()
    start = end - timedelta(days=days)
    logs = HealthLog.query.filter(HealthLog.user_id == user.id, HealthLog.recorded_at >= start).all()
    return jsonify({
        "stats": health_stats(logs, days),
        "period": {"days": days, "start_date": iso(start), "end_date": iso(end)},
    }), 200


def _nutrition_for_day(user, day_start):
    return HealthLog.query.filter(
        HealthLog.user_id == user.id,
        HealthLog.type == "nutrition",
        HealthLog.recorded_at >= day_start,
        HealthLog.recorded_at < day_start + timedelta(days=1),
    ).order_by(HealthLog.recorded_at.asc()).all()


@app.route("/api/health/nutrition/analysis", methods=["GET"])
@token_required
def nutrition_analysis(user):
    day = parse_datetime(request.args.get("date"), "date") or utcnow()
    day_start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    logs = _nutrition_for_day(user, day_start)
    analysis = analyze_nutrition([log.payload or {} for log in logs])
    analysis["analysis_date"] = day_start.date().isoformat()
    analysis["entries"] = len(logs)
    return jsonify({"analysis": analysis}), 200


@app.route("/api/health/insights", methods=["GET"])
@token_required
def list_insights(user):
    category = choice(request.args.get("category"), "category", INSIGHT_CATEGORIES)
    limit = int_in_range(request.args.get("limit", 10), "limit", 1, 50)
    query = HealthInsight.query.filter_by(user_id=user.id)
    if category:
        query = query.filter(HealthInsight.category == category)
    if request.args.get("unread") in ("1", "true", "yes"):
        query = query.filter(HealthInsight.is_read.is_(False))
    insights = query.order_by(HealthInsight.priority.desc(), HealthInsight.created_at.desc(),
                              HealthInsight.id.desc()).limit(limit).all()
    return jsonify({"insights": [insight.to_dict() for insight in insights]}), 200


@app.route("/api/health/insights/generate", methods=["POST"])
@token_required
def create_insights(user):
    insights = generate_insights(user)
    if insights is None:
        return jsonify({"message": "Failed to generate insights"}), 500
    if insights:
        publish_event(user.id, "health.insights.generated", {"count": len(insights)})
    return jsonify({
        "message": "Health insights generated",
        "insights": [insight.to_dict() for insight in insights],
        "count": len(insights),
    }), 200


@app.route("/api/health/insights/<int:id>/read", methods=["PUT"])
@token_required
def mark_insight_read(user, id):
    insight = db.session.get(HealthInsight, id)
    if insight is None:
        raise NotFoundError("Insight not found")
    if insight.user_id != user.id:
        logger.error(f"Unauthorized access to insight {id} by user {user.id}")
        raise ForbiddenError("Unauthorized")
    try:
        insight.is_read = True
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error marking insight {id} read: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to update insight"}), 500
    return jsonify(insight.to_dict()), 200


@app.route("/api/health/dashboard", methods=["GET"])
@token_required
def health_dashboard(user):
    now = utcnow()
    widgets = []

    goals = HealthGoal.query.filter_by(user_id=user.id, status="active") \
        .order_by(HealthGoal.created_at.desc(), HealthGoal.id.desc()).limit(3).all()
    if goals:
        widgets.append({"type": "goal_progress", "title": "Health Goals Progress",
                        "data": [goal.to_dict() for goal in goals]})

    recent = HealthInsight.query.filter(
        HealthInsight.user_id == user.id,
        HealthInsight.created_at >= now - timedelta(days=INSIGHT_WINDOW_DAYS),
    ).order_by(HealthInsight.priority.desc(), HealthInsight.created_at.desc()).limit(5).all()
    if recent:
        widgets.append({"type": "insights", "title": "Health Insights",
                        "data": [insight.to_dict() for insight in recent]})

    stamps = [stamp for (stamp,) in db.session.query(HealthLog.recorded_at)
              .filter(HealthLog.user_id == user.id).all()]
    widgets.append({"type": "streak", "title": "Health Tracking Streak", "data": {
        "streak_days": consecutive_days(stamps),
        "logged_days": len({stamp.date() for stamp in stamps}),
    }})

    today = _nutrition_for_day(user, now.replace(hour=0, minute=0, second=0, microsecond=0))
    if today:
        analysis = analyze_nutrition([log.payload or {} for log in today])
        widgets.append({"type": "metric", "title": "Nutrition Score", "data": {
            "score": analysis["nutritional_score"],
            "max_score": 10,
            "recommendations": analysis["recommendations"],
        }})

    return jsonify({"dashboard": {"widgets": widgets, "layout": "grid", "last_updated": iso(now)}}), 200
