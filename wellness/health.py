import logging
from datetime import timedelta

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from . import app, db
from .auth import token_required
from .badges import trigger_badge_check
from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import HealthGoal, HealthLog, utcnow
from .notifications import notify
from .realtime import publish_event
from .validation import (choice, date_range_args, get_json, int_in_range, number_in_range,
                         optional_text, pagination, parse_datetime, require_text)

logger = logging.getLogger(__name__)

LOG_TYPES = ["exercise", "nutrition", "mood", "hydration"]
SOURCES = ["manual", "auto", "device"]
MEAL_TYPES = ["breakfast", "lunch", "dinner", "snack"]
DRINK_TYPES = ["water", "coffee", "tea", "juice", "sports_drink", "other"]
GOAL_TYPES = ["weight_loss", "weight_gain", "muscle_gain", "endurance", "strength",
              "nutrition", "hydration", "sleep", "mood", "custom"]


def _exercise(data):
    payload = {
        "activity": require_text(data, "activity", 100),
        "duration_minutes": int_in_range(data.get("duration_minutes"), "duration_minutes", 1, 600, required=True),
        "intensity": int_in_range(data.get("intensity"), "intensity", 1, 10),
        "calories_burned": int_in_range(data.get("calories_burned"), "calories_burned", 0, 20000),
        "distance": number_in_range(data.get("distance"), "distance", low=0),
        "heart_rate_avg": int_in_range(data.get("heart_rate_avg"), "heart_rate_avg", 40, 220),
    }
    return payload


def _nutrition(data):
    if data.get("meal_type") is None:
        raise ValidationError("meal_type is required")
    foods = data.get("foods")
    if foods is not None:
        if not isinstance(foods, list):
            raise ValidationError("foods must be a list")
        cleaned = []
        for food in foods:
            if not isinstance(food, dict):
                raise ValidationError("each food must be an object")
            cleaned.append({
                "name": require_text(food, "name", 100),
                "quantity": optional_text(food, "quantity", 50),
                "calories": int_in_range(food.get("calories"), "calories", 0, 10000),
            })
        foods = cleaned
    return {
        "meal_type": choice(data.get("meal_type"), "meal_type", MEAL_TYPES),
        "foods": foods,
        "description": optional_text(data, "description", 500),
        "total_calories": int_in_range(data.get("total_calories"), "total_calories", 0, 20000),
        "water_ml": int_in_range(data.get("water_ml"), "water_ml", 0, 5000),
        "protein_g": number_in_range(data.get("protein_g"), "protein_g", low=0),
        "carbs_g": number_in_range(data.get("carbs_g"), "carbs_g", low=0),
        "fat_g": number_in_range(data.get("fat_g"), "fat_g", low=0),
        "fiber_g": number_in_range(data.get("fiber_g"), "fiber_g", low=0),
    }


def _mood(data):
    tags = data.get("tags")
    if tags is not None:
        if not isinstance(tags, list) or len(tags) > 10 or \
                not all(isinstance(tag, str) and len(tag) <= 30 for tag in tags):
            raise ValidationError("tags must be at most 10 strings of up to 30 characters")
    return {
        "score": int_in_range(data.get("score"), "score", 1, 10, required=True),
        "energy": int_in_range(data.get("energy"), "energy", 1, 10),
        "stress": int_in_range(data.get("stress"), "stress", 1, 10),
        "tags": tags,
    }


def _hydration(data):
    return {
        "amount_ml": int_in_range(data.get("amount_ml"), "amount_ml", 1, 5000, required=True),
        "drink_type": choice(data.get("drink_type"), "drink_type", DRINK_TYPES, default="water"),
    }


PAYLOAD_VALIDATORS = {
    "exercise": _exercise,
    "nutrition": _nutrition,
    "mood": _mood,
    "hydration": _hydration,
}


def validate_payload(log_type, data):
    if not isinstance(data, dict):
        raise ValidationError("payload must be an object")
    payload = PAYLOAD_VALIDATORS[log_type](data)
    payload["notes"] = optional_text(data, "notes", 500)
    return {key: value for key, value in payload.items() if value is not None}


def _create_log(user, log_type, payload, recorded_at=None, source=None):
    log = HealthLog(
        user_id=user.id,
        type=log_type,
        payload=validate_payload(log_type, payload),
        source=choice(source, "source", SOURCES, default="manual"),
        recorded_at=parse_datetime(recorded_at, "recorded_at") or utcnow(),
    )
    try:
        db.session.add(log)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error creating {log_type} log: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to create health log"}), 500
    logger.info(f"Health log {log.id} ({log_type}) created for user {user.id}")
    publish_event(user.id, "health.logged", log.to_dict())
    trigger_badge_check(user)
    return jsonify(log.to_dict()), 201


@app.route("/api/health/logs", methods=["POST"])
@token_required
def create_health_log(user):
    data = get_json()
    logger.debug(f"Create health log payload: {data}")
    log_type = data.get("type")
    if log_type is None:
        raise ValidationError("type is required")
    log_type = choice(log_type, "type", LOG_TYPES)
    return _create_log(user, log_type, data.get("payload"), data.get("recorded_at"), data.get("source"))


def _shorthand(log_type):
    def view(user):
        data = get_json()
        return _create_log(user, log_type, data, data.get("recorded_at"), data.get("source"))
    view.__name__ = f"log_{log_type}"
    return view


for _log_type in LOG_TYPES:
    app.add_url_rule(f"/api/health/{_log_type}", methods=["POST"],
                     view_func=token_required(_shorthand(_log_type)))


@app.route("/api/health/logs", methods=["GET"])
@token_required
def list_health_logs(user):
    limit, offset = pagination()
    log_type = choice(request.args.get("type"), "type", LOG_TYPES)
    source = choice(request.args.get("source"), "source", SOURCES)
    start, end = date_range_args()
    query = HealthLog.query.filter(HealthLog.user_id == user.id)
    if log_type:
        query = query.filter(HealthLog.type == log_type)
    if source:
        query = query.filter(HealthLog.source == source)
    if start:
        query = query.filter(HealthLog.recorded_at >= start)
    if end:
        query = query.filter(HealthLog.recorded_at <= end)
    total = query.count()
    logs = query.order_by(HealthLog.recorded_at.desc(), HealthLog.id.desc()).offset(offset).limit(limit).all()
    return jsonify({
        "logs": [log.to_dict() for log in logs],
        "total": total,
        "has_more": offset + len(logs) < total,
    }), 200


@app.route("/api/health/logs/<int:id>", methods=["DELETE"])
@token_required
def delete_health_log(user, id):
    log = db.get_or_404(HealthLog, id)
    if log.user_id != user.id:
        logger.error(f"Unauthorized access to health log {id} by user {user.id}")
        raise ForbiddenError("Unauthorized")
    try:
        db.session.delete(log)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Error deleting health log {id}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to delete health log"}), 500
    logger.info(f"Health log {id} deleted by user {user.id}")
    return jsonify({"message": "Health log deleted"}), 200


def _average(values):
    values = [value for value in values if value is not None]
    return round(sum(values) / len(values), 1) if values else None


def summarize(logs, days):
    by_type = {log_type: [log.payload or {} for log in logs if log.type == log_type] for log_type in LOG_TYPES}
    exercise, nutrition, mood, hydration = (by_type[t] for t in LOG_TYPES)
    meals = {meal: 0 for meal in MEAL_TYPES}
    for entry in nutrition:
        if entry.get("meal_type") in meals:
            meals[entry["meal_type"]] += 1
    total_ml = sum(entry.get("amount_ml", 0) for entry in hydration)
    return {
        "exercise": {
            "count": len(exercise),
            "total_minutes": sum(entry.get("duration_minutes", 0) for entry in exercise),
            "average_intensity": _average([entry.get("intensity") for entry in exercise]),
            "calories_burned": sum(entry.get("calories_burned", 0) for entry in exercise),
        },
        "nutrition": {
            "count": len(nutrition),
            "total_calories": sum(entry.get("total_calories", 0) for entry in nutrition),
            "meals": meals,
        },
        "mood": {
            "count": len(mood),
            "average_score": _average([entry.get("score") for entry in mood]),
            "average_energy": _average([entry.get("energy") for entry in mood]),
            "average_stress": _average([entry.get("stress") for entry in mood]),
        },
        "hydration": {
            "count": len(hydration),
            "total_ml": total_ml,
            "daily_average_ml": round(total_ml / days, 1),
        },
    }


@app.route("/api/health/summary", methods=["GET"])
@token_required
def health_summary(user):
    days = int_in_range(request.args.get("days", 7), "days", 1, 365)
    since = utcnow() - timedelta(days=days)
    logs = HealthLog.query.filter(HealthLog.user_id == user.id, HealthLog.recorded_at >= since).all()
    logger.debug(f"Summarizing {len(logs)} health logs over {days} days for user {user.id}")
    return jsonify({"days": days, "total_logs": len(logs), "summary": summarize(logs, days)}), 200


def _owned_goal(user, id):
    goal = db.session.get(HealthGoal, id)
    if goal is None:
        raise NotFoundError("Goal not found")
    if goal.user_id != user.id:
        logger.error(f"Unauthorized access to goal {id} by user {user.id}")
        raise ForbiddenError("Unauthorized")
    return goal


@app.route("/api/health/goals", methods=["POST"])
@token_required
def create_goal(user):
    data = get_json()
    if data.get("goal_type") is None:
        raise ValidationError("goal_type is required")
    target_value = number_in_range(data.get("target_value"), "target_value", low=0, required=True)
    if target_value <= 0:
        raise ValidationError("target_value must be greater than 0")
    goal = HealthGoal(
        user_id=user.id,
        goal_type=choice(data["goal_type"], "goal_type", GOAL_TYPES),
        title=require_text(data, "title", 100),
        description=optional_text(data, "description", 500),
        target_value=target_value,
        target_unit=require_text(data, "target_unit", 20),
        target_date=parse_datetime(data.get("target_date"), "target_date"),
    )
    try:
        db.session.add(goal)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error creating goal: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to create goal"}), 500
    logger.info(f"Health goal {goal.id} created for user {user.id}")
    return jsonify(goal.to_dict()), 201


@app.route("/api/health/goals", methods=["GET"])
@token_required
def list_goals(user):
    query = HealthGoal.query.filter_by(user_id=user.id)
    status = choice(request.args.get("status"), "status", ["active", "achieved"])
    if status:
        query = query.filter(HealthGoal.status == status)
    goals = query.order_by(HealthGoal.created_at.desc(), HealthGoal.id.desc()).all()
    return jsonify({"goals": [goal.to_dict() for goal in goals]}), 200


@app.route("/api/health/goals/<int:id>/progress", methods=["PUT"])
@token_required
def update_goal_progress(user, id):
    goal = _owned_goal(user, id)
    value = number_in_range(get_json().get("value"), "value", low=0, required=True)
    achieved_now = goal.status == "active" and value >= goal.target_value
    try:
        goal.current_value = value
        if achieved_now:
            goal.status = "achieved"
            goal.achieved_at = utcnow()
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error updating goal {id}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to update goal"}), 500
    if achieved_now:
        logger.info(f"Health goal {id} achieved by user {user.id}")
        publish_event(user.id, "health.goal.achieved", goal.to_dict())
        notify(user, "health_goal", "Goal achieved", f"You reached your goal: {goal.title}",
               {"goal_id": goal.id})
    return jsonify(goal.to_dict()), 200


@app.route("/api/health/goals/<int:id>", methods=["DELETE"])
@token_required
def delete_goal(user, id):
    goal = _owned_goal(user, id)
    try:
        db.session.delete(goal)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Error deleting goal {id}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to delete goal"}), 500
    logger.info(f"Health goal {id} deleted by user {user.id}")
    return jsonify({"message": "Goal deleted"}), 200
