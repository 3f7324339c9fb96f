import logging
from datetime import timedelta

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError

from . import app, db
from .auth import token_required
from .badges import trigger_badge_check
from .models import Habit, HabitLog, iso, utcnow
from .streaks import consecutive_days
from .validation import get_json, optional_text, require_text

logger = logging.getLogger(__name__)

FREQUENCIES = ["daily", "weekly"]
ANALYSIS_DAYS = 30


def calculate_streak(habit):
    try:
        stamps = [stamp for (stamp,) in
                  db.session.query(HabitLog.completed_at).filter_by(habit_id=habit.id).all()]
    except SQLAlchemyError as e:
        logger.error(f"Database error calculating streak: {str(e)}")
        return 0
    return consecutive_days(stamps)


def habit_to_dict(habit):
    return {
        "id": habit.id,
        "name": habit.name,
        "description": habit.description,
        "frequency": habit.frequency,
        "streak": calculate_streak(habit),
        "created_at": iso(habit.created_at),
    }


def _frequency(value):
    if not isinstance(value, str) or value.lower() not in FREQUENCIES:
        logger.error(f"Invalid frequency: {value}")
        return None
    return value.lower()


def _owned_habit(user, id):
    habit = db.get_or_404(Habit, id)
    if habit.user_id != user.id:
        logger.error(f"Unauthorized access to habit {id} by user {user.id}")
        return None
    return habit


@app.route("/api/habits", methods=["GET"])
@token_required
def list_habits(user):
    try:
        habits = Habit.query.filter_by(user_id=user.id).order_by(Habit.id).all()
        logger.debug(f"Fetched {len(habits)} habits for user {user.id}")
        return jsonify([habit_to_dict(habit) for habit in habits]), 200
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching habits: {str(e)}")
        return jsonify({"message": "Failed to fetch habits"}), 500


@app.route("/api/habits", methods=["POST"])
@token_required
def create_habit(user):
    data = get_json()
    logger.debug(f"Create habit payload: {data}")
    name = require_text(data, "name", 100)
    if not data.get("frequency"):
        return jsonify({"message": "Name and frequency required"}), 400
    frequency = _frequency(data.get("frequency"))
    if frequency is None:
        return jsonify({"message": "Frequency must be 'daily' or 'weekly'"}), 400
    try:
        habit = Habit(name=name, description=optional_text(data, "description") or "",
                      frequency=frequency, user_id=user.id)
        db.session.add(habit)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error creating habit: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to create habit"}), 500
    logger.info(f"Habit created: {name} for user {user.id}")
    return jsonify(dict(habit_to_dict(habit), message="Habit created")), 201


@app.route("/api/habits/<int:id>", methods=["PUT"])
@token_required
def update_habit(user, id):
    habit = _owned_habit(user, id)
    if habit is None:
        return jsonify({"message": "Unauthorized"}), 403
    data = get_json()
    logger.debug(f"Update habit {id} payload: {data}")
    frequency = _frequency(data.get("frequency", habit.frequency))
    if frequency is None:
        return jsonify({"message": "Frequency must be 'daily' or 'weekly'"}), 400
    try:
        if "name" in data:
            habit.name = require_text(data, "name", 100)
        if "description" in data:
            habit.description = optional_text(data, "description")
        habit.frequency = frequency
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error updating habit: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to update habit"}), 500
    logger.info(f"Habit {id} updated for user {user.id}")
    return jsonify(dict(habit_to_dict(habit), message="Habit updated")), 200


@app.route("/api/habits/<int:id>", methods=["DELETE"])
@token_required
def delete_habit(user, id):
    habit = _owned_habit(user, id)
    if habit is None:
        return jsonify({"message": "Unauthorized"}), 403
    try:
        db.session.delete(habit)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Error deleting habit {id}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to delete habit"}), 500
    logger.info(f"Habit {id} deleted successfully by user {user.id}")
    return jsonify({"message": "Habit deleted"}), 200


@app.route("/api/habits/<int:id>/log", methods=["POST"])
@token_required
def log_habit(user, id):
    habit = _owned_habit(user, id)
    if habit is None:
        return jsonify({"message": "Unauthorized"}), 403
    try:
        checkin = HabitLog(habit_id=id, user_id=user.id, completed_at=utcnow())
        db.session.add(checkin)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error logging check-in: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to log activity"}), 500
    logger.info(f"Check-in logged for habit {id} by user {user.id}")
    trigger_badge_check(user)
    return jsonify({"message": "Activity logged", "id": checkin.id,
                    "streak": calculate_streak(habit)}), 201


@app.route("/api/habits/<int:id>/history", methods=["GET"])
@token_required
def habit_history(user, id):
    habit = _owned_habit(user, id)
    if habit is None:
        return jsonify({"message": "Unauthorized"}), 403
    checkins = HabitLog.query.filter_by(habit_id=id) \
        .order_by(HabitLog.completed_at.desc(), HabitLog.id.desc()).all()
    logger.debug(f"Fetched history for habit {id}: {len(checkins)} check-ins")
    return jsonify([{"id": c.id, "completed_at": iso(c.completed_at)} for c in checkins]), 200


@app.route("/api/habits/analysis", methods=["GET"])
@token_required
def habit_analysis(user):
    try:
        habits = Habit.query.filter_by(user_id=user.id).order_by(Habit.id).all()
        end_date = utcnow()
        start_date = end_date - timedelta(days=ANALYSIS_DAYS)
        labels = [(start_date + timedelta(days=i)).strftime("%Y-%m-%d") for i in range(ANALYSIS_DAYS + 1)]
        trend_data = {}
        habit_data = []

        for habit in habits:
            total = HabitLog.query.filter_by(habit_id=habit.id).count()
            recent = [stamp for (stamp,) in db.session.query(HabitLog.completed_at).filter(
                HabitLog.habit_id == habit.id,
                HabitLog.completed_at >= start_date,
                HabitLog.completed_at <= end_date,
            ).all()]
            if habit.frequency == "daily":
                completion_rate = len({stamp.date() for stamp in recent}) / ANALYSIS_DAYS
            else:
                completion_rate = len({stamp.isocalendar()[:2] for stamp in recent}) / (ANALYSIS_DAYS // 7)
            counts = [0] * len(labels)
            for stamp in recent:
                index = (stamp.date() - start_date.date()).days
                if 0 <= index < len(counts):
                    counts[index] += 1
            trend_data[str(habit.id)] = counts
            habit_data.append({
                "id": habit.id,
                "name": habit.name,
                "frequency": habit.frequency,
                "total_activities": total,
                "completion_rate": round(min(completion_rate, 1.0), 3),
                "streak": calculate_streak(habit),
            })
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching analysis: {str(e)}")
        return jsonify({"message": "Failed to fetch analysis"}), 500

    logger.debug(f"Analysis fetched for user {user.id}: {len(habit_data)} habits")
    return jsonify({"habits": habit_data, "trends": {"labels": labels, "data": trend_data}}), 200
