import logging

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from . import app, db
from .auth import token_required
from .badges import trigger_badge_check
from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .localization import resolve_language, translate
from .models import FocusDistraction, FocusSession, Task, utcnow
from .realtime import publish_event
from .streaks import consecutive_days
from .validation import (choice, date_range_args, get_json, int_in_range, optional_text,
                         pagination, require_text)

logger = logging.getLogger(__name__)

SESSION_TYPES = ["pomodoro", "deep_work", "custom", "sprint", "flow", "meditation", "exercise", "break"]
DISTRACTION_TYPES = ["notification", "phone_call", "interruption", "internal_thought",
                     "external_noise", "website", "social_media", "other"]
SUCCESS_RATIO = 0.8

TEMPLATES = [
    {"key": "pomodoro", "name": "Pomodoro", "description": "25 minutes of focus followed by a short break",
     "default_duration": 25, "break_duration": 5, "long_break_duration": 15},
    {"key": "deep_work", "name": "Deep Work", "description": "Long uninterrupted block for demanding work",
     "default_duration": 90, "break_duration": 15, "long_break_duration": 30},
    {"key": "sprint", "name": "Sprint", "description": "Short burst for quick tasks",
     "default_duration": 15, "break_duration": 3, "long_break_duration": 10},
    {"key": "flow", "name": "Flow", "description": "Open-ended session for getting into flow",
     "default_duration": 120, "break_duration": 20, "long_break_duration": 30},
]


def _owned_session(user, id):
    session = db.session.get(FocusSession, id)
    if session is None:
        raise NotFoundError("Focus session not found")
    if session.user_id != user.id:
        logger.error(f"Unauthorized access to focus session {id} by user {user.id}")
        raise ForbiddenError("Unauthorized")
    return session


def _require_active(session):
    if session.status != "active":
        raise ConflictError(f"Session already {session.status}")


@app.route("/api/focus/templates", methods=["GET"])
@token_required
def focus_templates(user):
    language = resolve_language(user)
    templates = []
    for template in TEMPLATES:
        key = template["key"]
        templates.append(dict(
            template,
            name=translate(f"focus.template.{key}.name", language, default=template["name"]),
            description=translate(f"focus.template.{key}.description", language,
                                  default=template["description"]),
        ))
    return jsonify({"templates": templates, "language": language}), 200


@app.route("/api/focus/sessions", methods=["POST"])
@token_required
def start_session(user):
    data = get_json()
    logger.debug(f"Start focus session payload: {data}")
    if data.get("session_type") is None:
        raise ValidationError("session_type is required")
    task_id = int_in_range(data.get("task_id"), "task_id", 1, 2 ** 31)
    if task_id is not None:
        task = db.session.get(Task, task_id)
        if task is None or task.deleted_at is not None:
            raise NotFoundError("Task not found")
        if task.user_id != user.id:
            raise ForbiddenError("Unauthorized")
    tags = data.get("tags") or []
    if not isinstance(tags, list) or len(tags) > 10 or \
            not all(isinstance(tag, str) and len(tag) <= 50 for tag in tags):
        raise ValidationError("tags must be at most 10 strings of up to 50 characters")
    session = FocusSession(
        user_id=user.id,
        task_id=task_id,
        session_type=choice(data["session_type"], "session_type", SESSION_TYPES),
        session_name=optional_text(data, "session_name", 100),
        planned_duration=int_in_range(data.get("planned_duration"), "planned_duration", 1, 480, required=True),
        mood_before=int_in_range(data.get("mood_before"), "mood_before", 1, 10),
        energy_before=int_in_range(data.get("energy_before"), "energy_before", 1, 10),
        tags=tags,
        started_at=utcnow(),
    )
    try:
        db.session.add(session)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error starting focus session: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to start focus session"}), 500
    logger.info(f"Focus session {session.id} started for user {user.id}")
    publish_event(user.id, "focus.session.started", session.to_dict())
    return jsonify(session.to_dict()), 201


@app.route("/api/focus/sessions", methods=["GET"])
@token_required
def list_sessions(user):
    limit, offset = pagination()
    session_type = choice(request.args.get("session_type"), "session_type", SESSION_TYPES)
    status = choice(request.args.get("status"), "status", ["active", "completed", "cancelled"])
    start, end = date_range_args()
    query = FocusSession.query.filter(FocusSession.user_id == user.id)
    if session_type:
        query = query.filter(FocusSession.session_type == session_type)
    if status:
        query = query.filter(FocusSession.status == status)
    if start:
        query = query.filter(FocusSession.started_at >= start)
    if end:
        query = query.filter(FocusSession.started_at <= end)
    total = query.count()
    sessions = query.order_by(FocusSession.started_at.desc(), FocusSession.id.desc()) \
        .offset(offset).limit(limit).all()
    return jsonify({
        "sessions": [session.to_dict() for session in sessions],
        "total": total,
        "has_more": offset + len(sessions) < total,
    }), 200


@app.route("/api/focus/sessions/<int:id>", methods=["GET"])
@token_required
def get_session(user, id):
    session = _owned_session(user, id)
    data = session.to_dict()
    data["distractions"] = [d.to_dict() for d in session.distractions]
    return jsonify(data), 200


@app.route("/api/focus/sessions/<int:id>/complete", methods=["PATCH"])
@token_required
def complete_session(user, id):
    session = _owned_session(user, id)
    _require_active(session)
    data = get_json()
    actual = int_in_range(data.get("actual_duration"), "actual_duration", 1, 480, required=True)
    is_successful = data.get("is_successful")
    if is_successful is None:
        is_successful = actual >= session.planned_duration * SUCCESS_RATIO
    elif not isinstance(is_successful, bool):
        raise ValidationError("is_successful must be true or false")
    session.actual_duration = actual
    session.completed_task_count = int_in_range(data.get("completed_task_count", 0), "completed_task_count", 0, 20)
    session.break_duration = int_in_range(data.get("break_duration", 0), "break_duration", 0, 120)
    session.mood_after = int_in_range(data.get("mood_after"), "mood_after", 1, 10)
    session.energy_after = int_in_range(data.get("energy_after"), "energy_after", 1, 10)
    session.focus_quality = int_in_range(data.get("focus_quality"), "focus_quality", 1, 10)
    session.productivity_rating = int_in_range(data.get("productivity_rating"), "productivity_rating", 1, 5)
    if "notes" in data:
        session.notes = optional_text(data, "notes", 500)
    session.is_successful = is_successful
    session.status = "completed"
    session.ended_at = utcnow()
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error completing focus session {id}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to complete focus session"}), 500
    logger.info(f"Focus session {id} completed by user {user.id} "
                f"({actual}/{session.planned_duration} minutes)")
    publish_event(user.id, "focus.session.completed", session.to_dict())
    trigger_badge_check(user)
    return jsonify(session.to_dict()), 200


@app.route("/api/focus/sessions/<int:id>/cancel", methods=["PATCH"])
@token_required
def cancel_session(user, id):
    session = _owned_session(user, id)
    _require_active(session)
    reason = require_text(get_json(), "reason", 200)
    now = utcnow()
    try:
        session.status = "cancelled"
        session.cancellation_reason = reason
        session.ended_at = now
        session.actual_duration = max(0, int((now - session.started_at).total_seconds() // 60))
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error cancelling focus session {id}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to cancel focus session"}), 500
    logger.info(f"Focus session {id} cancelled by user {user.id}: {reason}")
    publish_event(user.id, "focus.session.cancelled", session.to_dict())
    return jsonify(session.to_dict()), 200


@app.route("/api/focus/sessions/<int:id>/distractions", methods=["POST"])
@token_required
def record_distraction(user, id):
    session = _owned_session(user, id)
    _require_active(session)
    data = get_json()
    if data.get("distraction_type") is None:
        raise ValidationError("distraction_type is required")
    distraction = FocusDistraction(
        session_id=session.id,
        user_id=user.id,
        distraction_type=choice(data["distraction_type"], "distraction_type", DISTRACTION_TYPES),
        source=optional_text(data, "source", 100),
        duration_seconds=int_in_range(data.get("duration_seconds"), "duration_seconds", 1, 3600),
        impact_level=int_in_range(data.get("impact_level"), "impact_level", 1, 5, required=True),
        notes=optional_text(data, "notes", 500),
    )
    try:
        db.session.add(distraction)
        session.distraction_count = (session.distraction_count or 0) + 1
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error recording distraction: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to record distraction"}), 500
    logger.debug(f"Distraction recorded for session {id}: {distraction.distraction_type}")
    return jsonify({"distraction": distraction.to_dict(),
                    "distraction_count": session.distraction_count}), 201


@app.route("/api/focus/dashboard", methods=["GET"])
@token_required
def focus_dashboard(user):
    sessions = FocusSession.query.filter_by(user_id=user.id).all()
    completed = [s for s in sessions if s.status == "completed"]
    today = utcnow().date()
    today_sessions = [s for s in completed if s.ended_at and s.ended_at.date() == today]
    ratings = [s.productivity_rating for s in completed if s.productivity_rating is not None]
    successful = sum(1 for s in completed if s.is_successful)
    return jsonify({
        "total_sessions": len(sessions),
        "completed_sessions": len(completed),
        "cancelled_sessions": sum(1 for s in sessions if s.status == "cancelled"),
        "active_sessions": sum(1 for s in sessions if s.status == "active"),
        "successful_sessions": successful,
        "success_rate": round(successful / len(completed) * 100, 1) if completed else 0.0,
        "total_focus_minutes": sum(s.actual_duration or 0 for s in completed),
        "average_productivity_rating": round(sum(ratings) / len(ratings), 2) if ratings else None,
        "total_distractions": sum(s.distraction_count or 0 for s in sessions),
        "today": {
            "sessions": len(today_sessions),
            "minutes": sum(s.actual_duration or 0 for s in today_sessions),
        },
        "streak_days": consecutive_days([s.ended_at for s in completed]),
    }), 200
