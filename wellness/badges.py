import logging
import uuid
from datetime import timedelta

from flask import current_app, jsonify, request
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from . import app, db
from .auth import token_required
from .errors import NotFoundError, ValidationError
from .localization import resolve_language
from .models import (BadgeDefinition, BadgeShare, FocusSession, HabitLog, HealthLog, Task,
                     User, UserBadge, UserConnection, utcnow)
from .notifications import notify
from .realtime import publish_event
from .streaks import consecutive_days
from .validation import choice, get_json, int_in_range, optional_text

logger = logging.getLogger(__name__)

SHARE_PLATFORMS = ["instagram", "whatsapp", "twitter", "facebook", "linkedin", "email"]

DEFAULT_BADGES = [
    {"key": "first_task", "category": "milestone", "title_en": "Getting Started", "title_de": "Erste Schritte",
     "description_en": "Complete your first task", "description_de": "Schließe deine erste Aufgabe ab",
     "criteria": {"type": "count", "threshold": 1, "metric": "tasks_completed"},
     "points_awarded": 10, "rarity": "common", "icon_emoji": "\U0001F3AF"},
    {"key": "first_week", "category": "milestone", "title_en": "First Week", "title_de": "Erste Woche",
     "description_en": "Active for your first week", "description_de": "Aktiv in deiner ersten Woche",
     "criteria": {"type": "time_based", "threshold": 7, "metric": "days_since_registration"},
     "points_awarded": 25, "rarity": "common", "icon_emoji": "\U0001F4C5"},
    {"key": "first_month", "category": "milestone", "title_en": "Monthly Warrior", "title_de": "Monats-Krieger",
     "description_en": "Active for your first month", "description_de": "Aktiv in deinem ersten Monat",
     "criteria": {"type": "time_based", "threshold": 30, "metric": "days_since_registration"},
     "points_awarded": 100, "rarity": "rare", "icon_emoji": "\U0001F5D3"},
    {"key": "task_master_10", "category": "tasks", "title_en": "Task Rookie", "title_de": "Aufgaben-Neuling",
     "description_en": "Complete 10 tasks", "description_de": "Schließe 10 Aufgaben ab",
     "criteria": {"type": "count", "threshold": 10, "metric": "tasks_completed"},
     "points_awarded": 25, "rarity": "common", "icon_emoji": "✅"},
    {"key": "task_master_50", "category": "tasks", "title_en": "Task Veteran", "title_de": "Aufgaben-Veteran",
     "description_en": "Complete 50 tasks", "description_de": "Schließe 50 Aufgaben ab",
     "criteria": {"type": "count", "threshold": 50, "metric": "tasks_completed"},
     "points_awarded": 75, "rarity": "rare", "icon_emoji": "\U0001F3C6"},
    {"key": "task_master_100", "category": "tasks", "title_en": "Task Legend", "title_de": "Aufgaben-Legende",
     "description_en": "Complete 100 tasks", "description_de": "Schließe 100 Aufgaben ab",
     "criteria": {"type": "count", "threshold": 100, "metric": "tasks_completed"},
     "points_awarded": 150, "rarity": "epic", "icon_emoji": "\U0001F451"},
    {"key": "productive_day", "category": "tasks", "title_en": "Productive Day", "title_de": "Produktiver Tag",
     "description_en": "Complete 10 tasks in a single day",
     "description_de": "Schließe 10 Aufgaben an einem Tag ab",
     "criteria": {"type": "count", "threshold": 10, "timeframe": 1, "metric": "tasks_completed"},
     "points_awarded": 50, "rarity": "rare", "icon_emoji": "⚡"},
    {"key": "perfectionist", "category": "special", "title_en": "Perfectionist", "title_de": "Perfektionist",
     "description_en": "Complete 50 high priority tasks",
     "description_de": "Schließe 50 Aufgaben mit hoher Priorität ab",
     "criteria": {"type": "count", "threshold": 50, "metric": "tasks_completed", "conditions": {"priority": 4}},
     "points_awarded": 100, "rarity": "epic", "icon_emoji": "\U0001F48E"},
    {"key": "completionist", "category": "tasks", "title_en": "Completionist", "title_de": "Vollender",
     "description_en": "Finish 90% of at least 20 tasks",
     "description_de": "Schließe 90% von mindestens 20 Aufgaben ab",
     "criteria": {"type": "percentage", "threshold": 90, "metric": "task_completion_rate",
                  "conditions": {"min_tasks": 20}},
     "points_awarded": 60, "rarity": "rare", "icon_emoji": "\U0001F4AF"},
    {"key": "health_starter", "category": "health", "title_en": "Health Conscious",
     "title_de": "Gesundheitsbewusst", "description_en": "Log your first health activity",
     "description_de": "Protokolliere deine erste Gesundheitsaktivität",
     "criteria": {"type": "count", "threshold": 1, "metric": "health_logs"},
     "points_awarded": 15, "rarity": "common", "icon_emoji": "\U0001F331"},
    {"key": "exercise_enthusiast", "category": "health", "title_en": "Exercise Enthusiast",
     "title_de": "Sport-Enthusiast", "description_en": "Log 25 exercise activities",
     "description_de": "Protokolliere 25 Sportaktivitäten",
     "criteria": {"type": "count", "threshold": 25, "metric": "health_logs", "conditions": {"type": "exercise"}},
     "points_awarded": 75, "rarity": "rare", "icon_emoji": "\U0001F3C3"},
    {"key": "wellness_warrior", "category": "health", "title_en": "Wellness Warrior",
     "title_de": "Wellness-Krieger", "description_en": "Log health activities for 30 consecutive days",
     "description_de": "Protokolliere 30 Tage am Stück Gesundheitsaktivitäten",
     "criteria": {"type": "streak", "threshold": 30, "metric": "health_logs"},
     "points_awarded": 200, "rarity": "epic", "icon_emoji": "\U0001F4AA"},
    {"key": "hydration_hero", "category": "health", "title_en": "Hydration Hero", "title_de": "Hydrations-Held",
     "description_en": "Log water intake for 14 consecutive days",
     "description_de": "Protokolliere 14 Tage am Stück deine Wasseraufnahme",
     "criteria": {"type": "streak", "threshold": 14, "metric": "health_logs", "conditions": {"type": "hydration"}},
     "points_awarded": 60, "rarity": "rare", "icon_emoji": "\U0001F4A7"},
    {"key": "consistency_champion", "category": "streak", "title_en": "Consistency Champion",
     "title_de": "Beständigkeits-Champion", "description_en": "Complete tasks for 7 consecutive days",
     "description_de": "Schließe 7 Tage am Stück Aufgaben ab",
     "criteria": {"type": "streak", "threshold": 7, "metric": "daily_task_completion"},
     "points_awarded": 75, "rarity": "rare", "icon_emoji": "\U0001F525"},
    {"key": "habit_master", "category": "streak", "title_en": "Habit Master", "title_de": "Gewohnheits-Meister",
     "description_en": "Stay active for 21 consecutive days",
     "description_de": "Bleib 21 Tage am Stück aktiv",
     "criteria": {"type": "streak", "threshold": 21, "metric": "daily_activity"},
     "points_awarded": 150, "rarity": "epic", "icon_emoji": "\U0001F3AD"},
    {"key": "habit_starter", "category": "habits", "title_en": "Habit Starter", "title_de": "Gewohnheits-Starter",
     "description_en": "Check in to a habit for the first time",
     "description_de": "Hake zum ersten Mal eine Gewohnheit ab",
     "criteria": {"type": "count", "threshold": 1, "metric": "habit_checkins"},
     "points_awarded": 10, "rarity": "common", "icon_emoji": "\U0001F501"},
    {"key": "focus_starter", "category": "focus", "title_en": "First Focus", "title_de": "Erster Fokus",
     "description_en": "Complete your first focus session",
     "description_de": "Schließe deine erste Fokus-Sitzung ab",
     "criteria": {"type": "count", "threshold": 1, "metric": "focus_sessions"},
     "points_awarded": 10, "rarity": "common", "icon_emoji": "\U0001F9D8"},
    {"key": "deep_focus", "category": "focus", "title_en": "Deep Focus", "title_de": "Tiefer Fokus",
     "description_en": "Complete focus sessions 7 days in a row",
     "description_de": "Schließe 7 Tage am Stück Fokus-Sitzungen ab",
     "criteria": {"type": "streak", "threshold": 7, "metric": "focus_sessions"},
     "points_awarded": 75, "rarity": "rare", "icon_emoji": "\U0001F9E0"},
    {"key": "early_bird", "category": "special", "title_en": "Early Bird", "title_de": "Frühaufsteher",
     "description_en": "Complete 10 tasks before 9 AM", "description_de": "Schließe 10 Aufgaben vor 9 Uhr ab",
     "criteria": {"type": "custom", "threshold": 10, "metric": "early_tasks", "conditions": {"before_hour": 9}},
     "points_awarded": 40, "rarity": "rare", "icon_emoji": "\U0001F305"},
    {"key": "night_owl", "category": "special", "title_en": "Night Owl", "title_de": "Nachteule",
     "description_en": "Complete 10 tasks after 10 PM", "description_de": "Schließe 10 Aufgaben nach 22 Uhr ab",
     "criteria": {"type": "custom", "threshold": 10, "metric": "late_tasks", "conditions": {"after_hour": 22}},
     "points_awarded": 40, "rarity": "rare", "icon_emoji": "\U0001F989"},
    {"key": "social_butterfly", "category": "social", "title_en": "Social Butterfly",
     "title_de": "Geselliger Schmetterling", "description_en": "Connect with 5 friends",
     "description_de": "Verbinde dich mit 5 Freunden",
     "criteria": {"type": "count", "threshold": 5, "metric": "friend_connections"},
     "points_awarded": 30, "rarity": "common", "icon_emoji": "\U0001F98B"},
    {"key": "wellness_legend", "category": "legendary", "title_en": "Wellness Legend",
     "title_de": "Wellness-Legende", "description_en": "Earn 1000 badge points",
     "description_de": "Sammle 1000 Badge-Punkte",
     "criteria": {"type": "custom", "threshold": 1000, "metric": "badge_points"},
     "points_awarded": 500, "rarity": "legendary", "icon_emoji": "\U0001F31F", "is_secret": True},
    {"key": "time_master", "category": "legendary", "title_en": "Time Master", "title_de": "Zeit-Meister",
     "description_en": "Complete 500 tasks and keep a 30 day activity streak",
     "description_de": "Schließe 500 Aufgaben ab und halte eine 30-Tage-Serie",
     "criteria": {"type": "custom", "metric": "requirements", "threshold": 2, "requirements": [
         {"type": "count", "metric": "tasks_completed", "threshold": 500},
         {"type": "streak", "metric": "daily_activity", "threshold": 30},
     ]},
     "points_awarded": 1000, "rarity": "legendary", "icon_emoji": "⏰", "is_secret": True},
]

# Columns a criteria "conditions" object may filter on, per metric.
CONDITION_COLUMNS = {
    "tasks_completed": {"priority": Task.priority},
    "health_logs": {"type": HealthLog.type, "source": HealthLog.source},
    "focus_sessions": {"session_type": FocusSession.session_type, "is_successful": FocusSession.is_successful},
    "habit_checkins": {"habit_id": HabitLog.habit_id},
}


def ensure_default_badges():
    """Install catalogue entries that are missing; existing definitions are left untouched."""
    try:
        existing = {key for (key,) in db.session.query(BadgeDefinition.key).all()}
        added = 0
        for entry in DEFAULT_BADGES:
            if entry["key"] in existing:
                continue
            db.session.add(BadgeDefinition(**entry))
            added += 1
        db.session.commit()
        if added:
            logger.info(f"Installed {added} badge definitions")
    except SQLAlchemyError as e:
        logger.error(f"Database error installing badge definitions: {str(e)}")
        db.session.rollback()


def _apply_conditions(query, metric, conditions):
    columns = CONDITION_COLUMNS.get(metric, {})
    for key, value in (conditions or {}).items():
        column = columns.get(key)
        if column is None:
            continue
        query = query.filter(column == value)
    return query


def _count_query(user, metric):
    if metric == "tasks_completed":
        return Task.query.filter(Task.user_id == user.id, Task.status == "done",
                                 Task.deleted_at.is_(None)), Task.completed_at
    if metric == "health_logs":
        return HealthLog.query.filter(HealthLog.user_id == user.id), HealthLog.recorded_at
    if metric == "focus_sessions":
        return FocusSession.query.filter(FocusSession.user_id == user.id,
                                         FocusSession.status == "completed"), FocusSession.ended_at
    if metric == "habit_checkins":
        return HabitLog.query.filter(HabitLog.user_id == user.id), HabitLog.completed_at
    return None, None


def count_metric(user, metric, timeframe=None, conditions=None):
    if metric == "friend_connections":
        return UserConnection.query.filter(
            UserConnection.status == "accepted",
            or_(UserConnection.requester_id == user.id, UserConnection.addressee_id == user.id),
        ).count()
    if metric == "badge_points":
        return user.badge_points or 0
    query, stamp = _count_query(user, metric)
    if query is None:
        logger.debug(f"Unknown count metric {metric}")
        return 0
    if timeframe:
        query = query.filter(stamp >= utcnow() - timedelta(days=timeframe))
    return _apply_conditions(query, metric, conditions).count()


def _stamps(user, metric, conditions=None):
    query, stamp = _count_query(user, metric)
    if query is None:
        return []
    query = _apply_conditions(query, metric, conditions)
    return [value for (value,) in query.with_entities(stamp).all()]


def streak_metric(user, metric, conditions=None):
    if metric == "daily_task_completion":
        return consecutive_days(_stamps(user, "tasks_completed", conditions))
    if metric in ("health_logs", "focus_sessions"):
        return consecutive_days(_stamps(user, metric, conditions))
    if metric == "daily_activity":
        stamps = []
        for source in ("tasks_completed", "health_logs", "habit_checkins", "focus_sessions"):
            stamps.extend(_stamps(user, source))
        return consecutive_days(stamps)
    logger.debug(f"Unknown streak metric {metric}")
    return 0


def completion_rate(user, min_tasks=0):
    tasks = Task.query.filter(Task.user_id == user.id, Task.deleted_at.is_(None))
    total = tasks.count()
    if total == 0 or total < min_tasks:
        return 0.0
    done = tasks.filter(Task.status == "done").count()
    return round(done / total * 100, 1)


def _completed_hours(user):
    return [stamp.hour for stamp in _stamps(user, "tasks_completed") if stamp]


def measure(user, criteria):
    """Return (current_value, target_value) for one criteria object."""
    kind = criteria.get("type")
    metric = criteria.get("metric")
    threshold = criteria.get("threshold", 0)
    conditions = criteria.get("conditions") or {}

    if kind == "count":
        return count_metric(user, metric, criteria.get("timeframe"), conditions), threshold
    if kind == "streak":
        return streak_metric(user, metric, conditions), threshold
    if kind == "time_based":
        if metric == "days_since_registration":
            return (utcnow() - user.created_at).days, threshold
        return 0, threshold
    if kind == "percentage":
        if metric == "task_completion_rate":
            return completion_rate(user, conditions.get("min_tasks", 0)), threshold
        return 0, threshold
    if kind == "custom":
        if metric == "early_tasks" and "before_hour" in conditions:
            return sum(1 for hour in _completed_hours(user) if hour < conditions["before_hour"]), threshold
        if metric == "late_tasks" and "after_hour" in conditions:
            return sum(1 for hour in _completed_hours(user) if hour > conditions["after_hour"]), threshold
        if metric == "badge_points":
            return user.badge_points or 0, threshold
        requirements = criteria.get("requirements") or []
        if requirements:
            met = 0
            for requirement in requirements:
                value, target = measure(user, dict(requirement, type=requirement.get("type", "count")))
                if value >= target:
                    met += 1
            return met, len(requirements)
    return 0, threshold


def qualifies(user, definition):
    try:
        value, target = measure(user, definition.criteria or {})
    except (SQLAlchemyError, TypeError, ValueError) as e:
        logger.error(f"Error checking badge criteria for {definition.key}: {str(e)}")
        return False
    return target > 0 and value >= target


def unlock_badge(user, definition):
    try:
        user_badge = UserBadge(user_id=user.id, badge_id=definition.id)
        db.session.add(user_badge)
        user.badge_points = (user.badge_points or 0) + definition.points_awarded
        user.total_badges = (user.total_badges or 0) + 1
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.debug(f"Badge {definition.key} already unlocked by user {user.id}")
        return None
    logger.info(f"Badge {definition.key} unlocked by user {user.id}")

    language = user.preferred_language
    try:
        notify(user, "badge_unlocked", definition.title(language),
               definition.description(language) or definition.title(language),
               {"badge_key": definition.key, "points": definition.points_awarded})
    except Exception as e:
        logger.error(f"Failed to send badge notification for {definition.key}: {str(e)}")
    publish_event(user.id, "badge.unlocked", user_badge.to_dict(language))
    return user_badge


def check_badges(user):
    """Unlock every active badge the user now qualifies for. Returns the new UserBadge rows."""
    unlocked_ids = {badge_id for (badge_id,) in
                    db.session.query(UserBadge.badge_id).filter_by(user_id=user.id).all()}
    definitions = BadgeDefinition.query.filter_by(is_active=True) \
        .order_by(BadgeDefinition.points_awarded.asc(), BadgeDefinition.id.asc()).all()
    unlocked = []
    for definition in definitions:
        if definition.id in unlocked_ids:
            continue
        if not qualifies(user, definition):
            continue
        user_badge = unlock_badge(user, definition)
        if user_badge is not None:
            unlocked.append(user_badge)
            unlocked_ids.add(definition.id)
    return unlocked


def trigger_badge_check(user):
    try:
        unlocked = check_badges(user)
    except Exception as e:
        logger.error(f"Badge check failed for user {user.id}: {str(e)}")
        db.session.rollback()
        return []
    if unlocked:
        logger.info(f"User {user.id} unlocked {len(unlocked)} new badge(s)")
    return unlocked


@app.route("/api/badges/available", methods=["GET"])
@token_required
def available_badges(user):
    language = resolve_language(user)
    unlocked_ids = {badge_id for (badge_id,) in
                    db.session.query(UserBadge.badge_id).filter_by(user_id=user.id).all()}
    definitions = BadgeDefinition.query.filter_by(is_active=True) \
        .order_by(BadgeDefinition.category, BadgeDefinition.points_awarded).all()
    badges = []
    for definition in definitions:
        unlocked = definition.id in unlocked_ids
        if definition.is_secret and not unlocked:
            continue
        data = definition.to_dict(language)
        data["unlocked"] = unlocked
        badges.append(data)
    return jsonify({"badges": badges, "total": len(badges)}), 200


@app.route("/api/badges/user", methods=["GET"])
@token_required
def user_badges(user):
    language = resolve_language(user)
    badges = UserBadge.query.filter_by(user_id=user.id).order_by(UserBadge.unlocked_at.desc()).all()
    return jsonify({
        "badges": [badge.to_dict(language) for badge in badges],
        "total_badges": user.total_badges,
        "badge_points": user.badge_points,
    }), 200


@app.route("/api/badges/progress", methods=["GET"])
@token_required
def badge_progress(user):
    language = resolve_language(user)
    unlocked_ids = {badge_id for (badge_id,) in
                    db.session.query(UserBadge.badge_id).filter_by(user_id=user.id).all()}
    progress = []
    for definition in BadgeDefinition.query.filter_by(is_active=True, is_secret=False).all():
        value, target = measure(user, definition.criteria)
        complete = definition.id in unlocked_ids
        if complete:
            value, percentage = max(value, target), 100
        else:
            percentage = min(100, round(value / target * 100)) if target else 0
        progress.append({"key": definition.key, "title": definition.title(language),
                         "current_value": value, "target_value": target,
                         "progress_percentage": percentage, "is_complete": complete})
    progress.sort(key=lambda item: (item["is_complete"], -item["progress_percentage"]))
    return jsonify({"progress": progress}), 200


@app.route("/api/badges/check", methods=["POST"])
@token_required
def run_badge_check(user):
    unlocked = trigger_badge_check(user)
    language = resolve_language(user)
    return jsonify({
        "new_badges": [badge.to_dict(language) for badge in unlocked],
        "count": len(unlocked),
    }), 200


@app.route("/api/badges/<key>/share", methods=["POST"])
@token_required
def share_badge(user, key):
    data = get_json()
    if not data.get("platform"):
        raise ValidationError("platform is required")
    platform = choice(data["platform"], "platform", SHARE_PLATFORMS)
    custom_message = optional_text(data, "message", 280)
    user_badge = UserBadge.query.join(BadgeDefinition) \
        .filter(UserBadge.user_id == user.id, BadgeDefinition.key == key).first()
    if user_badge is None:
        raise NotFoundError("Badge not found or not unlocked")

    title = user_badge.badge.title(user.preferred_language)
    message = custom_message or f'I just earned the "{title}" badge on my wellness journey!'
    message = {
        "instagram": f"{message} #WellnessJourney #Achievement",
        "twitter": f"{message} #Wellness #Achievement",
        "linkedin": f"Proud to share: {message}",
        "email": f"I wanted to share my latest achievement: {message}",
    }.get(platform, message)
    share_url = f"{current_app.config['SHARE_BASE_URL']}/{uuid.uuid4().hex}"
    try:
        share = BadgeShare(user_badge_id=user_badge.id, user_id=user.id, platform=platform,
                           share_url=share_url, message=message)
        db.session.add(share)
        user_badge.share_count = (user_badge.share_count or 0) + 1
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error sharing badge {key}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to share badge"}), 500
    logger.info(f"Badge {key} shared by user {user.id} on {platform}")
    return jsonify({"share_url": share_url, "message": message, "platform": platform,
                    "share_count": user_badge.share_count}), 201


@app.route("/api/badges/leaderboard", methods=["GET"])
@token_required
def badge_leaderboard(user):
    limit = int_in_range(request.args.get("limit", 10), "limit", 1, 100)
    leaders = User.query.order_by(User.badge_points.desc(), User.total_badges.desc(), User.id.asc()) \
        .limit(limit).all()
    above = User.query.filter(or_(
        User.badge_points > user.badge_points,
        (User.badge_points == user.badge_points) & (User.total_badges > user.total_badges),
        (User.badge_points == user.badge_points) & (User.total_badges == user.total_badges) & (User.id < user.id),
    )).count()
    return jsonify({
        "leaderboard": [{
            "rank": index + 1,
            "user_id": leader.id,
            "name": leader.display_name,
            "badge_points": leader.badge_points,
            "total_badges": leader.total_badges,
        } for index, leader in enumerate(leaders)],
        "your_rank": above + 1,
    }), 200
