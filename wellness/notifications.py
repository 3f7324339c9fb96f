import logging

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from . import app, db
from .auth import token_required
from .errors import ValidationError
from .models import Notification, utcnow
from .realtime import publish_event
from .validation import get_json, pagination

logger = logging.getLogger(__name__)

CATEGORIES = ["badge_unlocked", "challenge", "social", "health_goal", "focus", "billing", "system"]


def preferences_for(user):
    stored = user.notification_preferences or {}
    return {category: bool(stored.get(category, True)) for category in CATEGORIES}


def notify(user, category, title, message, data=None):
    """Persist a notification and push it to the user's live connections.

    Returns None when the user has muted the category or the write fails.
    """
    if not preferences_for(user).get(category, True):
        logger.debug(f"Notification {category} muted by user {user.id}")
        return None
    try:
        notification = Notification(user_id=user.id, category=category, title=title,
                                    message=message, data=data)
        db.session.add(notification)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error creating notification for user {user.id}: {str(e)}")
        db.session.rollback()
        return None
    publish_event(user.id, "notification.received", notification.to_dict())
    return notification


def _own_notification(user, id):
    notification = db.get_or_404(Notification, id)
    if notification.user_id != user.id:
        logger.error(f"Unauthorized access to notification {id} by user {user.id}")
        return None
    return notification


@app.route("/api/notifications", methods=["GET"])
@token_required
def list_notifications(user):
    limit, offset = pagination()
    query = Notification.query.filter_by(user_id=user.id)
    if request.args.get("unread") in ("1", "true", "yes"):
        query = query.filter(Notification.read_at.is_(None))
    total = query.count()
    unread = Notification.query.filter_by(user_id=user.id).filter(Notification.read_at.is_(None)).count()
    notifications = query.order_by(Notification.created_at.desc(), Notification.id.desc()) \
        .offset(offset).limit(limit).all()
    return jsonify({
        "notifications": [n.to_dict() for n in notifications],
        "total": total,
        "unread_count": unread,
    }), 200


@app.route("/api/notifications/<int:id>/read", methods=["POST"])
@token_required
def mark_notification_read(user, id):
    notification = _own_notification(user, id)
    if notification is None:
        return jsonify({"message": "Unauthorized"}), 403
    try:
        if notification.read_at is None:
            notification.read_at = utcnow()
            db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error marking notification {id} read: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to update notification"}), 500
    return jsonify(notification.to_dict()), 200


@app.route("/api/notifications/read-all", methods=["POST"])
@token_required
def mark_all_notifications_read(user):
    try:
        updated = Notification.query.filter_by(user_id=user.id) \
            .filter(Notification.read_at.is_(None)) \
            .update({Notification.read_at: utcnow()}, synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error marking notifications read: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to update notifications"}), 500
    logger.info(f"Marked {updated} notifications read for user {user.id}")
    return jsonify({"message": "Notifications marked as read", "updated": updated}), 200


@app.route("/api/notifications/<int:id>", methods=["DELETE"])
@token_required
def delete_notification(user, id):
    notification = _own_notification(user, id)
    if notification is None:
        return jsonify({"message": "Unauthorized"}), 403
    try:
        db.session.delete(notification)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Error deleting notification {id}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to delete notification"}), 500
    return jsonify({"message": "Notification deleted"}), 200


@app.route("/api/notifications/preferences", methods=["GET"])
@token_required
def get_notification_preferences(user):
    return jsonify({"preferences": preferences_for(user)}), 200


@app.route("/api/notifications/preferences", methods=["PUT"])
@token_required
def update_notification_preferences(user):
    data = get_json()
    preferences = preferences_for(user)
    for category, enabled in data.items():
        if category not in CATEGORIES:
            raise ValidationError(f"Unknown notification category: {category}")
        if not isinstance(enabled, bool):
            raise ValidationError(f"{category} must be true or false")
        preferences[category] = enabled
    try:
        user.notification_preferences = preferences
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error updating notification preferences: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to update preferences"}), 500
    logger.info(f"Notification preferences updated for user {user.id}")
    return jsonify({"preferences": preferences}), 200
