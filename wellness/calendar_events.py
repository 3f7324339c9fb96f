import logging

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError

from . import app, db
from .auth import token_required
from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import CalendarEvent
from .realtime import publish_event
from .validation import date_range_args, get_json, optional_text, parse_datetime, require_text

logger = logging.getLogger(__name__)


def _owned_event(user, id):
    event = db.session.get(CalendarEvent, id)
    if event is None:
        raise NotFoundError("Event not found")
    if event.user_id != user.id:
        logger.error(f"Unauthorized access to calendar event {id} by user {user.id}")
        raise ForbiddenError("Unauthorized")
    return event


def _check_times(event):
    if event.start_time is None or event.end_time is None:
        raise ValidationError("start and end are required")
    if event.end_time <= event.start_time:
        raise ValidationError("end must be after start")


@app.route("/api/calendar/events", methods=["GET"])
@token_required
def list_events(user):
    start, end = date_range_args()
    query = CalendarEvent.query.filter_by(user_id=user.id)
    # overlap with the requested window
    if start:
        query = query.filter(CalendarEvent.end_time >= start)
    if end:
        query = query.filter(CalendarEvent.start_time <= end)
    events = query.order_by(CalendarEvent.start_time.asc(), CalendarEvent.id.asc()).all()
    return jsonify({"events": [event.to_dict() for event in events]}), 200


@app.route("/api/calendar/events", methods=["POST"])
@token_required
def create_event(user):
    data = get_json()
    logger.debug(f"Create calendar event payload: {data}")
    event = CalendarEvent(
        user_id=user.id,
        title=require_text(data, "title", 200),
        description=optional_text(data, "description"),
        location=optional_text(data, "location", 200),
        start_time=parse_datetime(data.get("start"), "start"),
        end_time=parse_datetime(data.get("end"), "end"),
    )
    _check_times(event)
    try:
        db.session.add(event)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error creating calendar event: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to create event"}), 500
    logger.info(f"Calendar event {event.id} created for user {user.id}")
    publish_event(user.id, "calendar.event.created", event.to_dict())
    return jsonify(event.to_dict()), 201


@app.route("/api/calendar/events/<int:id>", methods=["PUT"])
@token_required
def update_event(user, id):
    event = _owned_event(user, id)
    data = get_json()
    if "title" in data:
        event.title = require_text(data, "title", 200)
    if "description" in data:
        event.description = optional_text(data, "description")
    if "location" in data:
        event.location = optional_text(data, "location", 200)
    if "start" in data:
        event.start_time = parse_datetime(data["start"], "start")
    if "end" in data:
        event.end_time = parse_datetime(data["end"], "end")
    _check_times(event)
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error updating calendar event {id}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to update event"}), 500
    logger.info(f"Calendar event {id} updated for user {user.id}")
    publish_event(user.id, "calendar.event.updated", event.to_dict())
    return jsonify(event.to_dict()), 200


@app.route("/api/calendar/events/<int:id>", methods=["DELETE"])
@token_required
def delete_event(user, id):
    event = _owned_event(user, id)
    try:
        db.session.delete(event)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Error deleting calendar event {id}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to delete event"}), 500
    logger.info(f"Calendar event {id} deleted by user {user.id}")
    publish_event(user.id, "calendar.event.deleted", {"id": id})
    return jsonify({"message": "Event deleted"}), 200
