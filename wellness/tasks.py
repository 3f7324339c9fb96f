import logging

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from . import app, db
from .auth import token_required
from .badges import trigger_badge_check
from .errors import ForbiddenError, NotFoundError
from .models import Task, utcnow
from .realtime import publish_event
from .validation import (choice, get_json, int_in_range, optional_text, pagination,
                         parse_datetime, require_text)

logger = logging.getLogger(__name__)

STATUSES = ["pending", "done", "archived"]
HIGH = 3  # urgency/importance at or above this counts as high
DEFAULT_LEVEL = 2


def get_owned_task(user, id):
    task = db.session.get(Task, id)
    if task is None or task.deleted_at is not None:
        raise NotFoundError("Task not found")
    if task.user_id != user.id:
        logger.error(f"Unauthorized access to task {id} by user {user.id}")
        raise ForbiddenError("Unauthorized")
    return task


def _apply_fields(task, data):
    if "title" in data:
        task.title = require_text(data, "title", 200)
    if "description" in data:
        task.description = optional_text(data, "description")
    if "priority" in data:
        task.priority = int_in_range(data["priority"], "priority", 1, 4, required=True)
    if "due_date" in data:
        task.due_date = parse_datetime(data["due_date"], "due_date")
    if "estimated_duration" in data:
        task.estimated_duration = int_in_range(data["estimated_duration"], "estimated_duration", 1, 24 * 60)
    if "urgency" in data:
        task.urgency = int_in_range(data["urgency"], "urgency", 1, 4)
    if "importance" in data:
        task.importance = int_in_range(data["importance"], "importance", 1, 4)


def _mark_done(task):
    task.status = "done"
    if task.completed_at is None:
        task.completed_at = utcnow()


@app.route("/api/tasks", methods=["GET"])
@token_required
def list_tasks(user):
    limit, offset = pagination()
    status = choice(request.args.get("status"), "status", STATUSES)
    priority = int_in_range(request.args.get("priority"), "priority", 1, 4)
    due_before = parse_datetime(request.args.get("due_before"), "due_before")
    due_after = parse_datetime(request.args.get("due_after"), "due_after")

    query = Task.query.filter(Task.user_id == user.id, Task.deleted_at.is_(None))
    if status:
        query = query.filter(Task.status == status)
    if priority is not None:
        query = query.filter(Task.priority == priority)
    if due_before:
        query = query.filter(Task.due_date <= due_before)
    if due_after:
        query = query.filter(Task.due_date >= due_after)

    total = query.count()
    ordering = [Task.priority.desc()] if priority is not None else []
    ordering += [Task.due_date.is_(None), Task.due_date.asc(), Task.created_at.desc(), Task.id.desc()]
    tasks = query.order_by(*ordering).offset(offset).limit(limit).all()
    logger.debug(f"Fetched {len(tasks)} of {total} tasks for user {user.id}")
    return jsonify({
        "tasks": [task.to_dict() for task in tasks],
        "total": total,
        "has_more": offset + len(tasks) < total,
    }), 200


@app.route("/api/tasks", methods=["POST"])
@token_required
def create_task(user):
    data = get_json()
    logger.debug(f"Create task payload: {data}")
    task = Task(user_id=user.id, title=require_text(data, "title", 200), priority=1)
    _apply_fields(task, data)
    try:
        db.session.add(task)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error creating task: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to create task"}), 500
    logger.info(f"Task {task.id} created for user {user.id}")
    publish_event(user.id, "task.created", task.to_dict())
    return jsonify(task.to_dict()), 201


@app.route("/api/tasks/stats", methods=["GET"])
@token_required
def task_stats(user):
    query = Task.query.filter(Task.user_id == user.id, Task.deleted_at.is_(None))
    total = query.count()
    completed = query.filter(Task.status == "done").count()
    pending = query.filter(Task.status == "pending").count()
    overdue = query.filter(Task.status == "pending", Task.due_date.isnot(None),
                           Task.due_date < utcnow()).count()
    return jsonify({
        "total": total,
        "completed": completed,
        "pending": pending,
        "overdue": overdue,
        "completion_rate": round(completed / total * 100, 1) if total else 0.0,
    }), 200


@app.route("/api/tasks/matrix", methods=["GET"])
@token_required
def task_matrix(user):
    quadrants = {"do": [], "decide": [], "delegate": [], "delete": []}
    tasks = Task.query.filter(Task.user_id == user.id, Task.deleted_at.is_(None),
                              Task.status == "pending") \
        .order_by(Task.due_date.is_(None), Task.due_date.asc(), Task.id.asc()).all()
    for task in tasks:
        urgent = (task.urgency or DEFAULT_LEVEL) >= HIGH
        important = (task.importance or DEFAULT_LEVEL) >= HIGH
        if urgent and important:
            quadrants["do"].append(task.to_dict())
        elif important:
            quadrants["decide"].append(task.to_dict())
        elif urgent:
            quadrants["delegate"].append(task.to_dict())
        else:
            quadrants["delete"].append(task.to_dict())
    return jsonify({"matrix": quadrants, "counts": {k: len(v) for k, v in quadrants.items()}}), 200


@app.route("/api/tasks/<int:id>", methods=["GET"])
@token_required
def get_task(user, id):
    return jsonify(get_owned_task(user, id).to_dict()), 200


@app.route("/api/tasks/<int:id>", methods=["PUT"])
@token_required
def update_task(user, id):
    task = get_owned_task(user, id)
    data = get_json()
    logger.debug(f"Update task {id} payload: {data}")
    _apply_fields(task, data)
    status = choice(data.get("status"), "status", STATUSES)
    completed_now = status == "done" and task.status != "done"
    if status == "done":
        _mark_done(task)
    elif status:
        task.status = status
        task.completed_at = None
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error updating task {id}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to update task"}), 500
    logger.info(f"Task {id} updated for user {user.id}")
    publish_event(user.id, "task.updated", task.to_dict())
    if completed_now:
        publish_event(user.id, "task.completed", task.to_dict())
        trigger_badge_check(user)
    return jsonify(task.to_dict()), 200


@app.route("/api/tasks/<int:id>/complete", methods=["PATCH"])
@token_required
def complete_task(user, id):
    task = get_owned_task(user, id)
    already_done = task.status == "done"
    try:
        _mark_done(task)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error completing task {id}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to complete task"}), 500
    new_badges = []
    if not already_done:
        logger.info(f"Task {id} completed by user {user.id}")
        publish_event(user.id, "task.completed", task.to_dict())
        new_badges = trigger_badge_check(user)
    return jsonify({
        "task": task.to_dict(),
        "new_badges": [badge.badge.key for badge in new_badges],
    }), 200


@app.route("/api/tasks/<int:id>", methods=["DELETE"])
@token_required
def delete_task(user, id):
    task = get_owned_task(user, id)
    try:
        task.deleted_at = utcnow()
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Error deleting task {id}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to delete task"}), 500
    logger.info(f"Task {id} deleted by user {user.id}")
    publish_event(user.id, "task.deleted", {"id": id})
    return jsonify({"message": "Task deleted"}), 200
