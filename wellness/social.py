import logging

from flask import jsonify, request
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from . import app, db
from .auth import token_required
from .badges import trigger_badge_check
from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .localization import resolve_language
from .models import (Challenge, ChallengeParticipant, User, UserBadge, UserConnection, iso,
                     utcnow)
from .notifications import notify
from .realtime import publish_event
from .validation import (choice, get_json, int_in_range, number_in_range, optional_text,
                         parse_datetime, require_text)

logger = logging.getLogger(__name__)

CONNECTION_STATUSES = ["pending", "accepted", "blocked"]
CONNECTION_TYPES = ["friend", "family", "colleague", "accountability_partner"]
CHALLENGE_TYPES = ["task_completion", "habit_streak", "health_logging", "focus_time", "custom"]


def _relation_between(user_id, other_id):
    return UserConnection.query.filter(or_(
        (UserConnection.requester_id == user_id) & (UserConnection.addressee_id == other_id),
        (UserConnection.requester_id == other_id) & (UserConnection.addressee_id == user_id),
    )).first()


def _connection_for(user, id):
    connection = db.session.get(UserConnection, id)
    if connection is None:
        raise NotFoundError("Connection not found")
    if user.id not in (connection.requester_id, connection.addressee_id):
        logger.error(f"Unauthorized access to connection {id} by user {user.id}")
        raise ForbiddenError("Unauthorized")
    return connection


def _commit(action):
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error trying to {action}: {str(e)}")
        db.session.rollback()
        return False
    return True


def friend_ids(user_id):
    rows = UserConnection.query.filter(
        UserConnection.status == "accepted",
        or_(UserConnection.requester_id == user_id, UserConnection.addressee_id == user_id),
    ).all()
    return {row.addressee_id if row.requester_id == user_id else row.requester_id for row in rows}


@app.route("/api/social/connections", methods=["POST"])
@token_required
def request_connection(user):
    data = get_json()
    if data.get("addressee_id") is not None:
        other = db.session.get(User, int_in_range(data["addressee_id"], "addressee_id", 1, 2 ** 31))
    elif data.get("email"):
        other = User.query.filter_by(email=str(data["email"]).strip().lower()).first()
    else:
        raise ValidationError("addressee_id or email is required")
    if other is None:
        raise NotFoundError("User not found")
    if other.id == user.id:
        raise ValidationError("You cannot connect with yourself")
    if _relation_between(user.id, other.id) is not None:
        raise ConflictError("Connection already exists")
    connection = UserConnection(
        requester_id=user.id,
        addressee_id=other.id,
        connection_type=choice(data.get("connection_type"), "connection_type", CONNECTION_TYPES,
                               default="friend"),
    )
    try:
        db.session.add(connection)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Connection already exists")
    except SQLAlchemyError as e:
        logger.error(f"Database error creating connection: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to send connection request"}), 500
    logger.info(f"User {user.id} requested connection with user {other.id}")
    notify(other, "social", "New connection request",
           f"{user.display_name} wants to connect with you", {"connection_id": connection.id})
    publish_event(other.id, "social.connection.requested", connection.to_dict(other.id))
    return jsonify(connection.to_dict(user.id)), 201


@app.route("/api/social/connections", methods=["GET"])
@token_required
def list_connections(user):
    status = choice(request.args.get("status"), "status", CONNECTION_STATUSES)
    query = UserConnection.query.filter(
        or_(UserConnection.requester_id == user.id, UserConnection.addressee_id == user.id))
    if status:
        query = query.filter(UserConnection.status == status)
    connections = query.order_by(UserConnection.updated_at.desc(), UserConnection.id.desc()).all()
    result = []
    for connection in connections:
        data = connection.to_dict(user.id)
        data["direction"] = "outgoing" if connection.requester_id == user.id else "incoming"
        result.append(data)
    return jsonify({"connections": result}), 200


def _respond(user, id, accept):
    connection = _connection_for(user, id)
    if connection.addressee_id != user.id:
        raise ForbiddenError("Only the recipient can respond to this request")
    if connection.status != "pending":
        raise ConflictError("Connection request is not pending")
    if accept:
        connection.status = "accepted"
    else:
        db.session.delete(connection)
    if not _commit("respond to connection"):
        return None
    return connection


@app.route("/api/social/connections/<int:id>/accept", methods=["POST"])
@token_required
def accept_connection(user, id):
    connection = _respond(user, id, accept=True)
    if connection is None:
        return jsonify({"message": "Failed to accept connection"}), 500
    logger.info(f"User {user.id} accepted connection {id}")
    notify(connection.requester, "social", "Connection accepted",
           f"{user.display_name} accepted your connection request", {"connection_id": id})
    publish_event(connection.requester_id, "social.connection.accepted", connection.to_dict(connection.requester_id))
    trigger_badge_check(user)
    trigger_badge_check(connection.requester)
    return jsonify(connection.to_dict(user.id)), 200


@app.route("/api/social/connections/<int:id>/reject", methods=["POST"])
@token_required
def reject_connection(user, id):
    if _respond(user, id, accept=False) is None:
        return jsonify({"message": "Failed to reject connection"}), 500
    logger.info(f"User {user.id} rejected connection {id}")
    return jsonify({"message": "Connection rejected"}), 200


@app.route("/api/social/connections/<int:id>/block", methods=["POST"])
@token_required
def block_connection(user, id):
    connection = _connection_for(user, id)
    other_id = connection.addressee_id if connection.requester_id == user.id else connection.requester_id
    # the requester column records who blocked
    connection.requester_id = user.id
    connection.addressee_id = other_id
    connection.status = "blocked"
    if not _commit("block connection"):
        return jsonify({"message": "Failed to block user"}), 500
    logger.info(f"User {user.id} blocked user {other_id}")
    return jsonify(connection.to_dict(user.id)), 200


@app.route("/api/social/connections/<int:id>", methods=["DELETE"])
@token_required
def remove_connection(user, id):
    connection = _connection_for(user, id)
    if connection.status == "blocked" and connection.requester_id != user.id:
        raise ForbiddenError("Unauthorized")
    db.session.delete(connection)
    if not _commit("remove connection"):
        return jsonify({"message": "Failed to remove connection"}), 500
    logger.info(f"User {user.id} removed connection {id}")
    return jsonify({"message": "Connection removed"}), 200


def _challenge(id):
    challenge = db.session.get(Challenge, id)
    if challenge is None:
        raise NotFoundError("Challenge not found")
    return challenge


def _participant(challenge_id, user_id):
    return ChallengeParticipant.query.filter_by(challenge_id=challenge_id, user_id=user_id).first()


def _challenge_with_me(challenge, user):
    data = challenge.to_dict()
    entry = _participant(challenge.id, user.id)
    data["my_status"] = entry.status if entry else None
    data["my_score"] = entry.score if entry else None
    return data


@app.route("/api/social/challenges", methods=["POST"])
@token_required
def create_challenge(user):
    data = get_json()
    logger.debug(f"Create challenge payload: {data}")
    if data.get("challenge_type") is None:
        raise ValidationError("challenge_type is required")
    start_date = parse_datetime(data.get("start_date"), "start_date") or utcnow()
    end_date = parse_datetime(data.get("end_date"), "end_date")
    if end_date is None:
        raise ValidationError("end_date is required")
    if end_date <= start_date:
        raise ValidationError("end_date must be after start_date")
    is_public = data.get("is_public", True)
    if not isinstance(is_public, bool):
        raise ValidationError("is_public must be true or false")
    target_value = number_in_range(data.get("target_value"), "target_value", low=0)
    challenge = Challenge(
        creator_id=user.id,
        title=require_text(data, "title", 100),
        description=optional_text(data, "description", 1000),
        challenge_type=choice(data["challenge_type"], "challenge_type", CHALLENGE_TYPES),
        start_date=start_date,
        end_date=end_date,
        max_participants=int_in_range(data.get("max_participants", 10), "max_participants", 2, 100),
        is_public=is_public,
        target_value=target_value or None,
        reward_description=optional_text(data, "reward_description", 200),
    )
    try:
        db.session.add(challenge)
        db.session.flush()
        db.session.add(ChallengeParticipant(challenge_id=challenge.id, user_id=user.id))
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error creating challenge: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to create challenge"}), 500
    logger.info(f"Challenge {challenge.id} created by user {user.id}")
    return jsonify(_challenge_with_me(challenge, user)), 201


@app.route("/api/social/challenges/public", methods=["GET"])
@token_required
def public_challenges(user):
    challenges = Challenge.query.filter(Challenge.is_public.is_(True), Challenge.end_date > utcnow()) \
        .order_by(Challenge.start_date.asc(), Challenge.id.asc()).all()
    open_challenges = [c for c in challenges if c.active_participant_count < c.max_participants]
    return jsonify({"challenges": [_challenge_with_me(c, user) for c in open_challenges]}), 200


@app.route("/api/social/challenges/my", methods=["GET"])
@token_required
def my_challenges(user):
    entries = ChallengeParticipant.query.filter(ChallengeParticipant.user_id == user.id,
                                                ChallengeParticipant.status != "dropped") \
        .order_by(ChallengeParticipant.joined_at.desc()).all()
    return jsonify({"challenges": [_challenge_with_me(entry.challenge, user) for entry in entries]}), 200


@app.route("/api/social/challenges/<int:id>", methods=["GET"])
@token_required
def get_challenge(user, id):
    challenge = _challenge(id)
    if not challenge.is_public and _participant(id, user.id) is None and challenge.creator_id != user.id:
        raise ForbiddenError("Unauthorized")
    return jsonify(_challenge_with_me(challenge, user)), 200


@app.route("/api/social/challenges/<int:id>/join", methods=["POST"])
@token_required
def join_challenge(user, id):
    challenge = _challenge(id)
    if not challenge.is_public and challenge.creator_id != user.id:
        raise ForbiddenError("This challenge is private")
    if challenge.end_date <= utcnow():
        raise ValidationError("Challenge has ended")
    entry = _participant(id, user.id)
    if entry is not None and entry.status != "dropped":
        raise ConflictError("Already joined this challenge")
    if challenge.active_participant_count >= challenge.max_participants:
        raise ConflictError("Challenge is full")
    try:
        if entry is None:
            entry = ChallengeParticipant(challenge_id=id, user_id=user.id)
            db.session.add(entry)
        else:
            entry.status = "active"
            entry.score = 0
            entry.progress_data = None
            entry.completed_at = None
            entry.joined_at = utcnow()
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Already joined this challenge")
    except SQLAlchemyError as e:
        logger.error(f"Database error joining challenge {id}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to join challenge"}), 500
    logger.info(f"User {user.id} joined challenge {id}")
    publish_event(challenge.creator_id, "challenge.joined", {"challenge_id": id, "user_id": user.id})
    return jsonify(entry.to_dict()), 200


@app.route("/api/social/challenges/<int:id>/leave", methods=["POST"])
@token_required
def leave_challenge(user, id):
    _challenge(id)
    entry = _participant(id, user.id)
    if entry is None or entry.status == "dropped":
        raise NotFoundError("Not participating in this challenge")
    entry.status = "dropped"
    if not _commit("leave challenge"):
        return jsonify({"message": "Failed to leave challenge"}), 500
    logger.info(f"User {user.id} left challenge {id}")
    return jsonify({"message": "Left challenge"}), 200


@app.route("/api/social/challenges/<int:id>/progress", methods=["PUT"])
@token_required
def update_challenge_progress(user, id):
    challenge = _challenge(id)
    entry = _participant(id, user.id)
    if entry is None:
        raise ForbiddenError("Not participating in this challenge")
    if entry.status == "dropped":
        raise ConflictError("You have left this challenge")
    data = get_json()
    score = number_in_range(data.get("score"), "score", low=0, required=True)
    progress_data = data.get("progress_data")
    if progress_data is not None and not isinstance(progress_data, dict):
        raise ValidationError("progress_data must be an object")
    completed_now = (entry.status == "active" and challenge.target_value is not None
                     and score >= challenge.target_value)
    entry.score = score
    if progress_data is not None:
        entry.progress_data = progress_data
    if completed_now:
        entry.status = "completed"
        entry.completed_at = utcnow()
    if not _commit("update challenge progress"):
        return jsonify({"message": "Failed to update progress"}), 500
    if completed_now:
        logger.info(f"User {user.id} completed challenge {id}")
        notify(user, "challenge", "Challenge completed", f"You completed {challenge.title}",
               {"challenge_id": id})
        publish_event(user.id, "challenge.completed", entry.to_dict())
    return jsonify(entry.to_dict()), 200


@app.route("/api/social/challenges/<int:id>/leaderboard", methods=["GET"])
@token_required
def challenge_leaderboard(user, id):
    challenge = _challenge(id)
    if not challenge.is_public and _participant(id, user.id) is None and challenge.creator_id != user.id:
        raise ForbiddenError("Unauthorized")
    entries = ChallengeParticipant.query.filter(ChallengeParticipant.challenge_id == id,
                                                ChallengeParticipant.status != "dropped") \
        .order_by(ChallengeParticipant.score.desc(), ChallengeParticipant.joined_at.asc(),
                  ChallengeParticipant.id.asc()).all()
    leaderboard = []
    for rank, entry in enumerate(entries, start=1):
        data = entry.to_dict()
        data["rank"] = rank
        leaderboard.append(data)
    return jsonify({"challenge_id": id, "leaderboard": leaderboard}), 200


@app.route("/api/social/feed", methods=["GET"])
@token_required
def social_feed(user):
    limit = int_in_range(request.args.get("limit", 20), "limit", 1, 100)
    friends = friend_ids(user.id)
    if not friends:
        return jsonify({"feed": []}), 200
    language = resolve_language(user)
    unlocks = UserBadge.query.filter(UserBadge.user_id.in_(friends)) \
        .order_by(UserBadge.unlocked_at.desc(), UserBadge.id.desc()).limit(limit).all()
    return jsonify({"feed": [{
        "type": "badge_unlocked",
        "user_id": unlock.user_id,
        "name": unlock.user.display_name,
        "badge": unlock.badge.to_dict(language),
        "timestamp": iso(unlock.unlocked_at),
    } for unlock in unlocks]}), 200
