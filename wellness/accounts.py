import logging

import jwt
from flask import current_app, jsonify
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from . import app, db
from .auth import check_password, decode_token, generate_tokens, hash_password, token_required
from .billing import current_subscription
from .errors import ConflictError, ValidationError
from .models import User
from .security import rate_limited, record_audit
from .validation import EMAIL_RE, get_json, optional_text

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def _validate_password(password, field="password"):
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"{field} must be at least {MIN_PASSWORD_LENGTH} characters")
    return password


def _validate_language(language):
    supported = current_app.config["SUPPORTED_LANGUAGES"]
    if language not in supported:
        raise ValidationError(f"preferred_language must be one of: {', '.join(supported)}")
    return language


@app.route("/api/auth/register", methods=["POST"])
@rate_limited("auth")
def register():
    data = get_json()
    logger.debug(f"Register attempt for {data.get('email')}")
    email = data.get("email")
    if not isinstance(email, str) or not EMAIL_RE.match(email.strip()):
        raise ValidationError("A valid email is required")
    email = email.strip().lower()
    password = _validate_password(data.get("password"))
    language = data.get("preferred_language") or current_app.config["DEFAULT_LANGUAGE"]
    _validate_language(language)
    if User.query.filter_by(email=email).first():
        raise ConflictError("Email already exists")
    try:
        new_user = User(
            email=email,
            password=hash_password(password),
            first_name=optional_text(data, "first_name", 80),
            last_name=optional_text(data, "last_name", 80),
            timezone=optional_text(data, "timezone", 64) or "UTC",
            preferred_language=language,
        )
        db.session.add(new_user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email already exists")
    except SQLAlchemyError as e:
        logger.error(f"Database error registering user: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to register user"}), 500
    logger.info(f"User registered: {new_user.id}")
    record_audit("register", "user", user_id=new_user.id, resource_id=new_user.id)
    return jsonify({
        "message": "User registered",
        "user": new_user.to_dict(),
        "tokens": generate_tokens(new_user),
    }), 201


@app.route("/api/auth/login", methods=["POST"])
@rate_limited("auth")
def login():
    data = get_json()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        raise ValidationError("Email and password required")
    user = User.query.filter_by(email=email).first()
    if not user or not check_password(password, user.password):
        logger.error(f"Failed login for {email}")
        record_audit("login", "user", user_id=user.id if user else None,
                     details={"email": email}, severity="medium", success=False)
        return jsonify({"message": "Invalid credentials"}), 401
    logger.info(f"User {user.id} logged in")
    record_audit("login", "user", user_id=user.id, resource_id=user.id)
    return jsonify({
        "message": "Login successful",
        "user": user.to_dict(),
        "tokens": generate_tokens(user),
    }), 200


@app.route("/api/auth/refresh", methods=["POST"])
def refresh():
    token = get_json().get("refresh_token")
    if not token:
        raise ValidationError("refresh_token is required")
    try:
        payload = decode_token(token, token_type="refresh")
    except jwt.ExpiredSignatureError:
        logger.error("Refresh token expired")
        return jsonify({"message": "Refresh token expired"}), 401
    except jwt.InvalidTokenError:
        logger.error("Invalid refresh token")
        return jsonify({"message": "Invalid refresh token"}), 401
    user = db.session.get(User, payload.get("user_id"))
    if not user:
        return jsonify({"message": "Invalid refresh token"}), 401
    return jsonify({"message": "Token refreshed", "tokens": generate_tokens(user)}), 200


@app.route("/api/auth/logout", methods=["POST"])
@token_required
def logout(user):
    record_audit("logout", "user", user_id=user.id, resource_id=user.id)
    logger.info(f"User {user.id} logged out")
    return jsonify({"message": "Logged out"}), 200


@app.route("/api/auth/me", methods=["GET"])
@token_required
def me(user):
    current_subscription(user)
    return jsonify({"user": user.to_dict()}), 200


@app.route("/api/users/profile", methods=["PUT"])
@token_required
def update_profile(user):
    data = get_json()
    logger.debug(f"Update profile {user.id} payload: {data}")
    for field, max_length in (("first_name", 80), ("last_name", 80), ("timezone", 64)):
        if field in data:
            setattr(user, field, optional_text(data, field, max_length))
    if not user.timezone:
        user.timezone = "UTC"
    if "preferred_language" in data:
        user.preferred_language = _validate_language(data["preferred_language"])
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error updating profile: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to update profile"}), 500
    logger.info(f"Profile updated for user {user.id}")
    return jsonify({"message": "Profile updated", "user": user.to_dict()}), 200


@app.route("/api/users/password", methods=["PUT"])
@token_required
def change_password(user):
    data = get_json()
    current = data.get("current_password") or ""
    new_password = _validate_password(data.get("new_password"), "new_password")
    if not check_password(current, user.password):
        record_audit("password_change", "user", user_id=user.id, severity="high", success=False)
        return jsonify({"message": "Current password is incorrect"}), 401
    try:
        user.password = hash_password(new_password)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error changing password: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to change password"}), 500
    record_audit("password_change", "user", user_id=user.id, severity="high")
    logger.info(f"Password changed for user {user.id}")
    return jsonify({"message": "Password updated"}), 200


@app.route("/api/users/account", methods=["DELETE"])
@token_required
def delete_account(user):
    user_id = user.id
    try:
        db.session.delete(user)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Error deleting account {user_id}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to delete account"}), 500
    record_audit("account_delete", "user", resource_id=user_id, severity="high")
    logger.info(f"Account {user_id} deleted")
    return jsonify({"message": "Account deleted"}), 200
