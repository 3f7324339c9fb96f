import logging
from datetime import datetime, timedelta, timezone
from functools import wraps

import bcrypt
import jwt
from flask import current_app, g, jsonify, request

from .models import User, db

logger = logging.getLogger(__name__)


def hash_password(password):
    salt = bcrypt.gensalt(rounds=current_app.config["BCRYPT_ROUNDS"])
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def check_password(password, hashed):
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def _encode(user, token_type, lifetime, secret_key):
    now = datetime.now(timezone.utc)
    payload = {
        "user_id": user.id,
        "email": user.email,
        "role": user.role,
        "type": token_type,
        "iat": now,
        "exp": now + lifetime,
    }
    return jwt.encode(payload, current_app.config[secret_key], algorithm="HS256")


def generate_tokens(user):
    config = current_app.config
    access_lifetime = timedelta(minutes=config["JWT_ACCESS_TOKEN_MINUTES"])
    return {
        "access_token": _encode(user, "access", access_lifetime, "JWT_SECRET_KEY"),
        "refresh_token": _encode(
            user, "refresh", timedelta(days=config["JWT_REFRESH_TOKEN_DAYS"]), "JWT_REFRESH_SECRET_KEY"
        ),
        "token_type": "Bearer",
        "expires_in": int(access_lifetime.total_seconds()),
    }


def decode_token(token, token_type="access"):
    """Return the token payload, raising jwt.InvalidTokenError on any problem."""
    secret_key = "JWT_REFRESH_SECRET_KEY" if token_type == "refresh" else "JWT_SECRET_KEY"
    payload = jwt.decode(token, current_app.config[secret_key], algorithms=["HS256"])
    if payload.get("type") != token_type:
        raise jwt.InvalidTokenError(f"Expected a {token_type} token")
    return payload


def _bearer_token(allow_query):
    token = request.headers.get("Authorization")
    if token and token.startswith("Bearer "):
        return token[7:]
    if token:
        return token
    if allow_query:
        return request.args.get("token")
    return None


def _authenticate(f, allow_query):
    @wraps(f)
    def decorated(*args, **kwargs):
        token = _bearer_token(allow_query)
        if not token:
            logger.error("Token missing in request")
            return jsonify({"message": "Token required"}), 401
        try:
            payload = decode_token(token)
        except jwt.ExpiredSignatureError:
            logger.error("Token expired")
            return jsonify({"message": "Token expired"}), 401
        except jwt.InvalidTokenError:
            logger.error("Invalid token")
            return jsonify({"message": "Invalid token"}), 401
        user = db.session.get(User, payload.get("user_id"))
        if not user:
            logger.error("User not found for token")
            return jsonify({"message": "Invalid token"}), 401
        g.current_user = user
        return f(user, *args, **kwargs)
    return decorated


def token_required(f):
    return _authenticate(f, allow_query=False)


def stream_token_required(f):
    # EventSource cannot send headers, so the token may arrive as ?token=
    return _authenticate(f, allow_query=True)


def admin_required(f):
    @wraps(f)
    @token_required
    def decorated(user, *args, **kwargs):
        if user.role != "admin":
            logger.error(f"User {user.id} attempted an admin action")
            return jsonify({"message": "Admin access required"}), 403
        return f(user, *args, **kwargs)
    return decorated
