import logging
import threading
import time
from functools import wraps

from flask import current_app, jsonify, make_response, request
from sqlalchemy.exc import SQLAlchemyError

from . import app, db
from .auth import token_required
from .errors import ForbiddenError, RateLimitError
from .models import AuditLog
from .validation import choice, get_json, int_in_range, optional_text, pagination, require_text

logger = logging.getLogger(__name__)

SEVERITIES = ["low", "medium", "high", "critical"]


class RateLimiter:
    """Fixed-window request counter kept in process memory."""

    def __init__(self):
        self._buckets = {}
        self._lock = threading.Lock()

    def hit(self, key, limit, window_seconds):
        """Count one request. Returns (allowed, remaining, retry_after)."""
        now = time.time()
        with self._lock:
            window_start, count = self._buckets.get(key, (now, 0))
            if now - window_start >= window_seconds:
                window_start, count = now, 0
            if count >= limit:
                retry_after = int(max(1, window_seconds - (now - window_start)))
                return False, 0, retry_after
            count += 1
            self._buckets[key] = (window_start, count)
            return True, limit - count, 0

    def reset(self):
        with self._lock:
            self._buckets.clear()


limiter = RateLimiter()


def rate_limited(scope, limit_key="AUTH_RATE_LIMIT", window_key="AUTH_RATE_WINDOW"):
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            limit = current_app.config[limit_key]
            window = current_app.config[window_key]
            key = f"{scope}:{request.remote_addr}"
            allowed, remaining, retry_after = limiter.hit(key, limit, window)
            if not allowed:
                logger.error(f"Rate limit exceeded for {key}")
                raise RateLimitError("Too many requests, please try again later", headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                })
            response = make_response(f(*args, **kwargs))
            response.headers["X-RateLimit-Limit"] = str(limit)
            response.headers["X-RateLimit-Remaining"] = str(remaining)
            return response
        return decorated
    return decorator


def record_audit(action, resource, user_id=None, resource_id=None, details=None,
                 severity="low", success=True):
    try:
        entry = AuditLog(
            user_id=user_id,
            action=action,
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details,
            severity=severity,
            success=success,
            ip_address=request.remote_addr,
            user_agent=(request.headers.get("User-Agent") or "")[:255],
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except SQLAlchemyError as e:
        logger.error(f"Failed to write audit log {action} on {resource}: {str(e)}")
        db.session.rollback()
        return None


@app.after_request
def set_security_headers(response):
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    return response


@app.route("/api/security/audit", methods=["POST"])
@token_required
def create_audit_entry(user):
    data = get_json()
    action = require_text(data, "action", 60)
    resource = require_text(data, "resource", 60)
    severity = choice(data.get("severity"), "severity", SEVERITIES, default="low")
    resource_id = optional_text(data, "resource_id", 60)
    details = data.get("details")
    if details is not None and not isinstance(details, dict):
        return jsonify({"message": "details must be an object"}), 400
    entry = record_audit(action, resource, user_id=user.id, resource_id=resource_id,
                         details=details, severity=severity)
    if entry is None:
        return jsonify({"message": "Failed to record audit entry"}), 500
    logger.info(f"Audit entry {entry.id} recorded by user {user.id}: {action} {resource}")
    return jsonify(entry.to_dict()), 201


@app.route("/api/security/audit", methods=["GET"])
@token_required
def list_audit_entries(user):
    limit, offset = pagination()
    target_id = int_in_range(request.args.get("user_id"), "user_id", 1, 2 ** 31)
    if target_id is not None and target_id != user.id and user.role != "admin":
        raise ForbiddenError("Admin access required")
    query = AuditLog.query.filter_by(user_id=target_id or user.id)
    if request.args.get("action"):
        query = query.filter(AuditLog.action == request.args["action"])
    if request.args.get("severity"):
        query = query.filter(AuditLog.severity == choice(request.args["severity"], "severity", SEVERITIES))
    total = query.count()
    entries = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(offset).limit(limit).all()
    return jsonify({"logs": [entry.to_dict() for entry in entries], "total": total}), 200
