import re
from datetime import datetime, timezone

from flask import request

from .errors import ValidationError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def get_json():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def parse_datetime(value, field):
    """Parse an ISO-8601 string into a naive UTC datetime."""
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 date string")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date string")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def require_text(data, field, max_length=None):
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    value = value.strip()
    if max_length and len(value) > max_length:
        raise ValidationError(f"{field} must be {max_length} characters or fewer")
    return value


def optional_text(data, field, max_length=None):
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    if max_length and len(value) > max_length:
        raise ValidationError(f"{field} must be {max_length} characters or fewer")
    return value


def int_in_range(value, field, low, high, required=False):
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if number != value and not isinstance(value, str):
        raise ValidationError(f"{field} must be an integer")
    if number < low or number > high:
        raise ValidationError(f"{field} must be between {low} and {high}")
    return number


def number_in_range(value, field, low=None, high=None, required=False):
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} must be a number")
    if low is not None and value < low:
        raise ValidationError(f"{field} must be at least {low}")
    if high is not None and value > high:
        raise ValidationError(f"{field} must be at most {high}")
    return value


def choice(value, field, options, default=None):
    if value is None:
        return default
    if value not in options:
        raise ValidationError(f"{field} must be one of: {', '.join(str(o) for o in options)}")
    return value


def pagination(default_limit=50, max_limit=100):
    limit = int_in_range(request.args.get("limit", default_limit), "limit", 1, max_limit)
    offset = int_in_range(request.args.get("offset", 0), "offset", 0, 10 ** 9)
    return limit, offset


def date_range_args():
    start = parse_datetime(request.args.get("start"), "start")
    end = parse_datetime(request.args.get("end"), "end")
    if start and end and end < start:
        raise ValidationError("end must not be before start")
    return start, end
