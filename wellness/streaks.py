from datetime import timedelta

from .models import utcnow


def consecutive_days(timestamps, today=None):
    """Count consecutive calendar days with activity, ending today or yesterday."""
    days = sorted({stamp.date() for stamp in timestamps if stamp}, reverse=True)
    if not days:
        return 0
    today = today or utcnow().date()
    if days[0] < today - timedelta(days=1):
        return 0
    streak = 1
    for previous, current in zip(days, days[1:]):
        if (previous - current).days > 1:
            break
        streak += 1
    return streak
