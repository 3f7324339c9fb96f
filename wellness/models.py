from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso(value):
    return value.isoformat() + "Z" if value else None


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password = db.Column(db.String(120), nullable=False)
    first_name = db.Column(db.String(80))
    last_name = db.Column(db.String(80))
    timezone = db.Column(db.String(64), nullable=False, default="UTC")
    preferred_language = db.Column(db.String(8), nullable=False, default="en")
    role = db.Column(db.String(20), nullable=False, default="user")  # "user" or "admin"
    plan = db.Column(db.String(20), nullable=False, default="free")  # "free" or "premium"
    badge_points = db.Column(db.Integer, nullable=False, default=0)
    total_badges = db.Column(db.Integer, nullable=False, default=0)
    notification_preferences = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    tasks = db.relationship("Task", backref="user", lazy=True, cascade="all, delete-orphan")
    habits = db.relationship("Habit", backref="user", lazy=True, cascade="all, delete-orphan")
    habit_logs = db.relationship("HabitLog", backref="user", lazy=True, cascade="all, delete-orphan")
    health_logs = db.relationship("HealthLog", backref="user", lazy=True, cascade="all, delete-orphan")
    health_goals = db.relationship("HealthGoal", backref="user", lazy=True, cascade="all, delete-orphan")
    health_insights = db.relationship("HealthInsight", backref="user", lazy=True, cascade="all, delete-orphan")
    focus_sessions = db.relationship("FocusSession", backref="user", lazy=True, cascade="all, delete-orphan")
    calendar_events = db.relationship("CalendarEvent", backref="user", lazy=True, cascade="all, delete-orphan")
    badges = db.relationship("UserBadge", backref="user", lazy=True, cascade="all, delete-orphan")
    notifications = db.relationship("Notification", backref="user", lazy=True, cascade="all, delete-orphan")
    subscriptions = db.relationship("Subscription", backref="user", lazy=True, cascade="all, delete-orphan")
    challenges_created = db.relationship("Challenge", backref="creator", lazy=True, cascade="all, delete-orphan")
    challenge_entries = db.relationship("ChallengeParticipant", backref="user", lazy=True, cascade="all, delete-orphan")
    sent_connections = db.relationship(
        "UserConnection", foreign_keys="UserConnection.requester_id",
        backref="requester", lazy=True, cascade="all, delete-orphan"
    )
    received_connections = db.relationship(
        "UserConnection", foreign_keys="UserConnection.addressee_id",
        backref="addressee", lazy=True, cascade="all, delete-orphan"
    )

    @property
    def display_name(self):
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email.split("@")[0]

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "timezone": self.timezone,
            "preferred_language": self.preferred_language,
            "role": self.role,
            "plan": self.plan,
            "badge_points": self.badge_points,
            "total_badges": self.total_badges,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class Task(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    priority = db.Column(db.Integer, nullable=False, default=1)  # 1 (low) .. 4 (high)
    status = db.Column(db.String(20), nullable=False, default="pending")  # pending, done, archived
    due_date = db.Column(db.DateTime)
    estimated_duration = db.Column(db.Integer)  # minutes
    urgency = db.Column(db.Integer)
    importance = db.Column(db.Integer)
    completed_at = db.Column(db.DateTime)
    deleted_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "due_date": iso(self.due_date),
            "estimated_duration": self.estimated_duration,
            "urgency": self.urgency,
            "importance": self.importance,
            "completed_at": iso(self.completed_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class Habit(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    frequency = db.Column(db.String(50), nullable=False)  # e.g., "daily", "weekly"
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    logs = db.relationship("HabitLog", backref="habit", lazy=True, cascade="all, delete-orphan")


class HabitLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    habit_id = db.Column(db.Integer, db.ForeignKey("habit.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    completed_at = db.Column(db.DateTime, nullable=False)


class HealthLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    type = db.Column(db.String(20), nullable=False)  # exercise, nutrition, mood, hydration
    payload = db.Column(db.JSON, nullable=False, default=dict)
    source = db.Column(db.String(20), nullable=False, default="manual")
    recorded_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "source": self.source,
            "recorded_at": iso(self.recorded_at),
            "created_at": iso(self.created_at),
        }


class HealthGoal(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    goal_type = db.Column(db.String(30), nullable=False)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    target_value = db.Column(db.Float, nullable=False)
    target_unit = db.Column(db.String(20), nullable=False)
    current_value = db.Column(db.Float, nullable=False, default=0)
    target_date = db.Column(db.DateTime)
    status = db.Column(db.String(20), nullable=False, default="active")  # active, achieved
    achieved_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        progress = min(100.0, self.current_value / self.target_value * 100) if self.target_value else 0.0
        return {
            "id": self.id,
            "goal_type": self.goal_type,
            "title": self.title,
            "description": self.description,
            "target_value": self.target_value,
            "target_unit": self.target_unit,
            "current_value": self.current_value,
            "progress_percent": round(progress, 1),
            "target_date": iso(self.target_date),
            "status": self.status,
            "achieved_at": iso(self.achieved_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class HealthInsight(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    insight_type = db.Column(db.String(20), nullable=False)  # trend, correlation, recommendation
    category = db.Column(db.String(20), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    confidence_score = db.Column(db.Float, nullable=False, default=0.5)
    data_points = db.Column(db.JSON)
    action_items = db.Column(db.JSON)
    priority = db.Column(db.Integer, nullable=False, default=3)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "insight_type": self.insight_type,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "confidence_score": self.confidence_score,
            "data_points": self.data_points or [],
            "action_items": self.action_items or [],
            "priority": self.priority,
            "is_read": self.is_read,
            "created_at": iso(self.created_at),
        }

class FocusSession(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    task_id = db.Column(db.Integer, db.ForeignKey("task.id", ondelete="SET NULL"))
    session_type = db.Column(db.String(20), nullable=False)
    session_name = db.Column(db.String(100))
    planned_duration = db.Column(db.Integer, nullable=False)  # minutes
    actual_duration = db.Column(db.Integer)
    status = db.Column(db.String(20), nullable=False, default="active")  # active, completed, cancelled
    is_successful = db.Column(db.Boolean, nullable=False, default=False)
    mood_before = db.Column(db.Integer)
    mood_after = db.Column(db.Integer)
    energy_before = db.Column(db.Integer)
    energy_after = db.Column(db.Integer)
    focus_quality = db.Column(db.Integer)
    productivity_rating = db.Column(db.Integer)
    completed_task_count = db.Column(db.Integer, nullable=False, default=0)
    break_duration = db.Column(db.Integer, nullable=False, default=0)
    distraction_count = db.Column(db.Integer, nullable=False, default=0)
    tags = db.Column(db.JSON, nullable=False, default=list)
    notes = db.Column(db.Text)
    cancellation_reason = db.Column(db.String(200))
    started_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    ended_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    distractions = db.relationship("FocusDistraction", backref="session", lazy=True, cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "session_type": self.session_type,
            "session_name": self.session_name,
            "planned_duration": self.planned_duration,
            "actual_duration": self.actual_duration,
            "status": self.status,
            "is_successful": self.is_successful,
            "mood_before": self.mood_before,
            "mood_after": self.mood_after,
            "energy_before": self.energy_before,
            "energy_after": self.energy_after,
            "focus_quality": self.focus_quality,
            "productivity_rating": self.productivity_rating,
            "completed_task_count": self.completed_task_count,
            "break_duration": self.break_duration,
            "distraction_count": self.distraction_count,
            "tags": self.tags or [],
            "notes": self.notes,
            "cancellation_reason": self.cancellation_reason,
            "started_at": iso(self.started_at),
            "ended_at": iso(self.ended_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class FocusDistraction(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("focus_session.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    distraction_type = db.Column(db.String(30), nullable=False)
    source = db.Column(db.String(100))
    duration_seconds = db.Column(db.Integer)
    impact_level = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text)
    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "distraction_type": self.distraction_type,
            "source": self.source,
            "duration_seconds": self.duration_seconds,
            "impact_level": self.impact_level,
            "notes": self.notes,
            "occurred_at": iso(self.occurred_at),
        }


class CalendarEvent(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    location = db.Column(db.String(200))
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)
    source = db.Column(db.String(20), nullable=False, default="manual")
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "start": iso(self.start_time),
            "end": iso(self.end_time),
            "source": self.source,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class UserConnection(db.Model):
    __table_args__ = (db.UniqueConstraint("requester_id", "addressee_id"),)

    id = db.Column(db.Integer, primary_key=True)
    requester_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    addressee_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending")  # pending, accepted, blocked
    connection_type = db.Column(db.String(30), nullable=False, default="friend")
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def other_user(self, user_id):
        return self.addressee if self.requester_id == user_id else self.requester

    def to_dict(self, viewer_id=None):
        data = {
            "id": self.id,
            "requester_id": self.requester_id,
            "addressee_id": self.addressee_id,
            "status": self.status,
            "connection_type": self.connection_type,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if viewer_id is not None:
            other = self.other_user(viewer_id)
            data["user"] = {"id": other.id, "name": other.display_name}
        return data


class Challenge(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    creator_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    challenge_type = db.Column(db.String(30), nullable=False)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    max_participants = db.Column(db.Integer, nullable=False, default=10)
    is_public = db.Column(db.Boolean, nullable=False, default=True)
    target_value = db.Column(db.Float)
    reward_description = db.Column(db.String(200))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    participants = db.relationship("ChallengeParticipant", backref="challenge", lazy=True, cascade="all, delete-orphan")

    @property
    def active_participant_count(self):
        return sum(1 for p in self.participants if p.status != "dropped")

    def to_dict(self):
        return {
            "id": self.id,
            "creator_id": self.creator_id,
            "creator_name": self.creator.display_name,
            "title": self.title,
            "description": self.description,
            "challenge_type": self.challenge_type,
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "max_participants": self.max_participants,
            "participant_count": self.active_participant_count,
            "is_public": self.is_public,
            "target_value": self.target_value,
            "reward_description": self.reward_description,
            "created_at": iso(self.created_at),
        }


class ChallengeParticipant(db.Model):
    __table_args__ = (db.UniqueConstraint("challenge_id", "user_id"),)

    id = db.Column(db.Integer, primary_key=True)
    challenge_id = db.Column(db.Integer, db.ForeignKey("challenge.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="active")  # active, completed, dropped
    score = db.Column(db.Float, nullable=False, default=0)
    progress_data = db.Column(db.JSON)
    joined_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            "id": self.id,
            "challenge_id": self.challenge_id,
            "user_id": self.user_id,
            "name": self.user.display_name,
            "status": self.status,
            "score": self.score,
            "progress_data": self.progress_data,
            "joined_at": iso(self.joined_at),
            "completed_at": iso(self.completed_at),
        }


class BadgeDefinition(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(60), unique=True, nullable=False)
    category = db.Column(db.String(30), nullable=False)
    title_en = db.Column(db.String(100), nullable=False)
    title_de = db.Column(db.String(100))
    description_en = db.Column(db.String(255))
    description_de = db.Column(db.String(255))
    criteria = db.Column(db.JSON, nullable=False)
    points_awarded = db.Column(db.Integer, nullable=False, default=0)
    rarity = db.Column(db.String(20), nullable=False, default="common")
    icon_emoji = db.Column(db.String(16), nullable=False, default="\U0001F3C5")
    is_secret = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def title(self, language="en"):
        return (self.title_de if language == "de" else None) or self.title_en

    def description(self, language="en"):
        return (self.description_de if language == "de" else None) or self.description_en

    def to_dict(self, language="en"):
        return {
            "key": self.key,
            "category": self.category,
            "title": self.title(language),
            "description": self.description(language),
            "criteria": self.criteria,
            "points_awarded": self.points_awarded,
            "rarity": self.rarity,
            "icon_emoji": self.icon_emoji,
        }


class UserBadge(db.Model):
    __table_args__ = (db.UniqueConstraint("user_id", "badge_id"),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    badge_id = db.Column(db.Integer, db.ForeignKey("badge_definition.id"), nullable=False)
    unlocked_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    progress_percentage = db.Column(db.Integer, nullable=False, default=100)
    share_count = db.Column(db.Integer, nullable=False, default=0)
    badge = db.relationship("BadgeDefinition")
    shares = db.relationship("BadgeShare", backref="user_badge", lazy=True, cascade="all, delete-orphan")

    def to_dict(self, language="en"):
        data = self.badge.to_dict(language)
        data.update({
            "id": self.id,
            "unlocked_at": iso(self.unlocked_at),
            "share_count": self.share_count,
        })
        return data


class BadgeShare(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_badge_id = db.Column(db.Integer, db.ForeignKey("user_badge.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    platform = db.Column(db.String(20), nullable=False)
    share_url = db.Column(db.String(500), nullable=False)
    message = db.Column(db.String(500))
    shared_at = db.Column(db.DateTime, nullable=False, default=utcnow)


class Notification(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    category = db.Column(db.String(30), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    data = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    read_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            "id": self.id,
            "category": self.category,
            "title": self.title,
            "message": self.message,
            "data": self.data,
            "read": self.read_at is not None,
            "read_at": iso(self.read_at),
            "created_at": iso(self.created_at),
        }


class LocalizedContent(db.Model):
    __table_args__ = (db.UniqueConstraint("key", "language"),)

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(150), nullable=False)
    language = db.Column(db.String(8), nullable=False)
    content = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Subscription(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    plan_id = db.Column(db.String(40), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="active")  # active, canceled, past_due
    amount = db.Column(db.Integer, nullable=False)  # cents
    currency = db.Column(db.String(3), nullable=False, default="USD")
    current_period_start = db.Column(db.DateTime, nullable=False)
    current_period_end = db.Column(db.DateTime, nullable=False)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False)
    canceled_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "status": self.status,
            "amount": self.amount,
            "currency": self.currency,
            "current_period_start": iso(self.current_period_start),
            "current_period_end": iso(self.current_period_end),
            "cancel_at_period_end": self.cancel_at_period_end,
            "canceled_at": iso(self.canceled_at),
            "created_at": iso(self.created_at),
        }


class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="SET NULL"), index=True)
    action = db.Column(db.String(60), nullable=False)
    resource = db.Column(db.String(60), nullable=False)
    resource_id = db.Column(db.String(60))
    details = db.Column(db.JSON)
    severity = db.Column(db.String(10), nullable=False, default="low")
    success = db.Column(db.Boolean, nullable=False, default=True)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "resource": self.resource,
            "resource_id": self.resource_id,
            "details": self.details,
            "severity": self.severity,
            "success": self.success,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": iso(self.created_at),
        }
