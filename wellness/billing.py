import logging
from datetime import timedelta

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError

from . import app, db
from .auth import token_required
from .errors import ConflictError, NotFoundError, ValidationError
from .models import HealthLog, Subscription, Task, utcnow
from .notifications import notify
from .security import record_audit
from .validation import get_json

logger = logging.getLogger(__name__)

PLANS = [
    {"id": "basic_monthly", "name": "Basic Monthly",
     "description": "Essential features for personal productivity",
     "price": 999, "currency": "USD", "interval": "month",
     "features": ["Unlimited habits", "Basic health tracking", "Priority support", "Export data"]},
    {"id": "pro_monthly", "name": "Pro Monthly", "description": "Advanced features for power users",
     "price": 1999, "currency": "USD", "interval": "month",
     "features": ["All Basic features", "Unlimited tasks", "Advanced analytics", "Custom badges"]},
    {"id": "pro_yearly", "name": "Pro Yearly", "description": "Pro features with 2 months free",
     "price": 19990, "currency": "USD", "interval": "year",
     "features": ["All Pro features", "2 months free", "Premium support"]},
]
PLANS_BY_ID = {plan["id"]: plan for plan in PLANS}
INTERVAL_DAYS = {"month": 30, "year": 365}
UNLIMITED = -1
FREE_TASK_LIMIT = 100


def active_subscription(user):
    return Subscription.query.filter(
        Subscription.user_id == user.id,
        Subscription.status == "active",
        Subscription.current_period_end > utcnow(),
    ).order_by(Subscription.created_at.desc()).first()


def current_subscription(user):
    """Active subscription or None; a lapsed premium plan falls back to free."""
    subscription = active_subscription(user)
    if subscription is None and user.plan != "free":
        try:
            user.plan = "free"
            db.session.commit()
            logger.info(f"Subscription lapsed for user {user.id}, plan reset to free")
        except SQLAlchemyError as e:
            logger.error(f"Database error resetting plan for user {user.id}: {str(e)}")
            db.session.rollback()
    return subscription


def plan_limits(plan_id):
    pro = plan_id is not None and plan_id.startswith("pro")
    return {"tasks": UNLIMITED if pro else FREE_TASK_LIMIT, "health_logs": UNLIMITED}


@app.route("/api/billing/plans", methods=["GET"])
def list_plans():
    return jsonify({"plans": PLANS}), 200


@app.route("/api/billing/subscription", methods=["GET"])
@token_required
def get_subscription(user):
    subscription = current_subscription(user)
    return jsonify({
        "has_subscription": subscription is not None,
        "plan": user.plan,
        "subscription": subscription.to_dict() if subscription else None,
    }), 200


@app.route("/api/billing/subscribe", methods=["POST"])
@token_required
def create_subscription(user):
    plan = PLANS_BY_ID.get(get_json().get("plan_id"))
    if plan is None:
        raise ValidationError("Unknown plan")
    if active_subscription(user) is not None:
        raise ConflictError("You already have an active subscription")
    now = utcnow()
    subscription = Subscription(
        user_id=user.id,
        plan_id=plan["id"],
        amount=plan["price"],
        currency=plan["currency"],
        current_period_start=now,
        current_period_end=now + timedelta(days=INTERVAL_DAYS[plan["interval"]]),
    )
    try:
        db.session.add(subscription)
        user.plan = "premium"
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error creating subscription: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to create subscription"}), 500
    logger.info(f"User {user.id} subscribed to {plan['id']}")
    record_audit("subscribe", "subscription", user_id=user.id, resource_id=subscription.id,
                 details={"plan_id": plan["id"]}, severity="medium")
    notify(user, "billing", "Subscription active", f"Welcome to {plan['name']}",
           {"plan_id": plan["id"]})
    return jsonify({"message": "Subscription created", "subscription": subscription.to_dict()}), 201


@app.route("/api/billing/cancel", methods=["POST"])
@token_required
def cancel_subscription(user):
    subscription = active_subscription(user)
    if subscription is None:
        raise NotFoundError("No active subscription")
    try:
        subscription.status = "canceled"
        subscription.cancel_at_period_end = True
        subscription.canceled_at = utcnow()
        user.plan = "free"
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error canceling subscription {subscription.id}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to cancel subscription"}), 500
    logger.info(f"User {user.id} canceled subscription {subscription.id}")
    record_audit("cancel", "subscription", user_id=user.id, resource_id=subscription.id, severity="medium")
    return jsonify({"message": "Subscription canceled", "subscription": subscription.to_dict()}), 200


@app.route("/api/billing/history", methods=["GET"])
@token_required
def billing_history(user):
    subscriptions = Subscription.query.filter_by(user_id=user.id) \
        .order_by(Subscription.created_at.desc(), Subscription.id.desc()).all()
    return jsonify({"history": [s.to_dict() for s in subscriptions]}), 200


@app.route("/api/billing/usage", methods=["GET"])
@token_required
def billing_usage(user):
    subscription = current_subscription(user)
    if subscription is not None:
        period_start = subscription.current_period_start
        period_end = subscription.current_period_end
        plan_id = subscription.plan_id
    else:
        period_start = utcnow().replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        period_end = None
        plan_id = None
    tasks = Task.query.filter(Task.user_id == user.id, Task.created_at >= period_start).count()
    health_logs = HealthLog.query.filter(HealthLog.user_id == user.id,
                                         HealthLog.created_at >= period_start).count()
    return jsonify({
        "has_subscription": subscription is not None,
        "plan_id": plan_id,
        "period_start": period_start.isoformat() + "Z",
        "period_end": period_end.isoformat() + "Z" if period_end else None,
        "usage": {"tasks": tasks, "health_logs": health_logs},
        "limits": plan_limits(plan_id),
    }), 200
