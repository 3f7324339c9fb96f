import logging

from flask import jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from . import app, db
from .models import iso, utcnow

logger = logging.getLogger(__name__)


@app.route("/api/status", methods=["GET"])
def service_status():
    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.error(f"Database unreachable: {str(e)}")
        db.session.rollback()
        database = "unavailable"
    healthy = database == "ok"
    return jsonify({
        "status": "ok" if healthy else "degraded",
        "database": database,
        "timestamp": iso(utcnow()),
    }), 200 if healthy else 503
