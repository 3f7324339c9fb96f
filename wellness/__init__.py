import logging

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import APIError
from .models import db

logging.basicConfig(level=Config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config.from_object(Config)

CORS(app, resources={
    r"/api/*": {
        "origins": [app.config["FRONTEND_URL"], "http://localhost:3000"],
        "methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        "allow_headers": ["Authorization", "Content-Type", "Accept-Language"],
        "supports_credentials": True,
        "expose_headers": ["Authorization", "X-Connection-ID", "Retry-After",
                           "X-RateLimit-Limit", "X-RateLimit-Remaining"]
    }
})

db.init_app(app)
migrate = Migrate(app, db)


@app.errorhandler(APIError)
def handle_api_error(err):
    logger.debug(f"{request.method} {request.path} -> {err.status_code}: {err.message}")
    response = jsonify({"message": err.message})
    response.status_code = err.status_code
    for name, value in err.headers.items():
        response.headers[name] = value
    return response


@app.errorhandler(HTTPException)
def handle_http_error(err):
    if not request.path.startswith("/api/"):
        return err
    response = jsonify({"message": err.description or err.name})
    response.status_code = err.code
    return response


@app.errorhandler(500)
def handle_500(err):
    logger.exception("Unhandled server error")
    return jsonify({"message": "Internal server error"}), 500


from . import (  # noqa: E402,F401
    accounts, badges, billing, calendar_events, focus, habits, health, health_insights,
    localization, notifications, realtime, security, social, status, tasks,
)
from .badges import ensure_default_badges  # noqa: E402

with app.app_context():
    db.create_all()
    ensure_default_badges()
