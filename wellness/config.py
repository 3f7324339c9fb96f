import os

from dotenv import load_dotenv

load_dotenv()


def _list(value):
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-jwt-secret")
    JWT_REFRESH_SECRET_KEY = os.getenv("JWT_REFRESH_SECRET_KEY", "dev-jwt-refresh-secret")
    JWT_ACCESS_TOKEN_MINUTES = int(os.getenv("JWT_ACCESS_TOKEN_MINUTES", 60))
    JWT_REFRESH_TOKEN_DAYS = int(os.getenv("JWT_REFRESH_TOKEN_DAYS", 30))
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///wellness.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")

    DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "en")
    SUPPORTED_LANGUAGES = _list(os.getenv("SUPPORTED_LANGUAGES", "en,de"))
    TRANSLATION_CACHE_TTL = int(os.getenv("TRANSLATION_CACHE_TTL", 24 * 60 * 60))

    AUTH_RATE_LIMIT = int(os.getenv("AUTH_RATE_LIMIT", 20))
    AUTH_RATE_WINDOW = int(os.getenv("AUTH_RATE_WINDOW", 5 * 60))

    SSE_HEARTBEAT_SECONDS = float(os.getenv("SSE_HEARTBEAT_SECONDS", 10))
    SSE_QUEUE_SIZE = int(os.getenv("SSE_QUEUE_SIZE", 100))

    SHARE_BASE_URL = os.getenv("SHARE_BASE_URL", "https://timeandwellness.app/shared-badge")
