import logging
import threading
import time

from flask import current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from . import app, db
from .auth import admin_required
from .errors import NotFoundError, ValidationError
from .models import LocalizedContent
from .validation import get_json, require_text

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {"en": "English", "de": "Deutsch"}


class TranslationCache:
    """Per-language dictionaries that expire after ``ttl`` seconds."""

    def __init__(self, ttl, clock=time.time):
        self.ttl = ttl
        self._clock = clock
        self._entries = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, language):
        with self._lock:
            entry = self._entries.get(language)
            if entry is None:
                self.misses += 1
                return None
            loaded_at, translations = entry
            if self._clock() - loaded_at > self.ttl:
                del self._entries[language]
                self.misses += 1
                return None
            self.hits += 1
            return translations

    def set(self, language, translations):
        with self._lock:
            self._entries[language] = (self._clock(), dict(translations))

    def invalidate(self, language=None):
        with self._lock:
            if language is None:
                self._entries.clear()
            else:
                self._entries.pop(language, None)

    def clear(self):
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def stats(self):
        with self._lock:
            total = self.hits + self.misses
            return {
                "languages": sorted(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / total, 3) if total else 0.0,
            }


cache = TranslationCache(app.config["TRANSLATION_CACHE_TTL"])


def load_translations(language):
    translations = cache.get(language)
    if translations is not None:
        return translations
    rows = LocalizedContent.query.filter_by(language=language).all()
    translations = {row.key: row.content for row in rows}
    cache.set(language, translations)
    logger.debug(f"Loaded {len(translations)} translations for {language}")
    return translations


def translate(key, language=None, default=None):
    """Look a key up in the requested language, then the default language.

    Falls back to ``default`` and finally to the key itself.
    """
    default_language = current_app.config["DEFAULT_LANGUAGE"]
    language = language or default_language
    value = load_translations(language).get(key)
    if value is None and language != default_language:
        value = load_translations(default_language).get(key)
    if value is None:
        value = default if default is not None else key
    return value


def resolve_language(user=None):
    supported = current_app.config["SUPPORTED_LANGUAGES"]
    requested = request.args.get("language")
    if requested in supported:
        return requested
    if user is not None and user.preferred_language in supported:
        return user.preferred_language
    best = request.accept_languages.best_match(supported)
    return best or current_app.config["DEFAULT_LANGUAGE"]


def _supported(language):
    supported = current_app.config["SUPPORTED_LANGUAGES"]
    if language not in supported:
        raise ValidationError(f"language must be one of: {', '.join(supported)}")
    return language


@app.route("/api/localization/languages", methods=["GET"])
def list_languages():
    return jsonify({
        "languages": [
            {"code": code, "name": LANGUAGE_NAMES.get(code, code)}
            for code in current_app.config["SUPPORTED_LANGUAGES"]
        ],
        "default": current_app.config["DEFAULT_LANGUAGE"],
    }), 200


@app.route("/api/localization/content", methods=["GET"])
def get_content():
    language = resolve_language()
    content = dict(load_translations(current_app.config["DEFAULT_LANGUAGE"]))
    content.update(load_translations(language))
    return jsonify({"language": language, "content": content}), 200


@app.route("/api/localization/content/<key>", methods=["GET"])
def get_content_key(key):
    language = resolve_language()
    value = translate(key, language, default="")
    if value == "":
        raise NotFoundError("Content not found")
    translated = key in load_translations(language)
    return jsonify({"key": key, "language": language, "content": value,
                    "fallback": not translated}), 200


@app.route("/api/localization/content/<key>", methods=["PUT"])
@admin_required
def put_content_key(user, key):
    data = get_json()
    language = _supported(data.get("language") or current_app.config["DEFAULT_LANGUAGE"])
    content = require_text(data, "content")
    try:
        row = LocalizedContent.query.filter_by(key=key, language=language).first()
        if row is None:
            row = LocalizedContent(key=key, language=language, content=content)
            db.session.add(row)
        else:
            row.content = content
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error saving content {key}/{language}: {str(e)}")
        db.session.rollback()
        return jsonify({"message": "Failed to save content"}), 500
    cache.invalidate(language)
    logger.info(f"Content {key}/{language} updated by admin {user.id}")
    return jsonify({"key": key, "language": language, "content": row.content}), 200
