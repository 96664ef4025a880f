# app.py

import asyncio
import logging
import threading
from dataclasses import replace

import bleach
from flask import Flask, jsonify, request
from flask_caching import Cache
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from .config import FusionWeights, IndexConfig, QueryConfig, configure_logging
from .errors import (
    ConfigError,
    EmbeddingFailed,
    IndexEmpty,
    IndexNotFound,
    InvalidLocation,
)
from .service import SiteQA

logger = logging.getLogger(__name__)


class LoopThread:
    """One asyncio loop in a daemon thread; Flask views submit coroutines to it."""

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self.loop.run_forever, name="siteqa-loop", daemon=True)
        self.thread.start()

    def run(self, coro, timeout=None):
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout)


def sanitize_query(query):
    """Sanitize user input to prevent XSS attacks."""
    return bleach.clean((query or "").strip(), tags=[], strip=True)


def _url_arg(source, name):
    # URLs are validated by sanitize_url; bleach would escape "&" in query strings
    value = source.get(name)
    if value is None:
        return None
    return str(value).strip() or None


def _int_arg(source, name, default=None):
    value = source.get(name)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer")


def _index_config(source) -> IndexConfig:
    config = IndexConfig()
    return replace(
        config,
        max_depth=_int_arg(source, "depth", config.max_depth),
        max_pages=_int_arg(source, "max_pages", config.max_pages),
        scope=_url_arg(source, "scope_prefix"),
    )


def _query_config(source, start_url=None) -> QueryConfig:
    defaults = QueryConfig()
    return QueryConfig(
        top_k=_int_arg(source, "top_k", defaults.top_k),
        weights=FusionWeights(),
        start_url=start_url,
        index=_index_config(source),
    )


def _question_and_scope(source):
    question = sanitize_query(source.get("question"))
    if not question:
        raise ConfigError("question must not be empty")
    start_url = _url_arg(source, "start_url")
    scope = _url_arg(source, "scope") or start_url
    if not scope:
        raise ConfigError("scope or start_url is required")
    return question, scope, start_url


def _error(exc, status, **extra):
    response = jsonify(
        {"ok": False, "error": type(exc).__name__, "message": str(exc), **extra}
    )
    response.status_code = status
    return response


def create_app(service: SiteQA = None, runner: LoopThread = None) -> Flask:
    app = Flask(__name__)
    service = service or SiteQA()
    runner = runner or LoopThread()

    # Configure cache
    cache = Cache(config={"CACHE_TYPE": "SimpleCache", "CACHE_DEFAULT_TIMEOUT": 300})
    cache.init_app(app)

    # Configure rate limiting
    limiter = Limiter(
        key_func=get_remote_address,
        app=app,
        storage_uri="memory://",
        default_limits=["200 per day", "50 per hour"],
    )

    app.extensions["siteqa"] = service

    @app.errorhandler(InvalidLocation)
    @app.errorhandler(ConfigError)
    def bad_request(exc):
        return _error(exc, 400)

    @app.errorhandler(IndexNotFound)
    def not_found(exc):
        return _error(exc, 404)

    @app.errorhandler(IndexEmpty)
    def empty_index(exc):
        if exc.summary is not None:
            return _error(exc, 409, summary=exc.summary.to_dict())
        return _error(exc, 409)

    @app.errorhandler(EmbeddingFailed)
    def embedding_failed(exc):
        return _error(exc, 502)

    @app.route("/api/index", methods=["POST"])
    @limiter.limit("5/minute")
    def index_site():
        body = request.get_json(silent=True) or {}
        url = _url_arg(body, "url") or ""
        config = _index_config(body)
        logger.info("Index request for %s", url)
        try:
            summary = runner.run(service.index_scope(url, config))
        finally:
            # answers cached for the old index are stale either way
            cache.clear()
        return jsonify({"ok": True, **summary.to_dict()})

    @app.route("/api/ask", methods=["GET"])
    @limiter.limit("30/minute")
    @cache.cached(query_string=True)
    def ask():
        # read-only: never crawls, so the response is safe to cache
        question, scope, _ = _question_and_scope(request.args)
        config = _query_config(request.args)
        answer = runner.run(service.answer_query(question, scope, config))
        return jsonify({"ok": True, **answer.to_dict()})

    @app.route("/api/ask", methods=["POST"])
    @limiter.limit("5/minute")
    def ask_and_index():
        body = request.get_json(silent=True) or {}
        question, scope, start_url = _question_and_scope(body)
        config = _query_config(body, start_url)
        try:
            answer = runner.run(service.answer_query(question, scope, config))
        finally:
            if start_url:
                cache.clear()
        return jsonify({"ok": True, **answer.to_dict()})

    @app.route("/api/scopes")
    def scopes():
        return jsonify(service.store.scopes())

    # HACK: for debug
    @app.route("/ping")
    def ping():
        return "pong"

    return app


if __name__ == "__main__":
    configure_logging()
    create_app().run(debug=True, use_reloader=False)
