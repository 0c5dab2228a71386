"""Flask API for WebWatcher.

Run: python -m webwatcher.api
"""

import logging
import os
from typing import Callable, Dict, Optional

import redis as redis_lib
from flask import Flask, abort, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from .app.scanner import analyze_url, scan_url
from .config import Settings
from .context import ScanContext
from .db import IncidentStore
from .errors import InvalidInput
from .incidents import IncidentService
from .learning import FlagWeightLearning

logger = logging.getLogger("api")

ContextFactory = Callable[[Settings, Dict[str, int]], ScanContext]


def _default_context(settings: Settings, adjustments: Dict[str, int]) -> ScanContext:
    return ScanContext.default(settings=settings, flag_adjustments=adjustments)


def _make_limiter(app: Flask, settings: Settings) -> Limiter:
    # Rate limiter: prefer Redis storage in production when REDIS_URL is set
    if settings.redis_url:
        try:
            redis_lib.from_url(settings.redis_url).ping()
            logger.info("Using Redis at %s for rate limiting", settings.redis_url)
            return Limiter(app=app, key_func=get_remote_address,
                           default_limits=[settings.default_rate_limit], storage_uri=settings.redis_url)
        except redis_lib.RedisError:
            logger.exception("Failed to connect to Redis, falling back to in-memory limiter")
    return Limiter(app=app, key_func=get_remote_address, default_limits=[settings.default_rate_limit])


def create_app(settings: Optional[Settings] = None, context_factory: Optional[ContextFactory] = None,
               store: Optional[IncidentStore] = None) -> Flask:
    settings = settings or Settings.from_env()
    context_factory = context_factory or _default_context
    store = store or IncidentStore(settings.database_url)
    service = IncidentService(store, FlagWeightLearning(store), settings)

    app = Flask(__name__)
    app.config["WEBWATCHER_SERVICE"] = service
    limiter = _make_limiter(app, settings)
    if settings.api_key:
        logger.info("API key enabled")

    def require_api_key() -> None:
        if not settings.api_key:
            return
        key = request.headers.get("X-API-Key") or request.args.get("api_key")
        if not key or key != settings.api_key:
            abort(401, description="Invalid or missing API key")

    def json_body() -> dict:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise InvalidInput("expected a JSON object body")
        return data

    def required(data: dict, name: str) -> str:
        value = data.get(name)
        if not isinstance(value, str) or not value.strip():
            raise InvalidInput(f"missing '{name}' in JSON body", field=name)
        return value.strip()

    def new_context() -> ScanContext:
        return context_factory(settings, service.learning.adjustments())

    @app.errorhandler(InvalidInput)
    def invalid_input(e: InvalidInput):
        return jsonify({"error": e.code.value, "detail": str(e), "field": e.field}), 400

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok", "version": "1.0"})

    @app.route("/analyze", methods=["POST"])
    @limiter.limit(settings.scan_rate_limit)
    def analyze():
        require_api_key()
        data = json_body()
        results = analyze_url(required(data, "url"), new_context(), email=data.get("email"))
        return jsonify(results.to_dict())

    @app.route("/scan", methods=["POST"])
    @limiter.limit(settings.scan_rate_limit)
    def scan():
        require_api_key()
        data = json_body()
        metadata = {
            "user_agent": request.headers.get("User-Agent"),
            "source_ip": request.remote_addr,
            "user_id": data.get("user_id"),
        }
        outcome = scan_url(required(data, "url"), service, new_context(),
                           email=data.get("email"), metadata=metadata)
        return jsonify({
            "incident": outcome.incident.to_dict(),
            "risk": outcome.risk.to_dict(),
            "results": outcome.results.to_dict(),
        })

    @app.route("/feedback", methods=["POST"])
    @limiter.limit("20 per minute")
    def feedback():
        require_api_key()
        data = json_body()
        fb = service.submit_feedback(
            required(data, "url"),
            required(data, "feedback_type"),
            comment=data.get("comment"),
            incident_id=data.get("incident_id"),
            user_id=data.get("user_id"),
        )
        return jsonify(fb.to_dict()), 201

    @app.route("/feedback/stats", methods=["GET"])
    def feedback_stats():
        require_api_key()
        return jsonify(service.get_feedback_stats().to_dict())

    @app.route("/incidents", methods=["GET"])
    @limiter.limit("20 per minute")
    def incidents():
        require_api_key()
        try:
            limit = int(request.args.get("limit", 10))
        except ValueError:
            raise InvalidInput("limit must be integer", field="limit") from None
        limit = min(200, max(1, limit))
        rows = [r.to_dict() for r in service.get_recent_incidents(limit)]
        return jsonify({"count": len(rows), "incidents": rows})

    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_app().run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")))
