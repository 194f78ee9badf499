"""
PBE Journey — Flask Web Application

Bible-trivia quiz platform for Pathfinder Bible Experience teams: quizzes,
study schedules, XP/levels/streaks/achievements, team analytics and billing.
"""

from __future__ import annotations

import hashlib
import logging
import os
from typing import Any

from flask import Flask, Response, jsonify, request as flask_request
from werkzeug.exceptions import HTTPException

import database
from auth import auth_bp, login_manager
from blueprints import register_blueprints
from extensions import csrf, limiter
from resilience import PBEError

logger = logging.getLogger(__name__)


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)

    # Load config
    from config import config_by_name
    if test_config is not None:
        app.config.from_object(config_by_name["testing"])
        app.config.update(test_config)
    else:
        env = os.environ.get("FLASK_ENV", "development")
        cfg = config_by_name.get(env, config_by_name["development"])
        app.config.from_object(cfg)
        if hasattr(cfg, "validate"):
            cfg.validate()

    app.secret_key = app.config.get("SECRET_KEY", os.environ.get("SECRET_KEY", "dev-key-change-in-production"))

    # CSRF protection (JSON clients send X-CSRFToken)
    csrf.init_app(app)

    # Structured logging
    from logging_config import init_logging
    init_logging(app)

    # Register database teardown
    database.init_app(app)

    # Rate limiter (global default disabled in testing; auth limits stay on)
    app.config.setdefault("RATELIMIT_DEFAULT", "200 per hour")
    limiter.init_app(app)
    if app.config.get("TESTING"):
        limiter.enabled = False

    from rate_limiting import init_rate_limiting
    init_rate_limiting(app)

    # Register auth blueprint and login manager
    app.register_blueprint(auth_bp)
    login_manager.init_app(app)

    # Register all application blueprints
    register_blueprints(app)

    # JSON error responses
    @app.errorhandler(PBEError)
    def handle_pbe_error(e: PBEError):
        if e.status_code >= 500:
            logger.error("Request failed: %s", e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(429)
    def handle_rate_limited(e):
        return jsonify({"error": "Too many requests. Please try again later."}), 429

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": e.description or e.name}), e.code

    # Security headers
    @app.after_request
    def set_security_headers(response: Response) -> Response:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    # ETag support for JSON GET responses
    @app.after_request
    def set_etag(response: Response) -> Response:
        if (
            flask_request.method == "GET"
            and response.status_code == 200
            and response.content_type
            and "application/json" in response.content_type
            and response.content_length
            and response.content_length < 1_048_576  # < 1 MB
        ):
            etag = '"' + hashlib.md5(response.get_data()).hexdigest() + '"'
            response.headers["ETag"] = etag
            if flask_request.headers.get("If-None-Match") == etag:
                response.status_code = 304
                response.set_data(b"")
        return response

    return app


if __name__ == "__main__":
    create_app().run(debug=True, port=5001)
