"""Clinic queue package exposing the Flask application factory."""

from __future__ import annotations

import os
from pathlib import Path

from flask import Flask, jsonify
from flask_limiter.errors import RateLimitExceeded
from flask_wtf.csrf import CSRFError
from werkzeug.exceptions import HTTPException

from .blueprints import register_blueprints
from .cli import register_cli
from .extensions import init_extensions
from .services.audit import audit_rate_limit
from .services.auto_migrate import auto_upgrade
from .services.bootstrap import ensure_base_tables
from .services.clock import SystemClock
from .services.database import db
from .services.errors import ClinicError, record_exception
from .services.notifications import LogNotifier, OutboxNotifier

APP_HOST = "127.0.0.1"
APP_PORT = 8080


def _data_root(base_dir: Path, override: Path | None = None) -> Path:
    root = override if override else base_dir / "data"
    root.mkdir(parents=True, exist_ok=True)
    (root / "logs").mkdir(parents=True, exist_ok=True)
    return root


def create_app(config: dict | None = None) -> Flask:
    project_root = Path(__file__).resolve().parent.parent
    db_override = os.getenv("CLINIC_DB_PATH")
    override_root = Path(db_override).parent if db_override else None
    data_root = _data_root(project_root, override_root)
    db_path = Path(db_override) if db_override else data_root / "queue.db"

    app = Flask(__name__)

    secret_key = os.getenv("CLINIC_SECRET_KEY")
    if not secret_key:
        secret_key = os.urandom(32)

    app.config.update(
        SECRET_KEY=secret_key,
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{db_path}",
        SQLALCHEMY_ENGINE_OPTIONS={"connect_args": {"check_same_thread": False}},
        RATELIMIT_STORAGE_URI=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
        DATA_ROOT=str(data_root),
        QUEUE_DB=str(db_path),
        WALK_IN_TOKEN_ALLOTMENT=int(os.getenv("WALK_IN_TOKEN_ALLOTMENT", "3")),
        DEFAULT_CONSULTING_MINUTES=int(os.getenv("DEFAULT_CONSULTING_MINUTES", "15")),
        MIN_CONSULTING_MINUTES=int(os.getenv("MIN_CONSULTING_MINUTES", "5")),
        WALK_IN_WINDOW_MINUTES=int(os.getenv("WALK_IN_WINDOW_MINUTES", "30")),
        BREAK_CANCEL_LEAD_MINUTES=int(os.getenv("BREAK_CANCEL_LEAD_MINUTES", "60")),
        ARRIVAL_GRACE_MINUTES=int(os.getenv("ARRIVAL_GRACE_MINUTES", "15")),
        BOOKING_RATE_LIMIT=os.getenv("BOOKING_RATE_LIMIT", "60 per minute"),
        NOTIFIER=os.getenv("CLINIC_NOTIFIER", "outbox"),
    )
    if config:
        app.config.update(config)

    init_extensions(app)
    register_blueprints(app)
    auto_upgrade(app)
    ensure_base_tables(Path(app.config["QUEUE_DB"]))
    register_cli(app)

    app.extensions.setdefault("clock", SystemClock())
    if app.config["NOTIFIER"] == "log":
        app.extensions.setdefault("notifier", LogNotifier())
    else:
        app.extensions.setdefault("notifier", OutboxNotifier(db))

    @app.errorhandler(ClinicError)
    def handle_clinic_error(e: ClinicError):
        if e.retryable:
            app.logger.warning("Retryable failure on %s: %s", e.code, e.detail or e.code)
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning("CSRF validation failed: %s", e.description)
        return jsonify({"success": False, "error": "csrf_failed", "retryable": False}), 400

    @app.errorhandler(RateLimitExceeded)
    def handle_rate_limit(e):
        audit_rate_limit("booking")
        return jsonify({"success": False, "error": "rate_limited", "retryable": True}), 429

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        if isinstance(e, HTTPException):
            return jsonify({"success": False, "error": e.name.lower().replace(" ", "_"), "retryable": False}), e.code
        record_exception("request", e)
        app.logger.exception("Unhandled error")
        return jsonify({"success": False, "error": "internal_error", "retryable": False}), 500

    return app


__all__ = ["create_app", "APP_HOST", "APP_PORT"]
