"""Blueprint registration."""

from __future__ import annotations

from flask import Flask


def register_blueprints(app: Flask) -> None:
    from .appointments.routes import bp as appointments_bp
    from .doctors.routes import bp as doctors_bp

    app.register_blueprint(appointments_bp)
    app.register_blueprint(doctors_bp)
