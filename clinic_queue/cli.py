"""Flask CLI commands for migrations and queue housekeeping."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import click
from alembic import command
from alembic.config import Config
from flask import current_app
from flask.cli import AppGroup, with_appcontext

from clinic_queue.services.appointments import sweep_no_shows
from clinic_queue.services.clock import now as clock_now
from clinic_queue.services.database import db as raw_db


def _alembic_config() -> Config:
    root = Path(current_app.root_path).parent
    cfg = Config(str(root / "alembic.ini"))
    cfg.set_main_option("script_location", str(root / "migrations"))
    cfg.set_main_option("sqlalchemy.url", current_app.config["SQLALCHEMY_DATABASE_URI"])
    cfg.attributes["configure_logger"] = False
    return cfg


def register_cli(app) -> None:
    db_group = AppGroup("db")

    @db_group.command("upgrade")
    @with_appcontext
    def upgrade() -> None:
        cfg = _alembic_config()
        command.upgrade(cfg, "head")

    app.cli.add_command(db_group)

    @app.cli.command("sweep-no-shows")
    @click.option(
        "--as-of",
        "as_of",
        default=None,
        help="Treat this ISO timestamp as 'now' (default: the app clock).",
    )
    @with_appcontext
    def sweep(as_of: str | None) -> None:
        """Mark past Pending appointments as No-show."""

        if as_of:
            try:
                moment = datetime.fromisoformat(as_of)
            except ValueError:
                raise click.BadParameter("Use an ISO timestamp like 2025-03-10T18:00", param_hint="--as-of")
        else:
            moment = clock_now()
        conn = raw_db()
        try:
            changed = sweep_no_shows(conn, moment, actor="cli")
        finally:
            conn.close()
        click.echo(f"Marked {changed} appointment(s) as No-show.")
