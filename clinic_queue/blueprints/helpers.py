"""Request-scoped helpers shared by the JSON blueprints."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date
import sqlite3
from typing import Iterator

from flask import current_app, request

from clinic_queue.services.audit import current_actor
from clinic_queue.services.clock import now
from clinic_queue.services.database import db
from clinic_queue.services.notifications import Notifier
from clinic_queue.services.records import parse_day
from clinic_queue.services.schedule import SchedulingPolicy


def policy() -> SchedulingPolicy:
    return SchedulingPolicy.from_config(current_app.config)


def notifier() -> Notifier | None:
    return current_app.extensions.get("notifier")


def actor() -> str | None:
    return current_actor()


def booking_rate_limit() -> str:
    return current_app.config.get("BOOKING_RATE_LIMIT", "60 per minute")


def requested_day(arg: str = "date") -> date:
    raw = (request.args.get(arg) or "").strip()
    return parse_day(raw) if raw else now().date()


@contextmanager
def connection() -> Iterator[sqlite3.Connection]:
    conn = db()
    try:
        yield conn
    finally:
        conn.close()
