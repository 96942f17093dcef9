"""Database helpers backed by SQLAlchemy."""

from __future__ import annotations

import sqlite3

from clinic_queue.extensions import db as sa_db


def db() -> sqlite3.Connection:
    """Return a raw sqlite3 connection with PRAGMAs applied."""

    return sa_db.raw_connection()
