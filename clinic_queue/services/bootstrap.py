"""Bootstrap helper to ensure the queue tables exist for first-time runs."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterable

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS clinics (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        walk_in_token_allotment INTEGER NOT NULL DEFAULT 3,
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        updated_at TEXT NOT NULL DEFAULT (datetime('now')),
        CHECK(walk_in_token_allotment >= 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS doctors (
        id TEXT PRIMARY KEY,
        clinic_id TEXT,
        name TEXT NOT NULL UNIQUE,
        department TEXT,
        average_consulting_time INTEGER,
        availability_slots TEXT NOT NULL DEFAULT '[]',
        leave_slots TEXT NOT NULL DEFAULT '[]',
        availability_extensions TEXT NOT NULL DEFAULT '{}',
        advance_booking_days INTEGER,
        free_follow_up_days INTEGER,
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        updated_at TEXT NOT NULL DEFAULT (datetime('now')),
        FOREIGN KEY(clinic_id) REFERENCES clinics(id) ON DELETE SET NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS patients (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        phone TEXT,
        age INTEGER,
        sex TEXT,
        clinic_ids TEXT NOT NULL DEFAULT '[]',
        visit_history TEXT NOT NULL DEFAULT '[]',
        total_appointments INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        updated_at TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_patients_phone ON patients(phone)
    """,
    """
    CREATE TABLE IF NOT EXISTS appointments (
        id TEXT PRIMARY KEY,
        clinic_id TEXT,
        doctor TEXT NOT NULL,
        doctor_id TEXT,
        department TEXT,
        patient_id TEXT,
        patient_name TEXT,
        date TEXT NOT NULL,
        time TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'Pending',
        is_skipped INTEGER NOT NULL DEFAULT 0,
        booked_via TEXT NOT NULL,
        token_number TEXT,
        numeric_token INTEGER,
        slot_index INTEGER,
        session_index INTEGER,
        treatment TEXT,
        arrive_by TEXT,
        cut_off_time TEXT,
        no_show_time TEXT,
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        updated_at TEXT NOT NULL DEFAULT (datetime('now')),
        FOREIGN KEY(patient_id) REFERENCES patients(id) ON DELETE SET NULL,
        CHECK(status IN ('Pending','Confirmed','Completed','Cancelled','No-show')),
        CHECK(booked_via IN ('Advanced Booking','Walk-in'))
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_appointments_day ON appointments(doctor, date)
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_appointments_token
    ON appointments(doctor, date, numeric_token)
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_appointments_slot
    ON appointments(doctor, date, slot_index)
    WHERE status NOT IN ('Cancelled','No-show')
    """,
    """
    CREATE TABLE IF NOT EXISTS token_sequences (
        doctor TEXT NOT NULL,
        date TEXT NOT NULL,
        last_number INTEGER NOT NULL,
        PRIMARY KEY(doctor, date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications_outbox (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        patient_id TEXT NOT NULL,
        template_kind TEXT NOT NULL,
        payload_json TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        sent_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        actor TEXT,
        action TEXT NOT NULL,
        entity TEXT,
        entity_id TEXT,
        ts TEXT NOT NULL,
        result TEXT NOT NULL DEFAULT 'ok',
        meta_json_redacted TEXT NOT NULL DEFAULT '{}'
    )
    """,
]


def _execute_statements(conn: sqlite3.Connection, statements: Iterable[str]) -> None:
    for stmt in statements:
        conn.execute(stmt)


def apply_schema(conn: sqlite3.Connection) -> None:
    _execute_statements(conn, SCHEMA_STATEMENTS)
    conn.commit()


def ensure_base_tables(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA foreign_keys=ON")
    try:
        apply_schema(conn)
    finally:
        conn.close()
