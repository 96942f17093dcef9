"""Booking ledger reads and the small document-store surface the core writes through."""

from __future__ import annotations

from contextlib import contextmanager
import json
import re
import sqlite3
from typing import Any, Iterator, Mapping, Sequence

from .errors import LedgerConflict, NotFound, StoreUnavailable, ValidationFailed
from .records import Appointment, BOOKED_VIA, STATUSES, appointment_from_row, format_day, parse_day

DOCUMENT_TABLES = frozenset({"clinics", "doctors", "patients", "appointments"})
_COLUMN_RE = re.compile(r"^[a-z_][a-z0-9_]*$")
_ORDERINGS = {
    "numeric_token": "CASE WHEN numeric_token IS NULL THEN 1 ELSE 0 END, numeric_token ASC, created_at ASC",
    "slot_index": "CASE WHEN slot_index IS NULL THEN 1 ELSE 0 END, slot_index ASC, numeric_token ASC",
}


def _table(name: str) -> str:
    if name not in DOCUMENT_TABLES:
        raise ValueError(f"unknown table {name!r}")
    return name


def _column(name: str) -> str:
    if not _COLUMN_RE.match(name):
        raise ValueError(f"invalid column {name!r}")
    return name


def _encode(value: Any) -> Any:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, bool):
        return 1 if value else 0
    return value


@contextmanager
def batch(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a read-compute-write cycle under one write lock.

    ``BEGIN IMMEDIATE`` takes the reserved lock before the first read, so a
    second booking for the same doctor-day waits instead of reading a stale
    ledger. Unique-index violations surface as :class:`LedgerConflict`.
    """

    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.OperationalError as exc:
        raise StoreUnavailable(detail=str(exc)) from exc
    try:
        yield conn
        conn.commit()
    except sqlite3.IntegrityError as exc:
        conn.rollback()
        raise LedgerConflict(detail=str(exc)) from exc
    except sqlite3.OperationalError as exc:
        conn.rollback()
        raise StoreUnavailable(detail=str(exc)) from exc
    except Exception:
        conn.rollback()
        raise


def get_document(conn: sqlite3.Connection, table: str, doc_id: str) -> sqlite3.Row | None:
    return conn.execute(f"SELECT * FROM {_table(table)} WHERE id=?", (doc_id,)).fetchone()


def require_document(conn: sqlite3.Connection, table: str, doc_id: str) -> sqlite3.Row:
    row = get_document(conn, table, doc_id)
    if row is None:
        raise NotFound(f"{table[:-1]}_not_found", doc_id)
    return row


def insert_document(conn: sqlite3.Connection, table: str, fields: Mapping[str, Any]) -> None:
    columns = [_column(c) for c in fields]
    placeholders = ", ".join("?" for _ in columns)
    conn.execute(
        f"INSERT INTO {_table(table)}({', '.join(columns)}, created_at, updated_at) "
        f"VALUES ({placeholders}, datetime('now'), datetime('now'))",
        [_encode(fields[c]) for c in columns],
    )


def merge_update(conn: sqlite3.Connection, table: str, doc_id: str, fields: Mapping[str, Any]) -> None:
    """Overwrite only the given columns of one document."""

    if not fields:
        return
    assignments = ", ".join(f"{_column(c)}=?" for c in fields)
    cur = conn.execute(
        f"UPDATE {_table(table)} SET {assignments}, updated_at=datetime('now') WHERE id=?",
        [*(_encode(v) for v in fields.values()), doc_id],
    )
    if cur.rowcount == 0:
        raise NotFound(f"{table[:-1]}_not_found", doc_id)


def query_appointments(
    conn: sqlite3.Connection,
    *,
    doctor: str | None = None,
    day: Any = None,
    booked_via: str | None = None,
    statuses: Sequence[str] | None = None,
    clinic_id: str | None = None,
    patient_id: str | None = None,
    order_by: str = "numeric_token",
) -> list[Appointment]:
    """Equality/IN filters over the appointments table, ordered for ledger reads."""

    clauses: list[str] = []
    params: list[Any] = []
    if doctor is not None:
        clauses.append("doctor=?")
        params.append(doctor)
    if day is not None:
        clauses.append("date=?")
        params.append(format_day(parse_day(day)))
    if booked_via is not None:
        if booked_via not in BOOKED_VIA:
            raise ValidationFailed("invalid_channel", booked_via)
        clauses.append("booked_via=?")
        params.append(booked_via)
    if statuses:
        unknown = [s for s in statuses if s not in STATUSES]
        if unknown:
            raise ValidationFailed("invalid_status", ", ".join(unknown))
        clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
        params.extend(statuses)
    if clinic_id is not None:
        clauses.append("clinic_id=?")
        params.append(clinic_id)
    if patient_id is not None:
        clauses.append("patient_id=?")
        params.append(patient_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    ordering = _ORDERINGS.get(order_by)
    if ordering is None:
        raise ValidationFailed("invalid_ordering", order_by)
    rows = conn.execute(f"SELECT * FROM appointments {where} ORDER BY {ordering}", params).fetchall()
    return [appointment_from_row(row) for row in rows]


def fetch_day(
    conn: sqlite3.Connection,
    doctor: str,
    day: Any,
    *,
    booked_via: str | None = None,
    statuses: Sequence[str] | None = None,
) -> list[Appointment]:
    """One doctor's ledger for one date, in token order.

    Appointments reference the doctor by display name, so the name is the
    lookup key here as well.
    """

    return query_appointments(conn, doctor=doctor, day=day, booked_via=booked_via, statuses=statuses)


def get_appointment(conn: sqlite3.Connection, appt_id: str) -> Appointment:
    return appointment_from_row(require_document(conn, "appointments", appt_id))
