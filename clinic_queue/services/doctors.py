"""Doctor lookups and availability edits."""

from __future__ import annotations

from datetime import date
import logging
import sqlite3
from typing import Any, Iterable, Mapping

from .audit import write_event
from .errors import ValidationFailed
from .leave import prune_orphans
from .ledger import fetch_day, get_document, merge_update, require_document
from .records import (
    Doctor,
    Extension,
    doctor_from_row,
    extensions_to_json,
    leave_to_json,
    parse_availability,
    parse_day,
)
from .schedule import DEFAULT_POLICY, SchedulingPolicy, generate_slot_grid

logger = logging.getLogger(__name__)


def get_doctor(conn: sqlite3.Connection, doctor_id: str) -> Doctor:
    return doctor_from_row(require_document(conn, "doctors", doctor_id))


def walk_in_allotment(conn: sqlite3.Connection, clinic_id: str | None, default: int) -> int:
    """Clinic override for the walk-in spacing buffer, else ``default``."""

    if not clinic_id:
        return default
    row = get_document(conn, "clinics", clinic_id)
    if row is None or row["walk_in_token_allotment"] is None:
        return default
    return int(row["walk_in_token_allotment"])


def save_schedule(
    conn: sqlite3.Connection,
    doctor_id: str,
    *,
    leave_slots: Iterable[Any] | None = None,
    extensions: Mapping[str, Extension] | None = None,
) -> None:
    fields: dict[str, Any] = {}
    if leave_slots is not None:
        fields["leave_slots"] = leave_to_json(leave_slots)
    if extensions is not None:
        fields["availability_extensions"] = extensions_to_json(extensions)
    merge_update(conn, "doctors", doctor_id, fields)


def reindex_day(
    conn: sqlite3.Connection,
    doctor: Doctor,
    day: date,
    policy: SchedulingPolicy = DEFAULT_POLICY,
) -> int:
    """Point each appointment on ``day`` at its slot in the doctor's current grid.

    Slot indices run across sessions, so extending or editing a session moves
    every later slot. Appointments whose time left the grid lose their index.
    Caller owns the transaction.
    """

    by_time = {slot.time: slot for slot in generate_slot_grid(doctor, day, policy)}
    moves: list[tuple[str, int | None, int | None]] = []
    for appt in fetch_day(conn, doctor.name, day):
        try:
            slot = by_time.get(appt.scheduled_at)
        except ValidationFailed:
            continue
        index = slot.index if slot else None
        session = slot.session_index if slot else None
        if (index, session) != (appt.slot_index, appt.session_index):
            moves.append((appt.id, index, session))
    # The partial unique index is checked per statement, so clear before reassigning.
    for appt_id, _, _ in moves:
        conn.execute("UPDATE appointments SET slot_index=NULL WHERE id=?", (appt_id,))
    for appt_id, index, session in moves:
        conn.execute(
            "UPDATE appointments SET slot_index=?, session_index=?, updated_at=datetime('now') WHERE id=?",
            (index, session, appt_id),
        )
    if moves:
        logger.info("Re-indexed %s appointment(s) for %s on %s", len(moves), doctor.name, day.isoformat())
    return len(moves)


def update_availability(
    conn: sqlite3.Connection,
    doctor_id: str,
    availability: Iterable[Mapping[str, Any]],
    *,
    average_consulting_time: int | None = None,
    min_consulting_minutes: int = 5,
    actor: str | None = None,
    policy: SchedulingPolicy = DEFAULT_POLICY,
) -> Doctor:
    """Replace the weekly template and drop leave markers it no longer covers.

    Booked appointments are re-indexed against the new grid. Caller owns the
    transaction (``ledger.batch``).
    """

    template = parse_availability(availability)
    if average_consulting_time is not None and average_consulting_time < min_consulting_minutes:
        raise ValidationFailed(
            "invalid_consulting_time",
            f"Consulting time must be at least {min_consulting_minutes} minutes",
        )
    current = get_doctor(conn, doctor_id)
    changes: dict[str, Any] = {"availability": template}
    if average_consulting_time is not None:
        changes["average_consulting_time"] = average_consulting_time
    updated = current.with_changes(**changes)
    kept = prune_orphans(updated)
    dropped = len(updated.leave_slots) - len(kept)
    updated = updated.with_changes(leave_slots=tuple(kept))

    fields: dict[str, Any] = {
        "availability_slots": [d.to_document() for d in template],
        "leave_slots": leave_to_json(kept),
    }
    if average_consulting_time is not None:
        fields["average_consulting_time"] = average_consulting_time
    merge_update(conn, "doctors", doctor_id, fields)
    moved = 0
    for row in conn.execute("SELECT DISTINCT date FROM appointments WHERE doctor=?", (current.name,)).fetchall():
        try:
            day = parse_day(row["date"])
        except ValidationFailed:
            continue
        moved += reindex_day(conn, updated, day, policy)
    write_event(
        conn,
        actor,
        "doctor_availability_update",
        entity="doctor",
        entity_id=doctor_id,
        meta={"days": [d.day for d in template], "pruned_leave": dropped, "reindexed": moved},
    )
    if dropped:
        logger.info("Pruned %s orphaned leave entries for %s", dropped, current.name)
    return updated
