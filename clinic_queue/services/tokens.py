"""Per doctor-day token numbering shared by both booking channels."""

from __future__ import annotations

from dataclasses import dataclass
import re
import sqlite3
from typing import Iterable

from .errors import ValidationFailed
from .records import Appointment, format_day, parse_day

CHANNEL_ADVANCED = "A"
CHANNEL_WALK_IN = "W"
CHANNELS = (CHANNEL_ADVANCED, CHANNEL_WALK_IN)

_TOKEN_RE = re.compile(r"^[AW](\d+)$")


@dataclass(frozen=True)
class TokenAssignment:
    token_number: str
    numeric_token: int


def token_label(channel: str, number: int) -> str:
    if channel not in CHANNELS:
        raise ValidationFailed("invalid_channel", channel)
    return f"{channel}{number:03d}"


def token_suffix(token_number: str | None) -> int | None:
    match = _TOKEN_RE.match(token_number or "")
    return int(match.group(1)) if match else None


def highest_numeric_token(appointments: Iterable[Appointment]) -> int:
    """Largest number already used that day, from either the numeric field or a prefixed label."""

    highest = 0
    for appt in appointments:
        if appt.numeric_token is not None:
            highest = max(highest, int(appt.numeric_token))
        suffix = token_suffix(appt.token_number)
        if suffix is not None:
            highest = max(highest, suffix)
    return highest


def peek_numeric_token(appointments: Iterable[Appointment]) -> int:
    """The number the next booking would receive; nothing is reserved."""
    return highest_numeric_token(appointments) + 1


def _ledger_high_water(conn: sqlite3.Connection, doctor: str, day_label: str) -> int:
    row = conn.execute(
        "SELECT COALESCE(MAX(numeric_token), 0) AS n FROM appointments WHERE doctor=? AND date=?",
        (doctor, day_label),
    ).fetchone()
    highest = int(row["n"] or 0)
    for label_row in conn.execute(
        "SELECT token_number FROM appointments WHERE doctor=? AND date=? AND token_number IS NOT NULL",
        (doctor, day_label),
    ):
        suffix = token_suffix(label_row["token_number"])
        if suffix is not None:
            highest = max(highest, suffix)
    return highest


def next_token(conn: sqlite3.Connection, doctor: str, day, channel: str) -> TokenAssignment:
    """Reserve the next number for ``doctor`` on ``day``.

    Must run inside :func:`ledger.batch`; the sequence row and the appointment
    insert then commit or roll back together. The row is seeded from whatever
    the ledger already holds so days written before the sequence table existed
    keep counting upward.
    """

    if channel not in CHANNELS:
        raise ValidationFailed("invalid_channel", channel)
    day_label = format_day(parse_day(day))
    row = conn.execute(
        "SELECT last_number FROM token_sequences WHERE doctor=? AND date=?",
        (doctor, day_label),
    ).fetchone()
    floor = _ledger_high_water(conn, doctor, day_label)
    if row is None:
        number = floor + 1
        conn.execute(
            "INSERT INTO token_sequences(doctor, date, last_number) VALUES (?, ?, ?)",
            (doctor, day_label, number),
        )
    else:
        number = max(int(row["last_number"]), floor) + 1
        conn.execute(
            "UPDATE token_sequences SET last_number=? WHERE doctor=? AND date=?",
            (number, doctor, day_label),
        )
    return TokenAssignment(token_label(channel, number), number)
