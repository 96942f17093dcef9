import pathlib
import sqlite3
import sys
from datetime import date, datetime

import pytest

root = pathlib.Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

from clinic_queue import create_app
from clinic_queue.services.bootstrap import apply_schema
from clinic_queue.services.clock import FixedClock
from clinic_queue.services.database import db as raw_db
from clinic_queue.services.ledger import batch, insert_document
from clinic_queue.services.notifications import Notifier
from clinic_queue.services.records import (
    Appointment,
    BOOKED_VIA_ADVANCED,
    STATUS_PENDING,
    DayAvailability,
    Doctor,
    TimeRange,
    appointment_to_fields,
    doctor_to_fields,
    format_clock,
    format_day,
    parse_clock,
)

# A Monday.
DAY = date(2025, 3, 10)


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict]] = []

    def notify(self, patient_id, template_kind, payload) -> None:
        self.sent.append((patient_id, template_kind, dict(payload)))

    def kinds(self) -> list[str]:
        return [kind for _, kind, _ in self.sent]


def make_doctor(
    *,
    doctor_id: str = "doc-1",
    name: str = "Dr. Lina",
    sessions=(("09:00 AM", "12:00 PM"),),
    days=("Monday",),
    consulting: int | None = 15,
    leave=(),
    extensions=None,
    clinic_id: str | None = None,
    advance_booking_days: int | None = None,
) -> Doctor:
    windows = tuple(TimeRange(parse_clock(a), parse_clock(b)) for a, b in sessions)
    return Doctor(
        id=doctor_id,
        name=name,
        clinic_id=clinic_id,
        department="General",
        average_consulting_time=consulting,
        availability=tuple(DayAvailability(d, windows) for d in days),
        leave_slots=tuple(leave),
        availability_extensions=extensions or {},
        advance_booking_days=advance_booking_days,
    )


_counter = {"n": 0}


def make_appointment(
    at: str,
    *,
    day: date = DAY,
    doctor: str = "Dr. Lina",
    booked_via: str = BOOKED_VIA_ADVANCED,
    status: str = STATUS_PENDING,
    numeric_token: int | None = None,
    slot_index: int | None = None,
    is_skipped: bool = False,
    patient_id: str | None = None,
    **extra,
) -> Appointment:
    _counter["n"] += 1
    prefix = "W" if booked_via == "Walk-in" else "A"
    number = numeric_token if numeric_token is not None else _counter["n"]
    return Appointment(
        id=extra.pop("appt_id", f"appt-{_counter['n']}"),
        doctor=doctor,
        date=format_day(day),
        time=format_clock(parse_clock(at)),
        status=status,
        booked_via=booked_via,
        numeric_token=number,
        token_number=f"{prefix}{number:03d}",
        slot_index=slot_index,
        is_skipped=is_skipped,
        patient_id=patient_id,
        **extra,
    )


def store_doctor(conn, doctor: Doctor) -> None:
    with batch(conn):
        insert_document(conn, "doctors", doctor_to_fields(doctor))


def store_appointment(conn, appt: Appointment) -> None:
    with batch(conn):
        insert_document(conn, "appointments", appointment_to_fields(appt))


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    connection.row_factory = sqlite3.Row
    apply_schema(connection)
    yield connection
    connection.close()


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 3, 10, 9, 0))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(tmp_path, monkeypatch, clock, notifier):
    db_path = tmp_path / "queue.db"
    monkeypatch.setenv("CLINIC_DB_PATH", str(db_path))
    monkeypatch.setenv("CLINIC_SECRET_KEY", "test-secret")
    monkeypatch.setenv("CLINIC_AUTO_MIGRATE", "0")
    app = create_app()
    app.config.update(TESTING=True, WTF_CSRF_ENABLED=False)
    app.extensions["clock"] = clock
    app.extensions["notifier"] = notifier
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_conn(app):
    connection = raw_db()
    try:
        yield connection
    finally:
        connection.close()


@pytest.fixture
def seeded_doctor(app_conn):
    doctor = make_doctor()
    store_doctor(app_conn, doctor)
    return doctor
