"""Typed records for doctors, patients and appointments.

Rows are stored with JSON text columns for the nested documents
(availability, leave markers, extensions). Everything is parsed into the
dataclasses below at the store boundary so the scheduling code never has to
inspect loosely shaped dictionaries.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
import json
import sqlite3
from typing import Any, Iterable, Mapping

from .errors import ValidationFailed

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

DAY_FMT = "%d %B %Y"
CLOCK_FMT = "%I:%M %p"
ISO_FMT = "%Y-%m-%dT%H:%M:%S"

STATUS_PENDING = "Pending"
STATUS_CONFIRMED = "Confirmed"
STATUS_COMPLETED = "Completed"
STATUS_CANCELLED = "Cancelled"
STATUS_NO_SHOW = "No-show"
STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW)
# Statuses that release their slot back to the pool.
RELEASED_STATUSES = (STATUS_CANCELLED, STATUS_NO_SHOW)

BOOKED_VIA_ADVANCED = "Advanced Booking"
BOOKED_VIA_WALK_IN = "Walk-in"
BOOKED_VIA = (BOOKED_VIA_ADVANCED, BOOKED_VIA_WALK_IN)


def format_day(value: date) -> str:
    """Render a calendar date as ``5 March 2025``."""
    return f"{value.day} {value.strftime('%B %Y')}"


def parse_day(value: str | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = (value or "").strip()
    for fmt in (DAY_FMT, "%Y-%m-%d"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValidationFailed("invalid_date", f"Unrecognised date: {value!r}")


def format_clock(value: time | datetime) -> str:
    """Render a wall-clock time as ``09:00 AM``."""
    return value.strftime(CLOCK_FMT)


def parse_clock(value: str | time) -> time:
    if isinstance(value, time):
        return value
    text = (value or "").strip().upper()
    for fmt in (CLOCK_FMT, "%H:%M"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise ValidationFailed("invalid_time", f"Unrecognised time: {value!r}")


def parse_instant(value: str | None) -> datetime | None:
    """Parse a stored ISO instant into a naive local datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).strip())
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def format_instant(value: datetime | None) -> str | None:
    return value.strftime(ISO_FMT) if value else None


def weekday_name(value: date) -> str:
    return WEEKDAYS[value.weekday()]


def _load_json(raw: Any, default: Any) -> Any:
    if raw in (None, ""):
        return default
    if isinstance(raw, (list, dict)):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationFailed("corrupt_document", "Stored JSON column could not be parsed")


def _dump_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=False)


@dataclass(frozen=True)
class TimeRange:
    start: time
    end: time

    def to_document(self) -> dict[str, str]:
        return {"from": format_clock(self.start), "to": format_clock(self.end)}


@dataclass(frozen=True)
class DayAvailability:
    day: str
    sessions: tuple[TimeRange, ...]

    def to_document(self) -> dict[str, Any]:
        return {"day": self.day, "timeSlots": [s.to_document() for s in self.sessions]}


@dataclass(frozen=True)
class Extension:
    """A one-date push of a session end, created when a break overruns."""

    extended_by: int
    original_end: time
    new_end: time

    def to_document(self) -> dict[str, Any]:
        return {
            "extendedBy": self.extended_by,
            "originalEndTime": format_clock(self.original_end),
            "newEndTime": format_clock(self.new_end),
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Extension":
        try:
            return cls(
                extended_by=int(doc["extendedBy"]),
                original_end=parse_clock(doc["originalEndTime"]),
                new_end=parse_clock(doc["newEndTime"]),
            )
        except (KeyError, TypeError, ValueError):
            raise ValidationFailed("invalid_extension", "Malformed availability extension")


def parse_availability(docs: Iterable[Mapping[str, Any]] | None) -> tuple[DayAvailability, ...]:
    """Validate an availability document list into typed day templates."""

    result: list[DayAvailability] = []
    seen: set[str] = set()
    for entry in docs or []:
        if not isinstance(entry, Mapping):
            raise ValidationFailed("invalid_availability", "Availability entries must be objects")
        day = str(entry.get("day") or "").strip().title()
        if day not in WEEKDAYS:
            raise ValidationFailed("invalid_availability", f"Unknown weekday: {entry.get('day')!r}")
        if day in seen:
            raise ValidationFailed("invalid_availability", f"Duplicate weekday: {day}")
        seen.add(day)
        sessions: list[TimeRange] = []
        for slot in entry.get("timeSlots") or []:
            try:
                start = parse_clock(slot["from"])
                end = parse_clock(slot["to"])
            except (KeyError, TypeError):
                raise ValidationFailed("invalid_availability", "Session needs from/to")
            if end <= start:
                raise ValidationFailed("invalid_availability", f"Session on {day} ends before it starts")
            sessions.append(TimeRange(start, end))
        sessions.sort(key=lambda s: s.start)
        for earlier, later in zip(sessions, sessions[1:]):
            if later.start < earlier.end:
                raise ValidationFailed("invalid_availability", f"Overlapping sessions on {day}")
        result.append(DayAvailability(day, tuple(sessions)))
    return tuple(result)


@dataclass(frozen=True)
class Doctor:
    id: str
    name: str
    clinic_id: str | None = None
    department: str | None = None
    average_consulting_time: int | None = None
    availability: tuple[DayAvailability, ...] = ()
    leave_slots: tuple[Any, ...] = ()
    availability_extensions: Mapping[str, Extension] = field(default_factory=dict)
    advance_booking_days: int | None = None
    free_follow_up_days: int | None = None

    def sessions_for(self, day: date) -> tuple[TimeRange, ...]:
        name = weekday_name(day)
        for entry in self.availability:
            if entry.day == name:
                return entry.sessions
        return ()

    def extension_for(self, day: date) -> Extension | None:
        return self.availability_extensions.get(day.isoformat())

    def with_changes(self, **changes: Any) -> "Doctor":
        return replace(self, **changes)


@dataclass(frozen=True)
class Patient:
    id: str
    name: str
    phone: str | None = None
    age: int | None = None
    sex: str | None = None
    clinic_ids: tuple[str, ...] = ()
    visit_history: tuple[dict[str, Any], ...] = ()
    total_appointments: int = 0


@dataclass(frozen=True)
class Appointment:
    id: str
    doctor: str
    date: str
    time: str
    status: str = STATUS_PENDING
    booked_via: str = BOOKED_VIA_ADVANCED
    doctor_id: str | None = None
    clinic_id: str | None = None
    department: str | None = None
    patient_id: str | None = None
    patient_name: str | None = None
    token_number: str | None = None
    numeric_token: int | None = None
    slot_index: int | None = None
    session_index: int | None = None
    is_skipped: bool = False
    treatment: str | None = None
    arrive_by: datetime | None = None
    cut_off_time: datetime | None = None
    no_show_time: datetime | None = None
    created_at: str | None = None

    @property
    def day(self) -> date:
        return parse_day(self.date)

    @property
    def scheduled_at(self) -> datetime:
        return datetime.combine(self.day, parse_clock(self.time))

    @property
    def is_active(self) -> bool:
        """Still holds its slot (not cancelled and not a no-show)."""
        return self.status not in RELEASED_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "doctor": self.doctor,
            "doctor_id": self.doctor_id,
            "clinic_id": self.clinic_id,
            "department": self.department,
            "patient_id": self.patient_id,
            "patient_name": self.patient_name,
            "date": self.date,
            "time": self.time,
            "status": self.status,
            "is_skipped": self.is_skipped,
            "booked_via": self.booked_via,
            "token_number": self.token_number,
            "numeric_token": self.numeric_token,
            "slot_index": self.slot_index,
            "session_index": self.session_index,
            "treatment": self.treatment,
            "arrive_by": format_instant(self.arrive_by),
            "cut_off_time": format_instant(self.cut_off_time),
            "no_show_time": format_instant(self.no_show_time),
        }


def doctor_from_row(row: sqlite3.Row | Mapping[str, Any]) -> Doctor:
    data = dict(row)
    extensions = {
        str(key): Extension.from_document(doc)
        for key, doc in (_load_json(data.get("availability_extensions"), {}) or {}).items()
    }
    leave = _load_json(data.get("leave_slots"), [])
    if not isinstance(leave, list):
        raise ValidationFailed("corrupt_document", "leave_slots must be a list")
    return Doctor(
        id=data["id"],
        name=data["name"],
        clinic_id=data.get("clinic_id"),
        department=data.get("department"),
        average_consulting_time=data.get("average_consulting_time"),
        availability=parse_availability(_load_json(data.get("availability_slots"), [])),
        leave_slots=tuple(leave),
        availability_extensions=extensions,
        advance_booking_days=data.get("advance_booking_days"),
        free_follow_up_days=data.get("free_follow_up_days"),
    )


def doctor_to_fields(doctor: Doctor) -> dict[str, Any]:
    return {
        "id": doctor.id,
        "name": doctor.name,
        "clinic_id": doctor.clinic_id,
        "department": doctor.department,
        "average_consulting_time": doctor.average_consulting_time,
        "availability_slots": _dump_json([d.to_document() for d in doctor.availability]),
        "leave_slots": _dump_json(list(doctor.leave_slots)),
        "availability_extensions": extensions_to_json(doctor.availability_extensions),
        "advance_booking_days": doctor.advance_booking_days,
        "free_follow_up_days": doctor.free_follow_up_days,
    }


def extensions_to_json(extensions: Mapping[str, Extension]) -> str:
    return _dump_json({key: ext.to_document() for key, ext in extensions.items()})


def leave_to_json(leave_slots: Iterable[Any]) -> str:
    return _dump_json(list(leave_slots))


def patient_from_row(row: sqlite3.Row | Mapping[str, Any]) -> Patient:
    data = dict(row)
    return Patient(
        id=data["id"],
        name=data["name"],
        phone=data.get("phone"),
        age=data.get("age"),
        sex=data.get("sex"),
        clinic_ids=tuple(_load_json(data.get("clinic_ids"), [])),
        visit_history=tuple(_load_json(data.get("visit_history"), [])),
        total_appointments=int(data.get("total_appointments") or 0),
    )


def appointment_from_row(row: sqlite3.Row | Mapping[str, Any]) -> Appointment:
    data = dict(row)
    return Appointment(
        id=data["id"],
        doctor=data["doctor"],
        doctor_id=data.get("doctor_id"),
        clinic_id=data.get("clinic_id"),
        department=data.get("department"),
        patient_id=data.get("patient_id"),
        patient_name=data.get("patient_name"),
        date=data["date"],
        time=data["time"],
        status=data.get("status") or STATUS_PENDING,
        is_skipped=bool(data.get("is_skipped")),
        booked_via=data.get("booked_via") or BOOKED_VIA_ADVANCED,
        token_number=data.get("token_number"),
        numeric_token=data.get("numeric_token"),
        slot_index=data.get("slot_index"),
        session_index=data.get("session_index"),
        treatment=data.get("treatment"),
        arrive_by=parse_instant(data.get("arrive_by")),
        cut_off_time=parse_instant(data.get("cut_off_time")),
        no_show_time=parse_instant(data.get("no_show_time")),
        created_at=data.get("created_at"),
    )


def appointment_to_fields(appt: Appointment) -> dict[str, Any]:
    fields = appt.to_dict()
    fields["is_skipped"] = 1 if appt.is_skipped else 0
    return fields
