"""Booking orchestration for both channels plus appointment status changes."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
import logging
import sqlite3
import uuid
from typing import Any

from .audit import write_event
from .doctors import get_doctor, walk_in_allotment
from .errors import (
    DoctorUnavailable,
    DuplicateBooking,
    InvalidTransition,
    OutsideBookingWindow,
    SlotUnavailable,
    ValidationFailed,
)
from .leave import break_intervals, derived_timestamps, in_break
from .ledger import batch, fetch_day, get_appointment, insert_document, merge_update
from .notifications import (
    APPOINTMENT_CANCELLED,
    APPOINTMENT_CONFIRMED,
    TOKEN_CALLED,
    Notifier,
    dispatch,
)
from .patients import record_visit, resolve_patient
from .records import (
    Appointment,
    BOOKED_VIA_ADVANCED,
    BOOKED_VIA_WALK_IN,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_NO_SHOW,
    STATUS_PENDING,
    Doctor,
    Patient,
    appointment_to_fields,
    format_clock,
    format_day,
    format_instant,
    parse_clock,
    parse_day,
)
from .schedule import DEFAULT_POLICY, SchedulingPolicy, generate_slot_grid, slot_at
from .tokens import CHANNEL_ADVANCED, CHANNEL_WALK_IN, next_token
from .walk_in import WalkInEstimate, compute_walk_in_estimate, ensure_walk_in_window

logger = logging.getLogger(__name__)

_WAITING = (STATUS_PENDING, STATUS_CONFIRMED)
TRANSITIONS: dict[str, tuple[tuple[str, ...], str]] = {
    "confirm": ((STATUS_PENDING,), STATUS_CONFIRMED),
    "complete": (_WAITING, STATUS_COMPLETED),
    "cancel": (_WAITING, STATUS_CANCELLED),
    "no_show": (_WAITING, STATUS_NO_SHOW),
}
FLAG_ACTIONS = ("skip", "unskip", "call")


@dataclass(frozen=True)
class PatientDetails:
    patient_id: str | None = None
    name: str | None = None
    phone: str | None = None
    age: int | None = None
    sex: str | None = None


@dataclass(frozen=True)
class BookingResult:
    appointment: Appointment
    patients_ahead: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = {"success": True, "appointment": self.appointment.to_dict()}
        if self.patients_ahead is not None:
            payload["patients_ahead"] = self.patients_ahead
        return payload


def _ensure_not_duplicate(ledger: list[Appointment], patient: Patient) -> None:
    for appt in ledger:
        if appt.patient_id == patient.id and appt.status in _WAITING:
            raise DuplicateBooking(detail=f"{patient.name} already holds token {appt.token_number}")


def _new_appointment(
    doctor: Doctor,
    patient: Patient,
    slot_time: datetime,
    *,
    slot_index: int,
    session_index: int,
    token_number: str,
    numeric_token: int,
    booked_via: str,
    status: str,
    treatment: str | None,
    policy: SchedulingPolicy,
) -> Appointment:
    arrive_by, cut_off, no_show = derived_timestamps(slot_time, timedelta(), policy)
    return Appointment(
        id=str(uuid.uuid4()),
        doctor=doctor.name,
        doctor_id=doctor.id,
        clinic_id=doctor.clinic_id,
        department=doctor.department,
        patient_id=patient.id,
        patient_name=patient.name,
        date=format_day(slot_time.date()),
        time=format_clock(slot_time),
        status=status,
        booked_via=booked_via,
        token_number=token_number,
        numeric_token=numeric_token,
        slot_index=slot_index,
        session_index=session_index,
        treatment=treatment,
        arrive_by=arrive_by,
        cut_off_time=cut_off,
        no_show_time=no_show,
    )


def _booking_payload(appt: Appointment) -> dict[str, Any]:
    return {
        "appointment_id": appt.id,
        "doctor": appt.doctor,
        "date": appt.date,
        "time": appt.time,
        "token_number": appt.token_number,
        "arrive_by": format_instant(appt.arrive_by),
    }


def estimate_walk_in(
    conn: sqlite3.Connection,
    doctor_id: str,
    *,
    now: datetime,
    policy: SchedulingPolicy = DEFAULT_POLICY,
) -> WalkInEstimate:
    """Preview the next walk-in placement without reserving anything."""

    doctor = get_doctor(conn, doctor_id)
    ensure_walk_in_window(doctor, now, policy)
    allotment = walk_in_allotment(conn, doctor.clinic_id, policy.walk_in_allotment)
    ledger = fetch_day(conn, doctor.name, now.date())
    return compute_walk_in_estimate(doctor, ledger, now, allotment, policy)


def book_walk_in(
    conn: sqlite3.Connection,
    doctor_id: str,
    details: PatientDetails,
    *,
    now: datetime,
    policy: SchedulingPolicy = DEFAULT_POLICY,
    notifier: Notifier | None = None,
    actor: str | None = None,
    treatment: str | None = None,
) -> BookingResult:
    """Place a walk-in and write it, re-reading the ledger under the write lock."""

    with batch(conn):
        doctor = get_doctor(conn, doctor_id)
        ensure_walk_in_window(doctor, now, policy)
        allotment = walk_in_allotment(conn, doctor.clinic_id, policy.walk_in_allotment)
        ledger = fetch_day(conn, doctor.name, now.date())
        estimate = compute_walk_in_estimate(doctor, ledger, now, allotment, policy)
        patient = resolve_patient(
            conn,
            patient_id=details.patient_id,
            name=details.name,
            phone=details.phone,
            age=details.age,
            sex=details.sex,
        )
        _ensure_not_duplicate(ledger, patient)
        token = next_token(conn, doctor.name, now.date(), CHANNEL_WALK_IN)
        appt = _new_appointment(
            doctor,
            patient,
            estimate.estimated_time,
            slot_index=estimate.slot_index,
            session_index=estimate.session_index,
            token_number=token.token_number,
            numeric_token=token.numeric_token,
            booked_via=BOOKED_VIA_WALK_IN,
            status=STATUS_CONFIRMED,
            treatment=treatment,
            policy=policy,
        )
        insert_document(conn, "appointments", appointment_to_fields(appt))
        record_visit(conn, patient, appt)
        write_event(
            conn,
            actor,
            "appointment_walk_in",
            entity="appointment",
            entity_id=appt.id,
            meta={"doctor": doctor.name, "token": appt.token_number, "slot_index": appt.slot_index},
        )
    logger.info("Walk-in %s booked for %s at %s", appt.token_number, doctor.name, appt.time)
    dispatch(notifier, appt.patient_id, APPOINTMENT_CONFIRMED, _booking_payload(appt))
    return BookingResult(appt, estimate.patients_ahead)


def book_advanced(
    conn: sqlite3.Connection,
    doctor_id: str,
    details: PatientDetails,
    *,
    day: date,
    time_label: str,
    now: datetime,
    policy: SchedulingPolicy = DEFAULT_POLICY,
    notifier: Notifier | None = None,
    actor: str | None = None,
    treatment: str | None = None,
) -> BookingResult:
    """Book a specific future slot through the advanced channel."""

    if not time_label:
        raise ValidationFailed("time_required", "Choose a slot")
    slot_clock = parse_clock(time_label)
    if day < now.date():
        raise OutsideBookingWindow("booking_date_in_past", day.isoformat())

    with batch(conn):
        doctor = get_doctor(conn, doctor_id)
        if doctor.advance_booking_days is not None and day > now.date() + timedelta(days=doctor.advance_booking_days):
            raise OutsideBookingWindow(
                "booking_date_beyond_window",
                f"{doctor.name} takes bookings up to {doctor.advance_booking_days} days ahead",
            )
        slots = generate_slot_grid(doctor, day, policy)
        if not slots:
            raise DoctorUnavailable(detail=f"{doctor.name} has no availability on {day.isoformat()}")
        target = datetime.combine(day, slot_clock)
        slot = slot_at(slots, target)
        if slot is None:
            raise SlotUnavailable("slot_not_in_schedule", format_clock(target))
        if target <= now:
            raise SlotUnavailable("slot_in_past", format_clock(target))
        if in_break(target, break_intervals(doctor, day, policy)):
            raise SlotUnavailable("slot_on_break", format_clock(target))
        ledger = fetch_day(conn, doctor.name, day)
        for appt in ledger:
            if not appt.is_active:
                continue
            try:
                taken = appt.scheduled_at == target
            except ValidationFailed:
                continue
            if taken:
                raise SlotUnavailable("slot_taken", format_clock(target))
        patient = resolve_patient(
            conn,
            patient_id=details.patient_id,
            name=details.name,
            phone=details.phone,
            age=details.age,
            sex=details.sex,
        )
        _ensure_not_duplicate(ledger, patient)
        token = next_token(conn, doctor.name, day, CHANNEL_ADVANCED)
        appt = _new_appointment(
            doctor,
            patient,
            target,
            slot_index=slot.index,
            session_index=slot.session_index,
            token_number=token.token_number,
            numeric_token=token.numeric_token,
            booked_via=BOOKED_VIA_ADVANCED,
            status=STATUS_PENDING,
            treatment=treatment,
            policy=policy,
        )
        insert_document(conn, "appointments", appointment_to_fields(appt))
        record_visit(conn, patient, appt)
        write_event(
            conn,
            actor,
            "appointment_advanced",
            entity="appointment",
            entity_id=appt.id,
            meta={"doctor": doctor.name, "token": appt.token_number, "date": appt.date, "time": appt.time},
        )
    logger.info("Advanced booking %s for %s on %s %s", appt.token_number, doctor.name, appt.date, appt.time)
    dispatch(notifier, appt.patient_id, APPOINTMENT_CONFIRMED, _booking_payload(appt))
    return BookingResult(appt)


def change_status(
    conn: sqlite3.Connection,
    appt_id: str,
    action: str,
    *,
    notifier: Notifier | None = None,
    actor: str | None = None,
) -> Appointment:
    """Apply a front-desk action (confirm, complete, cancel, no_show, skip, unskip, call)."""

    if action not in TRANSITIONS and action not in FLAG_ACTIONS:
        raise ValidationFailed("unknown_action", action)

    with batch(conn):
        appt = get_appointment(conn, appt_id)
        fields: dict[str, Any] = {}
        if action in TRANSITIONS:
            allowed, target = TRANSITIONS[action]
            if appt.status not in allowed:
                raise InvalidTransition(detail=f"Cannot {action} an appointment that is {appt.status}")
            fields["status"] = target
            if target not in _WAITING and appt.is_skipped:
                fields["is_skipped"] = False
        elif action == "skip":
            if appt.status not in _WAITING or appt.is_skipped:
                raise InvalidTransition(detail=f"Cannot skip an appointment that is {appt.status}")
            fields["is_skipped"] = True
        elif action == "unskip":
            if not appt.is_skipped:
                raise InvalidTransition(detail="Appointment is not skipped")
            fields["is_skipped"] = False
        elif action == "call":
            if appt.status not in _WAITING:
                raise InvalidTransition(detail=f"Cannot call an appointment that is {appt.status}")
        merge_update(conn, "appointments", appt_id, fields)
        write_event(
            conn,
            actor,
            f"appointment_{action}",
            entity="appointment",
            entity_id=appt_id,
            meta={"from": appt.status, "token": appt.token_number},
        )
        updated = replace(
            appt,
            status=fields.get("status", appt.status),
            is_skipped=bool(fields.get("is_skipped", appt.is_skipped)),
        )

    if action == "cancel":
        dispatch(notifier, updated.patient_id, APPOINTMENT_CANCELLED, _booking_payload(updated))
    elif action == "call":
        dispatch(notifier, updated.patient_id, TOKEN_CALLED, _booking_payload(updated))
    return updated


def sweep_no_shows(conn: sqlite3.Connection, now: datetime, *, actor: str | None = None) -> int:
    """Mark every past Pending appointment as No-show. Safe to run repeatedly."""

    changed = 0
    with batch(conn):
        rows = conn.execute("SELECT id, date, time FROM appointments WHERE status=?", (STATUS_PENDING,)).fetchall()
        for row in rows:
            try:
                scheduled = datetime.combine(parse_day(row["date"]), parse_clock(row["time"]))
            except ValidationFailed:
                logger.warning("Sweep skipped appointment %s with unreadable date/time", row["id"])
                continue
            if scheduled >= now:
                continue
            conn.execute(
                "UPDATE appointments SET status=?, is_skipped=0, updated_at=datetime('now') WHERE id=? AND status=?",
                (STATUS_NO_SHOW, row["id"], STATUS_PENDING),
            )
            changed += 1
        if changed:
            write_event(conn, actor, "no_show_sweep", meta={"count": changed, "as_of": format_instant(now)})
    return changed


def queue_for_day(conn: sqlite3.Connection, doctor_id: str, day: date) -> list[Appointment]:
    """Patients still waiting, in consulting order; skipped patients go last."""

    doctor = get_doctor(conn, doctor_id)
    waiting = [a for a in fetch_day(conn, doctor.name, day) if a.status in _WAITING]
    return sorted(waiting, key=lambda a: (a.is_skipped, a.arrive_by or a.scheduled_at, a.numeric_token or 0))
