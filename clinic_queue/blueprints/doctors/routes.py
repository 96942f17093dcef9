"""Doctor schedule endpoints: slot grid, availability edits and breaks."""

from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from clinic_queue.blueprints.helpers import actor, connection, notifier, policy, requested_day
from clinic_queue.forms.booking import BreakCancelForm, BreakForm, validated
from clinic_queue.services.breaks import break_state, cancel_break, confirm_break, preview_break
from clinic_queue.services.clock import now
from clinic_queue.services.doctors import get_doctor, update_availability
from clinic_queue.services.errors import ValidationFailed
from clinic_queue.services.leave import break_intervals
from clinic_queue.services.ledger import batch, fetch_day
from clinic_queue.services.records import parse_clock
from clinic_queue.services.schedule import consulting_minutes
from clinic_queue.services.slot_status import slot_grid

bp = Blueprint("doctors", __name__, url_prefix="/api/doctors")


@bp.get("/<doctor_id>")
def doctor_detail(doctor_id: str):
    with connection() as conn:
        doctor = get_doctor(conn, doctor_id)
    return jsonify(
        {
            "success": True,
            "doctor": {
                "id": doctor.id,
                "name": doctor.name,
                "department": doctor.department,
                "average_consulting_time": consulting_minutes(doctor, policy()),
                "availability": [d.to_document() for d in doctor.availability],
                "advance_booking_days": doctor.advance_booking_days,
            },
        }
    )


@bp.put("/<doctor_id>/availability")
def edit_availability(doctor_id: str):
    payload = request.get_json(silent=True) or {}
    availability = payload.get("availability")
    if not isinstance(availability, list):
        raise ValidationFailed("availability_required", "Send availability as a list of weekday entries")
    consulting = payload.get("average_consulting_time")
    if consulting is not None and not isinstance(consulting, int):
        raise ValidationFailed("invalid_consulting_time", "Consulting time must be whole minutes")
    with connection() as conn:
        with batch(conn):
            doctor = update_availability(
                conn,
                doctor_id,
                availability,
                average_consulting_time=consulting,
                min_consulting_minutes=policy().min_consulting_minutes,
                actor=actor(),
                policy=policy(),
            )
    current_app.logger.info("Availability updated for %s", doctor.name)
    return jsonify(
        {
            "success": True,
            "availability": [d.to_document() for d in doctor.availability],
            "leave_slots": list(doctor.leave_slots),
        }
    )


@bp.get("/<doctor_id>/slots")
def day_slots(doctor_id: str):
    day = requested_day()
    with connection() as conn:
        doctor = get_doctor(conn, doctor_id)
        ledger = fetch_day(conn, doctor.name, day)
    views = slot_grid(doctor, day, ledger, policy())
    return jsonify({"success": True, "date": day.isoformat(), "slots": [v.to_dict() for v in views]})


@bp.get("/<doctor_id>/breaks")
def day_breaks(doctor_id: str):
    day = requested_day()
    with connection() as conn:
        doctor = get_doctor(conn, doctor_id)
    extension = doctor.extension_for(day)
    return jsonify(
        {
            "success": True,
            "state": break_state(doctor, day, policy()).value,
            "breaks": [i.to_dict() for i in break_intervals(doctor, day, policy())],
            "extension": extension.to_document() if extension else None,
        }
    )


@bp.post("/<doctor_id>/breaks/proposal")
def propose(doctor_id: str):
    form = validated(BreakForm())
    with connection() as conn:
        proposal = preview_break(
            conn,
            doctor_id,
            form.date.data,
            form.start_time.data,
            form.end_time.data,
            now=now(),
            policy=policy(),
        )
    return jsonify({"success": True, "proposal": proposal.to_dict()})


@bp.post("/<doctor_id>/breaks")
def confirm(doctor_id: str):
    form = validated(BreakForm())
    if not form.choice.data:
        raise ValidationFailed("choice_required", "Pick an extension option")
    with connection() as conn:
        delta = confirm_break(
            conn,
            doctor_id,
            form.date.data,
            form.start_time.data,
            form.end_time.data,
            form.choice.data,
            now=now(),
            policy=policy(),
            notifier=notifier(),
            actor=actor(),
        )
    return jsonify(delta.to_dict()), 201


@bp.post("/<doctor_id>/breaks/cancel")
def cancel(doctor_id: str):
    form = validated(BreakCancelForm())
    break_start = None
    if form.break_start.data:
        break_start = datetime.combine(form.date.data, parse_clock(form.break_start.data))
    with connection() as conn:
        delta = cancel_break(
            conn,
            doctor_id,
            form.date.data,
            now=now(),
            break_start=break_start,
            policy=policy(),
            notifier=notifier(),
            actor=actor(),
        )
    return jsonify(delta.to_dict())
