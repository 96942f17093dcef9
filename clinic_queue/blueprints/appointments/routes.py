"""Booking ledger and front-desk actions as JSON endpoints."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from clinic_queue.blueprints.helpers import (
    actor,
    booking_rate_limit,
    connection,
    notifier,
    policy,
    requested_day,
)
from clinic_queue.extensions import limiter
from clinic_queue.forms.booking import AdvancedBookingForm, WalkInBookingForm, validated
from clinic_queue.services.appointments import (
    PatientDetails,
    book_advanced,
    book_walk_in,
    change_status,
    estimate_walk_in,
    queue_for_day,
    sweep_no_shows,
)
from clinic_queue.services.clock import now
from clinic_queue.services.doctors import get_doctor
from clinic_queue.services.errors import ValidationFailed
from clinic_queue.services.ledger import fetch_day

bp = Blueprint("appointments", __name__, url_prefix="/api")

_ACTIONS = {
    "confirm": "confirm",
    "complete": "complete",
    "cancel": "cancel",
    "no-show": "no_show",
    "skip": "skip",
    "unskip": "unskip",
    "call": "call",
}


def _patient_details(form: WalkInBookingForm) -> PatientDetails:
    return PatientDetails(
        patient_id=(form.patient_id.data or "").strip() or None,
        name=(form.patient_name.data or "").strip() or None,
        phone=(form.phone.data or "").strip() or None,
        age=form.age.data,
        sex=form.sex.data or None,
    )


@bp.get("/doctors/<doctor_id>/appointments")
def day_ledger(doctor_id: str):
    day = requested_day()
    statuses = [s for s in request.args.getlist("status") if s]
    with connection() as conn:
        doctor = get_doctor(conn, doctor_id)
        ledger = fetch_day(
            conn,
            doctor.name,
            day,
            booked_via=request.args.get("booked_via") or None,
            statuses=statuses or None,
        )
    return jsonify({"success": True, "appointments": [a.to_dict() for a in ledger]})


@bp.get("/doctors/<doctor_id>/walk-ins/estimate")
def walk_in_estimate(doctor_id: str):
    with connection() as conn:
        estimate = estimate_walk_in(conn, doctor_id, now=now(), policy=policy())
    return jsonify({"success": True, "estimate": estimate.to_dict()})


@bp.post("/doctors/<doctor_id>/walk-ins")
@limiter.limit(booking_rate_limit)
def create_walk_in(doctor_id: str):
    form = validated(WalkInBookingForm())
    with connection() as conn:
        result = book_walk_in(
            conn,
            doctor_id,
            _patient_details(form),
            now=now(),
            policy=policy(),
            notifier=notifier(),
            actor=actor(),
            treatment=form.treatment.data or None,
        )
    current_app.logger.info("Walk-in %s issued", result.appointment.token_number)
    return jsonify(result.to_dict()), 201


@bp.post("/doctors/<doctor_id>/appointments")
@limiter.limit(booking_rate_limit)
def create_advanced(doctor_id: str):
    form = validated(AdvancedBookingForm())
    with connection() as conn:
        result = book_advanced(
            conn,
            doctor_id,
            _patient_details(form),
            day=form.date.data,
            time_label=form.time.data,
            now=now(),
            policy=policy(),
            notifier=notifier(),
            actor=actor(),
            treatment=form.treatment.data or None,
        )
    current_app.logger.info("Advanced booking %s issued", result.appointment.token_number)
    return jsonify(result.to_dict()), 201


@bp.get("/doctors/<doctor_id>/queue")
def waiting_queue(doctor_id: str):
    with connection() as conn:
        queue = queue_for_day(conn, doctor_id, requested_day())
    return jsonify({"success": True, "queue": [a.to_dict() for a in queue]})


@bp.post("/appointments/<appt_id>/<action>")
def appointment_action(appt_id: str, action: str):
    key = _ACTIONS.get(action)
    if key is None:
        raise ValidationFailed("unknown_action", action)
    with connection() as conn:
        updated = change_status(conn, appt_id, key, notifier=notifier(), actor=actor())
    return jsonify({"success": True, "appointment": updated.to_dict()})


@bp.post("/appointments/sweep-no-shows")
def run_no_show_sweep():
    with connection() as conn:
        changed = sweep_no_shows(conn, now(), actor=actor())
    return jsonify({"success": True, "updated": changed})
