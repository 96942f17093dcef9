"""Patient helpers shared by both booking channels."""

from __future__ import annotations

import re
import sqlite3
import uuid
from typing import Optional

from .errors import ValidationFailed
from .ledger import insert_document, merge_update, require_document
from .records import Appointment, Patient, patient_from_row

PHONE_RE = re.compile(r"^\+\d{8,15}$")


def normalize_name(s: str) -> str:
    return re.sub(r"\s+", " ", (s or "").strip().lower())


def normalize_phone(raw: str | None) -> str | None:
    if raw is None:
        return None
    phone = re.sub(r"[\s\-()]", "", str(raw))
    if not phone:
        return None
    if not PHONE_RE.match(phone):
        raise ValidationFailed("invalid_phone", "Phone numbers need a leading + and 8-15 digits")
    return phone


def find_by_phone(conn: sqlite3.Connection, phone: str, name: str) -> Optional[Patient]:
    n = normalize_name(name)
    for row in conn.execute("SELECT * FROM patients WHERE phone=? ORDER BY created_at", (phone,)):
        if normalize_name(row["name"]) == n:
            return patient_from_row(row)
    return None


def resolve_patient(
    conn: sqlite3.Connection,
    *,
    patient_id: str | None = None,
    name: str | None = None,
    phone: str | None = None,
    age: int | None = None,
    sex: str | None = None,
) -> Patient:
    """Load, update or register the patient a booking is for.

    Runs inside the booking batch so the patient write and the appointment
    insert land together.
    """

    phone = normalize_phone(phone)
    name = re.sub(r"\s+", " ", (name or "").strip())
    changes: dict[str, object] = {}
    if patient_id:
        existing = patient_from_row(require_document(conn, "patients", patient_id))
        if name and name != existing.name:
            changes["name"] = name
        if phone and phone != existing.phone:
            changes["phone"] = phone
        if age is not None and age != existing.age:
            changes["age"] = age
        if sex and sex != existing.sex:
            changes["sex"] = sex
        if changes:
            merge_update(conn, "patients", patient_id, changes)
            return patient_from_row(require_document(conn, "patients", patient_id))
        return existing

    if not name:
        raise ValidationFailed("patient_name_required", "A patient name or id is required")
    if phone:
        match = find_by_phone(conn, phone, name)
        if match is not None:
            return match
    new_id = str(uuid.uuid4())
    insert_document(
        conn,
        "patients",
        {"id": new_id, "name": name, "phone": phone, "age": age, "sex": sex},
    )
    return patient_from_row(require_document(conn, "patients", new_id))


def record_visit(conn: sqlite3.Connection, patient: Patient, appt: Appointment) -> None:
    history = list(patient.visit_history)
    if not any(isinstance(v, dict) and v.get("appointmentId") == appt.id for v in history):
        history.append(
            {
                "appointmentId": appt.id,
                "date": appt.date,
                "time": appt.time,
                "doctor": appt.doctor,
                "department": appt.department,
                "status": appt.status,
                "treatment": appt.treatment,
            }
        )
    clinics = list(patient.clinic_ids)
    if appt.clinic_id and appt.clinic_id not in clinics:
        clinics.append(appt.clinic_id)
    merge_update(
        conn,
        "patients",
        patient.id,
        {
            "visit_history": history,
            "clinic_ids": clinics,
            "total_appointments": patient.total_appointments + 1,
        },
    )
