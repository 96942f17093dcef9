import json

from clinic_queue.services.ledger import fetch_day

from conftest import DAY


def _walk_in(client, doctor_id="doc-1", **overrides):
    data = {"patient_name": "Sara Ali", "phone": "+15551230001", "age": "34", "sex": "Female"}
    data.update(overrides)
    return client.post(f"/api/doctors/{doctor_id}/walk-ins", data=data)


def _advanced(client, time_label, doctor_id="doc-1", **overrides):
    data = {
        "patient_name": "Omar Haddad",
        "phone": "+15551239999",
        "date": DAY.isoformat(),
        "time": time_label,
    }
    data.update(overrides)
    return client.post(f"/api/doctors/{doctor_id}/appointments", data=data)


def test_two_walk_ins_take_the_first_two_slots(client, seeded_doctor):
    first = _walk_in(client)
    second = _walk_in(client, patient_name="Nadia Karim", phone="+15551230002")
    assert first.status_code == 201, first.get_json()
    assert second.status_code == 201, second.get_json()
    a = first.get_json()["appointment"]
    b = second.get_json()["appointment"]
    assert (a["slot_index"], a["time"], a["token_number"]) == (0, "09:00 AM", "W001")
    assert (b["slot_index"], b["time"], b["token_number"]) == (1, "09:15 AM", "W002")
    assert a["status"] == "Confirmed" and a["booked_via"] == "Walk-in"


def test_walk_in_estimate_does_not_reserve(client, seeded_doctor):
    first = client.get("/api/doctors/doc-1/walk-ins/estimate").get_json()
    again = client.get("/api/doctors/doc-1/walk-ins/estimate").get_json()
    assert first == again
    assert first["estimate"]["numeric_token"] == 1


def test_advanced_booking_is_pending_with_a_prefixed_token(client, seeded_doctor, notifier):
    resp = _advanced(client, "10:00 AM")
    assert resp.status_code == 201, resp.get_json()
    appt = resp.get_json()["appointment"]
    assert appt["token_number"] == "A001"
    assert appt["status"] == "Pending"
    assert appt["slot_index"] == 4
    assert appt["arrive_by"] == "2025-03-10T10:00:00"
    assert appt["cut_off_time"] == "2025-03-10T09:45:00"
    assert notifier.kinds() == ["appointment_confirmed"]


def test_tokens_count_up_across_channels(client, seeded_doctor, app_conn):
    _advanced(client, "11:00 AM")
    _walk_in(client)
    _advanced(client, "11:15 AM", patient_name="Rami Saad", phone="+15551230003")
    _walk_in(client, patient_name="Nadia Karim", phone="+15551230002")
    ledger = fetch_day(app_conn, seeded_doctor.name, DAY)
    assert sorted(a.numeric_token for a in ledger) == [1, 2, 3, 4]
    assert [a.token_number for a in ledger] == ["A001", "W002", "A003", "W004"]


def test_same_slot_cannot_be_booked_twice(client, seeded_doctor):
    assert _advanced(client, "10:30 AM").status_code == 201
    resp = _advanced(client, "10:30 AM", patient_name="Rami Saad", phone="+15551230003")
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "slot_taken"


def test_patient_cannot_hold_two_waiting_tokens(client, seeded_doctor):
    assert _advanced(client, "10:30 AM").status_code == 201
    resp = _advanced(client, "10:45 AM")
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "duplicate_booking"


def test_phone_must_be_international(client, seeded_doctor):
    resp = _walk_in(client, phone="555-1234")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "invalid_phone"


def test_name_required_for_new_patient(client, seeded_doctor):
    resp = _walk_in(client, patient_name="")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "invalid_patient_name"


def test_booking_outside_window_or_grid_is_rejected(client, seeded_doctor):
    past = _advanced(client, "10:00 AM", date="2025-03-09")
    assert past.get_json()["error"] == "booking_date_in_past"
    off_grid = _advanced(client, "10:05 AM")
    assert off_grid.get_json()["error"] == "slot_not_in_schedule"
    started = _advanced(client, "09:00 AM")
    assert started.get_json()["error"] == "slot_in_past"


def test_walk_in_refused_before_window_opens(client, seeded_doctor, clock):
    clock.set(clock.now().replace(hour=8, minute=0))
    resp = _walk_in(client)
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "walk_in_outside_booking_window"


def test_unknown_doctor_is_404(client, seeded_doctor):
    resp = _walk_in(client, doctor_id="nobody")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "doctor_not_found"


def test_status_actions_follow_allowed_transitions(client, seeded_doctor, notifier):
    appt_id = _advanced(client, "10:00 AM").get_json()["appointment"]["id"]

    confirmed = client.post(f"/api/appointments/{appt_id}/confirm")
    assert confirmed.get_json()["appointment"]["status"] == "Confirmed"
    again = client.post(f"/api/appointments/{appt_id}/confirm")
    assert again.status_code == 409
    assert again.get_json()["error"] == "invalid_transition"

    skipped = client.post(f"/api/appointments/{appt_id}/skip").get_json()["appointment"]
    assert skipped["is_skipped"] is True
    client.post(f"/api/appointments/{appt_id}/call")
    done = client.post(f"/api/appointments/{appt_id}/complete").get_json()["appointment"]
    assert done["status"] == "Completed"
    assert done["is_skipped"] is False

    late = client.post(f"/api/appointments/{appt_id}/cancel")
    assert late.status_code == 409
    assert notifier.kinds() == ["appointment_confirmed", "token_called"]


def test_cancel_releases_the_slot(client, seeded_doctor, notifier):
    appt_id = _advanced(client, "10:00 AM").get_json()["appointment"]["id"]
    assert client.post(f"/api/appointments/{appt_id}/cancel").status_code == 200
    assert "appointment_cancelled" in notifier.kinds()
    rebooked = _advanced(client, "10:00 AM", patient_name="Rami Saad", phone="+15551230003")
    assert rebooked.status_code == 201
    assert rebooked.get_json()["appointment"]["token_number"] == "A002"


def test_cancelling_a_skipped_patient_clears_the_skip(client, seeded_doctor, app_conn):
    appt_id = _advanced(client, "10:00 AM").get_json()["appointment"]["id"]
    assert client.post(f"/api/appointments/{appt_id}/skip").get_json()["appointment"]["is_skipped"] is True

    cancelled = client.post(f"/api/appointments/{appt_id}/cancel").get_json()["appointment"]
    assert cancelled["status"] == "Cancelled"
    assert cancelled["is_skipped"] is False
    (stored,) = fetch_day(app_conn, "Dr. Lina", DAY)
    assert not stored.is_skipped
    slots = client.get(f"/api/doctors/doc-1/slots?date={DAY.isoformat()}").get_json()["slots"]
    assert slots[4]["status"] == "cancelled"


def test_unknown_action_is_rejected(client, seeded_doctor):
    appt_id = _advanced(client, "10:00 AM").get_json()["appointment"]["id"]
    resp = client.post(f"/api/appointments/{appt_id}/reopen")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "unknown_action"


def test_day_ledger_and_queue(client, seeded_doctor):
    _advanced(client, "10:00 AM")
    skipped_id = _walk_in(client).get_json()["appointment"]["id"]
    _walk_in(client, patient_name="Nadia Karim", phone="+15551230002")
    client.post(f"/api/appointments/{skipped_id}/skip")

    walk_ins = client.get("/api/doctors/doc-1/appointments?booked_via=Walk-in").get_json()["appointments"]
    assert [a["token_number"] for a in walk_ins] == ["W002", "W003"]

    queue = client.get("/api/doctors/doc-1/queue").get_json()["queue"]
    assert [a["token_number"] for a in queue] == ["A001", "W003", "W002"]


def test_booking_records_the_visit_on_the_patient(client, seeded_doctor, app_conn):
    appt = _walk_in(client, treatment="Checkup").get_json()["appointment"]
    row = app_conn.execute("SELECT * FROM patients WHERE id=?", (appt["patient_id"],)).fetchone()
    assert row["total_appointments"] == 1
    history = json.loads(row["visit_history"])
    assert history == [
        {
            "appointmentId": appt["id"],
            "date": "10 March 2025",
            "time": "09:00 AM",
            "doctor": "Dr. Lina",
            "department": "General",
            "status": "Confirmed",
            "treatment": "Checkup",
        }
    ]
