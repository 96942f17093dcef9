from datetime import datetime

from clinic_queue.services.ledger import fetch_day

from conftest import DAY, make_appointment, make_doctor, store_appointment, store_doctor


def test_doctor_detail(client, seeded_doctor):
    doctor = client.get("/api/doctors/doc-1").get_json()["doctor"]
    assert doctor["name"] == "Dr. Lina"
    assert doctor["average_consulting_time"] == 15
    assert doctor["availability"] == [
        {"day": "Monday", "timeSlots": [{"from": "09:00 AM", "to": "12:00 PM"}]}
    ]


def test_availability_update_prunes_orphaned_leave(client, app_conn):
    store_doctor(app_conn, make_doctor(leave=["2025-03-10T09:30:00", "2025-03-10T11:30:00"]))
    resp = client.put(
        "/api/doctors/doc-1/availability",
        json={"availability": [{"day": "Monday", "timeSlots": [{"from": "09:00 AM", "to": "10:00 AM"}]}]},
    )
    assert resp.status_code == 200, resp.get_json()
    assert resp.get_json()["leave_slots"] == ["2025-03-10T09:30:00"]
    slots = client.get(f"/api/doctors/doc-1/slots?date={DAY.isoformat()}").get_json()["slots"]
    assert len(slots) == 4


def test_availability_update_moves_bookings_to_their_new_slot(client, app_conn):
    store_doctor(app_conn, make_doctor())
    store_appointment(app_conn, make_appointment("09:30 AM", slot_index=2, appt_id="early"))
    store_appointment(app_conn, make_appointment("11:00 AM", slot_index=8, appt_id="late"))
    resp = client.put(
        "/api/doctors/doc-1/availability",
        json={"availability": [{"day": "Monday", "timeSlots": [{"from": "10:00 AM", "to": "12:00 PM"}]}]},
    )
    assert resp.status_code == 200, resp.get_json()
    stored = {a.id: a.slot_index for a in fetch_day(app_conn, "Dr. Lina", DAY)}
    assert stored == {"early": None, "late": 4}
    slots = client.get(f"/api/doctors/doc-1/slots?date={DAY.isoformat()}").get_json()["slots"]
    assert slots[4]["status"] == "advanced"


def test_availability_update_rejects_overlaps(client, seeded_doctor):
    resp = client.put(
        "/api/doctors/doc-1/availability",
        json={
            "availability": [
                {
                    "day": "Monday",
                    "timeSlots": [{"from": "09:00 AM", "to": "11:00 AM"}, {"from": "10:00 AM", "to": "12:00 PM"}],
                }
            ]
        },
    )
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_slot_grid_reflects_bookings(client, seeded_doctor):
    client.post(
        "/api/doctors/doc-1/walk-ins",
        data={"patient_name": "Sara Ali", "phone": "+15551230001"},
    )
    slots = client.get("/api/doctors/doc-1/slots").get_json()["slots"]
    assert len(slots) == 12
    assert slots[0]["status"] == "walkin"
    assert slots[0]["token_number"] == "W001"
    assert {s["status"] for s in slots[1:]} == {"available"}


def test_break_flow_through_the_api(client, seeded_doctor, clock, notifier):
    clock.set(datetime(2025, 3, 10, 7, 0))
    form = {"date": DAY.isoformat(), "start_time": "10:00 AM", "end_time": "10:15 AM"}

    proposal = client.post("/api/doctors/doc-1/breaks/proposal", data=form).get_json()["proposal"]
    assert proposal["break_minutes"] == 30
    assert proposal["has_overrun"] is False
    assert [o["kind"] for o in proposal["options"]] == ["full", "none"]

    missing = client.post("/api/doctors/doc-1/breaks", data=form)
    assert missing.status_code == 400
    assert missing.get_json()["error"] == "choice_required"

    created = client.post("/api/doctors/doc-1/breaks", data={**form, "choice": "none"})
    assert created.status_code == 201, created.get_json()
    assert created.get_json()["state"] == "BreakActive"

    listed = client.get(f"/api/doctors/doc-1/breaks?date={DAY.isoformat()}").get_json()
    assert listed["state"] == "BreakActive"
    assert listed["breaks"] == [
        {"start": "2025-03-10T10:00:00", "end": "2025-03-10T10:30:00", "minutes": 30}
    ]
    slots = client.get(f"/api/doctors/doc-1/slots?date={DAY.isoformat()}").get_json()["slots"]
    assert [s["index"] for s in slots if s["on_break"]] == [4, 5]

    cancelled = client.post("/api/doctors/doc-1/breaks/cancel", data={"date": DAY.isoformat()})
    assert cancelled.status_code == 200, cancelled.get_json()
    listed = client.get(f"/api/doctors/doc-1/breaks?date={DAY.isoformat()}").get_json()
    assert listed["state"] == "NoBreak"
    assert listed["extension"] is None


def test_break_cancel_too_close_to_session(client, seeded_doctor, clock):
    clock.set(datetime(2025, 3, 10, 7, 0))
    form = {"date": DAY.isoformat(), "start_time": "10:00 AM", "end_time": "10:00 AM", "choice": "none"}
    assert client.post("/api/doctors/doc-1/breaks", data=form).status_code == 201

    clock.set(datetime(2025, 3, 10, 8, 30))
    resp = client.post("/api/doctors/doc-1/breaks/cancel", data={"date": DAY.isoformat()})
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "break_cancellation_too_close_to_session"


def test_break_selection_errors_are_422(client, seeded_doctor, clock):
    clock.set(datetime(2025, 3, 10, 7, 0))
    form = {"date": DAY.isoformat(), "start_time": "10:07 AM", "end_time": "10:15 AM"}
    resp = client.post("/api/doctors/doc-1/breaks/proposal", data=form)
    assert resp.status_code == 422
    assert resp.get_json()["error"] == "break_slot_not_in_schedule"
