from datetime import datetime, time

import pytest

from clinic_queue.services.errors import DoctorUnavailable, NoSlotsRemaining, OutsideBookingWindow
from clinic_queue.services.records import STATUS_CANCELLED, STATUS_NO_SHOW, Appointment
from clinic_queue.services.walk_in import compute_walk_in_estimate, ensure_walk_in_window

from conftest import make_appointment, make_doctor


def _now(hour, minute=0):
    return datetime(2025, 3, 10, hour, minute)


def _walk_in(at, **kw):
    return make_appointment(at, booked_via="Walk-in", status="Confirmed", **kw)


def test_first_walk_ins_take_consecutive_slots_when_no_advanced_bookings():
    doctor = make_doctor()
    first = compute_walk_in_estimate(doctor, [], _now(9), allotment=3)
    assert first.slot_index == 0
    assert first.estimated_time == _now(9)
    assert first.numeric_token == 1

    second = compute_walk_in_estimate(doctor, [_walk_in("09:00 AM", numeric_token=1)], _now(9), allotment=3)
    assert second.slot_index == 1
    assert second.estimated_time == _now(9, 15)
    assert second.numeric_token == 2


def test_walk_in_leaves_spacing_before_advanced_booking():
    doctor = make_doctor()
    ledger = [make_appointment("10:15 AM", slot_index=5)]
    estimate = compute_walk_in_estimate(doctor, ledger, _now(9), allotment=3)
    assert estimate.slot_index == 3
    assert estimate.estimated_time.time() == time(9, 45)


def test_next_walk_in_searches_after_previous_walk_in():
    doctor = make_doctor()
    ledger = [
        make_appointment("10:15 AM", slot_index=5),
        _walk_in("09:45 AM", slot_index=3),
    ]
    estimate = compute_walk_in_estimate(doctor, ledger, _now(9), allotment=3)
    # 10:00, 10:30 and 10:45 are the spacing buffer; 10:15 is taken
    assert estimate.slot_index == 8


def test_falls_back_to_first_free_slot_when_spacing_cannot_be_met():
    doctor = make_doctor()
    ledger = [make_appointment("11:45 AM", slot_index=11)]
    estimate = compute_walk_in_estimate(doctor, ledger, _now(11), allotment=3)
    assert estimate.slot_index == 8


def test_zero_allotment_takes_first_free_slot():
    doctor = make_doctor()
    ledger = [make_appointment("10:15 AM", slot_index=5)]
    assert compute_walk_in_estimate(doctor, ledger, _now(9), allotment=0).slot_index == 0


def test_no_slots_left_is_a_named_failure():
    doctor = make_doctor()
    with pytest.raises(NoSlotsRemaining):
        compute_walk_in_estimate(doctor, [], _now(12), allotment=3)


def test_doctor_without_availability_is_a_named_failure():
    doctor = make_doctor(days=("Tuesday",))
    with pytest.raises(DoctorUnavailable):
        compute_walk_in_estimate(doctor, [], _now(9), allotment=3)


def test_patients_ahead_counts_only_active_unskipped_before_estimate():
    doctor = make_doctor()
    ledger = [
        make_appointment("09:15 AM", slot_index=1),
        make_appointment("09:30 AM", slot_index=2, is_skipped=True),
        make_appointment("10:15 AM", slot_index=5),
    ]
    estimate = compute_walk_in_estimate(doctor, ledger, _now(9), allotment=3)
    assert estimate.slot_index == 6
    assert estimate.patients_ahead == 2


def test_no_show_and_cancelled_slots_are_reclaimable():
    doctor = make_doctor()
    ledger = [
        make_appointment("09:00 AM", slot_index=0, status=STATUS_NO_SHOW),
        make_appointment("09:15 AM", slot_index=1, status=STATUS_CANCELLED),
    ]
    estimate = compute_walk_in_estimate(doctor, ledger, _now(9), allotment=3)
    assert estimate.slot_index == 0


def test_break_slots_are_not_offered():
    doctor = make_doctor(leave=["2025-03-10T09:00:00", "2025-03-10T09:15:00"])
    estimate = compute_walk_in_estimate(doctor, [], _now(9), allotment=3)
    assert estimate.slot_index == 2


def test_numeric_token_follows_highest_number_in_either_form():
    doctor = make_doctor()
    ledger = [
        make_appointment("09:15 AM", numeric_token=1),
        make_appointment("09:30 AM", numeric_token=2),
    ]
    ledger.append(Appointment(id="legacy", doctor="Dr. Lina", date=ledger[0].date, time="11:00 AM", token_number="W007"))
    assert compute_walk_in_estimate(doctor, ledger, _now(9), allotment=3).numeric_token == 8


def test_booking_window_gate():
    doctor = make_doctor()
    ensure_walk_in_window(doctor, _now(8, 35))
    ensure_walk_in_window(doctor, _now(11, 25))
    with pytest.raises(OutsideBookingWindow):
        ensure_walk_in_window(doctor, _now(8, 25))
    with pytest.raises(OutsideBookingWindow):
        ensure_walk_in_window(doctor, _now(11, 35))
