import math
from datetime import date, datetime, time

import pytest

from clinic_queue.services.errors import ValidationFailed
from clinic_queue.services.records import Extension, parse_availability
from clinic_queue.services.schedule import (
    SchedulingPolicy,
    consulting_minutes,
    generate_slot_grid,
    generate_slots,
    is_within_walk_in_window,
)

from conftest import DAY, make_doctor


@pytest.mark.parametrize(
    "start,end,step",
    [
        ("09:00 AM", "12:00 PM", 15),
        ("09:00 AM", "10:00 AM", 20),
        ("09:00 AM", "10:00 AM", 25),
        ("02:00 PM", "02:10 PM", 15),
    ],
)
def test_slot_count_is_ceiling_of_window_over_step(start, end, step):
    doctor = make_doctor(sessions=((start, end),), consulting=step)
    slots = generate_slots(doctor, DAY)
    window = (
        datetime.combine(DAY, datetime.strptime(end, "%I:%M %p").time())
        - datetime.combine(DAY, datetime.strptime(start, "%I:%M %p").time())
    )
    assert len(slots) == math.ceil(window.total_seconds() / 60 / step)
    assert all(s < datetime.combine(DAY, datetime.strptime(end, "%I:%M %p").time()) for s in slots)
    assert generate_slots(doctor, DAY) == slots


def test_sessions_are_concatenated_in_order():
    doctor = make_doctor(sessions=(("09:00 AM", "10:00 AM"), ("05:00 PM", "06:00 PM")))
    grid = generate_slot_grid(doctor, DAY)
    assert [s.index for s in grid] == list(range(8))
    assert grid[3].time.time() == time(9, 45)
    assert grid[4].time.time() == time(17, 0)
    assert grid[4].session_index == 1


def test_no_availability_on_weekday_gives_empty_sequence():
    doctor = make_doctor(days=("Tuesday",))
    assert generate_slots(doctor, DAY) == []


def test_consulting_time_is_clamped_and_defaulted():
    assert consulting_minutes(make_doctor(consulting=2)) == 5
    assert consulting_minutes(make_doctor(consulting=None)) == 15
    assert consulting_minutes(make_doctor(consulting=None), SchedulingPolicy(default_consulting_minutes=20)) == 20


def test_extension_pushes_matching_session_end():
    ext = Extension(extended_by=30, original_end=time(12, 0), new_end=time(12, 30))
    doctor = make_doctor(extensions={DAY.isoformat(): ext})
    slots = generate_slots(doctor, DAY)
    assert len(slots) == 14
    assert slots[-1].time() == time(12, 15)
    # other dates are untouched
    assert len(generate_slots(doctor, date(2025, 3, 17))) == 12


@pytest.mark.parametrize(
    "at,offered",
    [
        (time(8, 25), False),
        (time(8, 30), True),
        (time(8, 35), True),
        (time(11, 25), True),
        (time(11, 30), True),
        (time(11, 35), False),
    ],
)
def test_walk_in_window_opens_and_closes_thirty_minutes_early(at, offered):
    doctor = make_doctor()
    assert is_within_walk_in_window(doctor, datetime.combine(DAY, at)) is offered


def test_overlapping_sessions_are_rejected():
    with pytest.raises(ValidationFailed):
        parse_availability(
            [{"day": "Monday", "timeSlots": [{"from": "09:00 AM", "to": "11:00 AM"}, {"from": "10:30 AM", "to": "12:00 PM"}]}]
        )


def test_session_ending_before_start_is_rejected():
    with pytest.raises(ValidationFailed):
        parse_availability([{"day": "Monday", "timeSlots": [{"from": "11:00 AM", "to": "09:00 AM"}]}])


def test_unknown_weekday_is_rejected():
    with pytest.raises(ValidationFailed):
        parse_availability([{"day": "Funday", "timeSlots": []}])
