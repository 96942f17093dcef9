from datetime import datetime

from clinic_queue.services.leave import (
    BreakInterval,
    append_markers,
    break_intervals,
    prune_orphans,
    remove_interval,
)
from clinic_queue.services.records import parse_availability

from conftest import DAY, make_doctor


def _at(hour, minute=0):
    return datetime(2025, 3, 10, hour, minute)


def test_adjacent_markers_merge_into_one_interval():
    doctor = make_doctor(
        leave=[
            "2025-03-10T10:00:00",
            "2025-03-10T10:15:00",
            "2025-03-10T10:30:00",
            "2025-03-10T11:30:00",
        ]
    )
    assert break_intervals(doctor, DAY) == [
        BreakInterval(_at(10), _at(10, 45)),
        BreakInterval(_at(11, 30), _at(11, 45)),
    ]


def test_legacy_object_form_is_read_as_intervals():
    doctor = make_doctor(
        leave=[
            {"date": "2025-03-10", "slots": [{"from": "10:00 AM", "to": "10:30 AM"}]},
            "2025-03-10T10:30:00",
            {"date": "2025-03-11", "slots": [{"from": "09:00 AM", "to": "10:00 AM"}]},
        ]
    )
    assert break_intervals(doctor, DAY) == [BreakInterval(_at(10), _at(10, 45))]


def test_zulu_markers_are_accepted():
    doctor = make_doctor(leave=["2025-03-10T12:00:00.000Z"])
    assert len(break_intervals(doctor, DAY)) == 1


def test_unreadable_markers_are_ignored():
    doctor = make_doctor(leave=["not-a-date", 42])
    assert break_intervals(doctor, DAY) == []


def test_append_then_remove_restores_the_list():
    original = [{"date": "2025-03-11", "slots": [{"from": "09:00 AM", "to": "10:00 AM"}]}]
    grown = append_markers(original, [_at(10), _at(10, 15)])
    assert grown[1:] == ["2025-03-10T10:00:00", "2025-03-10T10:15:00"]
    assert remove_interval(grown, BreakInterval(_at(10), _at(10, 30))) == original


def test_remove_interval_trims_legacy_ranges_inside_the_break():
    leave = [
        {
            "date": "2025-03-10",
            "slots": [{"from": "10:00 AM", "to": "10:30 AM"}, {"from": "11:00 AM", "to": "11:30 AM"}],
        }
    ]
    kept = remove_interval(leave, BreakInterval(_at(10), _at(10, 30)))
    assert kept == [{"date": "2025-03-10", "slots": [{"from": "11:00 AM", "to": "11:30 AM"}]}]


def test_prune_drops_markers_outside_new_template():
    doctor = make_doctor(
        leave=[
            "2025-03-10T09:30:00",
            "2025-03-10T11:30:00",
            {"date": "2025-03-10", "slots": [{"from": "11:00 AM", "to": "11:30 AM"}]},
        ]
    )
    shorter = doctor.with_changes(
        availability=parse_availability([{"day": "Monday", "timeSlots": [{"from": "09:00 AM", "to": "10:00 AM"}]}])
    )
    assert prune_orphans(shorter) == ["2025-03-10T09:30:00"]
