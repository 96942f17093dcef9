"""Walk-in placement: interleave same-day arrivals with advanced bookings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Iterable, Sequence

from .errors import DoctorUnavailable, NoSlotsRemaining, OutsideBookingWindow, ValidationFailed
from .leave import blocked_instants, break_intervals
from .records import (
    Appointment,
    BOOKED_VIA_WALK_IN,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_NO_SHOW,
    Doctor,
    format_clock,
    format_instant,
)
from .schedule import DEFAULT_POLICY, SchedulingPolicy, Slot, generate_slot_grid, is_within_walk_in_window
from .tokens import peek_numeric_token

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1)
_NOT_WAITING = (STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW)


@dataclass(frozen=True)
class WalkInEstimate:
    estimated_time: datetime
    patients_ahead: int
    numeric_token: int
    slot_index: int
    session_index: int

    def to_dict(self) -> dict[str, object]:
        return {
            "estimated_time": format_instant(self.estimated_time),
            "time": format_clock(self.estimated_time),
            "patients_ahead": self.patients_ahead,
            "numeric_token": self.numeric_token,
            "slot_index": self.slot_index,
        }


def ensure_walk_in_window(doctor: Doctor, now: datetime, policy: SchedulingPolicy = DEFAULT_POLICY) -> None:
    if not is_within_walk_in_window(doctor, now, policy):
        raise OutsideBookingWindow(detail=f"Walk-ins for {doctor.name} are closed at {format_clock(now)}")


def _scheduled(appt: Appointment) -> datetime | None:
    try:
        return appt.scheduled_at
    except ValidationFailed:
        logger.warning("Skipping appointment %s with unreadable date/time", appt.id)
        return None


def _first_index(slots: Sequence[Slot], start: datetime, *, inclusive: bool) -> int:
    for slot in slots:
        if slot.time > start or (inclusive and slot.time == start):
            return slot.index
    return len(slots)


def _scan(slots: Sequence[Slot], start_index: int, occupied: set[datetime], skip: int) -> Slot | None:
    remaining = skip
    for slot in slots[start_index:]:
        if slot.time in occupied:
            continue
        if remaining == 0:
            return slot
        remaining -= 1
    return None


def compute_walk_in_estimate(
    doctor: Doctor,
    appointments: Iterable[Appointment],
    now: datetime,
    allotment: int | None = None,
    policy: SchedulingPolicy = DEFAULT_POLICY,
) -> WalkInEstimate:
    """Pick the slot the next walk-in should take today.

    ``appointments`` is the doctor's ledger for ``now``'s date in token order.
    Once the clock (or the latest walk-in) has passed the last advanced
    booking, walk-ins fill consecutive free slots. Before that, each walk-in
    leaves ``allotment`` free slots in front of it so advanced patients keep
    their place; if the day is too full for that spacing, the first free slot
    is used instead.
    """

    allotment = policy.walk_in_allotment if allotment is None else int(allotment)
    if allotment < 0:
        raise ValidationFailed("invalid_allotment", str(allotment))

    ledger = list(appointments)
    day = now.date()
    slots = generate_slot_grid(doctor, day, policy)
    if not slots:
        raise DoctorUnavailable(detail=f"{doctor.name} has no availability on {day.isoformat()}")

    advanced: list[tuple[Appointment, datetime]] = []
    walk_ins: list[tuple[Appointment, datetime]] = []
    for appt in ledger:
        if not appt.is_active:
            continue
        at = _scheduled(appt)
        if at is None:
            continue
        (walk_ins if appt.booked_via == BOOKED_VIA_WALK_IN else advanced).append((appt, at))

    # Slots held by advanced bookings, earlier walk-ins and breaks.
    occupied = {at for _, at in advanced}
    occupied |= {at for _, at in walk_ins}
    occupied |= blocked_instants(break_intervals(doctor, day, policy), (s.time for s in slots))

    last_advanced = max((at for _, at in advanced), default=EPOCH)
    last_walk_in = max((at for _, at in walk_ins), default=EPOCH)

    if now > last_walk_in:
        search_start, inclusive = now, True
    else:
        search_start, inclusive = last_walk_in, False
    start_index = _first_index(slots, search_start, inclusive=inclusive)

    if search_start > last_advanced:
        chosen = _scan(slots, start_index, occupied, 0)
    else:
        chosen = _scan(slots, start_index, occupied, allotment)
    if chosen is None:
        chosen = _scan(slots, start_index, occupied, 0)
    if chosen is None:
        raise NoSlotsRemaining(detail=f"No walk-in slots left for {doctor.name} today")

    ahead = 0
    for appt in ledger:
        if appt.status in _NOT_WAITING or appt.is_skipped:
            continue
        at = _scheduled(appt)
        if at is not None and now < at < chosen.time:
            ahead += 1

    return WalkInEstimate(
        estimated_time=chosen.time,
        patients_ahead=ahead,
        numeric_token=peek_numeric_token(ledger),
        slot_index=chosen.index,
        session_index=chosen.session_index,
    )
