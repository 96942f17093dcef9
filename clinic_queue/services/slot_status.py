"""Read model: what each slot of a doctor's day currently shows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Sequence

from .errors import ValidationFailed
from .leave import break_intervals, in_break
from .records import (
    Appointment,
    BOOKED_VIA_WALK_IN,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_NO_SHOW,
    STATUS_PENDING,
    Doctor,
    format_clock,
    format_instant,
)
from .schedule import DEFAULT_POLICY, SchedulingPolicy, generate_slot_grid


class SlotStatus(str, Enum):
    AVAILABLE = "available"
    ADVANCED = "advanced"
    WALK_IN = "walkin"
    SKIPPED = "skipped"
    COMPLETED = "completed"
    VACANT = "vacant"
    CANCELLED = "cancelled"


def _pick(held: Sequence[Appointment]) -> Appointment | None:
    if not held:
        return None
    for appt in held:
        if appt.is_active:
            return appt
    return held[-1]


def status_of(appt: Appointment | None) -> SlotStatus:
    if appt is None:
        return SlotStatus.AVAILABLE
    if appt.is_skipped and appt.status in (STATUS_PENDING, STATUS_CONFIRMED):
        return SlotStatus.SKIPPED
    if appt.status == STATUS_COMPLETED:
        return SlotStatus.COMPLETED
    if appt.status == STATUS_NO_SHOW:
        return SlotStatus.VACANT
    if appt.status == STATUS_CANCELLED:
        return SlotStatus.CANCELLED
    if appt.booked_via == BOOKED_VIA_WALK_IN:
        return SlotStatus.WALK_IN
    return SlotStatus.ADVANCED


def classify_slot(slot_index: int, appointments: Sequence[Appointment]) -> SlotStatus:
    """Explicit status wins over the booking channel; an empty slot is available."""
    return status_of(_pick([a for a in appointments if a.slot_index == slot_index]))


@dataclass(frozen=True)
class SlotView:
    index: int
    time: str
    starts_at: str
    session_index: int
    status: SlotStatus
    on_break: bool
    appointment_id: str | None
    token_number: str | None

    def to_dict(self) -> dict[str, object]:
        return {
            "index": self.index,
            "time": self.time,
            "starts_at": self.starts_at,
            "session_index": self.session_index,
            "status": self.status.value,
            "on_break": self.on_break,
            "appointment_id": self.appointment_id,
            "token_number": self.token_number,
        }


def slot_grid(
    doctor: Doctor,
    day: date,
    appointments: Sequence[Appointment],
    policy: SchedulingPolicy = DEFAULT_POLICY,
) -> list[SlotView]:
    """Match bookings to slots by their scheduled instant."""

    breaks = break_intervals(doctor, day, policy)
    by_time: dict[datetime, list[Appointment]] = {}
    for appt in appointments:
        try:
            by_time.setdefault(appt.scheduled_at, []).append(appt)
        except ValidationFailed:
            continue
    views: list[SlotView] = []
    for slot in generate_slot_grid(doctor, day, policy):
        appt = _pick(by_time.get(slot.time, []))
        views.append(
            SlotView(
                index=slot.index,
                time=format_clock(slot.time),
                starts_at=format_instant(slot.time),
                session_index=slot.session_index,
                status=status_of(appt),
                on_break=in_break(slot.time, breaks),
                appointment_id=appt.id if appt else None,
                token_number=appt.token_number if appt else None,
            )
        )
    return views
