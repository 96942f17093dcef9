"""Slot generation from the weekly availability template."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Mapping

from .records import Doctor, format_clock

DEFAULT_CONSULTING_MINUTES = 15
MIN_CONSULTING_MINUTES = 5
WALK_IN_WINDOW_MINUTES = 30
ARRIVAL_GRACE_MINUTES = 15
BREAK_CANCEL_LEAD_MINUTES = 60
DEFAULT_WALK_IN_ALLOTMENT = 3


@dataclass(frozen=True)
class SchedulingPolicy:
    """Tunable constants, normally read from the Flask config."""

    default_consulting_minutes: int = DEFAULT_CONSULTING_MINUTES
    min_consulting_minutes: int = MIN_CONSULTING_MINUTES
    walk_in_window_minutes: int = WALK_IN_WINDOW_MINUTES
    arrival_grace_minutes: int = ARRIVAL_GRACE_MINUTES
    break_cancel_lead_minutes: int = BREAK_CANCEL_LEAD_MINUTES
    walk_in_allotment: int = DEFAULT_WALK_IN_ALLOTMENT

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "SchedulingPolicy":
        return cls(
            default_consulting_minutes=int(config.get("DEFAULT_CONSULTING_MINUTES", DEFAULT_CONSULTING_MINUTES)),
            min_consulting_minutes=int(config.get("MIN_CONSULTING_MINUTES", MIN_CONSULTING_MINUTES)),
            walk_in_window_minutes=int(config.get("WALK_IN_WINDOW_MINUTES", WALK_IN_WINDOW_MINUTES)),
            arrival_grace_minutes=int(config.get("ARRIVAL_GRACE_MINUTES", ARRIVAL_GRACE_MINUTES)),
            break_cancel_lead_minutes=int(config.get("BREAK_CANCEL_LEAD_MINUTES", BREAK_CANCEL_LEAD_MINUTES)),
            walk_in_allotment=int(config.get("WALK_IN_TOKEN_ALLOTMENT", DEFAULT_WALK_IN_ALLOTMENT)),
        )


DEFAULT_POLICY = SchedulingPolicy()


@dataclass(frozen=True)
class Session:
    index: int
    start: datetime
    end: datetime
    # Template end before any one-date extension was applied.
    template_end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


@dataclass(frozen=True)
class Slot:
    index: int
    time: datetime
    session_index: int

    @property
    def label(self) -> str:
        return format_clock(self.time)


def consulting_minutes(doctor: Doctor, policy: SchedulingPolicy = DEFAULT_POLICY) -> int:
    minutes = doctor.average_consulting_time or policy.default_consulting_minutes
    return max(int(minutes), policy.min_consulting_minutes)


def _at(day: date, clock: time) -> datetime:
    return datetime.combine(day, clock)


def sessions_for_day(doctor: Doctor, day: date, *, with_extensions: bool = True) -> list[Session]:
    """Concrete sessions for ``day`` in template order.

    A stored extension for the date pushes out the session whose template end
    matches the extension's original end.
    """

    extension = doctor.extension_for(day) if with_extensions else None
    sessions: list[Session] = []
    for index, window in enumerate(doctor.sessions_for(day)):
        start = _at(day, window.start)
        template_end = _at(day, window.end)
        end = template_end
        if extension and extension.original_end == window.end:
            end = _at(day, extension.new_end)
        sessions.append(Session(index, start, end, template_end))
    return sessions


def generate_slot_grid(
    doctor: Doctor,
    day: date,
    policy: SchedulingPolicy = DEFAULT_POLICY,
    *,
    with_extensions: bool = True,
) -> list[Slot]:
    """Every consulting slot of the day, numbered across sessions."""

    step = timedelta(minutes=consulting_minutes(doctor, policy))
    slots: list[Slot] = []
    for session in sessions_for_day(doctor, day, with_extensions=with_extensions):
        current = session.start
        while current < session.end:
            slots.append(Slot(len(slots), current, session.index))
            current += step
    return slots


def generate_slots(doctor: Doctor, day: date, policy: SchedulingPolicy = DEFAULT_POLICY) -> list[datetime]:
    return [slot.time for slot in generate_slot_grid(doctor, day, policy)]


def slot_at(slots: list[Slot], instant: datetime) -> Slot | None:
    for slot in slots:
        if slot.time == instant:
            return slot
    return None


def is_within_walk_in_window(
    doctor: Doctor,
    now: datetime,
    policy: SchedulingPolicy = DEFAULT_POLICY,
) -> bool:
    """True when ``now`` sits in [start - w, end - w] of any session today."""

    shift = timedelta(minutes=policy.walk_in_window_minutes)
    for session in sessions_for_day(doctor, now.date()):
        if session.start - shift <= now <= session.end - shift:
            return True
    return False


def earliest_session_start(doctor: Doctor, day: date) -> datetime | None:
    sessions = sessions_for_day(doctor, day, with_extensions=False)
    return sessions[0].start if sessions else None
