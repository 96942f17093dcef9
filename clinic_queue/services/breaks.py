"""Break scheduling with session-extension arbitration.

A break is chosen as a run of consecutive slots inside one session. Patients
booked at or after the break start are pushed back by the break length; their
slot ``time`` stays as booked and only the derived arrival, cut-off and
no-show instants move. When the push would carry the last booked patient past
the session end the doctor chooses how far to extend the session for that
date.

The planning functions are pure and return a :class:`LedgerDelta`;
``confirm_break`` and ``cancel_break`` apply one inside a single batch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
import logging
import sqlite3
from typing import Any, Iterable, Sequence

from .audit import write_event
from .doctors import get_doctor, reindex_day, save_schedule
from .errors import (
    BreakCancellationTooLate,
    BreakSelectionInvalid,
    DoctorUnavailable,
    ExtensionChoiceInvalid,
    NoBreakFound,
    ValidationFailed,
)
from .leave import (
    BreakInterval,
    append_markers,
    break_intervals,
    derived_timestamps,
    remove_interval,
)
from .ledger import batch, fetch_day, merge_update
from .notifications import BREAK_CANCELLED, BREAK_SCHEDULED, Notifier, dispatch
from .records import (
    Appointment,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_PENDING,
    Doctor,
    Extension,
    format_clock,
    format_day,
    format_instant,
    parse_clock,
)
from .schedule import (
    DEFAULT_POLICY,
    SchedulingPolicy,
    consulting_minutes,
    earliest_session_start,
    generate_slot_grid,
    sessions_for_day,
    slot_at,
)

logger = logging.getLogger(__name__)

EXTEND_MINIMAL = "minimal"
EXTEND_FULL = "full"
EXTEND_NONE = "none"

_WAITING = (STATUS_PENDING, STATUS_CONFIRMED)


class BreakState(str, Enum):
    NO_BREAK = "NoBreak"
    PROPOSED = "BreakProposed"
    EXTENSION_PENDING = "ExtensionDecisionPending"
    ACTIVE = "BreakActive"
    CANCELLED = "BreakCancelled"


@dataclass(frozen=True)
class ExtensionOption:
    kind: str
    extend_by: int
    new_end: datetime | None

    @property
    def label(self) -> str:
        if not self.extend_by or self.new_end is None:
            return "do not extend"
        return f"extend to {self.new_end:%H:%M} (+{self.extend_by} min)"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "extend_by": self.extend_by,
            "new_end": format_clock(self.new_end) if self.new_end else None,
            "label": self.label,
        }


@dataclass(frozen=True)
class BreakProposal:
    day: date
    start: datetime
    end: datetime
    step_minutes: int
    session_index: int
    session_end: datetime
    template_end: datetime
    last_token_before: datetime | None
    last_token_after: datetime | None
    overrun: int
    options: tuple[ExtensionOption, ...]
    state: BreakState = BreakState.PROPOSED

    @property
    def break_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60) + self.step_minutes

    @property
    def has_overrun(self) -> bool:
        return self.overrun > 0

    @property
    def interval(self) -> BreakInterval:
        return BreakInterval(self.start, self.start + timedelta(minutes=self.break_minutes))

    def marker_instants(self) -> list[datetime]:
        step = timedelta(minutes=self.step_minutes)
        instants: list[datetime] = []
        current = self.start
        while current <= self.end:
            instants.append(current)
            current += step
        return instants

    def option(self, kind: str) -> ExtensionOption:
        for option in self.options:
            if option.kind == kind:
                return option
        raise ExtensionChoiceInvalid(
            detail=f"Choose one of: {', '.join(o.kind for o in self.options)}",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": format_day(self.day),
            "start": format_clock(self.start),
            "end": format_clock(self.end),
            "break_minutes": self.break_minutes,
            "session_end": format_clock(self.session_end),
            "last_token_before": format_clock(self.last_token_before) if self.last_token_before else None,
            "last_token_after": format_clock(self.last_token_after) if self.last_token_after else None,
            "has_overrun": self.has_overrun,
            "overrun": self.overrun,
            "options": [o.to_dict() for o in self.options],
            "state": self.state.value,
        }


@dataclass
class LedgerDelta:
    doctor_id: str
    day: date
    state: BreakState
    intervals: list[BreakInterval]
    leave_slots: list[Any]
    extensions: dict[str, Extension]
    appointment_updates: dict[str, dict[str, Any]] = field(default_factory=dict)
    affected: list[Appointment] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        ext = self.extensions.get(self.day.isoformat())
        return {
            "success": True,
            "state": self.state.value,
            "date": format_day(self.day),
            "breaks": [i.to_dict() for i in self.intervals],
            "extension": ext.to_document() if ext else None,
            "updated_appointments": len(self.appointment_updates),
        }


def _at(day: date, label: str) -> datetime:
    return datetime.combine(day, parse_clock(label))


def _offset(appt: Appointment, scheduled: datetime) -> timedelta:
    if appt.arrive_by is None:
        return timedelta()
    return max(appt.arrive_by - scheduled, timedelta())


def _derived_fields(scheduled: datetime, offset: timedelta, policy: SchedulingPolicy) -> dict[str, Any]:
    arrive_by, cut_off, no_show = derived_timestamps(scheduled, offset, policy)
    return {
        "arrive_by": format_instant(arrive_by),
        "cut_off_time": format_instant(cut_off),
        "no_show_time": format_instant(no_show),
    }


def _scheduled(appointments: Iterable[Appointment]) -> list[tuple[Appointment, datetime]]:
    pairs: list[tuple[Appointment, datetime]] = []
    for appt in appointments:
        try:
            pairs.append((appt, appt.scheduled_at))
        except ValidationFailed:
            logger.warning("Ignoring appointment %s with unreadable date/time", appt.id)
    return pairs


def propose_break(
    doctor: Doctor,
    appointments: Sequence[Appointment],
    day: date,
    start_label: str,
    end_label: str,
    policy: SchedulingPolicy = DEFAULT_POLICY,
    *,
    now: datetime | None = None,
) -> BreakProposal:
    """Validate a slot selection and work out the extension choices it needs."""

    slots = generate_slot_grid(doctor, day, policy)
    if not slots:
        raise DoctorUnavailable(detail=f"{doctor.name} has no availability on {day.isoformat()}")
    first = slot_at(slots, _at(day, start_label))
    last = slot_at(slots, _at(day, end_label))
    if first is None or last is None:
        raise BreakSelectionInvalid("break_slot_not_in_schedule", "Pick start and end from the slot grid")
    if last.time < first.time:
        raise BreakSelectionInvalid("break_end_before_start")
    if first.session_index != last.session_index:
        raise BreakSelectionInvalid("break_spans_sessions", "A break must stay inside one session")
    if now is not None and first.time < now:
        raise BreakSelectionInvalid("break_in_past")

    step = consulting_minutes(doctor, policy)
    candidate = BreakInterval(first.time, last.time + timedelta(minutes=step))
    for existing in break_intervals(doctor, day, policy):
        if existing.start < candidate.end and candidate.start < existing.end:
            raise BreakSelectionInvalid("break_overlaps_existing", "Selection overlaps an existing break")

    session = sessions_for_day(doctor, day)[first.session_index]
    break_minutes = candidate.minutes
    booked = [
        at
        for appt, at in _scheduled(appointments)
        if appt.is_active and session.start <= at < session.end
    ]
    before = max(booked) if booked else None
    after = None
    overrun = 0
    if before is not None:
        after = before + timedelta(minutes=break_minutes) if before >= first.time else before
        overrun = max(0, int((after - session.end).total_seconds() // 60))

    def option(kind: str, minutes: int) -> ExtensionOption:
        if not minutes:
            return ExtensionOption(kind, 0, None)
        return ExtensionOption(kind, minutes, session.end + timedelta(minutes=minutes))

    if overrun:
        options = (option(EXTEND_MINIMAL, overrun), option(EXTEND_FULL, break_minutes))
    else:
        options = (option(EXTEND_FULL, break_minutes), option(EXTEND_NONE, 0))

    return BreakProposal(
        day=day,
        start=first.time,
        end=last.time,
        step_minutes=step,
        session_index=first.session_index,
        session_end=session.end,
        template_end=session.template_end,
        last_token_before=before,
        last_token_after=after,
        overrun=overrun,
        options=options,
        state=BreakState.EXTENSION_PENDING if overrun else BreakState.PROPOSED,
    )


def plan_confirm(
    doctor: Doctor,
    appointments: Sequence[Appointment],
    proposal: BreakProposal,
    choice: str,
    policy: SchedulingPolicy = DEFAULT_POLICY,
) -> LedgerDelta:
    option = proposal.option(choice)
    leave = append_markers(doctor.leave_slots, proposal.marker_instants())

    extensions = dict(doctor.availability_extensions)
    key = proposal.day.isoformat()
    if option.extend_by and option.new_end is not None:
        if option.new_end.date() != proposal.day:
            raise ExtensionChoiceInvalid("extension_past_midnight")
        existing = extensions.get(key)
        if existing is not None:
            extensions[key] = Extension(
                extended_by=existing.extended_by + option.extend_by,
                original_end=existing.original_end,
                new_end=option.new_end.time(),
            )
        else:
            extensions[key] = Extension(
                extended_by=option.extend_by,
                original_end=proposal.template_end.time(),
                new_end=option.new_end.time(),
            )

    shift = timedelta(minutes=proposal.break_minutes)
    updates: dict[str, dict[str, Any]] = {}
    affected: list[Appointment] = []
    for appt, at in _scheduled(appointments):
        if appt.status == STATUS_CANCELLED or at < proposal.start:
            continue
        updates[appt.id] = _derived_fields(at, _offset(appt, at) + shift, policy)
        if appt.status in _WAITING:
            affected.append(appt)

    return LedgerDelta(
        doctor_id=doctor.id,
        day=proposal.day,
        state=BreakState.ACTIVE,
        intervals=[proposal.interval],
        leave_slots=leave,
        extensions=extensions,
        appointment_updates=updates,
        affected=affected,
    )


def plan_cancel(
    doctor: Doctor,
    appointments: Sequence[Appointment],
    day: date,
    now: datetime,
    policy: SchedulingPolicy = DEFAULT_POLICY,
    *,
    break_start: datetime | None = None,
) -> LedgerDelta:
    """Undo one break (``break_start``) or every break on ``day``."""

    intervals = break_intervals(doctor, day, policy)
    if break_start is not None:
        targets = [i for i in intervals if i.start == break_start]
    else:
        targets = list(intervals)
    if not targets:
        raise NoBreakFound(detail=f"No break on {format_day(day)} for {doctor.name}")

    earliest = earliest_session_start(doctor, day)
    lead = timedelta(minutes=policy.break_cancel_lead_minutes)
    if earliest is not None and now > earliest - lead:
        raise BreakCancellationTooLate(
            detail=f"Breaks can only be cancelled until {format_clock(earliest - lead)} on {format_day(day)}",
        )

    leave = list(doctor.leave_slots)
    for interval in targets:
        leave = remove_interval(leave, interval)
    remaining = [i for i in intervals if i not in targets]

    first_start = min(i.start for i in targets)
    updates: dict[str, dict[str, Any]] = {}
    affected: list[Appointment] = []
    pairs = _scheduled(appointments)
    for appt, at in pairs:
        if appt.status == STATUS_CANCELLED or at < first_start:
            continue
        removed = sum((i.end - i.start for i in targets if i.start <= at), timedelta())
        offset = max(_offset(appt, at) - removed, timedelta())
        updates[appt.id] = _derived_fields(at, offset, policy)
        if appt.status in _WAITING:
            affected.append(appt)

    extensions = dict(doctor.availability_extensions)
    key = day.isoformat()
    extension = extensions.get(key)
    if extension is not None and not remaining:
        original_end = datetime.combine(day, extension.original_end)
        new_end = datetime.combine(day, extension.new_end)
        stranded = any(appt.status in _WAITING and original_end <= at < new_end for appt, at in pairs)
        if stranded:
            logger.info("Keeping extension on %s for %s: patients booked past %s", key, doctor.name, original_end)
        else:
            extensions.pop(key)

    return LedgerDelta(
        doctor_id=doctor.id,
        day=day,
        state=BreakState.CANCELLED,
        intervals=targets,
        leave_slots=leave,
        extensions=extensions,
        appointment_updates=updates,
        affected=affected,
    )


def apply_delta(
    conn: sqlite3.Connection,
    doctor: Doctor,
    delta: LedgerDelta,
    policy: SchedulingPolicy = DEFAULT_POLICY,
) -> None:
    """Write a delta; the caller provides the surrounding batch.

    A changed extension renumbers later sessions, so stored slot indices are
    rebuilt from the new grid in the same batch.
    """

    save_schedule(conn, delta.doctor_id, leave_slots=delta.leave_slots, extensions=delta.extensions)
    for appt_id, fields in delta.appointment_updates.items():
        merge_update(conn, "appointments", appt_id, fields)
    updated = doctor.with_changes(leave_slots=tuple(delta.leave_slots), availability_extensions=delta.extensions)
    reindex_day(conn, updated, delta.day, policy)


def _notify_all(notifier: Notifier | None, delta: LedgerDelta, kind: str) -> None:
    for appt in delta.affected:
        dispatch(
            notifier,
            appt.patient_id,
            kind,
            {
                "appointment_id": appt.id,
                "doctor": appt.doctor,
                "date": appt.date,
                "time": appt.time,
                "arrive_by": delta.appointment_updates.get(appt.id, {}).get("arrive_by"),
            },
        )


def preview_break(
    conn: sqlite3.Connection,
    doctor_id: str,
    day: date,
    start_label: str,
    end_label: str,
    *,
    now: datetime,
    policy: SchedulingPolicy = DEFAULT_POLICY,
) -> BreakProposal:
    doctor = get_doctor(conn, doctor_id)
    ledger = fetch_day(conn, doctor.name, day)
    return propose_break(doctor, ledger, day, start_label, end_label, policy, now=now)


def confirm_break(
    conn: sqlite3.Connection,
    doctor_id: str,
    day: date,
    start_label: str,
    end_label: str,
    choice: str,
    *,
    now: datetime,
    policy: SchedulingPolicy = DEFAULT_POLICY,
    notifier: Notifier | None = None,
    actor: str | None = None,
) -> LedgerDelta:
    """Record a break and its extension choice in one transaction."""

    with batch(conn):
        doctor = get_doctor(conn, doctor_id)
        ledger = fetch_day(conn, doctor.name, day)
        proposal = propose_break(doctor, ledger, day, start_label, end_label, policy, now=now)
        delta = plan_confirm(doctor, ledger, proposal, choice, policy)
        apply_delta(conn, doctor, delta, policy)
        write_event(
            conn,
            actor,
            "break_confirm",
            entity="doctor",
            entity_id=doctor_id,
            meta={
                "date": format_day(day),
                "start": format_clock(proposal.start),
                "minutes": proposal.break_minutes,
                "choice": choice,
                "shifted": len(delta.appointment_updates),
            },
        )
    logger.info(
        "Break %s-%s on %s confirmed for %s (%s)",
        format_clock(proposal.start),
        format_clock(proposal.interval.end),
        format_day(day),
        doctor.name,
        choice,
    )
    _notify_all(notifier, delta, BREAK_SCHEDULED)
    return delta


def cancel_break(
    conn: sqlite3.Connection,
    doctor_id: str,
    day: date,
    *,
    now: datetime,
    break_start: datetime | None = None,
    policy: SchedulingPolicy = DEFAULT_POLICY,
    notifier: Notifier | None = None,
    actor: str | None = None,
) -> LedgerDelta:
    with batch(conn):
        doctor = get_doctor(conn, doctor_id)
        ledger = fetch_day(conn, doctor.name, day)
        delta = plan_cancel(doctor, ledger, day, now, policy, break_start=break_start)
        apply_delta(conn, doctor, delta, policy)
        write_event(
            conn,
            actor,
            "break_cancel",
            entity="doctor",
            entity_id=doctor_id,
            meta={
                "date": format_day(day),
                "breaks": [format_instant(i.start) for i in delta.intervals],
                "extension_kept": day.isoformat() in delta.extensions,
            },
        )
    logger.info("Cancelled %s break(s) on %s for %s", len(delta.intervals), format_day(day), doctor.name)
    _notify_all(notifier, delta, BREAK_CANCELLED)
    return delta


def break_state(doctor: Doctor, day: date, policy: SchedulingPolicy = DEFAULT_POLICY) -> BreakState:
    return BreakState.ACTIVE if break_intervals(doctor, day, policy) else BreakState.NO_BREAK
