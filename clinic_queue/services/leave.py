"""Break/leave markers normalised into sorted intervals per date.

Doctors carry leave in two stored shapes: flat ISO instants (one marker per
blocked consulting slot) and the older ``{"date": "yyyy-MM-dd", "slots":
[{"from", "to"}]}`` objects. Both are converted into :class:`BreakInterval`
values here; nothing outside this module looks at the raw shapes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
import logging
from typing import Any, Iterable, Mapping

from .errors import ValidationFailed
from .records import Doctor, format_instant, parse_clock, parse_day, parse_instant
from .schedule import DEFAULT_POLICY, SchedulingPolicy, consulting_minutes, sessions_for_day

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BreakInterval:
    start: datetime
    end: datetime

    @property
    def minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": format_instant(self.start),
            "end": format_instant(self.end),
            "minutes": self.minutes,
        }


def _legacy_pairs(entry: Mapping[str, Any]) -> list[tuple[Any, tuple[datetime, datetime] | None]]:
    """Each stored slot of a legacy entry with its parsed range (None if unreadable)."""
    try:
        day = parse_day(entry["date"])
    except (KeyError, ValidationFailed):
        logger.warning("Ignoring leave entry without a usable date: %r", entry)
        return [(slot, None) for slot in entry.get("slots") or []]
    pairs: list[tuple[Any, tuple[datetime, datetime] | None]] = []
    for slot in entry.get("slots") or []:
        try:
            start = datetime.combine(day, parse_clock(slot["from"]))
            end = datetime.combine(day, parse_clock(slot["to"]))
        except (KeyError, TypeError, ValidationFailed):
            logger.warning("Ignoring malformed leave range: %r", slot)
            pairs.append((slot, None))
            continue
        pairs.append((slot, (start, end) if end > start else None))
    return pairs


def _legacy_ranges(entry: Mapping[str, Any]) -> list[tuple[datetime, datetime]]:
    return [rng for _, rng in _legacy_pairs(entry) if rng is not None]


def _raw_ranges(doctor: Doctor, day: date, step: timedelta) -> list[tuple[datetime, datetime]]:
    ranges: list[tuple[datetime, datetime]] = []
    for entry in doctor.leave_slots:
        if isinstance(entry, Mapping):
            ranges.extend(r for r in _legacy_ranges(entry) if r[0].date() == day)
            continue
        instant = parse_instant(entry) if isinstance(entry, str) else None
        if instant is None:
            logger.warning("Ignoring unreadable leave marker for %s: %r", doctor.name, entry)
            continue
        if instant.date() == day:
            ranges.append((instant, instant + step))
    return ranges


def break_intervals(
    doctor: Doctor,
    day: date,
    policy: SchedulingPolicy = DEFAULT_POLICY,
) -> list[BreakInterval]:
    """Merged, sorted break intervals for ``day``.

    A run of markers where each one starts exactly where the previous one
    ends collapses into a single interval.
    """

    step = timedelta(minutes=consulting_minutes(doctor, policy))
    merged: list[list[datetime]] = []
    for start, end in sorted(set(_raw_ranges(doctor, day, step))):
        if merged and start <= merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    return [BreakInterval(start, end) for start, end in merged]


def blocked_instants(intervals: Iterable[BreakInterval], slots: Iterable[datetime]) -> set[datetime]:
    intervals = list(intervals)
    return {slot for slot in slots if any(i.contains(slot) for i in intervals)}


def in_break(instant: datetime, intervals: Iterable[BreakInterval]) -> bool:
    return any(i.contains(instant) for i in intervals)


def append_markers(leave_slots: Iterable[Any], instants: Iterable[datetime]) -> list[Any]:
    result = list(leave_slots)
    existing = {parse_instant(e) for e in result if isinstance(e, str)}
    for instant in instants:
        if instant not in existing:
            result.append(format_instant(instant))
            existing.add(instant)
    return result


def remove_interval(leave_slots: Iterable[Any], interval: BreakInterval) -> list[Any]:
    """Drop every marker (either shape) that lies inside ``interval``."""

    result: list[Any] = []
    for entry in leave_slots:
        if isinstance(entry, Mapping):
            kept = [
                slot
                for slot, rng in _legacy_pairs(entry)
                if rng is None or not (interval.start <= rng[0] and rng[1] <= interval.end)
            ]
            if kept:
                result.append({**entry, "slots": kept})
            continue
        instant = parse_instant(entry) if isinstance(entry, str) else None
        if instant is not None and interval.contains(instant):
            continue
        result.append(entry)
    return result


def prune_orphans(doctor: Doctor) -> list[Any]:
    """Keep only leave entries that still fall inside a session of their weekday."""

    def inside(start: datetime, end: datetime) -> bool:
        return any(s.start <= start and end <= s.end for s in sessions_for_day(doctor, start.date()))

    result: list[Any] = []
    for entry in doctor.leave_slots:
        if isinstance(entry, Mapping):
            kept = [
                slot
                for slot, rng in _legacy_pairs(entry)
                if rng is not None and inside(*rng)
            ]
            if kept:
                result.append({**entry, "slots": kept})
            continue
        instant = parse_instant(entry) if isinstance(entry, str) else None
        if instant is None:
            continue
        if any(s.contains(instant) for s in sessions_for_day(doctor, instant.date())):
            result.append(entry)
        else:
            logger.info("Pruning orphaned leave marker %s for %s", entry, doctor.name)
    return result


def derived_timestamps(
    scheduled: datetime,
    offset: timedelta,
    policy: SchedulingPolicy = DEFAULT_POLICY,
) -> tuple[datetime, datetime, datetime]:
    """(arrive_by, cut_off_time, no_show_time) for a slot pushed by ``offset``."""

    grace = timedelta(minutes=policy.arrival_grace_minutes)
    arrive_by = scheduled + offset
    return arrive_by, arrive_by - grace, arrive_by + grace
