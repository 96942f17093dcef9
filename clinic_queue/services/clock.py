"""Injectable wall clock so booking decisions can be pinned in tests."""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app


class SystemClock:
    """Naive local time, matching how sessions are written in the templates."""

    def now(self) -> datetime:
        return datetime.now().replace(microsecond=0)


class FixedClock:
    def __init__(self, at: datetime) -> None:
        self._at = at

    def now(self) -> datetime:
        return self._at

    def set(self, at: datetime) -> None:
        self._at = at

    def advance(self, minutes: int) -> datetime:
        self._at = self._at + timedelta(minutes=minutes)
        return self._at


def current_clock():
    clock = current_app.extensions.get("clock")
    if clock is None:
        clock = SystemClock()
        current_app.extensions["clock"] = clock
    return clock


def now() -> datetime:
    return current_clock().now()
