"""Error taxonomy for the booking core plus lightweight diagnostics logging."""

from __future__ import annotations

from datetime import datetime, UTC
from pathlib import Path
import traceback

from flask import current_app


class ClinicError(Exception):
    """Base exception for booking and scheduling operations."""

    code = "clinic_error"
    http_status = 400
    retryable = False

    def __init__(self, code: str | None = None, detail: str | None = None) -> None:
        if code:
            self.code = code
        self.detail = detail
        super().__init__(detail or self.code)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "success": False,
            "error": self.code,
            "retryable": self.retryable,
        }
        if self.detail:
            payload["detail"] = self.detail
        return payload


class ValidationFailed(ClinicError):
    """Request input is missing or malformed; nothing was read or written."""

    code = "validation_failed"
    http_status = 400


class NotFound(ClinicError):
    code = "not_found"
    http_status = 404


class DomainError(ClinicError):
    """An expected, named outcome that the caller must branch on."""

    code = "domain_error"
    http_status = 409


class DoctorUnavailable(DomainError):
    code = "doctor_unavailable_today"


class NoSlotsRemaining(DomainError):
    code = "no_walk_in_slots_remaining"


class OutsideBookingWindow(DomainError):
    code = "walk_in_outside_booking_window"


class SlotUnavailable(DomainError):
    code = "slot_unavailable"


class DuplicateBooking(DomainError):
    code = "duplicate_booking"


class InvalidTransition(DomainError):
    code = "invalid_transition"


class BreakSelectionInvalid(DomainError):
    code = "break_selection_invalid"
    http_status = 422


class ExtensionChoiceInvalid(DomainError):
    code = "extension_choice_invalid"
    http_status = 422


class NoBreakFound(DomainError):
    code = "no_break_found"
    http_status = 404


class BreakCancellationTooLate(DomainError):
    code = "break_cancellation_too_close_to_session"


class LedgerConflict(ClinicError):
    """A concurrent writer got there first (duplicate token or slot)."""

    code = "ledger_conflict"
    http_status = 409
    retryable = True


class StoreUnavailable(ClinicError):
    """The backing store could not be reached or is locked."""

    code = "store_unavailable"
    http_status = 503
    retryable = True


def record_exception(context: str, exc: BaseException) -> None:
    """Append exception details to data/logs/app_errors.log for offline inspection."""

    try:
        root = Path(current_app.config["DATA_ROOT"]) / "logs"
        root.mkdir(parents=True, exist_ok=True)
        log_path = root / "app_errors.log"
        with log_path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{datetime.now(UTC).isoformat()}Z] {context}\n")
            handle.write("".join(traceback.format_exception(exc)))
            handle.write("\n")
    except Exception:
        # Never let logging failures break the request cycle.
        current_app.logger.exception("Could not write diagnostics for %s", context)
