"""Patient notification dispatch.

Delivery (SMS, WhatsApp, push) happens elsewhere; the booking core only
records what should be sent. Dispatch runs after the ledger commit and a
failed dispatch never undoes a booking.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)

APPOINTMENT_CONFIRMED = "appointment_confirmed"
APPOINTMENT_CANCELLED = "appointment_cancelled"
TOKEN_CALLED = "token_called"
BREAK_SCHEDULED = "break_scheduled"
BREAK_CANCELLED = "break_cancelled"
TEMPLATE_KINDS = (APPOINTMENT_CONFIRMED, APPOINTMENT_CANCELLED, TOKEN_CALLED, BREAK_SCHEDULED, BREAK_CANCELLED)


class Notifier:
    def notify(self, patient_id: str, template_kind: str, payload: Mapping[str, Any]) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    def notify(self, patient_id: str, template_kind: str, payload: Mapping[str, Any]) -> None:
        logger.info("notify %s -> %s %s", template_kind, patient_id, dict(payload))


class OutboxNotifier(Notifier):
    """Queue notifications in ``notifications_outbox`` for a delivery worker."""

    def __init__(self, connect: Callable[[], sqlite3.Connection]) -> None:
        self._connect = connect

    def notify(self, patient_id: str, template_kind: str, payload: Mapping[str, Any]) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO notifications_outbox(patient_id, template_kind, payload_json, created_at)
                VALUES (?, ?, ?, datetime('now'))
                """,
                (patient_id, template_kind, json.dumps(dict(payload), ensure_ascii=False, default=str)),
            )
            conn.commit()
        finally:
            conn.close()


def dispatch(notifier: Notifier | None, patient_id: str | None, template_kind: str, payload: Mapping[str, Any]) -> bool:
    if notifier is None or not patient_id:
        return False
    if template_kind not in TEMPLATE_KINDS:
        raise ValueError(f"unknown template kind {template_kind!r}")
    try:
        notifier.notify(patient_id, template_kind, payload)
    except Exception:
        logger.exception("Notification %s for patient %s failed", template_kind, patient_id)
        return False
    return True
