"""Append-only audit logging."""

from __future__ import annotations

import json
from datetime import datetime, timezone
import sqlite3
from typing import Any, Mapping

from flask import g, has_request_context, request

from .database import db

SENSITIVE_KEYS = {"notes", "note", "treatment", "phone", "details"}


def _sanitize_meta(meta: Mapping[str, Any] | None) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    if not meta:
        return cleaned
    for key, value in meta.items():
        key_lower = key.lower()
        if key_lower in SENSITIVE_KEYS:
            cleaned[key] = "[redacted]"
        else:
            cleaned[key] = value
    return cleaned


def current_actor() -> str | None:
    if not has_request_context():
        return None
    actor = getattr(g, "actor", None)
    return actor or request.headers.get("X-Clinic-Actor") or None


def write_event(
    conn: sqlite3.Connection,
    actor: str | None,
    action: str,
    *,
    entity: str | None = None,
    entity_id: str | None = None,
    result: str = "ok",
    meta: Mapping[str, Any] | None = None,
) -> None:
    """Insert one audit row on ``conn``; inside a batch it commits with the change it describes."""

    payload = json.dumps(_sanitize_meta(meta), ensure_ascii=False, default=str)
    conn.execute(
        """
        INSERT INTO audit_log(actor, action, entity, entity_id, ts, result, meta_json_redacted)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            actor,
            action,
            entity,
            entity_id,
            datetime.now(timezone.utc).isoformat(),
            result,
            payload,
        ),
    )


def audit_rate_limit(scope: str) -> None:
    conn = db()
    try:
        write_event(conn, current_actor(), "rate_limit", meta={"scope": scope, "path": request.path}, result="blocked")
        conn.commit()
    finally:
        conn.close()
