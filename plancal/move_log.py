"""Persistent log of move attempts and their verification outcomes.

One row per event: ``submitted`` when the server accepted or refused a move,
``verified`` when the background verification finished.  Used by the
``status`` CLI command.  Writers are safe to call from any thread and never
raise.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, date, datetime

from peewee import BooleanField, CharField, IntegerField, Model, TextField

from .db import db
from .user_context import current_user_identity

log = logging.getLogger(__name__)

EVENT_SUBMITTED = "submitted"
EVENT_VERIFIED = "verified"


class MoveLog(Model):
    user = CharField(default="")
    event = CharField()  # submitted | verified
    month_key = CharField()  # e.g. "2025-03"
    target_date = CharField()  # YYYY-MM-DD
    workout_ids = TextField()  # JSON list
    success = BooleanField(null=True)
    payload_kind = CharField(null=True)  # full | minimal
    server_error = BooleanField(default=False)
    missing = TextField(default="[]")  # JSON list of base ids
    remapped = IntegerField(default=0)
    corrected = IntegerField(default=0)
    message = CharField(null=True, max_length=1024)
    created_at = IntegerField()  # Unix timestamp

    class Meta:
        database = db
        table_name = "move_log"

    def to_dict(self) -> dict:
        return {
            "user": self.user,
            "event": self.event,
            "month_key": self.month_key,
            "target_date": self.target_date,
            "workout_ids": json.loads(self.workout_ids),
            "success": self.success,
            "payload_kind": self.payload_kind,
            "server_error": self.server_error,
            "missing": json.loads(self.missing),
            "remapped": self.remapped,
            "corrected": self.corrected,
            "message": self.message,
            "created_at": self.created_at,
        }


def _ensure_connected() -> None:
    from .db import get_db

    get_db().connect(reuse_if_open=True)


def _now() -> int:
    return int(datetime.now(UTC).timestamp())


class MoveLogRecorder:
    """Writes ``MoveLog`` rows for the calendar state."""

    def move_submitted(self, ids, target: date, success: bool, payload_kind, message: str | None) -> None:
        try:
            _ensure_connected()
            MoveLog.create(
                user=current_user_identity() or "",
                event=EVENT_SUBMITTED,
                month_key=target.strftime("%Y-%m"),
                target_date=target.isoformat(),
                workout_ids=json.dumps(list(ids)),
                success=success,
                payload_kind=payload_kind.value if payload_kind is not None else None,
                message=(message or "")[:1024] or None,
                created_at=_now(),
            )
        except Exception as exc:
            log.warning("Could not record move submission: %s", exc)

    def verification_finished(self, ids, target: date, result) -> None:
        corrected = sum(1 for d in result.server_date_for_local.values() if d != target)
        try:
            _ensure_connected()
            MoveLog.create(
                user=current_user_identity() or "",
                event=EVENT_VERIFIED,
                month_key=target.strftime("%Y-%m"),
                target_date=target.isoformat(),
                workout_ids=json.dumps(list(ids)),
                success=not result.server_error and not result.missing,
                server_error=result.server_error,
                missing=json.dumps(sorted(result.missing)),
                remapped=len(result.matched_by_attrs),
                corrected=corrected,
                created_at=_now(),
            )
        except Exception as exc:
            log.warning("Could not record verification result: %s", exc)


def recent_moves(limit: int = 20) -> list[dict]:
    """Return the newest log rows first."""
    try:
        _ensure_connected()
        rows = MoveLog.select().order_by(MoveLog.created_at.desc(), MoveLog.id.desc()).limit(limit)
        return [row.to_dict() for row in rows]
    except Exception as exc:
        log.warning("Could not read move log: %s", exc)
        return []
