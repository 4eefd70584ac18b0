"""Move submission and the cache writes that follow a move.

Submission tries the full payload first and falls back to the minimal
``{base_id, date}`` payload.  ``CacheSync`` applies a successful move to the
month envelopes and later applies healing corrections (id remaps and date
corrections) found by the verifier.  Every cache write clears the etag of
the month it touched so the next load revalidates from scratch.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import UTC, date, datetime
from enum import Enum
from typing import NamedTuple

from .calendar import iso_weekday, month_key
from .errors import NotAuthenticatedError
from .month_cache import MonthCacheStore, MonthEnvelope, MonthLocks
from .planner import PlannerRoutes, Workout, group_by_month
from .transport import Transport

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class PayloadKind(Enum):
    FULL = "full"
    MINIMAL = "minimal"


def full_record(workout: Workout, target: date) -> dict:
    """Full-payload record for one moved workout.

    Protocol parts (``|water1``, ``|sauna``, ``|water2``) go out as their own
    records under the shared base id, each with its own kind and layers.
    """
    return {
        "base_id": workout.base_id,
        "date": f"{target.isoformat()} 00:00:00",
        "activity": workout.activity_type,
        "layers": workout.planned_layers or 0,
        "swim_layers": list(workout.swim_layers or ()),
        "day_of_week": iso_weekday(target),
        "duration_minutes": max(1, math.ceil(workout.duration or 0)),
        "is_deleted": False,
    }


def full_payload(workouts: Sequence[Workout], target: date) -> list[dict]:
    return [full_record(w, target) for w in workouts]


def minimal_payload(workouts: Sequence[Workout], target: date) -> list[dict]:
    bases = dict.fromkeys(w.base_id for w in workouts)
    return [{"base_id": base, "date": target.isoformat()} for base in bases]


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class SubmitResult(NamedTuple):
    ok: bool
    payload_kind: PayloadKind | None
    message: str = ""


class MoveSubmitter:
    def __init__(
        self,
        transport: Transport,
        routes: PlannerRoutes,
        identity_provider: Callable[[], str | None],
    ) -> None:
        self.transport = transport
        self.routes = routes
        self.identity_provider = identity_provider

    def submit(self, workouts: Sequence[Workout], target: date) -> SubmitResult:
        """POST the move; full payload first, then the minimal one."""
        identity = self.identity_provider()
        if not identity:
            raise NotAuthenticatedError("No user identity available for move submission")
        url = self.routes.calendar(identity)

        full = self.transport.post_json(url, full_payload(workouts, target))
        if full.ok:
            return SubmitResult(ok=True, payload_kind=PayloadKind.FULL)
        log.warning("Full move payload rejected (status=%s): %s; retrying minimal", full.status, full.message)

        minimal = self.transport.post_json(url, minimal_payload(workouts, target))
        if minimal.ok:
            return SubmitResult(ok=True, payload_kind=PayloadKind.MINIMAL)
        log.warning("Minimal move payload rejected (status=%s): %s", minimal.status, minimal.message)
        return SubmitResult(
            ok=False,
            payload_kind=None,
            message=f"Move failed (full: {full.status or full.message}, minimal: {minimal.status or minimal.message})",
        )


# ---------------------------------------------------------------------------
# Cache writes
# ---------------------------------------------------------------------------


class CacheSync:
    def __init__(self, store: MonthCacheStore, locks: MonthLocks) -> None:
        self.store = store
        self.locks = locks

    def _load(self, key: str) -> MonthEnvelope:
        return self.store.load(key) or MonthEnvelope.empty(key)

    def apply_move(self, moved: Sequence[Workout], previous_dates: Mapping[str, date]) -> None:
        """Reflect a submitted move in the month envelopes.

        *moved* already carries the target date.  Source months lose the
        moved ids; the destination month gains the ones it does not have.
        """
        if not moved:
            return
        moved_ids = {w.id for w in moved}
        source_keys = {month_key(d) for w_id, d in previous_dates.items() if w_id in moved_ids}
        arriving = group_by_month(moved)
        dest_keys = set(arriving)
        now = datetime.now(UTC)

        with self.locks.hold(*(source_keys | dest_keys)):
            for key in source_keys - dest_keys:
                envelope = self.store.load(key)
                if envelope is None:
                    continue
                self.store.save(
                    envelope._replace(
                        workouts=tuple(w for w in envelope.workouts if w.id not in moved_ids),
                        etag=None,
                    )
                )

            for key in dest_keys:
                envelope = self._load(key)
                incoming = {w.id: w for w in arriving[key]}
                kept = []
                for cached in envelope.workouts:
                    if cached.id in incoming:
                        # already here; only the day can differ
                        new_day = incoming.pop(cached.id).date
                        kept.append(cached if cached.date == new_day else cached._replace(date=new_day, updated_at=now))
                    elif cached.id in moved_ids:
                        continue
                    else:
                        kept.append(cached)
                kept.extend(w.to_cached(now) for w in incoming.values())
                self.store.save(envelope._replace(workouts=tuple(kept), etag=None))

    def remap_ids(self, id_map: Mapping[str, str], month_keys: Iterable[str]) -> None:
        """Rename local ids to the ids the server assigned."""
        if not id_map:
            return
        keys = set(month_keys)
        now = datetime.now(UTC)
        with self.locks.hold(*keys):
            for key in keys:
                envelope = self.store.load(key)
                if envelope is None or not (envelope.ids() & id_map.keys()):
                    continue
                present = envelope.ids()
                renamed = []
                for cached in envelope.workouts:
                    new_id = id_map.get(cached.id)
                    if new_id is None:
                        renamed.append(cached)
                    elif new_id in present and new_id != cached.id:
                        # the server copy is already cached; drop the stale local one
                        continue
                    else:
                        renamed.append(cached._replace(id=new_id, updated_at=now))
                self.store.save(envelope._replace(workouts=tuple(renamed), etag=None))

    def correct_dates(self, id_to_date: Mapping[str, date], month_keys: Iterable[str]) -> None:
        """Move cached workouts to the day the server reports for them."""
        if not id_to_date:
            return
        keys = set(month_keys) | {month_key(d) for d in id_to_date.values()}
        now = datetime.now(UTC)
        with self.locks.hold(*keys):
            envelopes = {k: self._load(k) for k in keys}
            relocated = []
            touched = set()
            for key, envelope in envelopes.items():
                kept = []
                for cached in envelope.workouts:
                    new_day = id_to_date.get(cached.id)
                    if new_day is None:
                        kept.append(cached)
                    else:
                        relocated.append(cached._replace(date=new_day, updated_at=now))
                        touched.add(key)
                envelopes[key] = envelope._replace(workouts=tuple(kept))

            for cached in relocated:
                key = month_key(cached.date)
                envelopes[key] = envelopes[key]._replace(workouts=envelopes[key].workouts + (cached,))
                touched.add(key)

            for key in touched:
                self.store.save(envelopes[key]._replace(etag=None))
