"""Calendar state observed by the UI.

``CalendarState`` owns the in-memory list of planned workouts for the
visible grid and the per-day markers derived from it.  It is the only place
that mutates them; background verification re-enters through the healing
methods, which take the same lock.

A move runs as one unit: optimistic apply, submission, then either cache
sync (and a background verification) or a rollback of the optimistic apply.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future
from datetime import date, timedelta
from enum import Enum
from typing import NamedTuple

from .calendar import as_day, month_key, today, visible_grid_range
from .errors import PlancalError
from .moves import CacheSync, MoveSubmitter, PayloadKind
from .planner import LoadSource, PlannerService, Workout
from .rules import ActivityKind, DropRuleViolation, kind_of, validate_drop_list
from .transport import CachedClient
from .verify import MoveVerifyResult, PostMoveVerifier, VerificationScheduler

log = logging.getLogger(__name__)

MAX_MARKERS = 6

KIND_COLORS: dict[ActivityKind, str] = {
    ActivityKind.RUN: "orange",
    ActivityKind.SAUNA: "red",
    ActivityKind.POST: "purple",
    ActivityKind.WATER: "blue",
    ActivityKind.YOGA: "teal",
    ActivityKind.OTHER: "gray",
}


class Role(Enum):
    USER = "user"
    INSPECTOR = "inspector"


class DayEntry(NamedTuple):
    workout: Workout
    kind: ActivityKind
    color: str


class MoveOutcome(NamedTuple):
    ok: bool
    allowed_ids: list[str]
    violation: DropRuleViolation | None = None
    payload_kind: PayloadKind | None = None
    message: str = ""
    verification: Future | None = None


class CalendarState:
    def __init__(
        self,
        planner: PlannerService,
        submitter: MoveSubmitter,
        cache_sync: CacheSync,
        verifier: PostMoveVerifier,
        scheduler: VerificationScheduler,
        cached_client: CachedClient | None = None,
        recorder=None,
        today_provider: Callable[[], date] | None = None,
    ) -> None:
        self.planner = planner
        self.submitter = submitter
        self.cache_sync = cache_sync
        self.verifier = verifier
        self.scheduler = scheduler
        self.cached_client = cached_client
        self.recorder = recorder
        self.today_provider = today_provider or today

        self.role = Role.USER
        self.month_key = month_key(self.today_provider())
        self._lock = threading.RLock()
        self._planned: list[Workout] = []
        self._markers: dict[date, list[str]] = {}

    # ---- loading -------------------------------------------------------------

    def reload(
        self,
        role: Role = Role.USER,
        key: str | None = None,
        source: LoadSource = LoadSource.NETWORK_THEN_CACHE,
    ) -> list[Workout]:
        """Show cached data for the month at once, then replace it with the server's."""
        with self._lock:
            self.role = role
            if key is not None:
                self.month_key = key
            key = self.month_key
            self._set_planned(self.planner.prefill(key))
            if source == LoadSource.CACHE_ONLY:
                return list(self._planned)

        try:
            fresh = self.planner.load_visible(key)
        except PlancalError as e:
            log.warning("Reload of %s failed, keeping cached view: %s", key, e)
            return self.planned_workouts()

        with self._lock:
            if key == self.month_key:
                self._set_planned(fresh)
            return list(self._planned)

    def _set_planned(self, workouts: Iterable[Workout]) -> None:
        self._planned = sorted(workouts, key=lambda w: (w.date, w.id))
        self._recompute_markers()

    def _recompute_markers(self) -> None:
        start, end = visible_grid_range(self.month_key)
        markers: dict[date, list[str]] = {}
        for w in self._planned:
            if not start <= w.date <= end:
                continue
            colors = markers.setdefault(w.date, [])
            color = KIND_COLORS[kind_of(w)]
            if color not in colors and len(colors) < MAX_MARKERS:
                colors.append(color)
        self._markers = markers

    # ---- queries -------------------------------------------------------------

    def planned_workouts(self, on: date | None = None) -> list[Workout]:
        with self._lock:
            if on is None:
                return list(self._planned)
            day = as_day(on)
            return [w for w in self._planned if w.date == day]

    def items(self, on: date) -> list[DayEntry]:
        return [DayEntry(w, kind_of(w), KIND_COLORS[kind_of(w)]) for w in self.planned_workouts(on)]

    def markers(self, on: date) -> list[str]:
        with self._lock:
            return list(self._markers.get(as_day(on), []))

    def dates_with_planned_workouts(self) -> list[date]:
        with self._lock:
            return sorted({w.date for w in self._planned})

    def workouts_by_ids(self, ids: Iterable[str]) -> list[Workout]:
        wanted = list(ids)
        with self._lock:
            by_id = {w.id: w for w in self._planned}
        return [by_id[i] for i in wanted if i in by_id]

    def validate_dragged_ids(self, ids: Iterable[str], to: date) -> tuple[list[str], DropRuleViolation | None]:
        target = as_day(to)
        with self._lock:
            dragged = self.workouts_by_ids(ids)
            target_day = [w for w in self._planned if w.date == target]
            return validate_drop_list(dragged, target, target_day, list(self._planned))

    # ---- moving --------------------------------------------------------------

    def move_workouts(self, ids: Iterable[str], to: date) -> MoveOutcome:
        """Move the allowed subset of *ids* to *to*.

        Returns once the server accepted or refused the move.  Verification
        continues in the background (``MoveOutcome.verification``).
        """
        target = as_day(to)
        if self.role == Role.INSPECTOR:
            return MoveOutcome(ok=False, allowed_ids=[], message="Inspector view is read-only")

        allowed, violation = self.validate_dragged_ids(ids, target)
        if not allowed:
            return MoveOutcome(
                ok=False,
                allowed_ids=[],
                violation=violation,
                message=violation.message if violation else "Nothing to move",
            )

        with self._lock:
            previous = {w.id: w.date for w in self.workouts_by_ids(allowed)}
            moved = [w._replace(date=target) for w in self.workouts_by_ids(allowed)]
            self._replace_workouts({w.id: w for w in moved})

        try:
            submitted = self.submitter.submit(moved, target)
        except PlancalError as e:
            submitted = None
            failure = str(e)
        else:
            failure = submitted.message

        if submitted is None or not submitted.ok:
            with self._lock:
                self._restore_dates(previous)
            log.warning("Move of %s to %s rolled back: %s", allowed, target, failure)
            self._record("move_submitted", allowed, target, False, None, failure)
            return MoveOutcome(ok=False, allowed_ids=allowed, violation=violation, message=failure)

        self.cache_sync.apply_move(moved, previous)
        if self.cached_client is not None:
            self.cached_client.cache.invalidate_all()
        self._record("move_submitted", allowed, target, True, submitted.payload_kind, "")

        future = self.scheduler.schedule(month_key(target), lambda cancel: self._verify(target, moved, cancel))
        return MoveOutcome(
            ok=True,
            allowed_ids=allowed,
            violation=violation,
            payload_kind=submitted.payload_kind,
            verification=future,
        )

    def _verify(self, target: date, moved: list[Workout], cancel: threading.Event) -> MoveVerifyResult:
        result = self.verifier.verify_and_heal(self, target, moved, cancel)
        self._record("verification_finished", [w.id for w in moved], target, result)
        return result

    def _replace_workouts(self, replacements: dict[str, Workout]) -> None:
        self._set_planned(replacements.get(w.id, w) for w in self._planned)

    def _restore_dates(self, previous: dict[str, date]) -> None:
        self._set_planned(w._replace(date=previous[w.id]) if w.id in previous else w for w in self._planned)

    def _record(self, event: str, *args) -> None:
        if self.recorder is not None:
            getattr(self.recorder, event)(*args)

    # ---- healing -------------------------------------------------------------

    @staticmethod
    def _months_around(target: date) -> set[str]:
        return {month_key(target + timedelta(days=offset)) for offset in (-1, 0, 1)}

    def apply_server_id_remap(self, id_map: dict[str, str], target_date: date) -> None:
        with self._lock:
            existing = {w.id for w in self._planned}
            remapped = []
            for w in self._planned:
                new_id = id_map.get(w.id)
                if new_id is None:
                    remapped.append(w)
                elif new_id != w.id and new_id in existing:
                    continue
                else:
                    remapped.append(w._replace(id=new_id))
            self._set_planned(remapped)
            self.cache_sync.remap_ids(id_map, self._months_around(target_date))
        log.info("Remapped %d id(s) after moving to %s", len(id_map), target_date)

    def apply_server_date_correction(self, id_to_date: dict[str, date], target_date: date) -> None:
        with self._lock:
            self._restore_dates(id_to_date)
            self.cache_sync.correct_dates(id_to_date, self._months_around(target_date))
        log.info("Corrected %d date(s) after moving to %s", len(id_to_date), target_date)

    def reload_after_verification(self, target_date: date) -> None:
        self.reload(self.role)
