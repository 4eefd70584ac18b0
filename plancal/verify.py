"""Post-move verification and healing.

After a move is accepted, the verifier reads the server's view of the
target day and both neighbors, decides which moved workouts are really
there, and heals local state:

  1. remap local ids to the ids the server assigned
  2. correct dates the server put on a neighbor day
  3. reload the month if anything is still missing

Verification runs in the background through ``VerificationScheduler``,
which keeps at most one live verification per month.
"""

from __future__ import annotations

import contextvars
import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from datetime import date, timedelta
from typing import NamedTuple, Protocol

from .errors import NotAuthenticatedError, PlancalError, PlannerDecodeError, TransportError
from .planner import PlannerClient, Workout, base_id
from .rules import kind_of

log = logging.getLogger(__name__)

# Sleep before each retry of the day triplet
RETRY_BACKOFF = (0.25, 0.5, 1.0)
MAX_ATTEMPTS = 3

# Day offsets from the target, in match priority order
DAY_OFFSETS = (0, 1, -1)


class MoveVerifyResult(NamedTuple):
    date: date
    expected_ids: frozenset[str]  # base ids of the moved workouts
    server_ids: frozenset[str]  # base ids seen on the three days
    matched_by_attrs: dict[str, str]  # local id -> server id
    server_date_for_local: dict[str, date]  # local id -> day the server has it on
    server_error: bool = False

    @property
    def present(self) -> frozenset[str]:
        return self.expected_ids & self.server_ids

    @property
    def missing(self) -> frozenset[str]:
        matched = {base_id(local_id) for local_id in self.matched_by_attrs}
        return self.expected_ids - self.server_ids - matched


class Healer(Protocol):
    """What the verifier needs from the calendar state to heal it."""

    def apply_server_id_remap(self, id_map: dict[str, str], target_date: date) -> None: ...

    def apply_server_date_correction(self, id_to_date: dict[str, date], target_date: date) -> None: ...

    def reload_after_verification(self, target_date: date) -> None: ...


class VerificationCancelled(PlancalError):
    """Raised inside a verification that a newer one superseded."""


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


def _layers(w: Workout) -> tuple[int, tuple[int, ...]]:
    return (w.planned_layers or 0, tuple(w.swim_layers or ()))


def match_by_attributes(
    buckets: Sequence[tuple[date, list[Workout]]],
    moved: Sequence[Workout],
    used: set[str] | None = None,
) -> tuple[dict[str, str], dict[str, date]]:
    """Pair each moved workout with an unused server workout of the same kind.

    *buckets* are searched in the given order.  A candidate whose layers and
    swim layers also match is preferred over a kind-only match.  Each server
    workout is handed out once, in the order of *moved*.
    """
    used = set() if used is None else used
    id_map: dict[str, str] = {}
    date_map: dict[str, date] = {}

    for local in moved:
        kind = kind_of(local)
        hit: tuple[str, date] | None = None

        for strict in (True, False):
            for day, server_workouts in buckets:
                for candidate in server_workouts:
                    if candidate.id in used or kind_of(candidate) != kind:
                        continue
                    if strict and _layers(candidate) != _layers(local):
                        continue
                    hit = (candidate.id, day)
                    break
                if hit:
                    break
            if hit:
                break

        if hit:
            id_map[local.id] = hit[0]
            date_map[local.id] = hit[1]
            used.add(hit[0])
            log.info("Matched local %s -> server %s on %s", local.id, hit[0], hit[1])
    return id_map, date_map


# ---------------------------------------------------------------------------
# Verifier
# ---------------------------------------------------------------------------


class PostMoveVerifier:
    def __init__(
        self,
        client: PlannerClient,
        sleep: Callable[[float], None] = time.sleep,
        backoff: Sequence[float] = RETRY_BACKOFF,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        self.client = client
        self.sleep = sleep
        self.backoff = tuple(backoff)
        self.max_attempts = max_attempts

    def _fetch_day(self, day: date) -> list[Workout]:
        workouts = self.client.fetch_day(day, ttl=0)
        return [w for w in workouts if w.date == day]

    def _fetch_triplet(self, days: Sequence[date]) -> list[tuple[date, list[Workout]]]:
        """Fetch all days concurrently; any failure fails the whole triplet."""
        with ThreadPoolExecutor(max_workers=len(days), thread_name_prefix="verify-day") as pool:
            futures = [(day, pool.submit(contextvars.copy_context().run, self._fetch_day, day)) for day in days]
            return [(day, future.result()) for day, future in futures]

    def verify(
        self,
        target_date: date,
        moved: Sequence[Workout],
        cancel: threading.Event | None = None,
    ) -> MoveVerifyResult:
        expected = frozenset(w.base_id for w in moved)
        days = [target_date + timedelta(days=offset) for offset in DAY_OFFSETS]

        buckets = None
        for attempt in range(self.max_attempts):
            if cancel is not None and cancel.is_set():
                raise VerificationCancelled(f"Verification for {target_date} superseded")
            try:
                buckets = self._fetch_triplet(days)
                break
            except NotAuthenticatedError as e:
                log.warning("Verify for %s skipped: %s", target_date, e)
                break
            except (TransportError, PlannerDecodeError) as e:
                log.info("Verify attempt %d for %s failed: %s", attempt + 1, target_date, e)
                if attempt < self.max_attempts - 1:
                    self.sleep(self.backoff[min(attempt, len(self.backoff) - 1)])

        if buckets is None:
            log.error("Post-move verify for %s failed after %d attempts", target_date, self.max_attempts)
            return MoveVerifyResult(
                date=target_date,
                expected_ids=expected,
                server_ids=frozenset(),
                matched_by_attrs={},
                server_date_for_local={},
                server_error=True,
            )

        server_ids = frozenset(base_id(w.id) for _, ws in buckets for w in ws)

        # days where identity-matched workouts actually are
        date_map: dict[str, date] = {}
        used: set[str] = set()
        for local in moved:
            for same in (lambda w: w.id == local.id, lambda w: w.base_id == local.base_id):
                found = next(
                    ((day, w) for day, ws in buckets for w in ws if w.id not in used and same(w)),
                    None,
                )
                if found is not None:
                    used.add(found[1].id)
                    date_map[local.id] = found[0]
                    break

        unmatched = [w for w in moved if w.base_id not in server_ids]
        id_map, attr_dates = match_by_attributes(buckets, unmatched, used)
        date_map.update(attr_dates)

        result = MoveVerifyResult(
            date=target_date,
            expected_ids=expected,
            server_ids=server_ids,
            matched_by_attrs=id_map,
            server_date_for_local=date_map,
        )
        if result.missing:
            log.warning("Post-move verify for %s: missing %s", target_date, sorted(result.missing))
        else:
            log.info("Post-move verify for %s OK", target_date)
        return result

    def verify_and_heal(
        self,
        healer: Healer,
        target_date: date,
        moved: Sequence[Workout],
        cancel: threading.Event | None = None,
    ) -> MoveVerifyResult:
        result = self.verify(target_date, moved, cancel)
        if result.server_error:
            return result
        if cancel is not None and cancel.is_set():
            raise VerificationCancelled(f"Verification for {target_date} superseded")

        if result.matched_by_attrs:
            healer.apply_server_id_remap(dict(result.matched_by_attrs), target_date)

        corrections: dict[str, date] = {}
        for local_id, server_day in result.server_date_for_local.items():
            if server_day != target_date:
                corrections[result.matched_by_attrs.get(local_id, local_id)] = server_day
        if corrections:
            healer.apply_server_date_correction(corrections, target_date)

        if result.missing:
            log.warning("Healing %s: workouts still missing, reloading month", target_date)
            healer.reload_after_verification(target_date)
        return result


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


class VerificationScheduler:
    """Runs verifications in the background, one live task per month key.

    Scheduling a task for a month whose previous task is still pending or
    running cancels that task first.
    """

    def __init__(self, executor: ThreadPoolExecutor | None = None, max_workers: int = 2) -> None:
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="verify")
        self._lock = threading.Lock()
        self._inflight: dict[str, tuple[Future, threading.Event]] = {}

    def schedule(self, key: str, task: Callable[[threading.Event], object]) -> Future:
        cancel = threading.Event()
        with self._lock:
            previous = self._inflight.get(key)
            if previous is not None:
                prev_future, prev_cancel = previous
                prev_cancel.set()
                prev_future.cancel()
                log.debug("Superseding verification for %s", key)
            # carry the caller's user identity into the worker thread
            future = self._executor.submit(contextvars.copy_context().run, self._run, key, task, cancel)
            self._inflight[key] = (future, cancel)
        return future

    def _run(self, key: str, task: Callable[[threading.Event], object], cancel: threading.Event):
        try:
            return task(cancel)
        except VerificationCancelled as e:
            log.debug("%s", e)
            return None
        except Exception:
            log.exception("Background verification for %s crashed", key)
            return None
        finally:
            with self._lock:
                current = self._inflight.get(key)
                if current is not None and current[1] is cancel:
                    del self._inflight[key]

    def pending(self) -> list[str]:
        with self._lock:
            return sorted(self._inflight)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until every scheduled verification finished; False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                futures = [f for f, _ in self._inflight.values()]
            if not futures:
                return True
            for future in futures:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                try:
                    future.exception(timeout=remaining)
                except FuturesTimeout:
                    return False
                except CancelledError:
                    continue
            if deadline is not None and time.monotonic() >= deadline:
                with self._lock:
                    return not self._inflight

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
