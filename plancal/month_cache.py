"""Month cache store: one JSON envelope per calendar month.

Files live in a single folder as ``<YYYY-MM>.json``.  Writes go to a temp
file in the same folder followed by ``os.replace`` so a crash never leaves a
half-written envelope behind.  Unreadable or malformed files are reported as
absent.

The store itself does not serialize writers.  Code that does
load-modify-save on a month must hold ``MonthLocks.hold(month_key)``.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, NamedTuple

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


class CachedWorkout(NamedTuple):
    id: str
    name: str
    date: date
    duration: int = 0  # minutes
    activity_type: str | None = None
    planned_layers: int | None = None
    swim_layers: tuple[int, ...] | None = None
    updated_at: datetime = datetime.fromtimestamp(0, UTC)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "date": self.date.isoformat(),
            "duration": self.duration,
            "activity_type": self.activity_type,
            "planned_layers": self.planned_layers,
            "swim_layers": list(self.swim_layers) if self.swim_layers is not None else None,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> CachedWorkout:
        swim = data.get("swim_layers")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            date=date.fromisoformat(data["date"]),
            duration=int(data.get("duration") or 0),
            activity_type=data.get("activity_type"),
            planned_layers=data.get("planned_layers"),
            swim_layers=tuple(int(v) for v in swim) if swim is not None else None,
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


class MonthEnvelope(NamedTuple):
    """Persisted state of one month.

    ``workouts`` is unique by id and never shares an id with
    ``soft_deleted_ids`` once saved.
    """

    month_key: str
    fetched_at: datetime
    etag: str | None = None
    workouts: tuple[CachedWorkout, ...] = ()
    soft_deleted_ids: frozenset[str] = frozenset()

    @classmethod
    def empty(cls, month_key: str) -> MonthEnvelope:
        return cls(month_key=month_key, fetched_at=datetime.now(UTC))

    def ids(self) -> set[str]:
        return {w.id for w in self.workouts}

    def normalized(self) -> MonthEnvelope:
        """Drop duplicate ids (last wins) and anything soft-deleted."""
        by_id: dict[str, CachedWorkout] = {}
        for w in self.workouts:
            by_id[w.id] = w
        kept = tuple(w for w in by_id.values() if w.id not in self.soft_deleted_ids)
        return self._replace(workouts=kept)

    def to_dict(self) -> dict[str, Any]:
        return {
            "month_key": self.month_key,
            "fetched_at": self.fetched_at.isoformat(),
            "etag": self.etag,
            "workouts": [w.to_dict() for w in self.workouts],
            "soft_deleted_ids": sorted(self.soft_deleted_ids),
        }

    @classmethod
    def from_dict(cls, data: dict) -> MonthEnvelope:
        return cls(
            month_key=str(data["month_key"]),
            fetched_at=datetime.fromisoformat(data["fetched_at"]),
            etag=data.get("etag"),
            workouts=tuple(CachedWorkout.from_dict(w) for w in data.get("workouts", [])),
            soft_deleted_ids=frozenset(str(i) for i in data.get("soft_deleted_ids", [])),
        )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class MonthCacheStore:
    def __init__(self, folder: str | os.PathLike) -> None:
        self.folder = Path(folder)

    def _path(self, month_key: str) -> Path:
        return self.folder / f"{month_key}.json"

    def load(self, month_key: str) -> MonthEnvelope | None:
        """Return the stored envelope, or ``None`` if missing or unreadable."""
        path = self._path(month_key)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return MonthEnvelope.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.warning("Ignoring unreadable month cache %s: %s", path.name, e)
            return None

    def save(self, envelope: MonthEnvelope) -> bool:
        """Atomically write *envelope*; returns ``False`` on any I/O error."""
        envelope = envelope.normalized()
        tmp_name = None
        try:
            self.folder.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{envelope.month_key}.", suffix=".tmp", dir=self.folder)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(envelope.to_dict(), f, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path(envelope.month_key))
            return True
        except OSError as e:
            log.warning("Could not save month cache %s: %s", envelope.month_key, e)
            if tmp_name:
                with contextlib.suppress(OSError):
                    os.remove(tmp_name)
            return False

    def delete(self, month_key: str) -> None:
        with contextlib.suppress(FileNotFoundError):
            self._path(month_key).unlink()

    def clear_all(self) -> int:
        """Remove every stored envelope; returns how many files were deleted."""
        if not self.folder.exists():
            return 0
        removed = 0
        for path in self.folder.glob("*.json"):
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                log.warning("Could not remove %s: %s", path, e)
        return removed

    def month_keys(self) -> list[str]:
        if not self.folder.exists():
            return []
        return sorted(p.stem for p in self.folder.glob("*.json"))


# ---------------------------------------------------------------------------
# Per-month write locks
# ---------------------------------------------------------------------------


class MonthLocks:
    """Registry of one ``threading.RLock`` per month key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def lock_for(self, month_key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(month_key)
            if lock is None:
                lock = self._locks[month_key] = threading.RLock()
            return lock

    @contextlib.contextmanager
    def hold(self, *month_keys: str) -> Iterator[None]:
        """Hold the locks of several months, acquired in sorted order."""
        locks = [self.lock_for(k) for k in sorted(set(month_keys))]
        with contextlib.ExitStack() as stack:
            for lock in locks:
                stack.enter_context(lock)
            yield
