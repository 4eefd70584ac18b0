"""Planner fetch and merge.

This module turns server planner records into ``Workout`` values and keeps
the month cache in step with the server:

  - Strict mapping of planner records (``PlannerRecord.from_json``)
  - Protocol expansion of sauna sessions into water/sauna/water entries
  - Deduplication of fetched workouts
  - Range fetch with per-day fallback for the visible grid
  - Conditional (etag) fetch of a month and its merge into the cache
  - The offline repository used by the calendar state

Nothing here touches in-memory UI state; ``plancal.state`` owns that.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime
from enum import Enum
from typing import NamedTuple
from urllib.parse import quote

import pytz
from dateutil import parser as date_parser

from .calendar import (
    days_between,
    month_bounds,
    month_key,
    months_in_range,
    shift_month,
    today,
    visible_grid_range,
)
from .errors import NotAuthenticatedError, PlancalError, PlannerDecodeError, TransportError
from .json_value import JsonKind, JsonValue
from .month_cache import CachedWorkout, MonthCacheStore, MonthEnvelope, MonthLocks
from .rules import ActivityKind, normalize
from .transport import CachedClient, Transport

log = logging.getLogger(__name__)

DEFAULT_NAME = "Workout"
MAX_LAYERS = 5
RANGE_TTL = 60.0

PROTOCOL_WATER1 = "water1"
PROTOCOL_SAUNA = "sauna"
PROTOCOL_WATER2 = "water2"


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


def base_id(workout_id: str) -> str:
    """Identifier portion before the first ``|`` protocol suffix."""
    return workout_id.split("|", 1)[0]


class Workout(NamedTuple):
    id: str
    name: str
    date: date
    duration: int = 0  # minutes
    description: str | None = None
    activity_type: str | None = None
    planned_layers: int | None = None
    swim_layers: tuple[int, ...] | None = None

    @property
    def base_id(self) -> str:
        return base_id(self.id)

    def to_cached(self, updated_at: datetime | None = None) -> CachedWorkout:
        return CachedWorkout(
            id=self.id,
            name=self.name,
            date=self.date,
            duration=self.duration,
            activity_type=self.activity_type,
            planned_layers=self.planned_layers,
            swim_layers=self.swim_layers,
            updated_at=updated_at or datetime.now(UTC),
        )

    @classmethod
    def from_cached(cls, cached: CachedWorkout) -> Workout:
        return cls(
            id=cached.id,
            name=cached.name,
            date=cached.date,
            duration=cached.duration,
            activity_type=cached.activity_type,
            planned_layers=cached.planned_layers,
            swim_layers=cached.swim_layers,
        )


_RECORD_STRING_FIELDS = (
    "date",
    "start_date",
    "planned_date",
    "workout_date",
    "description",
    "activity",
    "activity_type",
    "type",
    "name",
    "workout_uuid",
    "workout_key",
    "id",
)
_RECORD_INT_FIELDS = ("duration_hours", "duration_minutes", "layers")


class PlannerRecord(NamedTuple):
    """One planner record as sent by the server (schema v1).

    Unknown members are ignored; known members with the wrong JSON type make
    the whole record fail to decode.
    """

    date: str | None = None
    start_date: str | None = None
    planned_date: str | None = None
    workout_date: str | None = None
    description: str | None = None
    duration_hours: int | None = None
    duration_minutes: int | None = None
    activity: str | None = None
    activity_type: str | None = None
    type: str | None = None
    name: str | None = None
    workout_uuid: str | None = None
    workout_key: str | None = None
    id: str | None = None
    layers: int | None = None
    swim_layers: tuple[int, ...] | None = None

    @classmethod
    def from_json(cls, value: JsonValue) -> PlannerRecord:
        obj = value.as_dict()
        if obj is None:
            raise PlannerDecodeError(f"Planner record must be an object, got {value.kind.value}")

        fields: dict = {}
        for name in _RECORD_STRING_FIELDS:
            member = obj.get(name, JsonValue.null())
            if member.is_null:
                continue
            # ids are sometimes numeric on the wire
            if name in ("id", "workout_key") and member.kind == JsonKind.NUMBER:
                number = member.as_int()
                if number is None:
                    raise PlannerDecodeError(f"Planner field {name!r} must be a whole number")
                fields[name] = str(number)
                continue
            text = member.as_str()
            if text is None:
                raise PlannerDecodeError(f"Planner field {name!r} must be a string, got {member.kind.value}")
            fields[name] = text

        for name in _RECORD_INT_FIELDS:
            member = obj.get(name, JsonValue.null())
            if member.is_null:
                continue
            number = member.as_int()
            if number is None:
                raise PlannerDecodeError(f"Planner field {name!r} must be an integer, got {member.kind.value}")
            fields[name] = number

        swim = obj.get("swim_layers", JsonValue.null())
        if not swim.is_null:
            items = swim.as_list()
            if items is None:
                raise PlannerDecodeError("Planner field 'swim_layers' must be an array")
            layers = []
            for item in items:
                number = item.as_int()
                if number is None:
                    raise PlannerDecodeError("Planner field 'swim_layers' must contain integers")
                layers.append(number)
            fields["swim_layers"] = tuple(layers)

        return cls(**fields)

    @property
    def raw_date(self) -> str | None:
        return self.date or self.start_date or self.planned_date or self.workout_date

    @property
    def record_id(self) -> str | None:
        return self.workout_uuid or self.workout_key or self.id


def decode_planner_payload(payload) -> list[PlannerRecord]:
    """Decode a planner response body (a JSON array of records).

    Raises:
        PlannerDecodeError: if the body is not an array of planner records.
    """
    try:
        value = JsonValue.from_python(payload)
    except TypeError as e:
        raise PlannerDecodeError(str(e), payload=payload) from e
    items = value.as_list()
    if items is None:
        raise PlannerDecodeError(f"Planner payload must be an array, got {value.kind.value}", payload=payload)
    return [PlannerRecord.from_json(item) for item in items]


# ---------------------------------------------------------------------------
# Record mapping
# ---------------------------------------------------------------------------

_TYPE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("swim", ("swim", "плав", "water")),
    ("run", ("run", "бег", "walk", "ход")),
    ("bike", ("bike", "velo", "вел", "cycl")),
    ("yoga", ("yoga", "йога", "strength", "сил")),
    ("sauna", ("sauna", "баня", "хаммам")),
)


def infer_type_key(strings: Iterable[str | None]) -> str | None:
    """Guess an activity key from free-text labels, or ``None``."""
    hay = " | ".join(s.lower() for s in strings if s)
    for key, keywords in _TYPE_KEYWORDS:
        if any(k in hay for k in keywords):
            return key
    return None


def parse_record_date(raw: str | None, tz: str = "UTC") -> date | None:
    """Parse a planner date string to a calendar day.

    Accepts ``YYYY-MM-DDTHH:MM:SS±HH:MM``/``Z``, ``YYYY-MM-DD HH:MM:SS`` and
    ``YYYY-MM-DD``.  Offset-aware values are converted to *tz* first.
    """
    if not raw:
        return None
    try:
        parsed = date_parser.isoparse(raw.strip())
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        try:
            parsed = parsed.astimezone(pytz.timezone(tz))
        except pytz.UnknownTimeZoneError:
            pass
    return parsed.date()


def expand_record(record: PlannerRecord, tz: str = "UTC") -> list[Workout]:
    """Map one planner record to one or more workouts.

    A sauna record carrying layers and/or swim layers becomes up to three
    entries sharing the record's base id: ``<id>|water1``, ``<id>|sauna``,
    ``<id>|water2``.  Layer counts are clamped to ``MAX_LAYERS``.
    """
    day = parse_record_date(record.raw_date, tz)
    if day is None:
        return []

    minutes = (record.duration_hours or 0) * 60 + (record.duration_minutes or 0)
    rid = record.record_id or str(uuid.uuid4())
    name = record.name or record.type or record.description or DEFAULT_NAME

    label = (record.activity or record.activity_type or "").lower()
    activity = label or infer_type_key([record.type, record.name, record.description]) or "other"

    water = record.swim_layers or ()
    sauna_layers = record.layers or 0
    is_protocol = normalize(activity) == ActivityKind.SAUNA

    if is_protocol and (sauna_layers > 0 or water):
        common = {"name": name, "description": record.description, "duration": minutes, "date": day}
        expanded = []
        if len(water) > 0 and water[0] > 0:
            expanded.append(
                Workout(
                    id=f"{rid}|{PROTOCOL_WATER1}",
                    activity_type="water",
                    planned_layers=min(MAX_LAYERS, water[0]),
                    **common,
                )
            )
        if sauna_layers > 0:
            expanded.append(
                Workout(
                    id=f"{rid}|{PROTOCOL_SAUNA}",
                    activity_type="sauna",
                    planned_layers=min(MAX_LAYERS, sauna_layers),
                    **common,
                )
            )
        if len(water) > 1 and water[1] > 0:
            expanded.append(
                Workout(
                    id=f"{rid}|{PROTOCOL_WATER2}",
                    activity_type="water",
                    planned_layers=min(MAX_LAYERS, water[1]),
                    **common,
                )
            )
        if expanded:
            return expanded

    return [
        Workout(
            id=rid,
            name=name,
            description=record.description,
            duration=minutes,
            date=day,
            activity_type=activity,
            planned_layers=record.layers,
            swim_layers=record.swim_layers,
        )
    ]


def map_payload(payload, tz: str = "UTC") -> list[Workout]:
    workouts: list[Workout] = []
    for record in decode_planner_payload(payload):
        workouts.extend(expand_record(record, tz))
    return workouts


def dedup(workouts: Iterable[Workout]) -> list[Workout]:
    """Remove duplicate workouts, keeping first-seen order.

    Workouts with an id are keyed by id (a later duplicate replaces the
    earlier one in place).  Workouts without an id are keyed by
    ``(day, lowercased name)`` and the first occurrence wins.  Two distinct
    same-named workouts on one day without ids therefore collapse into one.
    """
    result: dict[str, Workout] = {}
    for w in workouts:
        if w.id:
            result[f"id:{w.id}"] = w
        else:
            key = f"day:{w.date.isoformat()}|{w.name.lower()}"
            result.setdefault(key, w)
    return list(result.values())


def merge_by_id(*groups: Iterable[Workout]) -> list[Workout]:
    """Union of several workout lists; later groups win on id collisions."""
    merged: dict[str, Workout] = {}
    for group in groups:
        for w in group:
            merged[w.id] = w
    return list(merged.values())


def merge_cached(local: Iterable[CachedWorkout], remote: Iterable[CachedWorkout]) -> list[CachedWorkout]:
    """Reconcile a fresh server set with the cached one.

    The remote set decides which ids exist.  For ids present on both sides
    the remote copy wins unless the local copy is strictly newer.  Result is
    sorted by date.
    """
    local_by_id = {w.id: w for w in local}
    merged = []
    for r in remote:
        current = local_by_id.get(r.id)
        if current is not None and current.updated_at > r.updated_at:
            merged.append(current)
        else:
            merged.append(r)
    merged.sort(key=lambda w: (w.date, w.id))
    return merged


# ---------------------------------------------------------------------------
# Server access
# ---------------------------------------------------------------------------


class PlannerRoutes:
    """URL builder for the ``workout_calendar`` endpoints."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    def calendar(self, identity: str) -> str:
        return f"{self.base_url}/workout_calendar/{quote(identity, safe='@._-+')}"

    @staticmethod
    def range_params(start: date, end: date) -> dict[str, str]:
        return {"start_date": start.isoformat(), "end_date": end.isoformat()}

    @staticmethod
    def day_params(day: date) -> dict[str, str]:
        return {"filter_date": day.isoformat()}


class ConditionalFetch(NamedTuple):
    workouts: list[Workout]
    etag: str | None
    not_modified: bool


class PlannerClient:
    def __init__(
        self,
        transport: Transport,
        cached: CachedClient,
        routes: PlannerRoutes,
        identity_provider: Callable[[], str | None],
        home_timezone: str = "UTC",
        today_provider: Callable[[], date] | None = None,
    ) -> None:
        self.transport = transport
        self.cached = cached
        self.routes = routes
        self.identity_provider = identity_provider
        self.home_timezone = home_timezone
        self.today_provider = today_provider or (lambda: today(home_timezone))

    def _calendar_url(self) -> str:
        identity = self.identity_provider()
        if not identity:
            raise NotAuthenticatedError("No user identity available for planner requests")
        return self.routes.calendar(identity)

    def fetch_range(self, start: date, end: date, ttl: float = RANGE_TTL) -> list[Workout]:
        payload = self.cached.get_json(self._calendar_url(), self.routes.range_params(start, end), ttl=ttl)
        return map_payload(payload or [], self.home_timezone)

    def fetch_day(self, day: date, ttl: float = RANGE_TTL) -> list[Workout]:
        payload = self.cached.get_json(self._calendar_url(), self.routes.day_params(day), ttl=ttl)
        return map_payload(payload or [], self.home_timezone)

    def fetch_visible(self, start: date, end: date) -> list[Workout]:
        """Workouts for a visible grid range.

        One range query, then a per-day query for each day up to today that
        the range result left empty.  Raises the range error only when no
        request succeeded at all.
        """
        range_error: PlancalError | None = None
        try:
            from_range = self.fetch_range(start, end)
        except (TransportError, PlannerDecodeError) as e:
            log.warning("Range fetch %s..%s failed: %s", start, end, e)
            from_range, range_error = [], e

        covered = {w.date for w in from_range}
        last_day = min(end, self.today_provider())
        from_days: list[Workout] = []
        day_successes = 0
        for day in days_between(start, last_day):
            if day in covered:
                continue
            try:
                from_days.extend(self.fetch_day(day))
                day_successes += 1
            except (TransportError, PlannerDecodeError) as e:
                log.debug("Day fetch %s failed: %s", day, e)

        if range_error is not None and day_successes == 0:
            raise range_error

        merged = dedup(merge_by_id(from_range, from_days))
        return sorted((w for w in merged if start <= w.date <= end), key=lambda w: (w.date, w.id))

    def fetch_month_conditional(self, key: str, etag: str | None = None) -> ConditionalFetch:
        """Fetch a whole month, revalidating with *etag* when given.

        "Not modified" is either an HTTP 304 or an empty body carrying the
        same etag as before.
        """
        first, last = month_bounds(key)
        result = self.transport.fetch_json(
            self._calendar_url(), params=self.routes.range_params(first, last), etag=etag
        )
        if result.not_modified:
            return ConditionalFetch(workouts=[], etag=result.etag or etag, not_modified=True)

        workouts = [w for w in map_payload(result.payload or [], self.home_timezone) if first <= w.date <= last]
        unchanged = etag is not None and not workouts and result.etag == etag
        return ConditionalFetch(workouts=dedup(workouts), etag=result.etag, not_modified=unchanged)


# ---------------------------------------------------------------------------
# Offline repository
# ---------------------------------------------------------------------------


class LoadSource(Enum):
    NETWORK_THEN_CACHE = "network_then_cache"
    CACHE_ONLY = "cache_only"


class MonthLoad(NamedTuple):
    workouts: list[Workout]
    from_network: bool
    not_modified: bool = False


class OfflineRepository:
    """Month-level reads and writes against the server and the month cache."""

    def __init__(self, client: PlannerClient, store: MonthCacheStore, locks: MonthLocks) -> None:
        self.client = client
        self.store = store
        self.locks = locks

    def cached_month(self, key: str) -> list[Workout]:
        envelope = self.store.load(key)
        if envelope is None:
            return []
        return sorted((Workout.from_cached(c) for c in envelope.workouts), key=lambda w: (w.date, w.id))

    def cached_range(self, start: date, end: date) -> list[Workout]:
        """Cached workouts of every month touching ``start..end``, clipped to the range."""
        found: list[Workout] = []
        for key in months_in_range(start, end):
            found.extend(w for w in self.cached_month(key) if start <= w.date <= end)
        return found

    def load_month(self, key: str, source: LoadSource = LoadSource.NETWORK_THEN_CACHE) -> MonthLoad:
        if source == LoadSource.CACHE_ONLY:
            return MonthLoad(workouts=self.cached_month(key), from_network=False)

        with self.locks.hold(key):
            local = self.store.load(key)
            try:
                fetched = self.client.fetch_month_conditional(key, local.etag if local else None)
            except TransportError as e:
                if e.is_transient:
                    log.warning("Month %s fetch failed, using cache: %s", key, e)
                else:
                    log.error("Month %s refused by the server (status %s), using cache", key, e.status)
                return MonthLoad(workouts=self.cached_month(key), from_network=False)
            except PlannerDecodeError as e:
                log.warning("Month %s payload unreadable, using cache: %s", key, e)
                return MonthLoad(workouts=self.cached_month(key), from_network=False)

            if fetched.not_modified and local is not None:
                return MonthLoad(workouts=self.cached_month(key), from_network=True, not_modified=True)

            if not fetched.workouts and local is not None and local.workouts:
                log.info("Server returned no workouts for %s; keeping %d cached", key, len(local.workouts))
                return MonthLoad(workouts=self.cached_month(key), from_network=True)

            soft_deleted = local.soft_deleted_ids if local else frozenset()
            remote = [w.to_cached() for w in fetched.workouts if w.id not in soft_deleted]
            merged = merge_cached(local.workouts if local else (), remote)
            envelope = MonthEnvelope(
                month_key=key,
                fetched_at=datetime.now(UTC),
                etag=fetched.etag,
                workouts=tuple(merged),
                soft_deleted_ids=soft_deleted,
            )
            self.store.save(envelope)
        return MonthLoad(workouts=[Workout.from_cached(c) for c in merged], from_network=True)

    def mark_server_deletion(self, ids: Iterable[str], key: str) -> None:
        """Suppress *ids* in the month: soft-delete them and drop their workouts."""
        ids = set(ids)
        if not ids:
            return
        with self.locks.hold(key):
            envelope = self.store.load(key) or MonthEnvelope.empty(key)
            self.store.save(
                envelope._replace(
                    workouts=tuple(w for w in envelope.workouts if w.id not in ids),
                    soft_deleted_ids=envelope.soft_deleted_ids | ids,
                )
            )

    def preload_neighbors(self, key: str) -> list[str]:
        """Fetch the previous and next month if they are not cached yet."""
        loaded = []
        for neighbor in (shift_month(key, -1), shift_month(key, 1)):
            if self.store.load(neighbor) is not None:
                continue
            result = self.load_month(neighbor)
            if result.from_network:
                loaded.append(neighbor)
        return loaded


class PlannerService:
    """Loads the visible grid of a month, preferring the cache when unchanged."""

    def __init__(self, client: PlannerClient, repository: OfflineRepository) -> None:
        self.client = client
        self.repository = repository

    def prefill(self, key: str) -> list[Workout]:
        start, end = visible_grid_range(key)
        return self.repository.cached_range(start, end)

    def load_visible(self, key: str) -> list[Workout]:
        start, end = visible_grid_range(key)
        month = self.repository.load_month(key)

        if month.not_modified or not month.from_network:
            visible = self.repository.cached_range(start, end)
        else:
            try:
                visible = self.client.fetch_visible(start, end)
            except (TransportError, PlannerDecodeError) as e:
                log.warning("Visible range fetch for %s failed, using cache: %s", key, e)
                visible = self.repository.cached_range(start, end)
            else:
                # the month's own days come from the merged envelope
                first, last = month_bounds(key)
                outside = [w for w in visible if not first <= w.date <= last]
                visible = sorted(dedup(outside + month.workouts), key=lambda w: (w.date, w.id))

        try:
            self.repository.preload_neighbors(key)
        except PlancalError as e:
            log.info("Neighbor preload for %s skipped: %s", key, e)
        return visible


def group_by_month(workouts: Iterable[Workout]) -> dict[str, list[Workout]]:
    grouped: dict[str, list[Workout]] = {}
    for w in workouts:
        grouped.setdefault(month_key(w.date), []).append(w)
    return grouped
