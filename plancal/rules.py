"""Drag-and-drop scheduling rules.

Pure functions deciding whether planned workouts may be dropped on a day.
Rules are checked in a fixed order and the first failing one is reported:

  1. the target day must be in the same ISO week as the original day
  2. no two workouts of the same kind on one day
  3. run, sauna and fasting ("post") exclude each other on one day
  4. adjacency: no sauna or fasting the day before a run, no run or fasting
     the day after a sauna

Neighbor days are judged on what is already scheduled, never on other
workouts being moved in the same batch.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from .calendar import same_iso_week

if TYPE_CHECKING:
    from .planner import Workout


class ActivityKind(Enum):
    RUN = "run"
    SAUNA = "sauna"
    POST = "post"  # fasting
    WATER = "water"
    YOGA = "yoga"
    OTHER = "other"


class DropRuleViolation(Enum):
    DIFFERENT_WEEK = "differentWeek"
    DUPLICATE_TYPE = "duplicateType"
    INCOMPATIBLE_SAME_DAY = "incompatibleSameDay"
    SAUNA_BEFORE_RUN = "saunaBeforeRun"
    RUN_AFTER_SAUNA = "runAfterSauna"
    POST_BEFORE_RUN = "postBeforeRun"
    POST_AFTER_SAUNA = "postAfterSauna"

    @property
    def message(self) -> str:
        return VIOLATION_MESSAGES[self]


VIOLATION_MESSAGES: dict[DropRuleViolation, str] = {
    DropRuleViolation.DIFFERENT_WEEK: "Workouts can only be moved within the same week.",
    DropRuleViolation.DUPLICATE_TYPE: "This day already has a workout of the same type.",
    DropRuleViolation.INCOMPATIBLE_SAME_DAY: "Running, sauna and fasting cannot share a day.",
    DropRuleViolation.SAUNA_BEFORE_RUN: "A sauna cannot be placed the day before a run.",
    DropRuleViolation.RUN_AFTER_SAUNA: "A run cannot be placed the day after a sauna.",
    DropRuleViolation.POST_BEFORE_RUN: "Fasting cannot be placed the day before a run.",
    DropRuleViolation.POST_AFTER_SAUNA: "Fasting cannot be placed the day after a sauna.",
}

EXCLUSIVE_KINDS = frozenset({ActivityKind.RUN, ActivityKind.SAUNA, ActivityKind.POST})

# Checked in order; the first keyword hit decides the kind.
_KIND_KEYWORDS: tuple[tuple[ActivityKind, tuple[str, ...]], ...] = (
    (ActivityKind.RUN, ("run", "walk", "бег", "ход")),
    (ActivityKind.SAUNA, ("sauna", "баня", "хаммам")),
    (ActivityKind.POST, ("post", "fast", "пост", "голод")),
    (ActivityKind.WATER, ("water", "swim", "плав", "вода")),
    (ActivityKind.YOGA, ("yoga", "йога")),
)


def normalize(label: str | None) -> ActivityKind:
    """Map a free-text activity label to its ``ActivityKind`` (case-insensitive)."""
    text = (label or "").lower()
    for kind, keywords in _KIND_KEYWORDS:
        if any(k in text for k in keywords):
            return kind
    return ActivityKind.OTHER


def kind_of(workout: Workout) -> ActivityKind:
    """Kind of a workout, from its activity type, else its name, else its description."""
    label = workout.activity_type or workout.name or workout.description
    return normalize(label)


def _kinds(workouts: Iterable[Workout]) -> set[ActivityKind]:
    return {kind_of(w) for w in workouts}


def _kinds_on(day: date, workouts: Iterable[Workout]) -> set[ActivityKind]:
    return _kinds(w for w in workouts if w.date == day)


def validate_drop(
    dragged: Workout,
    target_date: date,
    target_day_workouts: Sequence[Workout],
    all_planned_in_month: Sequence[Workout],
) -> DropRuleViolation | None:
    """Return the first rule *dragged* breaks on *target_date*, or ``None``."""
    if not same_iso_week(dragged.date, target_date):
        return DropRuleViolation.DIFFERENT_WEEK

    kind = kind_of(dragged)
    existing = _kinds(w for w in target_day_workouts if w.id != dragged.id)

    if kind in existing:
        return DropRuleViolation.DUPLICATE_TYPE

    if kind in EXCLUSIVE_KINDS and existing & EXCLUSIVE_KINDS:
        return DropRuleViolation.INCOMPATIBLE_SAME_DAY

    others = [w for w in all_planned_in_month if w.id != dragged.id]
    previous_day = _kinds_on(target_date - timedelta(days=1), others)
    next_day = _kinds_on(target_date + timedelta(days=1), others)

    if kind == ActivityKind.SAUNA and ActivityKind.RUN in next_day:
        return DropRuleViolation.SAUNA_BEFORE_RUN
    if kind == ActivityKind.RUN and ActivityKind.SAUNA in previous_day:
        return DropRuleViolation.RUN_AFTER_SAUNA
    if kind == ActivityKind.POST:
        if ActivityKind.RUN in next_day:
            return DropRuleViolation.POST_BEFORE_RUN
        if ActivityKind.SAUNA in previous_day:
            return DropRuleViolation.POST_AFTER_SAUNA
    return None


def validate_drop_list(
    dragged: Sequence[Workout],
    target_date: date,
    target_day_workouts: Sequence[Workout],
    all_planned_in_month: Sequence[Workout],
) -> tuple[list[str], DropRuleViolation | None]:
    """Validate each dragged workout independently against the original day.

    Returns the ids that passed and the first violation seen (for messaging).
    Whether to move only the allowed subset is the caller's decision.
    """
    allowed: list[str] = []
    first_error: DropRuleViolation | None = None
    for workout in dragged:
        violation = validate_drop(workout, target_date, target_day_workouts, all_planned_in_month)
        if violation is None:
            allowed.append(workout.id)
        elif first_error is None:
            first_error = violation
    return allowed, first_error
