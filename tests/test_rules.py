"""Tests for plancal.rules: the drag-and-drop scheduling rules."""

from datetime import date

import pytest

from plancal.planner import Workout
from plancal.rules import (
    VIOLATION_MESSAGES,
    ActivityKind,
    DropRuleViolation,
    kind_of,
    normalize,
    validate_drop,
    validate_drop_list,
)

# Week of Monday 2025-03-10 .. Sunday 2025-03-16
MON, TUE, WED, THU = date(2025, 3, 10), date(2025, 3, 11), date(2025, 3, 12), date(2025, 3, 13)


def w(wid, day, activity):
    return Workout(id=wid, name=activity.title(), date=day, activity_type=activity)


def check(dragged, target, planned):
    return validate_drop(dragged, target, [p for p in planned if p.date == target], planned)


# ---------------------------------------------------------------------------
# Kinds
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "label,kind",
    [
        ("Morning Run", ActivityKind.RUN),
        ("walk", ActivityKind.RUN),
        ("Бег", ActivityKind.RUN),
        ("Баня", ActivityKind.SAUNA),
        ("SAUNA", ActivityKind.SAUNA),
        ("Intermittent fast", ActivityKind.POST),
        ("пост", ActivityKind.POST),
        ("Open water", ActivityKind.WATER),
        ("swim", ActivityKind.WATER),
        ("Yoga flow", ActivityKind.YOGA),
        ("Chess", ActivityKind.OTHER),
        ("", ActivityKind.OTHER),
        (None, ActivityKind.OTHER),
    ],
)
def test_normalize(label, kind):
    assert normalize(label) == kind


def test_normalize_first_keyword_wins():
    # run is checked before sauna
    assert normalize("sauna walk") == ActivityKind.RUN


class TestKindOf:
    def test_activity_type_first(self):
        assert kind_of(Workout(id="a", name="Sauna", date=MON, activity_type="yoga")) == ActivityKind.YOGA

    def test_name_then_description(self):
        assert kind_of(Workout(id="a", name="Sauna", date=MON)) == ActivityKind.SAUNA
        assert kind_of(Workout(id="a", name="", date=MON, description="Пост")) == ActivityKind.POST


# ---------------------------------------------------------------------------
# validate_drop
# ---------------------------------------------------------------------------


class TestValidateDrop:
    def test_empty_day_ok(self):
        run = w("r", MON, "run")
        assert check(run, WED, [run]) is None

    def test_different_week(self):
        run = w("r", MON, "run")
        assert check(run, date(2025, 3, 17), [run]) == DropRuleViolation.DIFFERENT_WEEK
        assert check(run, date(2025, 3, 9), [run]) == DropRuleViolation.DIFFERENT_WEEK

    def test_duplicate_type(self):
        yoga, other = w("y1", MON, "yoga"), w("y2", WED, "yoga")
        assert check(yoga, WED, [yoga, other]) == DropRuleViolation.DUPLICATE_TYPE

    @pytest.mark.parametrize("existing", ["sauna", "post"])
    def test_run_incompatible_same_day(self, existing):
        run, blocker = w("r", MON, "run"), w("x", WED, existing)
        assert check(run, WED, [run, blocker]) == DropRuleViolation.INCOMPATIBLE_SAME_DAY

    def test_water_shares_a_day_with_sauna(self):
        water, sauna = w("wa", MON, "water"), w("s", WED, "sauna")
        assert check(water, WED, [water, sauna]) is None

    def test_sauna_before_run(self):
        sauna, run = w("s", MON, "sauna"), w("r", WED, "run")
        assert check(sauna, TUE, [sauna, run]) == DropRuleViolation.SAUNA_BEFORE_RUN

    def test_yoga_before_run_is_fine(self):
        yoga, run = w("y", MON, "yoga"), w("r", WED, "run")
        assert check(yoga, TUE, [yoga, run]) is None

    def test_run_after_sauna(self):
        run, sauna = w("r", MON, "run"), w("s", TUE, "sauna")
        assert check(run, WED, [run, sauna]) == DropRuleViolation.RUN_AFTER_SAUNA

    def test_post_before_run(self):
        post, run = w("p", MON, "post"), w("r", THU, "run")
        assert check(post, WED, [post, run]) == DropRuleViolation.POST_BEFORE_RUN

    def test_post_after_sauna(self):
        post, sauna = w("p", MON, "post"), w("s", TUE, "sauna")
        assert check(post, WED, [post, sauna]) == DropRuleViolation.POST_AFTER_SAUNA

    def test_dragged_workout_does_not_block_itself(self):
        # dropping a workout back on its own day is always allowed
        run = w("r", WED, "run")
        assert check(run, WED, [run]) is None

    def test_dragged_original_position_is_not_a_neighbor(self):
        sauna = w("s", TUE, "sauna")
        assert check(sauna, MON, [sauna]) is None
        run = w("r", MON, "run")
        assert check(run, TUE, [run]) is None


class TestValidateDropList:
    def test_partial_allow(self):
        run, yoga, sauna = w("r", MON, "run"), w("y", MON, "yoga"), w("s", WED, "sauna")
        planned = [run, yoga, sauna]
        allowed, error = validate_drop_list([run, yoga], WED, [sauna], planned)
        assert allowed == ["y"]
        assert error == DropRuleViolation.INCOMPATIBLE_SAME_DAY

    def test_first_error_reported(self):
        run = w("r", MON, "run")
        far = w("f", date(2025, 3, 3), "yoga")
        sauna = w("s", WED, "sauna")
        allowed, error = validate_drop_list([far, run], WED, [sauna], [run, far, sauna])
        assert allowed == []
        assert error == DropRuleViolation.DIFFERENT_WEEK

    def test_all_allowed(self):
        run, yoga = w("r", MON, "run"), w("y", MON, "yoga")
        assert validate_drop_list([run, yoga], TUE, [], [run, yoga]) == (["r", "y"], None)


def test_every_violation_has_a_message():
    assert set(VIOLATION_MESSAGES) == set(DropRuleViolation)
    assert DropRuleViolation.SAUNA_BEFORE_RUN.value == "saunaBeforeRun"
    assert "sauna" in DropRuleViolation.SAUNA_BEFORE_RUN.message.lower()
