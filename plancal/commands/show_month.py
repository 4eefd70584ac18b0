"""CLI command: show-month. The visible grid of a month with its planned workouts."""

import argparse

from tabulate import tabulate

from plancal.calendar import days_between, parse_month_key, visible_grid_range
from plancal.core import Plancal
from plancal.planner import LoadSource
from plancal.rules import kind_of
from plancal.state import Role

WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def _cell(state, day, month) -> str:
    label = f"{day.day:2d}" if day.month == month else f"({day.day})"
    kinds = sorted({kind_of(w).value for w in state.planned_workouts(day)})
    return label + ("\n" + "\n".join(kinds) if kinds else "")


def run(args=None) -> None:
    if args is None:
        args = []

    parser = argparse.ArgumentParser(description="Show planned workouts for a month")
    parser.add_argument("year_month", help="Month in YYYY-MM format")
    parser.add_argument("--offline", action="store_true", help="Only use the local cache")
    parser.add_argument("--inspector", action="store_true", help="Read-only inspector view")
    parsed = parser.parse_args(args)

    month = parse_month_key(parsed.year_month).month
    role = Role.INSPECTOR if parsed.inspector else Role.USER

    with Plancal() as pc:
        state = pc.state
        source = LoadSource.CACHE_ONLY if parsed.offline else LoadSource.NETWORK_THEN_CACHE
        state.reload(role, parsed.year_month, source)

        start, end = visible_grid_range(parsed.year_month)
        days = days_between(start, end)
        weeks = [days[i : i + 7] for i in range(0, len(days), 7)]
        grid = [[_cell(state, d, month) for d in week] for week in weeks]
        print(tabulate(grid, headers=WEEKDAYS, tablefmt="grid"))

        rows = [
            [w.date.isoformat(), w.id, w.name, kind_of(w).value, w.duration, w.planned_layers or ""]
            for w in state.planned_workouts()
        ]
        if rows:
            print()
            print(tabulate(rows, headers=["Date", "ID", "Name", "Kind", "Minutes", "Layers"], tablefmt="simple"))
        else:
            print("\nNo planned workouts.")
