"""CLI command: status. Cached months and the most recent move attempts."""

from datetime import UTC, datetime

from tabulate import tabulate

from plancal.core import Plancal
from plancal.move_log import EVENT_SUBMITTED, recent_moves


def _when(ts: int | None) -> str:
    if not ts:
        return "-"
    return datetime.fromtimestamp(int(ts), UTC).strftime("%Y-%m-%d %H:%M")


def _outcome(row: dict) -> str:
    if row["event"] == EVENT_SUBMITTED:
        if not row["success"]:
            return "✗ rolled back"
        return f"✓ {row['payload_kind']}"
    if row["server_error"]:
        return "? server unreachable"
    details = []
    if row["remapped"]:
        details.append(f"{row['remapped']} remapped")
    if row["corrected"]:
        details.append(f"{row['corrected']} re-dated")
    if row["missing"]:
        details.append(f"missing {', '.join(row['missing'])} (reloaded)")
    return ("✓ " if row["success"] else "✗ ") + (", ".join(details) or "verified")


def run(limit: int = 20) -> None:
    with Plancal() as pc:
        months = []
        for key in pc.store.month_keys():
            envelope = pc.store.load(key)
            if envelope is None:
                months.append([key, "unreadable", "-", "-"])
                continue
            months.append(
                [
                    key,
                    len(envelope.workouts),
                    envelope.etag or "-",
                    envelope.fetched_at.strftime("%Y-%m-%d %H:%M"),
                ]
            )

        if months:
            print(tabulate(months, headers=["Month", "Workouts", "ETag", "Fetched"], tablefmt="simple"))
        else:
            print("No cached months.")

        rows = [
            [_when(r["created_at"]), r["event"], r["target_date"], ", ".join(r["workout_ids"]), _outcome(r)]
            for r in recent_moves(limit)
        ]
        if rows:
            print()
            print(tabulate(rows, headers=["When", "Event", "Target", "Workouts", "Outcome"], tablefmt="simple"))
        else:
            print("\nNo moves recorded.")
