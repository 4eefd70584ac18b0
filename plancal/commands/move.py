"""CLI command: move. Reschedule planned workouts and wait for verification."""

import argparse
from datetime import date

from plancal.calendar import month_key
from plancal.core import Plancal
from plancal.errors import MoveRejectedError

_VERIFY_TIMEOUT = 30  # seconds


def _check_drop(state, ids, target, partial) -> list[str]:
    known = {w.id for w in state.workouts_by_ids(ids)}
    unknown = [i for i in ids if i not in known]
    if unknown:
        raise MoveRejectedError(f"Unknown workout id(s): {', '.join(unknown)}")

    allowed, violation = state.validate_dragged_ids(ids, target)
    if violation is not None and (not allowed or not partial):
        raise MoveRejectedError(f"Rejected: {violation.message}", violation=violation)
    if violation is not None:
        print(f"Skipping some workouts: {violation.message}")
    return allowed


def _report(outcome, verified: bool) -> None:
    if not verified:
        print("Verification still running; check 'status' later.")
        return
    result = None if outcome.verification.cancelled() else outcome.verification.result()
    if result is None:
        print("Verification superseded.")
    elif result.server_error:
        print("Could not reach the server to verify; local state kept.")
    elif result.missing:
        print(f"Server does not show {', '.join(sorted(result.missing))}; calendar reloaded.")
    else:
        for local_id, server_id in result.matched_by_attrs.items():
            print(f"  {local_id} is now {server_id}")
        print("Verified.")


def run(args=None) -> int:
    if args is None:
        args = []

    parser = argparse.ArgumentParser(description="Move planned workouts to another day")
    parser.add_argument("--to", required=True, type=date.fromisoformat, help="Target day in YYYY-MM-DD format")
    parser.add_argument("ids", nargs="+", help="Workout ids to move")
    parser.add_argument("--partial", action="store_true", help="Move the allowed ids even if some are rejected")
    parsed = parser.parse_args(args)
    target = parsed.to

    with Plancal() as pc:
        state = pc.state
        state.reload(key=month_key(target))

        try:
            allowed = _check_drop(state, parsed.ids, target, parsed.partial)
            outcome = state.move_workouts(allowed, target)
        except MoveRejectedError as e:
            print(e)
            return 1

        if not outcome.ok:
            print(f"Move failed: {outcome.message}")
            return 1
        print(f"Moved {', '.join(outcome.allowed_ids)} to {target} ({outcome.payload_kind.value} payload).")

        print("Verifying with the server...")
        _report(outcome, pc.scheduler.wait(timeout=_VERIFY_TIMEOUT))
    return 0
