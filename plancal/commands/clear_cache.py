"""CLI command: clear-cache. Drop cached months and cached responses."""

from plancal.core import Plancal


def run(assume_yes: bool = False) -> None:
    if not assume_yes:
        confirm = input("This deletes every cached month. Continue? (yes/no): ")
        if confirm.lower() != "yes":
            print("Cancelled.")
            return

    with Plancal() as pc:
        removed = pc.clear_cache()
    print(f"Removed {removed} cached month(s).")
