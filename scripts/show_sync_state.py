#!/usr/bin/env python3
"""Print per report type sync progress from a state.json file."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from sync_state import STATE_FILE, SyncStateError, describe_state, load_state


def main() -> None:
    default_path = Path(os.getenv("DATA_DIR", "data")) / "out" / STATE_FILE
    state_path = Path(sys.argv[1]) if len(sys.argv) > 1 else default_path

    print(f"State file: {state_path}")
    if not state_path.exists():
        print("No state file found. The next run starts from the configured initial timestamp.")
        return
    try:
        state = load_state(state_path)
    except SyncStateError as exc:
        raise SystemExit(str(exc)) from exc
    if not state:
        print("State file is empty.")
        return

    print("report_type\tnext_created_after\tepoch")
    for row in describe_state(state):
        print(f"{row['report_type']}\t{row['created_after']}\t{row['timestamp']}")


if __name__ == "__main__":
    main()
