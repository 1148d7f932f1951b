#!/usr/bin/env python3
"""Per report type synchronization state: cutoff resolution and merging."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping

if TYPE_CHECKING:
    from download_youtube_reports import ReportDescriptor, ReportJob

STATE_FILE = "state.json"
DEFAULT_START_TIMESTAMP = 1438430400
# The API compares createdAfter inclusively; advance past the last processed report.
STATE_ADVANCE_SECONDS = 1


class SyncStateError(RuntimeError):
    """State file exists but cannot be used."""


def resolve_created_after(
    report_type_id: str,
    state: Mapping[str, int],
    default_timestamp: int,
    ignore_state: bool = False,
) -> int:
    if ignore_state or report_type_id not in state:
        return default_timestamp
    return max(default_timestamp, state[report_type_id])


def attach_created_after(
    jobs: Iterable["ReportJob"],
    state: Mapping[str, int],
    default_timestamp: int,
    ignore_state: bool = False,
) -> List["ReportJob"]:
    return [
        replace(
            job,
            created_after=resolve_created_after(job.report_type_id, state, default_timestamp, ignore_state),
        )
        for job in jobs
    ]


def format_created_after(timestamp: int) -> str:
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_create_time(value: str) -> datetime:
    """Parse an API RFC 3339 timestamp such as ``2015-10-02T19:15:19.150436Z``."""
    candidate = value.strip().replace("Z", "+00:00")
    # fromisoformat on older interpreters only takes 3 or 6 fractional digits.
    if "." in candidate:
        head, _, tail = candidate.partition(".")
        digits = ""
        rest = ""
        for index, char in enumerate(tail):
            if not char.isdigit():
                rest = tail[index:]
                break
            digits += char
        candidate = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    parsed = datetime.fromisoformat(candidate)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_epoch_seconds(value: str) -> int:
    return int(parse_create_time(value).timestamp())


def latest_create_timestamps(reports: Iterable["ReportDescriptor"]) -> Dict[str, int]:
    latest: Dict[str, int] = {}
    for report in reports:
        current = latest.get(report.report_type_id)
        if current is None or report.create_timestamp > current:
            latest[report.report_type_id] = report.create_timestamp
    return latest


def merge_states(prior: Mapping[str, int], observed: Mapping[str, int]) -> Dict[str, int]:
    merged = dict(prior)
    for report_type_id, timestamp in observed.items():
        merged[report_type_id] = timestamp + STATE_ADVANCE_SECONDS
    return merged


def _coerce_state_value(report_type_id: str, value: object) -> int:
    # Older state files kept every processed timestamp per report type.
    if isinstance(value, list):
        if not value:
            raise SyncStateError(f"State entry '{report_type_id}' is an empty list.")
        return max(_coerce_state_value(report_type_id, item) for item in value)
    if isinstance(value, bool):
        raise SyncStateError(f"State entry '{report_type_id}' must be an epoch timestamp, got {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise SyncStateError(f"State entry '{report_type_id}' must be an epoch timestamp, got {value!r}.")


def load_state(state_path: Path) -> Dict[str, int]:
    if not state_path.exists():
        return {}
    try:
        payload = json.loads(state_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise SyncStateError(f"Cannot read state file {state_path}: {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise SyncStateError(f"State file {state_path} must contain a JSON object.")
    return {str(key): _coerce_state_value(str(key), value) for key, value in payload.items()}


def save_state(state_path: Path, state: Mapping[str, int]) -> None:
    state_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = state_path.with_suffix(state_path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(dict(state), indent=2, sort_keys=True), encoding="utf-8")
    tmp_path.replace(state_path)


def describe_state(state: Mapping[str, int]) -> List[Dict[str, object]]:
    rows: List[Dict[str, object]] = []
    for report_type_id in sorted(state):
        timestamp = state[report_type_id]
        rows.append(
            {
                "report_type": report_type_id,
                "timestamp": timestamp,
                "created_after": datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat(),
            }
        )
    return rows
