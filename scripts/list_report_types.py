#!/usr/bin/env python3
"""Show catalog report types for YouTube Reporting profiles."""

from __future__ import annotations

import argparse
import json
from typing import Dict, List, Optional, Sequence

from youtube_report_catalog import DEFAULT_PROFILE, PROFILES, REPORT_TYPES, available_profiles, resolve_report_types


def _build_payload(selected_ids: List[str], selected_profiles: List[str]) -> Dict[str, object]:
    rows = []
    for report_type_id in selected_ids:
        metadata = REPORT_TYPES.get(report_type_id, {})
        rows.append(
            {
                "report_type": report_type_id,
                "title": metadata.get("title", "Not in catalog"),
                "owner": metadata.get("owner", "unknown"),
                "reason": metadata.get("reason", "-"),
            }
        )

    return {
        "selected_profiles": selected_profiles,
        "profiles": {name: PROFILES[name]["description"] for name in selected_profiles},
        "report_type_count": len(rows),
        "report_types": rows,
    }


def _print_text(payload: Dict[str, object]) -> None:
    profile_names: List[str] = payload["selected_profiles"]  # type: ignore[assignment]
    print("YouTube Reporting report types")
    print("==============================")
    print(f"Profiles: {', '.join(profile_names)}")
    for name in profile_names:
        print(f"- {name}: {PROFILES[name]['description']}")

    print("")
    print(f"Total report types: {payload['report_type_count']}")
    for row in payload["report_types"]:  # type: ignore[attr-defined]
        print(f"- {row['report_type']}: {row['title']} [{row['owner']}]")
        print(f"  reason: {row['reason']}")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--profile",
        action="append",
        choices=available_profiles(),
        help=f"Profile to include. Can be passed multiple times. Defaults to '{DEFAULT_PROFILE}'.",
    )
    parser.add_argument(
        "--report-type",
        action="append",
        default=[],
        help="Extra report type id to include (for example channel_cards_a1). Can be passed multiple times.",
    )
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of text output.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    profiles = args.profile or [DEFAULT_PROFILE]
    selected_ids = resolve_report_types(profiles, args.report_type)
    payload = _build_payload(selected_ids, profiles)
    if args.json:
        print(json.dumps(payload, indent=2))
    else:
        _print_text(payload)


if __name__ == "__main__":
    main()
