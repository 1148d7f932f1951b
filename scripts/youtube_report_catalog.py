#!/usr/bin/env python3
"""Report type catalog for YouTube Reporting API bulk reports."""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence

REPORT_TYPES: Dict[str, Dict[str, str]] = {
    "channel_basic_a2": {
        "title": "User activity",
        "owner": "channel",
        "reason": "Daily views, watch time and engagement per video, the base table for every channel analysis.",
    },
    "channel_province_a2": {
        "title": "User activity by province",
        "owner": "channel",
        "reason": "Regional split of channel_basic_a2 for US state level reporting.",
    },
    "channel_playback_location_a2": {
        "title": "Playback locations",
        "owner": "channel",
        "reason": "Where videos are watched (watch page, embedded players, browse features).",
    },
    "channel_traffic_source_a2": {
        "title": "Traffic sources",
        "owner": "channel",
        "reason": "How viewers reach the videos, needed for acquisition analysis.",
    },
    "channel_device_os_a2": {
        "title": "Device type and operating system",
        "owner": "channel",
        "reason": "Device and OS split for audience and player analysis.",
    },
    "channel_demographics_a1": {
        "title": "Viewer demographics",
        "owner": "channel",
        "reason": "Age group and gender share of views.",
    },
    "channel_subtitles_a2": {
        "title": "Subtitles",
        "owner": "channel",
        "reason": "Views broken down by subtitle language.",
    },
    "channel_combined_a2": {
        "title": "Combined",
        "owner": "channel",
        "reason": "Playback location, traffic source and device in one wide table.",
    },
    "channel_cards_a1": {
        "title": "Cards",
        "owner": "channel",
        "reason": "Card impressions and clicks.",
    },
    "channel_end_screens_a1": {
        "title": "End screens",
        "owner": "channel",
        "reason": "End screen element impressions and clicks.",
    },
    "channel_sharing_service_a1": {
        "title": "Sharing service",
        "owner": "channel",
        "reason": "Shares per sharing service.",
    },
    "playlist_basic_a1": {
        "title": "Playlist user activity",
        "owner": "channel",
        "reason": "Playlist level views and watch time.",
    },
    "content_owner_basic_a3": {
        "title": "Content owner user activity",
        "owner": "content_owner",
        "reason": "Daily views, watch time and engagement across every owned channel.",
    },
    "content_owner_province_a2": {
        "title": "Content owner user activity by province",
        "owner": "content_owner",
        "reason": "Regional split of content_owner_basic_a3.",
    },
    "content_owner_traffic_source_a2": {
        "title": "Content owner traffic sources",
        "owner": "content_owner",
        "reason": "Acquisition analysis across owned channels.",
    },
    "content_owner_estimated_revenue_a1": {
        "title": "Estimated video revenue",
        "owner": "content_owner",
        "reason": "Revenue per video, the base of every monetisation report.",
    },
    "content_owner_ad_rates_a1": {
        "title": "Ad rates",
        "owner": "content_owner",
        "reason": "Ad impressions and CPM per ad type.",
    },
    "content_owner_asset_basic_a2": {
        "title": "Asset user activity",
        "owner": "content_owner",
        "reason": "Views and watch time attributed to Content ID assets.",
    },
}

PROFILES: Dict[str, Dict[str, object]] = {
    "channel_core": {
        "description": "Daily channel activity with the most used breakdowns.",
        "report_types": [
            "channel_basic_a2",
            "channel_province_a2",
            "channel_playback_location_a2",
            "channel_traffic_source_a2",
            "channel_device_os_a2",
        ],
    },
    "channel_all": {
        "description": "Every channel report type in this catalog.",
        "report_types": [
            report_type_id
            for report_type_id, metadata in REPORT_TYPES.items()
            if metadata["owner"] == "channel"
        ],
    },
    "content_owner_core": {
        "description": "Content owner activity and revenue.",
        "report_types": [
            "content_owner_basic_a3",
            "content_owner_estimated_revenue_a1",
            "content_owner_ad_rates_a1",
        ],
    },
    "all": {
        "description": "All report types in this catalog.",
        "report_types": list(REPORT_TYPES.keys()),
    },
}

DEFAULT_PROFILE = "channel_core"


def available_profiles() -> List[str]:
    return sorted(PROFILES.keys())


def normalize_report_type_ids(report_type_ids: Iterable[str]) -> List[str]:
    unique: List[str] = []
    seen = set()
    for report_type_id in report_type_ids:
        cleaned = report_type_id.strip().lower()
        if not cleaned or cleaned in seen:
            continue
        unique.append(cleaned)
        seen.add(cleaned)
    return unique


def resolve_report_types(
    profile_names: Sequence[str] | None,
    explicit_report_types: Sequence[str] | None,
) -> List[str]:
    """Expand profiles, then append explicit report types, keeping first-seen order.

    Unknown ids are accepted: YouTube adds report types over time and any id
    the account has a job for is valid.
    """
    selected: List[str] = []
    seen = set()

    for profile in profile_names or []:
        if profile not in PROFILES:
            raise KeyError(f"Unknown profile '{profile}'. Choices: {', '.join(available_profiles())}")
        for report_type_id in PROFILES[profile]["report_types"]:  # type: ignore[index]
            if report_type_id not in seen:
                selected.append(report_type_id)
                seen.add(report_type_id)

    for report_type_id in normalize_report_type_ids(explicit_report_types or []):
        if report_type_id not in seen:
            selected.append(report_type_id)
            seen.add(report_type_id)

    return selected
