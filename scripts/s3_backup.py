#!/usr/bin/env python3
"""Back up raw downloaded report files to S3."""

from __future__ import annotations

from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import boto3

LATEST_PREFIX = "youtube_reporting_data"
HISTORY_PREFIX = f"{LATEST_PREFIX}_by_create_times"
DEFAULT_S3_REGION = "us-east-1"


def raw_report_filename(report_type_id: str, report_date: str, create_timestamp: int) -> str:
    return f"{report_type_id}|{report_date}|{create_timestamp}.csv"


def split_raw_report_filename(filename: str) -> Tuple[str, str, str]:
    stem = filename[:-4] if filename.endswith(".csv") else filename
    parts = stem.split("|")
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"Not a raw report file name: {filename}")
    return parts[0], parts[1], parts[2]


def _join_key(*parts: str) -> str:
    return "/".join(part.strip("/") for part in parts if part and part.strip("/"))


def backup_keys(filename: str, remote_path: str = "") -> Tuple[str, str]:
    """Return ``(latest_key, history_key)`` for a raw report file.

    The latest key holds one object per report type and date and is
    overwritten when YouTube regenerates the report; the history key keeps
    every generation.
    """
    report_type_id, report_date, _ = split_raw_report_filename(filename)
    latest = _join_key(remote_path, LATEST_PREFIX, f"{report_type_id}_{report_date}.csv")
    history = _join_key(remote_path, HISTORY_PREFIX, filename)
    return latest, history


def make_s3_client(
    region_name: str = DEFAULT_S3_REGION,
    access_key_id: Optional[str] = None,
    secret_access_key: Optional[str] = None,
) -> Any:
    session = boto3.session.Session(
        aws_access_key_id=access_key_id or None,
        aws_secret_access_key=secret_access_key or None,
        region_name=region_name,
    )
    return session.client("s3")


def upload_backups(
    s3_client: Any,
    files: Sequence[Path],
    bucket: str,
    remote_path: str = "",
) -> List[str]:
    uploaded: List[str] = []
    for path in files:
        for key in backup_keys(path.name, remote_path):
            s3_client.upload_file(str(path), bucket, key)
            uploaded.append(key)
    return uploaded
