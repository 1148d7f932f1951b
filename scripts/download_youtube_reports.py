#!/usr/bin/env python3
"""Download YouTube Reporting API bulk reports incrementally into keyed CSV tables."""

from __future__ import annotations

import argparse
import csv
import json
import os
import re
import shutil
import sys
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import requests
import yaml
from tqdm import tqdm

from report_keys import normalize_custom_keys
from report_tables import TABLE_GROUPINGS, destination_table_name, transform_report_file, write_manifests
from s3_backup import DEFAULT_S3_REGION, make_s3_client, raw_report_filename, upload_backups
from sync_state import (
    DEFAULT_START_TIMESTAMP,
    STATE_FILE,
    attach_created_after,
    format_created_after,
    latest_create_timestamps,
    load_state,
    merge_states,
    parse_create_time,
    save_state,
    to_epoch_seconds,
)
from youtube_report_catalog import REPORT_TYPES, available_profiles, resolve_report_types

TOKEN_URL = "https://oauth2.googleapis.com/token"
API_BASE_URL = "https://youtubereporting.googleapis.com/v1"
CONFIG_FILES = ("config.json", "config.yaml", "config.yml")
IN_DIR = "in"
OUT_DIR = "out"
TABLES_DIR = "tables"
DEFAULT_PAGE_SIZE = 300
DEFAULT_REPORTS_PER_TYPE_LIMIT = 25
DEFAULT_TABLE_BUCKET = "in.c-ex-youtube-reporting"
SECRET_ARGS = {"client_id", "client_secret", "refresh_token", "access_token", "s3_access_key_id", "s3_secret_access_key"}


@dataclass
class SyncStats:
    jobs_matched: int = 0
    reports_listed: int = 0
    reports_selected: int = 0
    reports_downloaded: int = 0
    rows_written: int = 0
    tables_written: int = 0
    manifests_written: int = 0
    backups_uploaded: int = 0


@dataclass(frozen=True)
class ReportJob:
    id: str
    report_type_id: str
    name: str = ""
    system_managed: bool = False
    created_after: Optional[int] = None


@dataclass(frozen=True)
class ReportDescriptor:
    report_id: str
    job_id: str
    report_type_id: str
    create_time: str
    create_timestamp: int
    start_time: str
    end_time: str
    download_url: str

    @property
    def report_date(self) -> str:
        return self.start_time.split("T", 1)[0].replace("-", "")

    @property
    def raw_filename(self) -> str:
        return raw_report_filename(self.report_type_id, self.report_date, self.create_timestamp)


@dataclass
class SyncPaths:
    data_dir: Path
    in_state: Path
    out_state: Path
    tables_dir: Path

    @classmethod
    def from_data_dir(cls, data_dir: Path) -> "SyncPaths":
        return cls(
            data_dir=data_dir,
            in_state=data_dir / IN_DIR / STATE_FILE,
            out_state=data_dir / OUT_DIR / STATE_FILE,
            tables_dir=data_dir / OUT_DIR / TABLES_DIR,
        )


@dataclass
class SyncContext:
    """Everything a run needs, built once in ``main``."""

    args: argparse.Namespace
    client: Any
    paths: SyncPaths
    report_types: List[str]
    custom_keys: Dict[str, List[str]] = field(default_factory=dict)
    s3_client: Any = None
    stats: SyncStats = field(default_factory=SyncStats)
    report_type_summaries: Dict[str, Dict[str, Any]] = field(default_factory=dict)


class TeeStream:
    def __init__(self, *streams: object) -> None:
        self.streams = streams

    def write(self, text: str) -> int:
        for stream in self.streams:
            stream.write(text)
        return len(text)

    def flush(self) -> None:
        for stream in self.streams:
            stream.flush()

    def isatty(self) -> bool:
        return any(getattr(stream, "isatty", lambda: False)() for stream in self.streams)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _log_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return "null"
    text = str(value)
    if re.fullmatch(r"[A-Za-z0-9._:/+|\-]+", text):
        return text
    return json.dumps(text, ensure_ascii=True)


def log_event(event: str, **fields: object) -> None:
    parts = [event]
    for key, value in fields.items():
        parts.append(f"{key}={_log_value(value)}")
    print(" ".join(parts))


def _parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    raise ValueError(f"Cannot parse boolean from value '{value}'.")


def _coerce_int(value: object, key: str) -> int:
    if isinstance(value, bool):
        raise SystemExit(f"Invalid {key} parameter! Please use a numeric value.")
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise SystemExit(f"Invalid {key} parameter! Please use a numeric value.") from exc


def _coerce_config_list(value: object, key: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        items: List[str] = []
        for item in value:
            if item is None:
                continue
            items.append(str(item))
        return items
    raise SystemExit(f"Invalid {key} parameter! The parameter must be an array of report type ids.")


def find_config_file(data_dir: Path) -> Optional[Path]:
    for name in CONFIG_FILES:
        candidate = data_dir / name
        if candidate.exists():
            return candidate
    return None


def load_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise SystemExit(f"Config file not found: {path}")
    suffix = path.suffix.lower()
    raw = path.read_text(encoding="utf-8")
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(raw)
    elif suffix == ".json":
        data = json.loads(raw)
    else:
        raise SystemExit("Unsupported config file extension. Use .yaml/.yml or .json.")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SystemExit("Config root must be a mapping/object.")
    return data


def flatten_config(data: Dict[str, Any]) -> Dict[str, Any]:
    """Lift a nested ``parameters`` mapping onto the root and drop ``#`` secret markers."""
    merged: Dict[str, Any] = {key: value for key, value in data.items() if key != "parameters"}
    parameters = data.get("parameters")
    if isinstance(parameters, dict):
        merged.update(parameters)
    elif parameters is not None:
        raise SystemExit("Config key 'parameters' must be a mapping/object.")
    return {str(key).lstrip("#"): value for key, value in merged.items()}


def config_to_parser_defaults(config_data: Dict[str, Any]) -> Dict[str, Any]:
    cfg = flatten_config(config_data)
    defaults: Dict[str, Any] = {}
    scalar_map = {
        "clientId": "client_id",
        "client_id": "client_id",
        "clientSecret": "client_secret",
        "client_secret": "client_secret",
        "refreshToken": "refresh_token",
        "refresh_token": "refresh_token",
        "accessToken": "access_token",
        "access_token": "access_token",
        "contentOwnerId": "content_owner_id",
        "content_owner_id": "content_owner_id",
        "onBehalfOfContentOwner": "content_owner_id",
        "tokenUrl": "token_url",
        "token_url": "token_url",
        "pageSize": "page_size",
        "page_size": "page_size",
        "batchSize": "reports_per_type_limit",
        "reportsPerTypeLimit": "reports_per_type_limit",
        "reports_per_type_limit": "reports_per_type_limit",
        "initialTimestamp": "initial_timestamp",
        "initial_timestamp": "initial_timestamp",
        "bucket": "table_bucket",
        "tableBucket": "table_bucket",
        "table_bucket": "table_bucket",
        "tableGrouping": "table_grouping",
        "table_grouping": "table_grouping",
        "s3BucketName": "s3_bucket",
        "s3_bucket": "s3_bucket",
        "s3Region": "s3_region",
        "s3_region": "s3_region",
        "remotePath": "s3_remote_path",
        "s3_remote_path": "s3_remote_path",
        "s3AccessKeyId": "s3_access_key_id",
        "s3_access_key_id": "s3_access_key_id",
        "s3SecretAccessKey": "s3_secret_access_key",
        "s3_secret_access_key": "s3_secret_access_key",
        "timeout_seconds": "timeout_seconds",
        "max_retries": "max_retries",
        "retry_sleep_seconds": "retry_sleep_seconds",
        "request_interval_seconds": "request_interval_seconds",
        "logs_dir": "logs_dir",
    }
    bool_map = {
        "ignoreStateFile": "ignore_state_file",
        "ignore_state_file": "ignore_state_file",
        "includeSystemManaged": "include_system_managed",
        "include_system_managed": "include_system_managed",
        "s3Backup": "s3_backup",
        "s3_backup": "s3_backup",
        "s3OutputOnly": "s3_output_only",
        "s3_output_only": "s3_output_only",
        "dry_run": "dry_run",
    }
    list_map = {
        "reportTypes": "report_types",
        "report_types": "report_types",
        "profile": "profile",
        "profiles": "profile",
    }

    for source_key, target_key in scalar_map.items():
        if source_key in cfg and cfg[source_key] is not None:
            defaults[target_key] = cfg[source_key]
    for source_key, target_key in bool_map.items():
        if source_key in cfg:
            try:
                defaults[target_key] = _parse_bool(cfg[source_key])
            except ValueError as exc:
                raise SystemExit(f"Invalid {source_key} parameter! {exc}") from exc
    for source_key, target_key in list_map.items():
        if source_key in cfg:
            defaults[target_key] = _coerce_config_list(cfg[source_key], source_key)
    for source_key in ("customPrimaryKeys", "custom_primary_keys"):
        if source_key in cfg:
            try:
                defaults["custom_primary_keys"] = normalize_custom_keys(cfg[source_key])
            except ValueError as exc:
                raise SystemExit(f"Invalid customPrimaryKeys parameter! {exc}") from exc
    return defaults


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument("--config", help="Path to YAML/JSON config file.")
    pre_parser.add_argument("--data-dir", default="data")
    pre_args, _ = pre_parser.parse_known_args(argv)
    config_path = Path(pre_args.config) if pre_args.config else find_config_file(Path(pre_args.data_dir))
    config_defaults: Dict[str, Any] = {}
    if config_path is not None:
        config_defaults = config_to_parser_defaults(load_config_file(config_path))

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", help="Path to YAML/JSON config file. Defaults to <data-dir>/config.json|yaml.")
    parser.add_argument(
        "--data-dir",
        default="data",
        help="Working directory holding in/state.json and receiving out/state.json and out/tables.",
    )
    parser.add_argument("--client-id", help="OAuth client id. Falls back to YOUTUBE_CLIENT_ID.")
    parser.add_argument("--client-secret", help="OAuth client secret. Falls back to YOUTUBE_CLIENT_SECRET.")
    parser.add_argument("--refresh-token", help="OAuth refresh token. Falls back to YOUTUBE_REFRESH_TOKEN.")
    parser.add_argument("--access-token", help="Optional still-valid access token; refreshed on HTTP 401.")
    parser.add_argument("--content-owner-id", help="Content owner id sent as onBehalfOfContentOwner.")
    parser.add_argument(
        "--report-type",
        dest="report_types",
        action="append",
        default=[],
        help="Report type id to download (repeatable). Adds to configured reportTypes.",
    )
    parser.add_argument(
        "--profile",
        action="append",
        choices=available_profiles(),
        help="Catalog profile whose report types are added to the selection (repeatable).",
    )
    parser.add_argument(
        "--initial-timestamp",
        default=DEFAULT_START_TIMESTAMP,
        help="Earliest report creation time (epoch seconds) ever fetched.",
    )
    parser.add_argument(
        "--ignore-state-file",
        action="store_true",
        help="Ignore in/state.json and start every report type from --initial-timestamp.",
    )
    parser.add_argument("--page-size", default=DEFAULT_PAGE_SIZE, help="Reports listing page size.")
    parser.add_argument(
        "--reports-per-type-limit",
        default=DEFAULT_REPORTS_PER_TYPE_LIMIT,
        help="Maximum number of (oldest) reports processed per report type in one run.",
    )
    parser.add_argument(
        "--include-system-managed",
        dest="include_system_managed",
        action="store_true",
        default=True,
        help="Include jobs YouTube created automatically (default: enabled).",
    )
    parser.add_argument(
        "--no-include-system-managed",
        dest="include_system_managed",
        action="store_false",
        help="Only use jobs created by the account.",
    )
    parser.add_argument("--table-bucket", default=DEFAULT_TABLE_BUCKET, help="Bucket prefix written to manifests.")
    parser.add_argument(
        "--table-grouping",
        choices=TABLE_GROUPINGS,
        default="report_type",
        help="One output table per report type, or per report type and report date.",
    )
    parser.add_argument("--s3-backup", action="store_true", help="Also upload raw reports to S3.")
    parser.add_argument(
        "--s3-output-only",
        action="store_true",
        help="Upload raw reports to S3 and skip output tables and manifests.",
    )
    parser.add_argument("--s3-bucket", help="S3 bucket for raw report backups.")
    parser.add_argument("--s3-region", default=DEFAULT_S3_REGION, help="S3 region.")
    parser.add_argument("--s3-remote-path", default="", help="Key prefix inside the S3 bucket.")
    parser.add_argument("--s3-access-key-id", help="AWS access key id. Falls back to the boto3 credential chain.")
    parser.add_argument("--s3-secret-access-key", help="AWS secret access key.")
    parser.add_argument("--dry-run", action="store_true", help="List and select reports without downloading.")
    parser.add_argument("--list-jobs", action="store_true", help="List remote reporting jobs and exit.")
    parser.add_argument("--timeout-seconds", type=int, default=60, help="HTTP timeout in seconds.")
    parser.add_argument("--max-retries", type=int, default=4, help="HTTP retry count per request.")
    parser.add_argument("--retry-sleep-seconds", type=float, default=1.5, help="Retry backoff factor.")
    parser.add_argument(
        "--request-interval-seconds",
        type=float,
        default=0.2,
        help="Minimum delay between API requests to stay under quota.",
    )
    parser.add_argument("--token-url", default=TOKEN_URL, help="OAuth token endpoint URL.")
    parser.add_argument("--logs-dir", default="logs/sync", help="Directory where per-run logs are written.")

    parser.set_defaults(custom_primary_keys={})
    if config_defaults:
        parser.set_defaults(**config_defaults)

    args = parser.parse_args(argv)
    args.config = str(config_path) if config_path is not None else None
    return args


def validate_settings(args: argparse.Namespace) -> List[str]:
    """Check settings before any network or state I/O; return the report types to sync."""
    args.client_id = args.client_id or os.getenv("YOUTUBE_CLIENT_ID")
    args.client_secret = args.client_secret or os.getenv("YOUTUBE_CLIENT_SECRET")
    args.refresh_token = args.refresh_token or os.getenv("YOUTUBE_REFRESH_TOKEN")
    missing = [
        name
        for name, value in (
            ("clientId", args.client_id),
            ("clientSecret", args.client_secret),
            ("refreshToken", args.refresh_token),
        )
        if not value
    ]
    if missing:
        raise SystemExit(
            f"Missing {', '.join(missing)} parameter! Set them in the config file, via "
            "--client-id/--client-secret/--refresh-token or env vars "
            "YOUTUBE_CLIENT_ID, YOUTUBE_CLIENT_SECRET, YOUTUBE_REFRESH_TOKEN."
        )

    args.page_size = _coerce_int(args.page_size, "pageSize")
    args.reports_per_type_limit = _coerce_int(args.reports_per_type_limit, "reportsPerTypeLimit")
    args.initial_timestamp = _coerce_int(args.initial_timestamp, "initialTimestamp")
    if args.page_size <= 0:
        raise SystemExit("Invalid pageSize parameter! It must be greater than 0.")
    if args.reports_per_type_limit <= 0:
        raise SystemExit("Invalid reportsPerTypeLimit parameter! It must be greater than 0.")
    if args.initial_timestamp < 0:
        raise SystemExit("Invalid initialTimestamp parameter! Use epoch seconds.")
    if args.table_grouping not in TABLE_GROUPINGS:
        raise SystemExit(f"Invalid tableGrouping parameter! Choices: {', '.join(TABLE_GROUPINGS)}.")
    if (args.s3_backup or args.s3_output_only) and not args.s3_bucket:
        raise SystemExit("Missing s3BucketName parameter! It is required by s3Backup and s3OutputOnly.")
    if not isinstance(args.custom_primary_keys, dict):
        raise SystemExit("Invalid customPrimaryKeys parameter! It must be a mapping.")

    try:
        report_types = resolve_report_types(args.profile, args.report_types)
    except KeyError as exc:
        raise SystemExit(str(exc.args[0])) from exc
    if not report_types and not args.list_jobs:
        raise SystemExit(
            "Array of reportTypes is empty! Please specify which report types you want to download."
        )
    return report_types


def authenticate(
    client_id: str,
    client_secret: str,
    refresh_token: str,
    token_url: str,
    timeout_seconds: int,
) -> str:
    response = requests.post(
        token_url,
        headers={"content-type": "application/x-www-form-urlencoded"},
        data={
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
        },
        timeout=timeout_seconds,
    )
    if response.status_code >= 400:
        detail = ""
        try:
            payload = response.json()
            if isinstance(payload, dict):
                detail = str(payload.get("error_description") or payload.get("error") or "").strip()
        except ValueError:
            detail = ""
        if not detail:
            detail = (response.text or "").strip() or "No error payload returned by token endpoint."
        raise RuntimeError(f"Token request failed (HTTP {response.status_code}): {detail}")
    token = response.json().get("access_token")
    if not token:
        raise RuntimeError("Token refresh succeeded but no access_token was returned.")
    return token


def parse_retry_after_seconds(value: Optional[str]) -> float:
    if not value:
        return 0.0
    try:
        return max(0.0, float(value.strip()))
    except ValueError:
        return 0.0


def parse_job(payload: Mapping[str, Any]) -> ReportJob:
    return ReportJob(
        id=str(payload["id"]),
        report_type_id=str(payload.get("reportTypeId", "")).strip().lower(),
        name=str(payload.get("name", "")),
        system_managed=bool(payload.get("systemManaged", False)),
    )


def parse_report(payload: Mapping[str, Any], report_type_id: str) -> ReportDescriptor:
    create_time = str(payload["createTime"])
    return ReportDescriptor(
        report_id=str(payload["id"]),
        job_id=str(payload.get("jobId", "")),
        report_type_id=report_type_id,
        create_time=create_time,
        create_timestamp=to_epoch_seconds(create_time),
        start_time=str(payload.get("startTime", "")),
        end_time=str(payload.get("endTime", "")),
        download_url=str(payload["downloadUrl"]),
    )


class YouTubeReportingClient:
    def __init__(
        self,
        access_token: str,
        timeout_seconds: int,
        max_retries: int,
        retry_sleep_seconds: float,
        request_interval_seconds: float,
        content_owner_id: Optional[str] = None,
        reauth_config: Optional[Dict[str, object]] = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(1, max_retries)
        self.retry_sleep_seconds = retry_sleep_seconds
        self.request_interval_seconds = max(0.0, request_interval_seconds)
        self.next_request_at = 0.0
        self.content_owner_id = content_owner_id
        self.reauth_config = reauth_config
        self.session = requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {access_token}"})

    def _refresh_access_token(self) -> bool:
        if not self.reauth_config:
            return False
        token = authenticate(
            client_id=str(self.reauth_config.get("client_id", "")),
            client_secret=str(self.reauth_config.get("client_secret", "")),
            refresh_token=str(self.reauth_config.get("refresh_token", "")),
            token_url=str(self.reauth_config.get("token_url", TOKEN_URL)),
            timeout_seconds=int(self.reauth_config.get("timeout_seconds", self.timeout_seconds)),
        )
        self.session.headers["Authorization"] = f"Bearer {token}"
        return True

    def _params(self, **params: object) -> Dict[str, object]:
        merged = {key: value for key, value in params.items() if value is not None}
        if self.content_owner_id:
            merged["onBehalfOfContentOwner"] = self.content_owner_id
        return merged

    def _request(
        self,
        method: str,
        url: str,
        *,
        stream: bool = False,
        **kwargs: object,
    ) -> requests.Response:
        refreshed_auth = False
        for attempt in range(1, self.max_retries + 1):
            try:
                if self.request_interval_seconds > 0:
                    now = time.monotonic()
                    if now < self.next_request_at:
                        time.sleep(self.next_request_at - now)
                response = self.session.request(
                    method,
                    url,
                    timeout=self.timeout_seconds,
                    stream=stream,
                    **kwargs,
                )
                self.next_request_at = time.monotonic() + self.request_interval_seconds
                if response.status_code == 401 and not refreshed_auth:
                    response.close()
                    if self._refresh_access_token():
                        refreshed_auth = True
                        continue
                if response.status_code in (429, 500, 502, 503, 504) and attempt < self.max_retries:
                    retry_after = parse_retry_after_seconds(response.headers.get("Retry-After"))
                    response.close()
                    log_event("HTTP_RETRY", url=url, status=response.status_code, attempt=f"{attempt}/{self.max_retries}")
                    time.sleep(max(self.retry_sleep_seconds * attempt, retry_after))
                    continue
                response.raise_for_status()
                return response
            except (requests.ConnectionError, requests.Timeout):
                if attempt >= self.max_retries:
                    raise
                time.sleep(self.retry_sleep_seconds * attempt)
        raise RuntimeError(f"Retry loop exhausted for {url}.")

    def list_jobs(self, include_system_managed: bool = True) -> List[ReportJob]:
        jobs: List[ReportJob] = []
        page_token: Optional[str] = None
        while True:
            response = self._request(
                "GET",
                f"{API_BASE_URL}/jobs",
                params=self._params(
                    includeSystemManaged=str(include_system_managed).lower(),
                    pageToken=page_token,
                ),
            )
            payload = response.json()
            jobs.extend(parse_job(job) for job in payload.get("jobs") or [])
            page_token = payload.get("nextPageToken")
            if not page_token:
                return jobs

    def list_reports_page(
        self,
        job: ReportJob,
        page_size: int,
        page_token: Optional[str] = None,
    ) -> Tuple[List[ReportDescriptor], Optional[str]]:
        created_after = format_created_after(job.created_after) if job.created_after is not None else None
        response = self._request(
            "GET",
            f"{API_BASE_URL}/jobs/{job.id}/reports",
            params=self._params(pageSize=page_size, pageToken=page_token, createdAfter=created_after),
        )
        payload = response.json()
        reports = [parse_report(report, job.report_type_id) for report in payload.get("reports") or []]
        return reports, payload.get("nextPageToken") or None

    def download_report(self, report: ReportDescriptor, destination: Path) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = destination.with_suffix(destination.suffix + ".part")
        params = self._params() if "alt=media" in report.download_url else self._params(alt="media")
        with self._request("GET", report.download_url, params=params, stream=True) as response:
            with open(tmp_path, "wb") as handle:
                for chunk in response.iter_content(chunk_size=1024 * 1024):
                    if chunk:
                        handle.write(chunk)
        tmp_path.replace(destination)
        return destination


def filter_jobs(jobs: Iterable[ReportJob], report_types: Sequence[str]) -> List[ReportJob]:
    wanted = set(report_types)
    return [job for job in jobs if job.report_type_id in wanted]


def list_job_reports(client: Any, job: ReportJob, page_size: int) -> List[ReportDescriptor]:
    reports: List[ReportDescriptor] = []
    page_token: Optional[str] = None
    pages = 0
    while True:
        page, page_token = client.list_reports_page(job, page_size, page_token)
        reports.extend(page)
        pages += 1
        if not page_token:
            break
    log_event("REPORTS_LISTED", report_type=job.report_type_id, job=job.id, pages=pages, reports=len(reports))
    return reports


def list_reports_for_jobs(client: Any, jobs: Sequence[ReportJob], page_size: int) -> List[ReportDescriptor]:
    reports: List[ReportDescriptor] = []
    for job in tqdm(jobs, desc="Listing", unit="job", leave=False):
        reports.extend(list_job_reports(client, job, page_size))
    return reports


def select_reports(reports: Iterable[ReportDescriptor], limit: int) -> Dict[str, List[ReportDescriptor]]:
    """Group by report type and keep the ``limit`` oldest reports of each.

    ``sorted`` is stable, so reports created in the same instant keep their
    listing order.
    """
    grouped: Dict[str, List[ReportDescriptor]] = {}
    for report in reports:
        grouped.setdefault(report.report_type_id, []).append(report)
    selection: Dict[str, List[ReportDescriptor]] = {}
    for report_type_id, group in grouped.items():
        ordered = sorted(group, key=lambda report: parse_create_time(report.create_time))
        selection[report_type_id] = ordered[: max(0, limit)]
    return selection


def flatten_selection(selection: Mapping[str, Sequence[ReportDescriptor]]) -> List[ReportDescriptor]:
    return [report for group in selection.values() for report in group]


def download_reports(client: Any, reports: Sequence[ReportDescriptor], download_dir: Path) -> List[Tuple[ReportDescriptor, Path]]:
    """Download sequentially, one request in flight, in selection order."""
    downloads: List[Tuple[ReportDescriptor, Path]] = []
    for report in tqdm(reports, desc="Downloading", unit="report"):
        # Reports can share type, date and creation second; keep each in its own folder.
        path = client.download_report(report, download_dir / report.report_id / report.raw_filename)
        log_event(
            "REPORT_DOWNLOADED",
            report_type=report.report_type_id,
            report=report.report_id,
            report_date=report.report_date,
            created=report.create_time,
        )
        downloads.append((report, path))
    return downloads


def build_tables(
    downloads: Sequence[Tuple[ReportDescriptor, Path]],
    tables_dir: Path,
    grouping: str,
    custom_keys: Mapping[str, Sequence[str]],
) -> Dict[Path, int]:
    rows_by_table: Dict[Path, int] = {}
    for report, source in downloads:
        destination = tables_dir / destination_table_name(report, grouping)
        rows = transform_report_file(source, destination, report.report_type_id, custom_keys)
        rows_by_table[destination] = rows_by_table.get(destination, 0) + rows
        log_event(
            "REPORT_PARSED",
            report_type=report.report_type_id,
            report_date=report.report_date,
            created=report.create_time,
            table=destination.name,
            rows=rows,
        )
    return rows_by_table


def _summary_for(ctx: SyncContext, report_type_id: str) -> Dict[str, Any]:
    return ctx.report_type_summaries.setdefault(
        report_type_id,
        {
            "created_after": None,
            "reports_listed": 0,
            "reports_selected": 0,
            "reports_downloaded": 0,
            "latest_create_timestamp": None,
        },
    )


def run_sync(ctx: SyncContext) -> Dict[str, int]:
    """Resolve, list, select, download, transform and persist one run.

    Returns the state that was written (or would be written on a dry run).
    State is saved last so a failed run leaves every report type where it was.
    """
    args = ctx.args
    prior_state = load_state(ctx.paths.in_state)
    log_event("STATE_LOADED", path=ctx.paths.in_state, report_types=len(prior_state), ignored=args.ignore_state_file)

    remote_jobs = ctx.client.list_jobs(args.include_system_managed)
    jobs = filter_jobs(remote_jobs, ctx.report_types)
    ctx.stats.jobs_matched = len(jobs)
    found_types = {job.report_type_id for job in jobs}
    for report_type_id in ctx.report_types:
        if report_type_id not in found_types:
            log_event("JOB_MISSING", report_type=report_type_id, title=REPORT_TYPES.get(report_type_id, {}).get("title", "-"))

    if not jobs:
        log_event("NO_MATCHING_JOBS", report_types=",".join(ctx.report_types))
        if not args.dry_run:
            save_state(ctx.paths.out_state, prior_state)
        return prior_state

    jobs = attach_created_after(jobs, prior_state, args.initial_timestamp, args.ignore_state_file)
    for job in jobs:
        _summary_for(ctx, job.report_type_id)["created_after"] = format_created_after(job.created_after or 0)
        log_event(
            "JOB_SELECTED",
            report_type=job.report_type_id,
            job=job.id,
            system_managed=job.system_managed,
            created_after=format_created_after(job.created_after or 0),
        )

    listed = list_reports_for_jobs(ctx.client, jobs, args.page_size)
    ctx.stats.reports_listed = len(listed)
    for report in listed:
        _summary_for(ctx, report.report_type_id)["reports_listed"] += 1

    selection = select_reports(listed, args.reports_per_type_limit)
    selected = flatten_selection(selection)
    ctx.stats.reports_selected = len(selected)
    for report_type_id, group in selection.items():
        _summary_for(ctx, report_type_id)["reports_selected"] = len(group)
        log_event(
            "SELECTION",
            report_type=report_type_id,
            selected=len(group),
            oldest=group[0].create_time if group else "-",
            newest=group[-1].create_time if group else "-",
        )

    if args.dry_run:
        for report in selected:
            log_event("PLAN", report_type=report.report_type_id, report=report.report_id, created=report.create_time)
        return merge_states(prior_state, latest_create_timestamps(selected))

    if not selected:
        log_event("NO_NEW_REPORTS", report_types=",".join(sorted(found_types)))
        save_state(ctx.paths.out_state, prior_state)
        return prior_state

    download_dir = Path(tempfile.mkdtemp(prefix="youtube-reports-"))
    try:
        downloads = download_reports(ctx.client, selected, download_dir)
        ctx.stats.reports_downloaded = len(downloads)
        for report, _ in downloads:
            _summary_for(ctx, report.report_type_id)["reports_downloaded"] += 1

        if not args.s3_output_only:
            rows_by_table = build_tables(downloads, ctx.paths.tables_dir, args.table_grouping, ctx.custom_keys)
            ctx.stats.tables_written = len(rows_by_table)
            ctx.stats.rows_written = sum(rows_by_table.values())
            manifests = write_manifests(ctx.paths.tables_dir, args.table_bucket)
            ctx.stats.manifests_written = len(manifests)
            log_event("MANIFESTS_WRITTEN", count=len(manifests), bucket=args.table_bucket)

        if args.s3_backup or args.s3_output_only:
            s3_client = ctx.s3_client or make_s3_client(
                args.s3_region, args.s3_access_key_id, args.s3_secret_access_key
            )
            uploaded = upload_backups(s3_client, [path for _, path in downloads], args.s3_bucket, args.s3_remote_path)
            ctx.stats.backups_uploaded = len(uploaded)
            log_event("S3_BACKUP_DONE", bucket=args.s3_bucket, objects=len(uploaded))

        observed = latest_create_timestamps(report for report, _ in downloads)
        for report_type_id, timestamp in observed.items():
            _summary_for(ctx, report_type_id)["latest_create_timestamp"] = timestamp
        next_state = merge_states(prior_state, observed)
        save_state(ctx.paths.out_state, next_state)
        log_event("STATE_WRITTEN", path=ctx.paths.out_state, report_types=len(next_state))
        return next_state
    finally:
        shutil.rmtree(download_dir, ignore_errors=True)


def build_client(args: argparse.Namespace) -> YouTubeReportingClient:
    access_token = args.access_token or authenticate(
        client_id=args.client_id,
        client_secret=args.client_secret,
        refresh_token=args.refresh_token,
        token_url=args.token_url,
        timeout_seconds=args.timeout_seconds,
    )
    return YouTubeReportingClient(
        access_token=access_token,
        timeout_seconds=args.timeout_seconds,
        max_retries=args.max_retries,
        retry_sleep_seconds=args.retry_sleep_seconds,
        request_interval_seconds=args.request_interval_seconds,
        content_owner_id=args.content_owner_id,
        reauth_config={
            "client_id": args.client_id,
            "client_secret": args.client_secret,
            "refresh_token": args.refresh_token,
            "token_url": args.token_url,
            "timeout_seconds": args.timeout_seconds,
        },
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    report_types = validate_settings(args)
    run_started_at = utc_now_iso()
    run_started_monotonic = time.monotonic()
    run_dir = Path(args.logs_dir) / datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir.mkdir(parents=True, exist_ok=True)
    run_log_path = run_dir / "run.log"
    failures_csv_path = run_dir / "failures.csv"
    summary_json_path = run_dir / "summary.json"

    original_stdout = sys.stdout
    original_stderr = sys.stderr
    run_log_handle = open(run_log_path, "a", encoding="utf-8")
    failures_handle = open(failures_csv_path, "w", encoding="utf-8", newline="")
    failure_writer = csv.DictWriter(
        failures_handle,
        fieldnames=("timestamp", "report_type", "stage", "error"),
    )
    failure_writer.writeheader()
    failures_handle.flush()
    sys.stdout = TeeStream(original_stdout, run_log_handle)
    sys.stderr = TeeStream(original_stderr, run_log_handle)

    ctx: Optional[SyncContext] = None
    summary_status = "completed"
    fatal_error: Optional[str] = None

    def record_failure(*, report_type: str, stage: str, error: str) -> None:
        failure_writer.writerow(
            {
                "timestamp": datetime.now().astimezone().isoformat(timespec="seconds"),
                "report_type": report_type,
                "stage": stage,
                "error": error,
            }
        )
        failures_handle.flush()

    try:
        log_event("RUN_PATHS", run_dir=run_dir, run_log=run_log_path, failure_log=failures_csv_path)
        if args.config:
            log_event("RUN_CONFIG", config=args.config)
        client = build_client(args)

        if args.list_jobs:
            for job in client.list_jobs(args.include_system_managed):
                log_event(
                    "REMOTE_JOB",
                    job=job.id,
                    report_type=job.report_type_id,
                    name=job.name,
                    system_managed=job.system_managed,
                )
            return

        ctx = SyncContext(
            args=args,
            client=client,
            paths=SyncPaths.from_data_dir(Path(args.data_dir)),
            report_types=report_types,
            custom_keys=dict(args.custom_primary_keys),
        )
        run_sync(ctx)
        log_event("RUN_SUMMARY", **vars(ctx.stats))
    except SystemExit as exc:
        summary_status = "failed"
        fatal_error = str(exc)
        record_failure(report_type="RUN", stage="exit", error=fatal_error)
        raise
    except Exception as exc:  # noqa: BLE001
        summary_status = "failed"
        fatal_error = f"{type(exc).__name__}: {exc}"
        record_failure(report_type="RUN", stage="fatal", error=fatal_error)
        raise SystemExit(f"YouTube Reporting sync failed: {fatal_error}") from exc
    finally:
        elapsed_seconds = time.monotonic() - run_started_monotonic
        safe_args: Dict[str, Any] = {
            key: value for key, value in vars(args).items() if key not in SECRET_ARGS
        }
        run_summary = {
            "started_at": run_started_at,
            "finished_at": utc_now_iso(),
            "status": summary_status,
            "fatal_error": fatal_error,
            "elapsed_seconds": round(elapsed_seconds, 3),
            "run_dir": str(run_dir),
            "run_log": str(run_log_path),
            "failures_csv": str(failures_csv_path),
            "summary_json": str(summary_json_path),
            "args": safe_args,
            "stats": vars(ctx.stats) if ctx is not None else {},
            "report_types": ctx.report_type_summaries if ctx is not None else {},
        }
        try:
            summary_json_path.write_text(json.dumps(run_summary, indent=2, default=str), encoding="utf-8")
            log_event("SUMMARY_WRITTEN", path=summary_json_path)
        except OSError as exc:
            log_event("SUMMARY_WRITE_WARN", error=str(exc))
        finally:
            sys.stdout = original_stdout
            sys.stderr = original_stderr
            failures_handle.close()
            run_log_handle.close()


if __name__ == "__main__":
    main()
