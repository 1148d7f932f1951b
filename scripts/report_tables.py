#!/usr/bin/env python3
"""Append downloaded report CSVs into keyed output tables with load manifests."""

from __future__ import annotations

import csv
import json
from collections import Counter
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from report_keys import ID_COLUMN, CustomKeys, ReportShapeError, derive_row_id, validate_custom_keys

if TYPE_CHECKING:
    from download_youtube_reports import ReportDescriptor

TABLE_GROUPINGS = ("report_type", "report_date")
MANIFEST_SUFFIX = ".manifest"
PRIMARY_KEY = [ID_COLUMN]
IS_INCREMENTAL = True


def dedupe_header(header: Sequence[str], reserved: Sequence[str] = (ID_COLUMN,)) -> List[str]:
    """Rename repeated columns, and columns clashing with the generated ones, to ``name_<index>``."""
    counts = Counter(header)
    return [
        name if counts[name] == 1 and name not in reserved else f"{name}_{index}"
        for index, name in enumerate(header)
    ]


def read_existing_header(path: Path) -> Optional[List[str]]:
    if not path.exists() or path.stat().st_size == 0:
        return None
    with open(path, "r", encoding="utf-8", newline="") as handle:
        return next(csv.reader(handle), None)


def transform_report_file(
    source: Path,
    destination: Path,
    report_type_id: str,
    custom_keys: Optional[CustomKeys] = None,
) -> int:
    """Stream ``source`` into ``destination`` with an ``id`` column prepended.

    The header is written only when the destination is new; later artefacts
    for the same table are appended under the existing header. Rows are
    handled one at a time. A row that does not fit the header raises
    ``ReportShapeError`` and rows written before it stay in the destination.
    Returns the number of data rows written.
    """
    existing_header = read_existing_header(destination)
    written = 0
    with open(source, "r", encoding="utf-8-sig", newline="") as src:
        reader = csv.reader(src)
        raw_header = next(reader, None)
        if not raw_header:
            return 0
        header = dedupe_header([name.strip() for name in raw_header])
        validate_custom_keys(report_type_id, header, custom_keys)
        output_header = [ID_COLUMN] + header
        if existing_header is not None and existing_header != output_header:
            raise ReportShapeError(
                f"{source.name}: columns {header} do not match existing table "
                f"{destination.name} columns {existing_header[1:]}"
            )

        destination.parent.mkdir(parents=True, exist_ok=True)
        with open(destination, "a", encoding="utf-8", newline="") as dst:
            writer = csv.writer(dst, lineterminator="\n")
            if existing_header is None:
                writer.writerow(output_header)
            for values in reader:
                if not values:
                    continue
                if len(values) != len(header):
                    raise ReportShapeError(
                        f"{source.name} line {reader.line_num}: expected {len(header)} "
                        f"fields, got {len(values)}"
                    )
                row: Dict[str, str] = dict(zip(header, values))
                writer.writerow([derive_row_id(row, report_type_id, custom_keys)] + values)
                written += 1
    return written


def destination_table_name(report: "ReportDescriptor", grouping: str = "report_type") -> str:
    if grouping == "report_type":
        return f"{report.report_type_id}.csv"
    if grouping == "report_date":
        return f"{report.report_type_id}_{report.report_date}.csv"
    raise ValueError(f"Unknown table grouping '{grouping}'. Choices: {', '.join(TABLE_GROUPINGS)}")


def manifest_path_for(table_path: Path) -> Path:
    return table_path.with_name(table_path.name + MANIFEST_SUFFIX)


def write_manifest(table_path: Path, table_bucket: str) -> Path:
    manifest = {
        "destination": f"{table_bucket}.{table_path.stem}",
        "incremental": IS_INCREMENTAL,
        "primary_key": list(PRIMARY_KEY),
    }
    manifest_path = manifest_path_for(table_path)
    manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    return manifest_path


def write_manifests(tables_dir: Path, table_bucket: str) -> List[Path]:
    if not tables_dir.exists():
        return []
    return [write_manifest(path, table_bucket) for path in sorted(tables_dir.glob("*.csv")) if path.is_file()]
