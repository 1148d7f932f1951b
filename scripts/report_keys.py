#!/usr/bin/env python3
"""Deterministic row identifiers for YouTube Reporting CSV rows.

Report schemas are not registered anywhere, so every column is classified on
the fly: dimension-like columns (non-numeric values, the report ``date`` and
names ending in one of ``KEY_SUFFIXES``) form the row key, numeric metrics do
not. A per report type override replaces the heuristic with an explicit list.
The row ``id`` is the MD5 of the key values joined in column order, so rows
that only differ in metrics collapse into one upsert key downstream.
"""

from __future__ import annotations

import hashlib
import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

KEY_SUFFIXES: Tuple[str, ...] = ("date", "id", "status", "type", "code", "detail")
DATE_FIELD = "date"
ID_COLUMN = "id"

_NUMERIC_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

CustomKeys = Mapping[str, Sequence[str]]


class ReportShapeError(ValueError):
    """Report payload does not match its header or the configured key fields."""


def is_numeric_value(value: str) -> bool:
    text = value.strip()
    if not text:
        # Blank metric cells must not turn a metric column into a key column.
        return True
    return _NUMERIC_RE.fullmatch(text) is not None


def has_key_suffix(field_name: str, suffixes: Iterable[str] = KEY_SUFFIXES) -> bool:
    return field_name.rsplit("_", 1)[-1] in set(suffixes)


def is_key_field(
    field_name: str,
    value: str,
    report_type_id: str,
    custom_keys: Optional[CustomKeys] = None,
    suffixes: Iterable[str] = KEY_SUFFIXES,
) -> bool:
    override = (custom_keys or {}).get(report_type_id)
    if override:
        return field_name in override
    return (
        not is_numeric_value(value)
        or field_name == DATE_FIELD
        or has_key_suffix(field_name, suffixes)
    )


def key_fields(
    row: Mapping[str, str],
    report_type_id: str,
    custom_keys: Optional[CustomKeys] = None,
    suffixes: Iterable[str] = KEY_SUFFIXES,
) -> List[str]:
    suffix_set = tuple(suffixes)
    return [
        name
        for name, value in row.items()
        if name != ID_COLUMN and is_key_field(name, value, report_type_id, custom_keys, suffix_set)
    ]


def build_key_string(
    row: Mapping[str, str],
    report_type_id: str,
    custom_keys: Optional[CustomKeys] = None,
    suffixes: Iterable[str] = KEY_SUFFIXES,
) -> str:
    key = ""
    for name in key_fields(row, report_type_id, custom_keys, suffixes):
        key += f" {row[name]}"
    return key


def derive_row_id(
    row: Mapping[str, str],
    report_type_id: str,
    custom_keys: Optional[CustomKeys] = None,
    suffixes: Iterable[str] = KEY_SUFFIXES,
) -> str:
    """Return the lowercase hex MD5 of the row's canonical key string.

    ``row`` must iterate in source column order; a plain dict built from the
    CSV header does.
    """
    key = build_key_string(row, report_type_id, custom_keys, suffixes)
    return hashlib.md5(key.encode("utf-8")).hexdigest()


def validate_custom_keys(
    report_type_id: str,
    header: Sequence[str],
    custom_keys: Optional[CustomKeys],
) -> None:
    override = (custom_keys or {}).get(report_type_id)
    if not override:
        return
    missing = [name for name in override if name not in header]
    if missing:
        raise ReportShapeError(
            f"Custom primary key for {report_type_id} names unknown column(s): "
            f"{', '.join(missing)}. Available columns: {', '.join(header)}"
        )


def normalize_custom_keys(value: object) -> Dict[str, List[str]]:
    """Coerce a configured override mapping; raise ``ValueError`` when malformed."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("customPrimaryKeys must be a mapping of report type to a list of column names.")
    normalized: Dict[str, List[str]] = {}
    for report_type_id, fields in value.items():
        if isinstance(fields, str):
            fields = [fields]
        if not isinstance(fields, list) or not fields:
            raise ValueError(f"customPrimaryKeys.{report_type_id} must be a non-empty list of column names.")
        names: List[str] = []
        for name in fields:
            if not isinstance(name, str) or not name.strip():
                raise ValueError(f"customPrimaryKeys.{report_type_id} contains an empty or non-string column name.")
            names.append(name.strip())
        normalized[str(report_type_id).strip().lower()] = names
    return normalized
