import hashlib

import pytest

from report_keys import (
    ReportShapeError,
    build_key_string,
    derive_row_id,
    is_key_field,
    is_numeric_value,
    key_fields,
    normalize_custom_keys,
    validate_custom_keys,
)


def test_rows_differing_only_in_metrics_share_an_id():
    first = {"video_id": "v1", "date": "20230101", "views": "10"}
    second = {"video_id": "v1", "date": "20230101", "views": "20"}
    assert derive_row_id(first, "channel_basic_a2") == derive_row_id(second, "channel_basic_a2")


def test_key_string_keeps_column_order_and_leading_spaces():
    row = {"date": "20230101", "channel_id": "UC1", "views": "5", "country_code": "US"}
    assert build_key_string(row, "channel_basic_a2") == " 20230101 UC1 US"
    expected = hashlib.md5(" 20230101 UC1 US".encode("utf-8")).hexdigest()
    assert derive_row_id(row, "channel_basic_a2") == expected


def test_non_numeric_values_are_keys_even_without_suffix():
    assert is_key_field("live_or_on_demand", "on_demand", "channel_basic_a2")
    assert not is_key_field("watch_time_minutes", "12.5", "channel_basic_a2")


def test_suffix_match_uses_last_segment_only():
    assert is_key_field("uploader_type", "1", "channel_basic_a2")
    assert is_key_field("claimed_status", "2", "channel_basic_a2")
    assert not is_key_field("type_views", "3", "channel_basic_a2")


def test_numeric_detection():
    for value in ("0", "-3", "+4.5", "1e3", ".5", "7.", " 12 ", ""):
        assert is_numeric_value(value), value
    for value in ("abc", "12a", "nan", "inf", "1,000", "2023-01-01"):
        assert not is_numeric_value(value), value


def test_custom_override_replaces_heuristic():
    row = {"date": "20230101", "video_id": "v1", "country_code": "US", "views": "10"}
    overrides = {"channel_basic_a2": ["video_id", "views"]}
    assert key_fields(row, "channel_basic_a2", overrides) == ["video_id", "views"]
    assert key_fields(row, "channel_province_a2", overrides) == ["date", "video_id", "country_code"]


def test_zero_key_fields_yields_constant_id():
    first = derive_row_id({"views": "1", "likes": "2"}, "metrics_only")
    second = derive_row_id({"views": "9", "likes": "8"}, "metrics_only")
    assert first == second == hashlib.md5(b"").hexdigest()


def test_generated_id_column_is_ignored():
    row = {"id": "abc", "video_id": "v1"}
    assert key_fields(row, "channel_basic_a2") == ["video_id"]


def test_validate_custom_keys_rejects_unknown_columns():
    with pytest.raises(ReportShapeError, match="unknown column"):
        validate_custom_keys("channel_basic_a2", ["date", "video_id"], {"channel_basic_a2": ["missing"]})
    validate_custom_keys("channel_basic_a2", ["date", "video_id"], {"channel_basic_a2": ["video_id"]})
    validate_custom_keys("channel_basic_a2", ["date"], None)


def test_normalize_custom_keys():
    assert normalize_custom_keys(None) == {}
    assert normalize_custom_keys({"Channel_Basic_A2": "video_id"}) == {"channel_basic_a2": ["video_id"]}
    with pytest.raises(ValueError):
        normalize_custom_keys({"channel_basic_a2": []})
    with pytest.raises(ValueError):
        normalize_custom_keys(["video_id"])
    with pytest.raises(ValueError):
        normalize_custom_keys({"channel_basic_a2": ["video_id", ""]})
