import json

import pytest

from download_youtube_reports import ReportJob
from sync_state import (
    DEFAULT_START_TIMESTAMP,
    SyncStateError,
    attach_created_after,
    describe_state,
    format_created_after,
    latest_create_timestamps,
    load_state,
    merge_states,
    parse_create_time,
    resolve_created_after,
    save_state,
    to_epoch_seconds,
)

from conftest import make_report


def test_resolve_uses_default_without_state_entry():
    assert resolve_created_after("basic_a2", {}, 500) == 500
    assert resolve_created_after("basic_a2", {"other": 900}, 500) == 500


def test_resolve_takes_the_later_of_default_and_state():
    assert resolve_created_after("basic_a2", {"basic_a2": 1000}, DEFAULT_START_TIMESTAMP) == DEFAULT_START_TIMESTAMP
    assert resolve_created_after("basic_a2", {"basic_a2": 1600000000}, DEFAULT_START_TIMESTAMP) == 1600000000


def test_resolve_ignores_state_when_asked():
    assert resolve_created_after("basic_a2", {"basic_a2": 1600000000}, 500, ignore_state=True) == 500


def test_attach_created_after_sets_each_job():
    jobs = [ReportJob(id="a", report_type_id="channel_basic_a2"), ReportJob(id="b", report_type_id="channel_cards_a1")]
    resolved = attach_created_after(jobs, {"channel_cards_a1": 2000}, 1000)
    assert [job.created_after for job in resolved] == [1000, 2000]
    assert jobs[0].created_after is None


def test_merge_advances_observed_and_copies_the_rest():
    prior = {"channel_basic_a2": 100, "channel_cards_a1": 200}
    merged = merge_states(prior, {"channel_basic_a2": 150, "channel_device_os_a2": 50})
    assert merged == {"channel_basic_a2": 151, "channel_cards_a1": 200, "channel_device_os_a2": 51}
    assert prior == {"channel_basic_a2": 100, "channel_cards_a1": 200}


def test_merge_is_idempotent_for_the_same_observation():
    prior = {"channel_basic_a2": 100}
    observed = {"channel_basic_a2": 150}
    once = merge_states(prior, observed)
    assert merge_states(once, observed) == once


def test_merge_never_moves_backwards_for_reports_listed_after_the_cutoff():
    prior = {"channel_basic_a2": 1000}
    cutoff = resolve_created_after("channel_basic_a2", prior, 10)
    observed = {"channel_basic_a2": cutoff}
    assert merge_states(prior, observed)["channel_basic_a2"] >= prior["channel_basic_a2"]


def test_latest_create_timestamps_takes_the_max_per_type():
    reports = [
        make_report("r1", "channel_basic_a2", "2023-01-02T10:00:00Z"),
        make_report("r2", "channel_basic_a2", "2023-01-01T10:00:00Z"),
        make_report("r3", "channel_cards_a1", "2023-01-03T10:00:00.5Z"),
    ]
    assert latest_create_timestamps(reports) == {
        "channel_basic_a2": to_epoch_seconds("2023-01-02T10:00:00Z"),
        "channel_cards_a1": to_epoch_seconds("2023-01-03T10:00:00Z"),
    }


def test_create_time_parsing():
    parsed = parse_create_time("2015-10-02T19:15:19.150436Z")
    assert parsed.microsecond == 150436
    assert to_epoch_seconds("1970-01-01T00:00:01.999999999Z") == 1
    assert to_epoch_seconds("2015-08-01T12:00:00Z") == DEFAULT_START_TIMESTAMP


def test_format_created_after():
    assert format_created_after(DEFAULT_START_TIMESTAMP) == "2015-08-01T12:00:00.000000Z"


def test_load_state_missing_file_is_empty(tmp_path):
    assert load_state(tmp_path / "state.json") == {}


def test_load_state_collapses_legacy_lists(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"channel_basic_a2": [10, 30, 20], "channel_cards_a1": 5}), encoding="utf-8")
    assert load_state(path) == {"channel_basic_a2": 30, "channel_cards_a1": 5}


@pytest.mark.parametrize("payload", ["{not json", "[1, 2]", '{"channel_basic_a2": "soon"}', '{"x": []}'])
def test_load_state_rejects_unusable_files(tmp_path, payload):
    path = tmp_path / "state.json"
    path.write_text(payload, encoding="utf-8")
    with pytest.raises(SyncStateError):
        load_state(path)


def test_save_state_round_trips_and_leaves_no_tmp(tmp_path):
    path = tmp_path / "out" / "state.json"
    save_state(path, {"b": 2, "a": 1})
    assert load_state(path) == {"a": 1, "b": 2}
    assert not path.with_suffix(".json.tmp").exists()
    assert list(json.loads(path.read_text(encoding="utf-8"))) == ["a", "b"]


def test_describe_state_sorts_and_formats():
    rows = describe_state({"b": 0, "a": DEFAULT_START_TIMESTAMP})
    assert [row["report_type"] for row in rows] == ["a", "b"]
    assert rows[1]["created_after"] == "1970-01-01T00:00:00+00:00"
