import json

import pytest

import list_report_types
import show_sync_state
from sync_state import save_state
from youtube_report_catalog import PROFILES, REPORT_TYPES, available_profiles, normalize_report_type_ids, resolve_report_types


def test_profiles_only_reference_catalog_types():
    for profile in PROFILES.values():
        for report_type_id in profile["report_types"]:
            assert report_type_id in REPORT_TYPES


def test_available_profiles_sorted():
    assert available_profiles() == sorted(PROFILES)


def test_normalize_lowercases_and_dedupes():
    assert normalize_report_type_ids([" Channel_Basic_A2 ", "channel_basic_a2", "", "channel_cards_a1"]) == [
        "channel_basic_a2",
        "channel_cards_a1",
    ]


def test_resolve_accepts_types_outside_the_catalog():
    assert resolve_report_types(None, ["channel_new_report_a1"]) == ["channel_new_report_a1"]
    assert resolve_report_types(["content_owner_core"], ["content_owner_basic_a3"]) == list(
        PROFILES["content_owner_core"]["report_types"]
    )
    with pytest.raises(KeyError):
        resolve_report_types(["unknown"], [])


def test_list_report_types_json(capsys):
    list_report_types.main(["--profile", "channel_core", "--report-type", "channel_cards_a1", "--json"])
    payload = json.loads(capsys.readouterr().out)
    assert payload["selected_profiles"] == ["channel_core"]
    assert payload["report_types"][-1]["report_type"] == "channel_cards_a1"
    assert payload["report_type_count"] == len(PROFILES["channel_core"]["report_types"]) + 1


def test_show_sync_state(tmp_path, monkeypatch, capsys):
    state_path = tmp_path / "state.json"
    save_state(state_path, {"channel_basic_a2": 1438430400})
    monkeypatch.setattr("sys.argv", ["show_sync_state.py", str(state_path)])

    show_sync_state.main()

    out = capsys.readouterr().out
    assert "channel_basic_a2\t2015-08-01T12:00:00+00:00\t1438430400" in out


def test_show_sync_state_without_file(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr("sys.argv", ["show_sync_state.py", str(tmp_path / "missing.json")])
    show_sync_state.main()
    assert "No state file found" in capsys.readouterr().out
