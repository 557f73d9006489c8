"""Tests for core.settings helpers."""

from __future__ import annotations

import json
from pathlib import Path

from core.settings import SETTINGS_VERSION, load_settings, merge_defaults, save_settings, update_settings
from core.settings_schema import SETTINGS_VALIDATOR


def test_merge_defaults_includes_backup_block() -> None:
    merged = merge_defaults({})

    backup = merged["backup"]
    assert backup["filename_prefix"] == "clinicvault_backup"
    assert backup["history_limit"] == 50
    assert backup["include_assets"] is False
    assert backup["retention"] == {"days_to_keep": 5, "prompt_threshold": 10}
    assert backup["schedule"]["check_interval_s"] == 3600
    assert merged["api"]["host"] == "127.0.0.1"


def test_merge_defaults_keeps_user_values() -> None:
    merged = merge_defaults({"backup": {"retention": {"days_to_keep": 9}}, "api": {"cors_origins": []}})

    assert merged["backup"]["retention"]["days_to_keep"] == 9
    assert merged["backup"]["retention"]["prompt_threshold"] == 10
    assert merged["api"]["cors_origins"] == []


def test_save_settings_upgrades_legacy_file(tmp_path: Path) -> None:
    working_dir = tmp_path
    path = working_dir / "settings.json"
    legacy = {"backup": {"include_assets": True}}
    path.write_text(json.dumps(legacy), encoding="utf-8")

    loaded = load_settings(working_dir)
    assert loaded["backup"]["include_assets"] is True
    assert loaded["version"] == SETTINGS_VERSION
    assert loaded["working_dir"] == str(working_dir)

    save_settings(legacy, working_dir)
    upgraded = json.loads(path.read_text(encoding="utf-8"))

    assert upgraded["backup"]["include_assets"] is True
    assert upgraded["backup"]["schedule"]["initial_delay_s"] == 5
    assert upgraded["version"] == SETTINGS_VERSION


def test_unknown_keys_are_logged(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text(
        json.dumps({"backup": {"cloud": True, "retention": {"months": 3}}}), encoding="utf-8"
    )

    load_settings(tmp_path)

    report = json.loads((tmp_path / "logs" / "settings_unknown.json").read_text(encoding="utf-8"))
    assert report["unknown"] == ["backup.cloud", "backup.retention.months"]


def test_corrupt_settings_fall_back_to_defaults(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text("{oops", encoding="utf-8")

    loaded = load_settings(tmp_path)

    assert loaded["backup"]["history_limit"] == 50


def test_update_settings_persists_values(tmp_path: Path) -> None:
    update_settings(tmp_path, backup={"directory": str(tmp_path / "Backups")})

    loaded = load_settings(tmp_path)

    assert loaded["backup"]["directory"] == str(tmp_path / "Backups")
    assert loaded["backup"]["history_limit"] == 50


def test_out_of_range_values_fall_back_to_defaults(tmp_path: Path) -> None:
    payload = {
        "backup": {
            "compression_level": 42,
            "filename_prefix": "../escape",
            "retention": {"days_to_keep": "seven", "prompt_threshold": 3},
        },
        "api": {"port": True},
    }
    (tmp_path / "settings.json").write_text(json.dumps(payload), encoding="utf-8")

    loaded = load_settings(tmp_path)

    assert loaded["backup"]["compression_level"] == 6
    assert loaded["backup"]["filename_prefix"] == "clinicvault_backup"
    assert loaded["backup"]["retention"] == {"days_to_keep": 5, "prompt_threshold": 3}
    assert loaded["api"]["port"] == 8765


def test_validator_walks_every_rule_kind() -> None:
    payload = {
        "working_dir": {"anything": "goes"},
        "api": {"host": "127.0.0.1", "tls": True},
        "backup": {"retention": {"days_to_keep": 5, "weeks": 2}, "schedule": 60},
        "theme": "dark",
    }

    assert list(SETTINGS_VALIDATOR.unknown_keys(payload)) == ["api.tls", "backup.retention.weeks", "theme"]
