"""Load and persist ``settings.json`` for a ClinicVault working directory."""
from __future__ import annotations

import copy
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .paths import get_default_settings_paths, get_logs_dir
from .settings_schema import SETTINGS_VALIDATOR

__all__ = [
    "DEFAULT_SETTINGS",
    "SETTINGS_VERSION",
    "load_settings",
    "merge_defaults",
    "save_settings",
    "update_settings",
]

LOGGER = logging.getLogger("clinicvault.settings")

SETTINGS_VERSION = 1


DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "backup": {
        "filename_prefix": "clinicvault_backup",
        "history_limit": 50,
        "include_assets": False,
        "compression_level": 6,
        "directory": None,
        "owner_id": None,
        "retention": {
            "days_to_keep": 5,
            "prompt_threshold": 10,
        },
        "schedule": {
            "check_interval_s": 3600,
            "initial_delay_s": 5,
        },
    },
    "api": {
        "host": "127.0.0.1",
        "port": 8765,
        "api_key": None,
        "cors_origins": ["http://localhost", "http://127.0.0.1"],
    },
}

# (path, minimum, maximum); out-of-range or non-numeric values fall back to the default.
_NUMERIC_BOUNDS = (
    (("backup", "history_limit"), 1, 1000),
    (("backup", "compression_level"), 0, 9),
    (("backup", "retention", "days_to_keep"), 1, 365),
    (("backup", "retention", "prompt_threshold"), 1, 1000),
    (("backup", "schedule", "check_interval_s"), 1, 24 * 3600),
    (("backup", "schedule", "initial_delay_s"), 0, 3600),
    (("api", "port"), 1, 65535),
)


def merge_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge ``data`` over :data:`DEFAULT_SETTINGS`; unknown keys are kept."""

    def _merge(default: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        result = copy.deepcopy(default)
        for key, value in payload.items():
            if isinstance(result.get(key), dict):
                result[key] = _merge(result[key], value if isinstance(value, dict) else {})
            else:
                result[key] = copy.deepcopy(value)
        return result

    return _merge(DEFAULT_SETTINGS, data or {})


def _default_at(path: tuple) -> Any:
    node: Any = DEFAULT_SETTINGS
    for key in path:
        node = node[key]
    return node


def _normalise(settings: Dict[str, Any]) -> Dict[str, Any]:
    for path, low, high in _NUMERIC_BOUNDS:
        parent = settings
        for key in path[:-1]:
            parent = parent[key]
        raw = parent.get(path[-1])
        try:
            value = int(raw)
        except (TypeError, ValueError):
            value = None
        if value is None or isinstance(raw, bool) or not low <= value <= high:
            fallback = _default_at(path)
            LOGGER.warning("Setting %s=%r is invalid; using %r", ".".join(path), raw, fallback)
            value = fallback
        parent[path[-1]] = value

    backup = settings["backup"]
    prefix = str(backup.get("filename_prefix") or "").strip()
    if not prefix or any(sep in prefix for sep in ("/", "\\")):
        prefix = _default_at(("backup", "filename_prefix"))
    backup["filename_prefix"] = prefix
    backup["include_assets"] = bool(backup.get("include_assets"))

    version = settings.get("version")
    try:
        version_int = int(version)
    except (TypeError, ValueError):
        version_int = 0
    if version_int < SETTINGS_VERSION:
        settings["version"] = SETTINGS_VERSION
    return settings


def _log_unknown_keys(settings: Dict[str, Any], working_dir: Path) -> None:
    unknown = list(SETTINGS_VALIDATOR.unknown_keys(settings))
    if not unknown:
        return
    LOGGER.info("Unknown settings keys: %s", ", ".join(unknown))
    target = get_logs_dir(working_dir) / "settings_unknown.json"
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(
            json.dumps({"ts": time.time(), "unknown": unknown}, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
    except OSError as exc:
        LOGGER.warning("Could not write %s: %s", target, exc)


def _read_first_settings(working_dir: Path) -> Optional[Dict[str, Any]]:
    for candidate in get_default_settings_paths(working_dir):
        try:
            loaded = json.loads(candidate.read_text(encoding="utf-8"))
        except FileNotFoundError:
            continue
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Ignoring unreadable settings file %s: %s", candidate, exc)
            continue
        if isinstance(loaded, dict):
            return loaded
    return None


def load_settings(working_dir: Path) -> Dict[str, Any]:
    merged = _normalise(merge_defaults(_read_first_settings(working_dir) or {}))
    merged.setdefault("working_dir", str(working_dir))
    _log_unknown_keys(merged, working_dir)
    return merged


def save_settings(settings: Dict[str, Any], working_dir: Path) -> None:
    merged = _normalise(merge_defaults(dict(settings)))
    merged.setdefault("working_dir", str(working_dir))
    path = working_dir / "settings.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(json.dumps(merged, ensure_ascii=False, indent=2), encoding="utf-8")
    os.replace(tmp_path, path)


def update_settings(working_dir: Path, **values: Any) -> None:
    current = load_settings(working_dir)
    current.update(values)
    save_settings(current, working_dir)
