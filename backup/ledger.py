"""Persisted backup settings and the bounded backup history log."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from threading import Lock, RLock
from typing import Any, Callable, Iterable, List

from .types import BackupHistoryItem, BackupSettings

LOGGER = logging.getLogger("clinicvault.backup.ledger")

DEFAULT_HISTORY_LIMIT = 50


def _read_json(path: Path) -> Any:
    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("Ignoring unreadable ledger file %s: %s", path, exc)
        return None


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2)
    os.replace(tmp_path, path)


class SettingsStore:
    """Whole-record read/write of :class:`BackupSettings`."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> BackupSettings:
        payload = _read_json(self._path)
        if not isinstance(payload, dict):
            return BackupSettings()
        return BackupSettings.from_dict(payload)

    def save(self, settings: BackupSettings) -> None:
        with self._lock:
            _write_json(self._path, settings.to_dict())

    def update(self, **changes: Any) -> BackupSettings:
        with self._lock:
            current = self.load()
            for key, value in changes.items():
                if not hasattr(current, key):
                    raise AttributeError(f"unknown backup setting: {key}")
                setattr(current, key, value)
            _write_json(self._path, current.to_dict())
        return current


class HistoryLedger:
    """Newest-first list of backups, truncated to ``limit`` entries."""

    def __init__(self, path: Path, *, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._path = Path(path)
        self._limit = max(int(limit), 1)
        self._lock = RLock()

    @property
    def limit(self) -> int:
        return self._limit

    def load(self) -> List[BackupHistoryItem]:
        payload = _read_json(self._path)
        if not isinstance(payload, list):
            return []
        items: List[BackupHistoryItem] = []
        for entry in payload:
            if not isinstance(entry, dict):
                continue
            try:
                items.append(BackupHistoryItem.from_dict(entry))
            except (KeyError, TypeError, ValueError):
                LOGGER.warning("Dropping malformed history entry: %r", entry)
        return items

    def save(self, items: Iterable[BackupHistoryItem]) -> List[BackupHistoryItem]:
        trimmed = list(items)[: self._limit]
        with self._lock:
            _write_json(self._path, [item.to_dict() for item in trimmed])
        return trimmed

    def update(
        self, change: Callable[[List[BackupHistoryItem]], List[BackupHistoryItem]]
    ) -> List[BackupHistoryItem]:
        """Load, transform and save under one lock.

        The scheduler thread and request handlers both write the log.
        """

        with self._lock:
            return self.save(change(self.load()))

    def append(self, item: BackupHistoryItem) -> List[BackupHistoryItem]:
        return self.update(lambda history: [item, *history])


__all__ = ["DEFAULT_HISTORY_LIMIT", "HistoryLedger", "SettingsStore"]
