"""Public API for backup operations."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from core.assets import AssetStore
from core.db import SqliteStore
from core.paths import (
    get_assets_dir,
    get_downloads_dir,
    get_safety_dir,
    get_store_path,
    resolve_working_dir,
)

from .bundle import DEFAULT_COMPRESSION_LEVEL, AssetBundler
from .codec import RelationalStore, SnapshotCodec
from .create import DEFAULT_PREFIX, BackupWriter
from .destinations import (
    DirectoryDestination,
    DirectoryPicker,
    DownloadDestination,
    DownloadSink,
    FolderSink,
)
from .ledger import DEFAULT_HISTORY_LIMIT, HistoryLedger, SettingsStore
from .logs import BackupLogger
from .restore import RestoreExecutor
from .retention import RetentionPolicy, cleanup_directory, cleanup_history
from .schedule import ScheduleGate
from .types import (
    INTERVALS,
    BackupHistoryItem,
    BackupResult,
    BackupSettings,
    CleanupInfo,
    CleanupResult,
    RestoreResult,
)

_SETTINGS_FIELDS = {
    "auto_backup_enabled",
    "auto_backup_interval",
    "backup_folder_name",
}


def _configured_folder_picker(folder: str) -> DirectoryPicker:
    path = Path(folder).expanduser()

    def _pick() -> Optional[Path]:
        return path

    return _pick


def _section(settings: Dict[str, object], *keys: str) -> Dict[str, Any]:
    current: Any = settings
    for key in keys:
        current = current.get(key) if isinstance(current, dict) else None
    return current if isinstance(current, dict) else {}


class BackupService:
    """Coordinate backup, restore, retention and scheduling for one working dir."""

    def __init__(
        self,
        *,
        working_dir: Optional[Path] = None,
        settings: Optional[Dict[str, object]] = None,
        store: Optional[RelationalStore] = None,
        directory_picker: Optional[DirectoryPicker] = None,
        download_sink: Optional[DownloadSink] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._working_dir = Path(working_dir or resolve_working_dir())
        self._settings = dict(settings or {})
        backup_cfg = _section(self._settings, "backup")
        retention_cfg = _section(self._settings, "backup", "retention")
        schedule_cfg = _section(self._settings, "backup", "schedule")

        self._logger = BackupLogger(self._working_dir)
        self._owned_store = store is None
        self._store = store if store is not None else SqliteStore(get_store_path(self._working_dir)).open()
        self._assets = AssetStore(get_assets_dir(self._working_dir))
        self._owner_id = backup_cfg.get("owner_id") or None
        self._prefix = str(backup_cfg.get("filename_prefix") or DEFAULT_PREFIX)
        self._include_assets = bool(backup_cfg.get("include_assets", False))

        self._settings_store = SettingsStore(self._working_dir / "backup_settings.json")
        self._history = HistoryLedger(
            self._working_dir / "backup_history.json",
            limit=int(backup_cfg.get("history_limit") or DEFAULT_HISTORY_LIMIT),
        )
        self._policy = RetentionPolicy(
            days_to_keep=int(retention_cfg.get("days_to_keep", 5)),
            prompt_threshold=int(retention_cfg.get("prompt_threshold", 10)),
        )

        if directory_picker is None and backup_cfg.get("directory"):
            directory_picker = _configured_folder_picker(str(backup_cfg["directory"]))
        self._directory = DirectoryDestination(directory_picker)
        self._download = DownloadDestination(download_sink or FolderSink(get_downloads_dir(self._working_dir)))

        self._codec = SnapshotCodec(self._store)
        self._bundler = AssetBundler(
            compression_level=int(backup_cfg.get("compression_level", DEFAULT_COMPRESSION_LEVEL)),
            logger=self._logger,
        )
        writer_kwargs: Dict[str, Any] = {}
        if clock is not None:
            writer_kwargs["clock"] = clock
        self._writer = BackupWriter(
            codec=self._codec,
            settings=self._settings_store,
            history=self._history,
            logger=self._logger,
            download=self._download,
            directory=self._directory,
            bundler=self._bundler,
            assets=self._assets,
            owner_id=self._owner_id,
            prefix=self._prefix,
            **writer_kwargs,
        )
        self._restorer = RestoreExecutor(
            codec=self._codec,
            logger=self._logger,
            bundler=self._bundler,
            assets=self._assets,
            owner_id=self._owner_id,
            safety_dir=get_safety_dir(self._working_dir),
        )
        self._schedule = ScheduleGate(
            writer=self._writer,
            settings=self._settings_store,
            logger=self._logger,
            interval_s=float(schedule_cfg.get("check_interval_s", 3600)),
            initial_delay_s=float(schedule_cfg.get("initial_delay_s", 5)),
            include_assets=self._include_assets,
            **writer_kwargs,
        )

    # ------------------------------------------------------------------
    @property
    def working_dir(self) -> Path:
        return self._working_dir

    @property
    def store(self) -> RelationalStore:
        return self._store

    @property
    def assets(self) -> AssetStore:
        return self._assets

    @property
    def schedule(self) -> ScheduleGate:
        return self._schedule

    @property
    def policy(self) -> RetentionPolicy:
        return self._policy

    @property
    def directory_available(self) -> bool:
        return self._directory.available

    # ------------------------------------------------------------------
    def backup_settings(self) -> BackupSettings:
        return self._settings_store.load()

    def update_backup_settings(self, **changes: Any) -> BackupSettings:
        unknown = set(changes) - _SETTINGS_FIELDS
        if unknown:
            raise ValueError(f"unsupported backup settings: {sorted(unknown)}")
        interval = changes.get("auto_backup_interval")
        if interval is not None and interval not in INTERVALS:
            raise ValueError(f"invalid backup interval: {interval!r}")
        updated = self._settings_store.update(**changes)
        self._logger.info("settings_updated", **changes)
        return updated

    def history(self) -> List[BackupHistoryItem]:
        return self._history.load()

    # ------------------------------------------------------------------
    def run_backup(
        self,
        destination: str = "download",
        *,
        include_assets: Optional[bool] = None,
        sink: Optional[DownloadSink] = None,
    ) -> BackupResult:
        if include_assets is None:
            include_assets = self._include_assets
        return self._writer.run_manual(destination, include_assets=include_assets, sink=sink)

    def restore(self, data: bytes, *, mode: str = "snapshot") -> RestoreResult:
        return self._restorer.restore(data, mode)

    # ------------------------------------------------------------------
    def needs_cleanup(self) -> bool:
        return self._policy.needs_cleanup(self._history.load())

    def cleanup_info(self) -> CleanupInfo:
        return self._policy.cleanup_info(self._history.load())

    def cleanup(self, *, mode: Optional[str] = None) -> CleanupResult:
        """Apply the retention policy.

        ``mode`` defaults to ``directory`` when folder access is available and
        ``history`` otherwise; history mode only prunes the log.
        """

        if mode is None:
            mode = "directory" if self._directory.available else "history"
        if mode == "directory":
            if not self._directory.available:
                return cleanup_history(self._history, self._policy, logger=self._logger)
            return cleanup_directory(
                self._directory,
                self._history,
                self._policy,
                prefix=self._prefix,
                logger=self._logger,
            )
        if mode == "history":
            return cleanup_history(self._history, self._policy, logger=self._logger)
        raise ValueError(f"unknown cleanup mode: {mode!r}")

    # ------------------------------------------------------------------
    def close(self) -> None:
        self._schedule.stop()
        if self._owned_store and isinstance(self._store, SqliteStore):
            self._store.flush()
            self._store.close()


__all__ = ["BackupService"]
