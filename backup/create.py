"""Create backups of the clinic store and deliver them to a destination."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from core.assets import AssetStore

from . import __version__ as APP_VERSION
from .bundle import AssetBundler
from .codec import SnapshotCodec
from .destinations import (
    ARCHIVE_EXT,
    SNAPSHOT_EXT,
    DirectoryDestination,
    DownloadDestination,
    DownloadSink,
    backup_filename,
)
from .errors import BackupError, UserCancelled
from .ledger import HistoryLedger, SettingsStore
from .logs import BackupLogger
from .types import ArchiveMetadata, BackupHistoryItem, BackupResult, DeliveryReceipt
from .verify import verify_archive

DEFAULT_PREFIX = "clinicvault_backup"


def _local_now() -> datetime:
    return datetime.now().astimezone()


class BackupWriter:
    """Drive one backup end to end: export, optionally bundle, deliver, record."""

    def __init__(
        self,
        *,
        codec: SnapshotCodec,
        settings: SettingsStore,
        history: HistoryLedger,
        logger: BackupLogger,
        download: DownloadDestination,
        directory: Optional[DirectoryDestination] = None,
        bundler: Optional[AssetBundler] = None,
        assets: Optional[AssetStore] = None,
        owner_id: Optional[str] = None,
        prefix: str = DEFAULT_PREFIX,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self._codec = codec
        self._settings = settings
        self._history = history
        self._logger = logger
        self._download = download
        self._directory = directory or DirectoryDestination()
        self._bundler = bundler or AssetBundler(logger=logger)
        self._assets = assets
        self._owner_id = owner_id
        self._prefix = prefix
        self._clock = clock

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def directory(self) -> DirectoryDestination:
        return self._directory

    # ------------------------------------------------------------------
    def _collect_assets(self) -> List[Tuple[str, bytes]]:
        if self._assets is None:
            return []
        collected: List[Tuple[str, bytes]] = []
        for name in self._assets.list_names(self._owner_id):
            data = self._assets.read(name, self._owner_id)
            if data is None:
                self._logger.warning("asset_missing", name=name)
                continue
            collected.append((name, data))
        return collected

    def _build_payload(self, *, include_assets: bool, now: datetime) -> Tuple[str, bytes]:
        snapshot = self._codec.export()
        if not include_assets:
            return backup_filename(self._prefix, now, SNAPSHOT_EXT), snapshot.data
        assets = self._collect_assets()
        metadata = ArchiveMetadata(
            version=0,
            asset_count=len(assets),
            created_at=now.isoformat(),
            owner_id=self._owner_id,
            app_version=APP_VERSION,
        )
        data = self._bundler.pack(snapshot, assets, metadata)
        info = verify_archive(data)
        self._logger.info("archive_packed", assets=info["asset_count"], size=len(data))
        return backup_filename(self._prefix, now, ARCHIVE_EXT), data

    def _deliver(
        self, destination: str, filename: str, data: bytes, sink: Optional[DownloadSink]
    ) -> DeliveryReceipt:
        if destination == "directory":
            return self._directory.deliver(filename, data)
        if destination == "download":
            return self._download.deliver(filename, data, sink=sink)
        raise ValueError(f"unknown backup destination: {destination!r}")

    def _record(self, receipt: DeliveryReceipt, *, kind: str, now: datetime, destination: str) -> BackupHistoryItem:
        item = BackupHistoryItem(
            id=str(uuid.uuid4()),
            filename=receipt.filename,
            created_at=now.isoformat(),
            size=receipt.size,
            type=kind,
        )
        self._history.append(item)
        changes = {"last_backup_at": now.isoformat()}
        if destination == "directory" and receipt.folder_name:
            changes["backup_folder_name"] = receipt.folder_name
        self._settings.update(**changes)
        return item

    # ------------------------------------------------------------------
    def run_manual(
        self,
        destination: str,
        *,
        include_assets: bool = False,
        kind: str = "manual",
        sink: Optional[DownloadSink] = None,
    ) -> BackupResult:
        """Run one backup to ``destination`` (``"directory"`` or ``"download"``).

        Nothing is recorded unless delivery succeeds. A dismissed folder prompt
        yields ``status="cancelled"``; other problems yield ``status="failed"``.
        When the file was delivered but the log could not be written, the
        failed result still carries the receipt.
        """

        if destination not in ("directory", "download"):
            raise ValueError(f"unknown backup destination: {destination!r}")
        now = self._clock()
        self._logger.event(
            event="backup_start", phase="create", ok=True, destination=destination, kind=kind
        )
        try:
            if destination == "directory":
                # Ask for consent before doing any export work.
                self._directory.ensure_access()
            filename, data = self._build_payload(include_assets=include_assets, now=now)
            receipt = self._deliver(destination, filename, data, sink)
        except UserCancelled as exc:
            self._logger.info("backup_cancelled", phase="create", destination=destination)
            return BackupResult(status="cancelled", error=exc)
        except BackupError as exc:
            self._logger.failure("backup_failed", "create", exc, destination=destination)
            return BackupResult(status="failed", error=exc)
        except OSError as exc:
            self._logger.failure("backup_failed", "create", exc, destination=destination)
            return BackupResult(status="failed", error=BackupError(f"could not write backup: {exc}"))

        try:
            item = self._record(receipt, kind=kind, now=now, destination=destination)
        except OSError as exc:
            self._logger.failure(
                "backup_record_failed", "create", exc, destination=destination, filename=receipt.filename
            )
            error = BackupError(f"backup {receipt.filename} was saved but could not be recorded: {exc}")
            return BackupResult(status="failed", receipt=receipt, error=error)
        self._logger.event(
            event="backup_complete",
            phase="create",
            ok=True,
            filename=receipt.filename,
            size=receipt.size,
            destination=destination,
            kind=kind,
        )
        return BackupResult(status="ok", receipt=receipt, history_item=item)


__all__ = ["BackupWriter", "DEFAULT_PREFIX"]
