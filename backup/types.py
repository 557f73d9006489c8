"""Common dataclasses shared across backup modules."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import BackupError

SQLITE_SIGNATURE = b"SQLite format 3\x00"

INTERVALS = ("daily", "weekly", "manual")
BACKUP_KINDS = ("manual", "auto")


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Validated full-state image of the relational store."""

    data: bytes

    def __len__(self) -> int:
        return len(self.data)


@dataclass(slots=True)
class BackupSettings:
    """Persisted auto-backup preferences and last-run bookkeeping."""

    auto_backup_enabled: bool = False
    auto_backup_interval: str = "daily"
    last_backup_at: Optional[str] = None
    backup_folder_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "autoBackupEnabled": bool(self.auto_backup_enabled),
            "autoBackupInterval": self.auto_backup_interval,
            "lastBackupAt": self.last_backup_at,
            "backupFolderName": self.backup_folder_name,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "BackupSettings":
        interval = payload.get("autoBackupInterval", "daily")
        if interval not in INTERVALS:
            interval = "daily"
        return cls(
            auto_backup_enabled=bool(payload.get("autoBackupEnabled", False)),
            auto_backup_interval=interval,
            last_backup_at=payload.get("lastBackupAt") or None,
            backup_folder_name=payload.get("backupFolderName") or None,
        )


@dataclass(frozen=True, slots=True)
class BackupHistoryItem:
    id: str
    filename: str
    created_at: str
    size: int
    type: str = "manual"

    @property
    def created(self) -> datetime:
        return datetime.fromisoformat(self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "createdAt": self.created_at,
            "size": int(self.size),
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "BackupHistoryItem":
        kind = payload.get("type", "manual")
        created_at = str(payload["createdAt"])
        # Raises ValueError for timestamps retention could not order.
        datetime.fromisoformat(created_at)
        return cls(
            id=str(payload["id"]),
            filename=str(payload["filename"]),
            created_at=created_at,
            size=int(payload.get("size") or 0),
            type=kind if kind in BACKUP_KINDS else "manual",
        )


@dataclass(frozen=True, slots=True)
class BackupFile:
    """Backup file found in a chosen directory, dated from its file name."""

    name: str
    path: Path
    created: datetime


@dataclass(slots=True)
class RetentionDecision:
    to_keep: List[Any]
    to_delete: List[Any]


@dataclass(slots=True)
class CleanupInfo:
    total_count: int
    to_delete_count: int
    to_keep_count: int
    threshold: int


@dataclass(slots=True)
class ArchiveMetadata:
    version: int
    asset_count: int
    created_at: str
    owner_id: Optional[str] = None
    app_version: Optional[str] = None
    snapshot_bytes: Optional[int] = None
    snapshot_sha256: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "assetCount": self.asset_count,
            "createdAt": self.created_at,
            "ownerId": self.owner_id,
            "appVersion": self.app_version,
            "snapshotBytes": self.snapshot_bytes,
            "snapshotSha256": self.snapshot_sha256,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ArchiveMetadata":
        snapshot_bytes = payload.get("snapshotBytes")
        return cls(
            version=int(payload.get("version", 0)),
            asset_count=int(payload.get("assetCount", 0)),
            created_at=str(payload.get("createdAt") or ""),
            owner_id=payload.get("ownerId"),
            app_version=payload.get("appVersion"),
            snapshot_bytes=int(snapshot_bytes) if snapshot_bytes is not None else None,
            snapshot_sha256=payload.get("snapshotSha256"),
        )


@dataclass(slots=True)
class UnpackedArchive:
    snapshot: bytes
    assets: List[tuple[str, bytes]]
    metadata: Optional[ArchiveMetadata]
    lost_assets: List[str] = field(default_factory=list)


@dataclass(slots=True)
class DeliveryReceipt:
    filename: str
    size: int
    location: Optional[str] = None
    folder_name: Optional[str] = None


@dataclass(slots=True)
class BackupResult:
    """Outcome of one backup run: ``ok``, ``cancelled`` or ``failed``."""

    status: str
    receipt: Optional[DeliveryReceipt] = None
    history_item: Optional[BackupHistoryItem] = None
    error: Optional[BackupError] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def message(self) -> str:
        if self.status == "ok" and self.receipt:
            return f"Backup saved as {self.receipt.filename}"
        if self.error is not None:
            return self.error.user_message
        return ""


@dataclass(slots=True)
class RestoreResult:
    state: str
    error: Optional[BackupError] = None
    lost_assets: List[str] = field(default_factory=list)
    restored_assets: int = 0
    safety_path: Optional[Path] = None

    @property
    def ok(self) -> bool:
        return self.state == "done"

    @property
    def partial_asset_loss(self) -> int:
        return len(self.lost_assets)

    @property
    def message(self) -> str:
        if self.error is not None:
            return self.error.user_message
        if self.lost_assets:
            return f"Restore complete; {len(self.lost_assets)} image(s) could not be restored."
        return "Restore complete." if self.ok else ""


@dataclass(slots=True)
class CleanupResult:
    status: str
    deleted: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    error: Optional[BackupError] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)

    @property
    def kept_count(self) -> int:
        return len(self.kept)


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


__all__ = [
    "ArchiveMetadata",
    "BACKUP_KINDS",
    "BackupFile",
    "BackupHistoryItem",
    "BackupResult",
    "BackupSettings",
    "CleanupInfo",
    "CleanupResult",
    "DeliveryReceipt",
    "INTERVALS",
    "RestoreResult",
    "RetentionDecision",
    "SQLITE_SIGNATURE",
    "Snapshot",
    "UnpackedArchive",
    "format_file_size",
]
