"""Pydantic schemas for the ClinicVault local API."""
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health response summarising server readiness."""

    ok: bool = Field(True, description="Indicates the API server is reachable.")
    version: str = Field(..., description="Application version string.")
    time_utc: str = Field(..., description="Current UTC timestamp in ISO8601 format.")
    directory_available: bool = Field(
        ..., description="True when backups can be written to a chosen folder on this platform."
    )
    schedule_running: bool = Field(..., description="True while the automatic backup timer is active.")


class BackupSettingsModel(BaseModel):
    autoBackupEnabled: bool = False
    autoBackupInterval: Literal["daily", "weekly", "manual"] = "daily"
    lastBackupAt: Optional[str] = None
    backupFolderName: Optional[str] = None


class BackupSettingsUpdate(BaseModel):
    autoBackupEnabled: Optional[bool] = None
    autoBackupInterval: Optional[Literal["daily", "weekly", "manual"]] = None


class BackupHistoryEntry(BaseModel):
    id: str
    filename: str
    createdAt: str
    size: int = Field(..., ge=0)
    sizeLabel: str = Field(..., description="Human readable size, e.g. '1.2 MB'.")
    type: Literal["manual", "auto"]


class BackupHistoryResponse(BaseModel):
    items: List[BackupHistoryEntry]
    needsCleanup: bool


class BackupRunResponse(BaseModel):
    status: Literal["ok", "cancelled", "failed"]
    message: str
    filename: Optional[str] = None
    size: Optional[int] = None
    location: Optional[str] = None


class RestoreResponse(BaseModel):
    state: str
    message: str
    lostAssets: int = Field(0, ge=0, description="Images that could not be restored.")
    restoredAssets: int = Field(0, ge=0)


class CleanupInfoResponse(BaseModel):
    totalCount: int
    toDeleteCount: int
    toKeepCount: int
    threshold: int
    needsCleanup: bool


class CleanupResponse(BaseModel):
    status: Literal["ok", "cancelled", "failed"]
    deletedCount: int
    keptCount: int
    failed: List[str] = Field(default_factory=list)
    message: Optional[str] = None
