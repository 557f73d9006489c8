"""Backup, retention and restore engine for the ClinicVault local store."""
from __future__ import annotations

__version__ = "1.0.0"

from .api import BackupService
from .errors import BackupError
from .retention import RetentionPolicy
from .types import BackupHistoryItem, BackupResult, BackupSettings, CleanupResult, RestoreResult

__all__ = [
    "BackupError",
    "BackupHistoryItem",
    "BackupResult",
    "BackupService",
    "BackupSettings",
    "CleanupResult",
    "RestoreResult",
    "RetentionPolicy",
]
