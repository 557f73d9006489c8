"""Delivery targets for backups: a consented directory or a one-shot download."""
from __future__ import annotations

import os
import re
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from .errors import DestinationUnavailable, UserCancelled
from .types import BackupFile, DeliveryReceipt

SNAPSHOT_EXT = "db"
ARCHIVE_EXT = "zip"

#: Returns the directory the user agreed to, or None when they dismissed the prompt.
DirectoryPicker = Callable[[], Optional[Path]]
DownloadSink = Callable[[str, bytes], Optional[str]]


def backup_filename(prefix: str, when: datetime, ext: str) -> str:
    return f"{prefix}_{when.strftime('%Y-%m-%d')}_{when.strftime('%H-%M-%S')}.{ext}"


def _filename_pattern(prefix: str) -> re.Pattern[str]:
    return re.compile(
        rf"^{re.escape(prefix)}_(\d{{4}}-\d{{2}}-\d{{2}})_(\d{{2}}-\d{{2}}-\d{{2}})\.({SNAPSHOT_EXT}|{ARCHIVE_EXT})$"
    )


def parse_backup_filename(prefix: str, name: str) -> Optional[datetime]:
    """Return the timestamp encoded in *name*, or None if it is not a backup file."""

    match = _filename_pattern(prefix).match(name)
    if not match:
        return None
    try:
        return datetime.strptime(f"{match.group(1)} {match.group(2)}", "%Y-%m-%d %H-%M-%S")
    except ValueError:
        return None


class Destination:
    """Base class for backup delivery targets."""

    def deliver(self, filename: str, data: bytes) -> DeliveryReceipt:
        raise NotImplementedError


class DirectoryDestination(Destination):
    """Write backups into a directory the user granted access to once.

    ``picker`` is the platform consent prompt. ``None`` means the platform has
    no directory capability at all, which surfaces as
    :class:`DestinationUnavailable`.
    """

    def __init__(self, picker: Optional[DirectoryPicker] = None) -> None:
        self._picker = picker
        self._granted: Optional[Path] = None

    @property
    def available(self) -> bool:
        return self._picker is not None

    def ensure_access(self) -> Path:
        if self._picker is None:
            raise DestinationUnavailable("directory access is not supported on this platform")
        if self._granted is not None and self._granted.is_dir():
            return self._granted
        chosen = self._picker()
        if chosen is None:
            raise UserCancelled("directory selection cancelled")
        directory = Path(chosen)
        directory.mkdir(parents=True, exist_ok=True)
        self._granted = directory
        return directory

    def deliver(self, filename: str, data: bytes) -> DeliveryReceipt:
        directory = self.ensure_access()
        target = directory / filename
        tmp_path = directory / f".{filename}.partial"
        try:
            tmp_path.write_bytes(data)
            os.replace(tmp_path, target)
        finally:
            tmp_path.unlink(missing_ok=True)
        return DeliveryReceipt(
            filename=filename,
            size=len(data),
            location=str(target),
            folder_name=directory.name,
        )

    def list_backups(self, prefix: str) -> List[BackupFile]:
        directory = self.ensure_access()
        files: List[BackupFile] = []
        for child in sorted(directory.iterdir()):
            if not child.is_file():
                continue
            created = parse_backup_filename(prefix, child.name)
            if created is None:
                continue
            files.append(BackupFile(name=child.name, path=child, created=created))
        return files

    def remove(self, filename: str) -> None:
        directory = self.ensure_access()
        (directory / filename).unlink()


class FolderSink:
    """Download sink that drops files into a downloads folder without prompting."""

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    def __call__(self, filename: str, data: bytes) -> Optional[str]:
        self._directory.mkdir(parents=True, exist_ok=True)
        target = self._directory / filename
        target.write_bytes(data)
        return str(target)


class MemorySink:
    """Download sink that keeps the delivered file for the caller to stream."""

    def __init__(self) -> None:
        self.filename: Optional[str] = None
        self.data: Optional[bytes] = None

    def __call__(self, filename: str, data: bytes) -> Optional[str]:
        self.filename = filename
        self.data = data
        return None


class DownloadDestination(Destination):
    """One-shot delivery; always available, never needs consent."""

    def __init__(self, sink: DownloadSink) -> None:
        self._sink = sink

    def deliver(self, filename: str, data: bytes, *, sink: Optional[DownloadSink] = None) -> DeliveryReceipt:
        location = (sink or self._sink)(filename, data)
        return DeliveryReceipt(filename=filename, size=len(data), location=location)


__all__ = [
    "ARCHIVE_EXT",
    "Destination",
    "DirectoryDestination",
    "DirectoryPicker",
    "DownloadDestination",
    "DownloadSink",
    "FolderSink",
    "MemorySink",
    "SNAPSHOT_EXT",
    "backup_filename",
    "parse_backup_filename",
]
