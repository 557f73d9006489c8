"""Bundle a snapshot with image assets into a single zip archive."""
from __future__ import annotations

import hashlib
import io
import json
import zipfile
import zlib
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Tuple

from core.assets import is_safe_asset_name

from .errors import FormatError, MissingSnapshotEntry
from .logs import BackupLogger
from .types import ArchiveMetadata, Snapshot, UnpackedArchive

ARCHIVE_VERSION = 1
SNAPSHOT_ENTRY = "snapshot.db"
ASSET_PREFIX = "images/"
METADATA_ENTRY = "metadata.json"
DEFAULT_COMPRESSION_LEVEL = 6

# Fixed entry timestamp keeps identical inputs byte-identical.
_ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)


class AssetBundler:
    def __init__(
        self,
        *,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
        logger: Optional[BackupLogger] = None,
    ) -> None:
        self._compression_level = int(compression_level)
        self._logger = logger

    # ------------------------------------------------------------------
    def _entry(self, name: str) -> zipfile.ZipInfo:
        info = zipfile.ZipInfo(name, date_time=_ENTRY_DATE_TIME)
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = 0o644 << 16
        return info

    def _warn(self, event: str, **extra) -> None:
        if self._logger is not None:
            self._logger.warning(event, **extra)

    # ------------------------------------------------------------------
    def pack(
        self,
        snapshot: Snapshot,
        assets: Iterable[Tuple[str, bytes]],
        metadata: ArchiveMetadata,
    ) -> bytes:
        by_name: Dict[str, bytes] = {}
        for name, data in assets:
            if not is_safe_asset_name(name):
                raise ValueError(f"invalid asset name: {name!r}")
            by_name[name] = bytes(data)

        metadata = replace(
            metadata,
            version=ARCHIVE_VERSION,
            asset_count=len(by_name),
            snapshot_bytes=len(snapshot.data),
            snapshot_sha256=hashlib.sha256(snapshot.data).hexdigest(),
        )

        buffer = io.BytesIO()
        with zipfile.ZipFile(
            buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=self._compression_level
        ) as archive:
            archive.writestr(self._entry(SNAPSHOT_ENTRY), snapshot.data, compresslevel=self._compression_level)
            for name in sorted(by_name):
                archive.writestr(
                    self._entry(f"{ASSET_PREFIX}{name}"),
                    by_name[name],
                    compresslevel=self._compression_level,
                )
            payload = json.dumps(metadata.to_dict(), indent=2, sort_keys=True).encode("utf-8")
            archive.writestr(self._entry(METADATA_ENTRY), payload, compresslevel=self._compression_level)
        return buffer.getvalue()

    # ------------------------------------------------------------------
    def _read_metadata(self, archive: zipfile.ZipFile, names: List[str]) -> Optional[ArchiveMetadata]:
        if METADATA_ENTRY not in names:
            return None
        try:
            payload = json.loads(archive.read(METADATA_ENTRY))
        except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, ValueError) as exc:
            raise FormatError(f"unreadable archive metadata: {exc}") from exc
        if not isinstance(payload, dict):
            raise FormatError("archive metadata is not an object")
        try:
            metadata = ArchiveMetadata.from_dict(payload)
        except (TypeError, ValueError) as exc:
            raise FormatError(f"invalid archive metadata: {exc}") from exc
        if metadata.version > ARCHIVE_VERSION:
            raise FormatError(
                f"archive format {metadata.version} is newer than supported version {ARCHIVE_VERSION}"
            )
        return metadata

    def unpack(self, data: bytes) -> UnpackedArchive:
        """Read snapshot bytes and assets out of ``data``.

        The snapshot entry is checked before any asset is read. Individual
        assets that cannot be read are skipped and listed in ``lost_assets``.
        """

        try:
            archive = zipfile.ZipFile(io.BytesIO(data), "r")
        except (zipfile.BadZipFile, ValueError) as exc:
            raise FormatError(f"not a zip archive: {exc}") from exc

        with archive:
            names = archive.namelist()
            if SNAPSHOT_ENTRY not in names:
                raise MissingSnapshotEntry(f"archive has no {SNAPSHOT_ENTRY} entry")
            try:
                snapshot = archive.read(SNAPSHOT_ENTRY)
            except (zipfile.BadZipFile, zlib.error, OSError, EOFError, NotImplementedError) as exc:
                raise FormatError(f"snapshot entry is corrupt: {exc}") from exc

            metadata = self._read_metadata(archive, names)
            if metadata is not None and metadata.snapshot_sha256:
                if hashlib.sha256(snapshot).hexdigest() != metadata.snapshot_sha256:
                    raise FormatError("snapshot checksum mismatch inside archive")

            assets: List[Tuple[str, bytes]] = []
            lost: List[str] = []
            for info in archive.infolist():
                if info.is_dir() or not info.filename.startswith(ASSET_PREFIX):
                    continue
                name = info.filename[len(ASSET_PREFIX):]
                if not is_safe_asset_name(name):
                    lost.append(info.filename)
                    self._warn("asset_skipped", entry=info.filename, reason="unsafe_name")
                    continue
                try:
                    assets.append((name, archive.read(info)))
                except (zipfile.BadZipFile, zlib.error, OSError, EOFError, NotImplementedError) as exc:
                    lost.append(name)
                    self._warn("asset_skipped", entry=info.filename, reason="corrupt", err_msg=str(exc))

        return UnpackedArchive(snapshot=snapshot, assets=assets, metadata=metadata, lost_assets=lost)


__all__ = [
    "ASSET_PREFIX",
    "ARCHIVE_VERSION",
    "AssetBundler",
    "METADATA_ENTRY",
    "SNAPSHOT_ENTRY",
]
