"""Verify packed backup archives before they leave the process."""
from __future__ import annotations

import hashlib
import io
import json
import zipfile
import zlib
from typing import Dict

from .bundle import ASSET_PREFIX, METADATA_ENTRY, SNAPSHOT_ENTRY
from .codec import SnapshotCodec
from .errors import FormatError


def verify_archive(data: bytes) -> Dict[str, object]:
    """Re-read every entry of ``data`` and check it against its metadata.

    Unlike :meth:`AssetBundler.unpack` this is strict: any unreadable entry is
    an error. Used right after packing, where a bad entry means a bad backup.
    """

    try:
        archive = zipfile.ZipFile(io.BytesIO(data), "r")
    except zipfile.BadZipFile as exc:
        raise FormatError(f"archive unreadable: {exc}") from exc

    with archive:
        names = archive.namelist()
        if METADATA_ENTRY not in names:
            raise FormatError("archive missing metadata")
        if SNAPSHOT_ENTRY not in names:
            raise FormatError("archive missing snapshot")
        try:
            metadata = json.loads(archive.read(METADATA_ENTRY))
            snapshot = archive.read(SNAPSHOT_ENTRY)
            asset_names = [name for name in names if name.startswith(ASSET_PREFIX)]
            asset_bytes = sum(len(archive.read(name)) for name in asset_names)
        except (zipfile.BadZipFile, zlib.error, ValueError, NotImplementedError) as exc:
            raise FormatError(f"archive entry unreadable: {exc}") from exc

    SnapshotCodec.validate(snapshot)
    expected_sha = metadata.get("snapshotSha256")
    if expected_sha and hashlib.sha256(snapshot).hexdigest() != expected_sha:
        raise FormatError("snapshot checksum mismatch")
    expected_size = metadata.get("snapshotBytes")
    if expected_size is not None and int(expected_size) != len(snapshot):
        raise FormatError("snapshot size mismatch")
    if int(metadata.get("assetCount", 0)) != len(asset_names):
        raise FormatError("asset count mismatch")

    return {
        "snapshot_bytes": len(snapshot),
        "asset_count": len(asset_names),
        "asset_bytes": asset_bytes,
    }


__all__ = ["verify_archive"]
