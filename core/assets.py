"""Directory-backed blob store for images referenced by clinic records."""
from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

__all__ = ["AssetStore", "is_safe_asset_name"]


def is_safe_asset_name(name: str) -> bool:
    """Return True when *name* is a plain file name usable as an asset key."""

    if not name or name in {".", ".."}:
        return False
    if "/" in name or "\\" in name or "\x00" in name:
        return False
    return not name.startswith(".")


class AssetStore:
    """Keyed blob store laid out as ``<root>/<owner?>/<name>``."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _dir(self, owner_id: Optional[str]) -> Path:
        if owner_id:
            if not is_safe_asset_name(owner_id):
                raise ValueError(f"invalid asset owner: {owner_id!r}")
            return self._root / owner_id
        return self._root

    def _path(self, name: str, owner_id: Optional[str]) -> Path:
        if not is_safe_asset_name(name):
            raise ValueError(f"invalid asset name: {name!r}")
        return self._dir(owner_id) / name

    def list_names(self, owner_id: Optional[str] = None) -> List[str]:
        directory = self._dir(owner_id)
        if not directory.is_dir():
            return []
        return sorted(
            child.name
            for child in directory.iterdir()
            if child.is_file() and is_safe_asset_name(child.name)
        )

    def read(self, name: str, owner_id: Optional[str] = None) -> Optional[bytes]:
        path = self._path(name, owner_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def write(self, name: str, data: bytes, owner_id: Optional[str] = None) -> Path:
        path = self._path(name, owner_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.tmp")
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
        return path
