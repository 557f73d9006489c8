"""Convert the live store to and from portable snapshot bytes."""
from __future__ import annotations

import sqlite3
from typing import Protocol

from .errors import EngineError, FormatError, StoreUninitialized
from .types import SQLITE_SIGNATURE, Snapshot


class RelationalStore(Protocol):
    """Capability the codec needs from the embedded database engine."""

    @property
    def is_open(self) -> bool: ...

    def export_bytes(self) -> bytes: ...

    def load_bytes(self, data: bytes) -> None: ...

    def flush(self) -> None: ...


class SnapshotCodec:
    def __init__(self, store: RelationalStore) -> None:
        self._store = store

    @property
    def store(self) -> RelationalStore:
        return self._store

    def export(self) -> Snapshot:
        """Flush pending writes and return the store's full-state bytes."""

        if not self._store.is_open:
            raise StoreUninitialized("relational store is not initialised")
        self._store.flush()
        data = self._store.export_bytes()
        if not data.startswith(SQLITE_SIGNATURE):
            raise StoreUninitialized("relational store returned an empty image")
        return Snapshot(data)

    @staticmethod
    def validate(data: bytes) -> Snapshot:
        """Check the 16 byte SQLite signature; nothing past the header is inspected."""

        if not data:
            raise FormatError("empty input")
        if len(data) < len(SQLITE_SIGNATURE):
            raise FormatError(f"input too short for a database header ({len(data)} bytes)")
        if bytes(data[: len(SQLITE_SIGNATURE)]) != SQLITE_SIGNATURE:
            raise FormatError("input does not start with the SQLite signature")
        return Snapshot(bytes(data))

    def apply(self, snapshot: Snapshot) -> None:
        if not self._store.is_open:
            raise StoreUninitialized("relational store is not initialised")
        try:
            self._store.load_bytes(snapshot.data)
        except sqlite3.Error as exc:
            raise EngineError(f"engine rejected snapshot: {exc}") from exc
        self._store.flush()


__all__ = ["RelationalStore", "SnapshotCodec"]
