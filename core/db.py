from __future__ import annotations

import os
import sqlite3
from pathlib import Path
from typing import Optional

__all__ = [
    "DEFAULT_BUSY_TIMEOUT_MS",
    "SqliteStore",
    "configure_connection",
    "quick_check",
]

DEFAULT_BUSY_TIMEOUT_MS = 5000


def configure_connection(conn: sqlite3.Connection) -> None:
    conn.execute(f"PRAGMA busy_timeout={int(DEFAULT_BUSY_TIMEOUT_MS)}")
    try:
        conn.execute("PRAGMA foreign_keys=ON")
    except sqlite3.DatabaseError:
        pass


def quick_check(conn: sqlite3.Connection) -> None:
    """Raise ``sqlite3.DatabaseError`` unless ``PRAGMA quick_check`` reports ok."""

    row = conn.execute("PRAGMA quick_check").fetchone()
    if row and str(row[0]).lower() != "ok":
        raise sqlite3.DatabaseError(f"quick_check failed: {row[0]}")


class SqliteStore:
    """In-memory SQLite database persisted as a serialized image on disk.

    The live database always runs in memory; :meth:`flush` writes the full
    serialized image to ``storage_path`` so the next :meth:`open` can pick it
    up again. ``storage_path`` may be ``None`` for purely ephemeral stores.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._storage_path = Path(storage_path) if storage_path else None
        self._conn: Optional[sqlite3.Connection] = None

    # ------------------------------------------------------------------
    @property
    def storage_path(self) -> Optional[Path]:
        return self._storage_path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("store is not open")
        return self._conn

    # ------------------------------------------------------------------
    def open(self) -> "SqliteStore":
        if self._conn is not None:
            return self
        conn = sqlite3.connect(":memory:", isolation_level=None, check_same_thread=False)
        configure_connection(conn)
        data = b""
        if self._storage_path and self._storage_path.exists():
            data = self._storage_path.read_bytes()
        if data:
            conn.deserialize(data)
            quick_check(conn)
        else:
            # A fresh memory database has no pages and serializes to nothing.
            conn.execute("CREATE TABLE _store_init(x)")
            conn.execute("DROP TABLE _store_init")
        self._conn = conn
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "SqliteStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    def export_bytes(self) -> bytes:
        return bytes(self.connection.serialize())

    def load_bytes(self, data: bytes) -> None:
        """Replace the live database with ``data``.

        Raises ``sqlite3.DatabaseError`` when the engine cannot read the image.
        The previous contents are gone once this is called; callers wanting a
        way back must export first.
        """

        conn = self.connection
        conn.deserialize(bytes(data))
        quick_check(conn)
        conn.execute("SELECT count(*) FROM sqlite_master").fetchone()

    def flush(self) -> None:
        if self._storage_path is None:
            return
        data = self.export_bytes()
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._storage_path.with_name(self._storage_path.name + ".tmp")
        tmp_path.write_bytes(data)
        os.replace(tmp_path, self._storage_path)
