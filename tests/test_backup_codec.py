import sqlite3

import pytest

from backup.codec import SnapshotCodec
from backup.errors import EngineError, FormatError, StoreUninitialized
from backup.types import SQLITE_SIGNATURE, Snapshot
from core.db import SqliteStore

from conftest import rows, seed_clinic


def test_export_of_empty_store_is_a_valid_image(store):
    codec = SnapshotCodec(store)

    snapshot = codec.export()

    assert snapshot.data.startswith(SQLITE_SIGNATURE)
    assert SnapshotCodec.validate(snapshot.data) == snapshot


def test_round_trip_preserves_rows(store, tmp_path):
    seed_clinic(store)
    snapshot = SnapshotCodec(store).export()

    with SqliteStore(tmp_path / "other.db") as other:
        SnapshotCodec(other).apply(SnapshotCodec.validate(snapshot.data))
        assert rows(other) == rows(store)
        assert rows(other, "prescriptions") == rows(store, "prescriptions")


def test_export_flushes_to_storage(store):
    seed_clinic(store)
    snapshot = SnapshotCodec(store).export()

    assert store.storage_path.read_bytes() == snapshot.data

    with SqliteStore(store.storage_path) as reopened:
        assert rows(reopened) == rows(store)


def test_export_requires_open_store(tmp_path):
    codec = SnapshotCodec(SqliteStore(tmp_path / "closed.db"))

    with pytest.raises(StoreUninitialized):
        codec.export()


@pytest.mark.parametrize(
    "payload",
    [
        b"",
        b"SQLite",
        b"SQLite format 2\x00" + b"\x00" * 100,
        b'{"patients": []}',
        b"PK\x03\x04" + b"\x00" * 64,
    ],
)
def test_validate_rejects_non_sqlite_bytes(payload):
    with pytest.raises(FormatError):
        SnapshotCodec.validate(payload)


def test_validate_only_inspects_the_header():
    # A correct signature followed by junk passes; the engine is the next gate.
    data = SQLITE_SIGNATURE + b"\xff" * 1024

    assert SnapshotCodec.validate(data).data == data


def test_apply_wraps_engine_errors(store):
    codec = SnapshotCodec(store)

    with pytest.raises(EngineError) as excinfo:
        codec.apply(Snapshot(SQLITE_SIGNATURE + b"\xff" * 1024))

    assert isinstance(excinfo.value.__cause__, sqlite3.Error)
