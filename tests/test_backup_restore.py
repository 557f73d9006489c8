import io
import zipfile

import pytest

from backup.bundle import METADATA_ENTRY, AssetBundler
from backup.codec import SnapshotCodec
from backup.errors import BackupError, EngineError, FormatError, MissingSnapshotEntry
from backup.restore import DONE, FAILED, IDLE, REJECTED, RestoreExecutor
from backup.types import SQLITE_SIGNATURE, ArchiveMetadata
from core.assets import AssetStore

from conftest import rows, seed_clinic


class _FullDiskStore:
    """Delegates to a real store; chosen flush calls fail as on a full disk."""

    def __init__(self, inner, *, failing_flushes):
        self._inner = inner
        self._failing = set(failing_flushes)
        self.flushes = 0

    @property
    def is_open(self):
        return self._inner.is_open

    def export_bytes(self):
        return self._inner.export_bytes()

    def load_bytes(self, data):
        self._inner.load_bytes(data)

    def flush(self):
        self.flushes += 1
        if self.flushes in self._failing:
            raise OSError(28, "No space left on device")
        self._inner.flush()


def _executor(tmp_path, store, logger, *, assets=None):
    return RestoreExecutor(
        codec=SnapshotCodec(store),
        logger=logger,
        assets=assets,
        safety_dir=tmp_path / "backups" / "_safety",
    )


@pytest.mark.parametrize(
    "payload",
    [
        b"",
        b"plain text, definitely not a database",
        b'{"patients": [{"id": 1}]}',
    ],
)
def test_rejected_file_leaves_store_untouched(tmp_path, store, logger, payload):
    seed_clinic(store)
    codec = SnapshotCodec(store)
    before = codec.export().data
    executor = _executor(tmp_path, store, logger)
    assert executor.state == IDLE

    result = executor.restore(payload)

    assert result.state == REJECTED
    assert isinstance(result.error, FormatError)
    assert codec.export().data == before
    assert not (tmp_path / "backups" / "_safety").exists()


def test_archive_without_snapshot_is_rejected(tmp_path, store, logger):
    seed_clinic(store)
    before = rows(store)
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("images/rx-1.png", b"image")
        archive.writestr(METADATA_ENTRY, "{}")

    result = _executor(tmp_path, store, logger).restore(buffer.getvalue(), mode="archive")

    assert result.state == REJECTED
    assert isinstance(result.error, MissingSnapshotEntry)
    assert rows(store) == before


def test_snapshot_restore_replaces_rows(tmp_path, store, logger):
    seed_clinic(store)
    codec = SnapshotCodec(store)
    snapshot = codec.export()
    expected = rows(store)
    store.connection.execute("DELETE FROM patients WHERE id = 2")
    store.connection.execute("INSERT INTO patients (id, name) VALUES (9, 'Walk-in')")

    executor = _executor(tmp_path, store, logger)
    result = executor.restore(snapshot.data)

    assert result.ok
    assert executor.state == DONE
    assert rows(store) == expected
    assert result.safety_path is not None
    assert result.safety_path.read_bytes().startswith(SQLITE_SIGNATURE)
    assert store.storage_path.read_bytes() == codec.export().data


def test_engine_failure_rolls_back_previous_data(tmp_path, store, logger):
    seed_clinic(store)
    before = rows(store)
    executor = _executor(tmp_path, store, logger)

    result = executor.restore(SQLITE_SIGNATURE + b"\xff" * 1024)

    assert result.state == FAILED
    assert isinstance(result.error, EngineError)
    assert rows(store) == before
    assert "restore_rolled_back" in logger.names()
    assert "current data was kept" in result.message


def test_archive_restore_writes_assets(tmp_path, store, logger):
    seed_clinic(store)
    snapshot = SnapshotCodec(store).export()
    metadata = ArchiveMetadata(version=0, asset_count=0, created_at="2024-03-01T10:00:00")
    data = AssetBundler().pack(snapshot, [("rx-1.png", b"one"), ("rx-3.jpg", b"three")], metadata)
    store.connection.execute("DELETE FROM prescriptions")
    assets = AssetStore(tmp_path / "restored-images")

    result = _executor(tmp_path, store, logger, assets=assets).restore(data, mode="archive")

    assert result.ok
    assert result.restored_assets == 2
    assert result.partial_asset_loss == 0
    assert len(rows(store, "prescriptions")) == 2
    assert assets.read("rx-3.jpg") == b"three"


def test_archive_restore_reports_lost_assets(tmp_path, store, logger):
    seed_clinic(store)
    snapshot = SnapshotCodec(store).export()
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_STORED) as archive:
        archive.writestr("snapshot.db", snapshot.data)
        archive.writestr("images/ok.png", b"fine")
        archive.writestr("images/broken.png", b"BROKEN-PAYLOAD-123")
    data = buffer.getvalue().replace(b"BROKEN-PAYLOAD-123", b"BROKEN-PAYLOAD-124")
    assets = AssetStore(tmp_path / "restored-images")

    result = _executor(tmp_path, store, logger, assets=assets).restore(data, mode="archive")

    assert result.ok
    assert result.lost_assets == ["broken.png"]
    assert result.restored_assets == 1
    assert "1 image(s)" in result.message
    assert "restore_partial_asset_loss" in logger.names()


def test_unknown_mode_is_a_caller_error(tmp_path, store, logger):
    with pytest.raises(ValueError):
        _executor(tmp_path, store, logger).restore(b"", mode="cloud")


def _restore_on_full_disk(tmp_path, store, logger, failing_flushes):
    seed_clinic(store)
    snapshot = SnapshotCodec(store).export()
    store.connection.execute("DELETE FROM patients WHERE id = 2")
    SnapshotCodec(store).export()
    before = rows(store)
    on_disk = store.storage_path.read_bytes()
    # Flush order: export of the current data, save of the restored data, rollback.
    full_disk = _FullDiskStore(store, failing_flushes=failing_flushes)
    executor = _executor(tmp_path, full_disk, logger)

    result = executor.restore(snapshot.data)

    return executor, result, before, on_disk


def test_failed_save_rolls_back_previous_data(tmp_path, store, logger):
    executor, result, before, on_disk = _restore_on_full_disk(tmp_path, store, logger, failing_flushes={2})

    assert result.state == FAILED
    assert executor.state == FAILED
    assert isinstance(result.error, BackupError)
    assert "No space left on device" in str(result.error)
    assert rows(store) == before
    assert store.storage_path.read_bytes() == on_disk
    assert "restore_rolled_back" in logger.names()
    assert result.safety_path is not None and result.safety_path.exists()


def test_failed_rollback_still_returns_failed_result(tmp_path, store, logger):
    _, result, before, on_disk = _restore_on_full_disk(tmp_path, store, logger, failing_flushes={2, 3})

    assert result.state == FAILED
    assert isinstance(result.error, BackupError)
    assert rows(store) == before
    assert store.storage_path.read_bytes() == on_disk
    assert "restore_rollback_failed" in logger.names()
    assert "restore_rolled_back" not in logger.names()
    assert result.safety_path.read_bytes() == on_disk


def test_back_to_back_restores_keep_every_safety_copy(tmp_path, store, logger):
    seed_clinic(store)
    snapshot = SnapshotCodec(store).export()
    executor = _executor(tmp_path, store, logger)

    first = executor.restore(snapshot.data)
    second = executor.restore(snapshot.data)

    assert first.ok and second.ok
    assert first.safety_path != second.safety_path
    assert first.safety_path.exists() and second.safety_path.exists()
    assert len(list((tmp_path / "backups" / "_safety").glob("pre-restore-*.db"))) == 2
